"""Nosuite Vault: encrypted per-app storage with realtime change feed"""

__version__ = "1.0.0"
