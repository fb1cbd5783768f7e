"""
Pydantic schemas for API request/response validation
"""

from .auth import (
    Device, TokenData, NfcKeyRequest, StartRequest, EmailRequest, AuthRequest,
    TokenRequest, ChangePasswordRequest, TokenResponse, AccountInfo
)
from .storage import (
    StorageEntry, StorageCommand, StorageMessage, RegisterMessage, ChunkRequest, FileChangeEvent
)
