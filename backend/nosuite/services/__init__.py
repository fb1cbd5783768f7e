"""
Service wiring

One ServiceContainer is built per application instance and stored on
app.state, so tests and multiple apps in one process stay isolated.
"""

from dataclasses import dataclass

from nosuite.core.bootstrap import AdminBootstrap
from nosuite.core.config import Settings
from nosuite.core.encryption import CipherEngine
from nosuite.services.broadcaster import ConnectionRegistry
from nosuite.services.credentials import CredentialStore
from nosuite.services.paths import PathResolver
from nosuite.services.storage import StorageEngine, StorageService
from nosuite.services.tokens import TokenService


@dataclass
class ServiceContainer:
    settings: Settings
    cipher: CipherEngine
    bootstrap: AdminBootstrap
    resolver: PathResolver
    credentials: CredentialStore
    tokens: TokenService
    registry: ConnectionRegistry
    storage: StorageService


def build_services(settings: Settings) -> ServiceContainer:
    cipher = CipherEngine(
        settings.iv_bytes,
        iterations=settings.KDF_ITERATIONS,
        random_nonce=settings.RANDOM_NONCE,
    )
    resolver = PathResolver(settings.USERS_ROOT)
    credentials = CredentialStore(settings, cipher, resolver)
    registry = ConnectionRegistry()

    return ServiceContainer(
        settings=settings,
        cipher=cipher,
        bootstrap=AdminBootstrap(settings, cipher),
        resolver=resolver,
        credentials=credentials,
        tokens=TokenService(settings, cipher, credentials),
        registry=registry,
        storage=StorageService(StorageEngine(cipher, resolver), resolver, registry),
    )
