"""
Application configuration settings
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEVELOPMENT_IV = "00" * 16


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application Settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    ALLOWED_HOSTS: List[str] = ["*"]
    API_PREFIX: str = ""

    # Domains
    AUTH_SERVER: str = "auth.nosuite.fr"
    AUTHORIZED_DOMAIN: str = "nosuite.fr"

    # Admin bootstrap
    ADMIN_DEVICE_ID: Optional[str] = None
    ADMIN_VERIFICATION: Optional[str] = None  # hex, produced by bootstrap.provision()
    MASTER_KEY: Optional[str] = None  # hex, development autostart only

    # Cipher engine
    IV: str = DEVELOPMENT_IV  # 16 bytes hex, legacy CBC format
    KDF_ITERATIONS: int = 100000
    RANDOM_NONCE: bool = True

    # Storage
    USERS_ROOT: Path = Path("users")
    TEMP_FILE_MAX_AGE_HOURS: int = 24

    # Accounts stored unencrypted (fixtures and demos)
    PLAIN_ACCOUNTS: List[str] = ["demo@nosuite.fr", "template@nosuite.fr", "test@nosuite.fr"]
    DEMO_ACCOUNT: str = "demo@nosuite.fr"
    TEMPLATE_ACCOUNT: str = "template@nosuite.fr"
    DEMO_ACCOUNT_NAME: str = "Compte démo"

    # Tokens
    TOKEN_TTL_DAYS: float = 90
    APP_TOKEN_TTL_DAYS: float = 7
    DEMO_TOKEN_TTL_MINUTES: float = 1
    DEMO_APP_TOKEN_TTL_MINUTES: float = 10
    ENFORCE_DEVICE_BINDING: bool = True

    def validate_production(self) -> None:
        """Refuse to run in production without the bootstrap material"""
        if self.ENVIRONMENT != "production":
            return

        required_settings = ["IV", "ADMIN_DEVICE_ID", "ADMIN_VERIFICATION"]
        missing_settings = [name for name in required_settings if not getattr(self, name)]

        if missing_settings:
            raise ValueError(f"Missing required production settings: {', '.join(missing_settings)}")

        if self.IV == DEVELOPMENT_IV:
            raise ValueError("IV must be set to a random value in production")

        if self.MASTER_KEY:
            raise ValueError("MASTER_KEY must not be set in production, unlock through /start instead")

    @property
    def iv_bytes(self) -> bytes:
        return bytes.fromhex(self.IV)

    def is_plain_account(self, email: str) -> bool:
        return email in self.PLAIN_ACCOUNTS


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings instance"""
    settings = Settings()
    settings.validate_production()
    return settings
