from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Server
    PORT: int = 8080
    ALLOWED_ORIGIN: str = "*"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./data/messages.sqlite"

    # Telnyx API
    TELNYX_API_KEY: str = ""
    TELNYX_API_URL: str = "https://api.telnyx.com/v2"
    TELNYX_TIMEOUT_SECONDS: float = 10.0

    # Sender identity - exactly one of these is used, the profile wins if both are set
    TELNYX_MESSAGING_PROFILE_ID: Optional[str] = None
    FROM_NUMBER: Optional[str] = None

    # Webhook verification - disabled when no public key is configured
    TELNYX_WEBHOOK_PUBLIC_KEY: Optional[str] = None
    WEBHOOK_TOLERANCE_SECONDS: int = 300


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


settings = get_settings()
