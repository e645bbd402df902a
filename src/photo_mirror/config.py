from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide configuration, resolved once and passed into constructors."""

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="PHOTO_MIRROR_", extra="ignore"
    )

    APP_NAME: str = "photo-mirror"
    VERSION: str = "0.1.0"
    PORT: int = 8787

    # Storage. ":memory:" keeps the whole cache in-process.
    DB_PATH: str = str(Path.home() / ".photo_mirror" / "cache.sqlite")
    THUMBNAIL_DIR: Path = Path.home() / ".photo_mirror" / "thumbnails"
    THUMBNAIL_SIZE: int = Field(default=256, ge=16)

    # Scheduling
    SYNC_INTERVAL_MINUTES: float = Field(default=5, gt=0)
    TOKEN_REFRESH_INTERVAL_MINUTES: float = Field(default=45, gt=0)
    SYNC_ON_START: bool = True
    MAX_CONSECUTIVE_FAILURES: int = Field(default=5, ge=1)
    BACKOFF_INITIAL_SECONDS: float = Field(default=1.0, ge=0)
    BACKOFF_FACTOR: float = Field(default=2.0, ge=1)
    BACKOFF_MAX_SECONDS: float = Field(default=300.0, ge=0)

    # Remote access
    PREFETCH_WORKERS: int = Field(default=4, ge=1)
    REMOTE_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    PAGE_SIZE: int = Field(default=100, ge=1, le=100)
    PAGE_DELAY_SECONDS: float = Field(default=0.5, ge=0)
    PHOTOS_API_BASE_URL: str = "https://photoslibrary.googleapis.com/v1"
    TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""

    # Token persistence: system keyring or a Fernet-encrypted file.
    TOKEN_STORE: Literal["keyring", "file"] = "keyring"
    TOKEN_FILE_PATH: Path = Path.home() / ".photo_mirror" / "tokens.enc"
    KEYRING_SERVICE: str = "photo_mirror"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "json"

    @property
    def is_memory_db(self) -> bool:
        return self.DB_PATH in ("", ":memory:", "memory")


def get_settings(**overrides) -> Settings:
    """Build settings from the environment, applying explicit overrides."""
    return Settings(**overrides)
