"""
Configuration and settings for the site backend.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_JWT_SECRET = "sitestore-dev-secret-change-me"


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")

    # Local persistence
    data_dir: str = Field(default="data", validation_alias="SITESTORE_DATA_DIR")
    database_url: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")

    # Session tokens
    jwt_secret: str = Field(default=DEV_JWT_SECRET, validation_alias="JWT_SECRET")
    jwt_expires_hours: int = Field(default=24, validation_alias="JWT_EXPIRES_HOURS")

    # Seed admin
    admin_username: str = Field(default="admin", validation_alias="ADMIN_USERNAME")
    admin_default_password: str = Field(
        default="admin123", validation_alias="ADMIN_PASSWORD"
    )

    # FTP mirror. An empty host leaves the mirror disabled.
    ftp_host: str = Field(default="", validation_alias="FTP_HOST")
    ftp_port: int = Field(default=21, validation_alias="FTP_PORT")
    ftp_user: str = Field(default="anonymous", validation_alias="FTP_USER")
    ftp_password: str = Field(default="", validation_alias="FTP_PASS")
    ftp_path: str = Field(default="uploads", validation_alias="FTP_PATH")
    ftp_timeout: float = Field(default=20.0, validation_alias="FTP_TIMEOUT")

    # Development toggles
    use_in_memory_mirror: bool = Field(
        default=False, validation_alias="SITESTORE_IN_MEMORY_MIRROR"
    )
    resync_mode: Literal["auto", "always", "never"] = Field(
        default="auto", validation_alias="SITESTORE_RESYNC_MODE"
    )

    max_upload_bytes: int = Field(
        default=100 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES"
    )

    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=3001, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @property
    def uploads_dir(self) -> str:
        return os.path.join(self.data_dir, "uploads")

    @property
    def snapshot_path(self) -> str:
        return os.path.join(self.data_dir, "database-backup.json")

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return "sqlite:///" + os.path.join(self.data_dir, "database.sqlite")

    @property
    def uses_default_secret(self) -> bool:
        return self.jwt_secret == DEV_JWT_SECRET


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
