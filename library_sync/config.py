# ============================================================================
# Library Sync - Application Configuration
# ============================================================================
"""
Application configuration module using Pydantic Settings.

This module defines the environment-driven configuration for the sync engine,
including:
- Database connection settings
- Remote store (Google Drive) credentials and folder identities
- Logging verbosity

Tuning knobs that operators edit (page size, delays, depth guard, folder
patterns) live in config.yml and are loaded by the config loader instead.

Environment Variables:
    DATABASE_URL, GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_REFRESH_TOKEN,
    ROOT_FOLDER_ID, UPLOAD_FOLDER_ID, LOG_LEVEL, DEBUG, CONFIG_PATH

Usage:
    from library_sync.config import settings
    root = settings.root_folder_id
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # GENERAL
    # =========================================================================
    app_name: str = "Library Sync"
    debug: bool = Field(default=False, description="Echo SQL and enable verbose logging")
    log_level: str = Field(default="INFO", description="Root log level for commands")
    config_path: Optional[str] = Field(default=None, description="Path to config.yml")

    # =========================================================================
    # DATABASE
    # =========================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/library.db",
        description="SQLAlchemy async database URL",
    )

    # =========================================================================
    # GOOGLE DRIVE
    # =========================================================================
    google_client_id: Optional[str] = Field(default=None, description="OAuth2 client ID")
    google_client_secret: Optional[str] = Field(default=None, description="OAuth2 client secret")
    google_refresh_token: Optional[str] = Field(default=None, description="OAuth2 refresh token")
    root_folder_id: Optional[str] = Field(default=None, description="Drive folder the sync starts from")
    upload_folder_id: Optional[str] = Field(
        default=None, description="Destination folder for copy-based ingestion"
    )

    # =========================================================================
    # CATALOG
    # =========================================================================
    system_uploader_id: str = Field(
        default="system-sync", description="Uploader recorded on resources created by the sync"
    )


# Global settings instance (imported elsewhere)
settings = Settings()
