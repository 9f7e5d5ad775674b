"""
Pydantic models for YAML configuration validation.

This module defines the schema for config.yml, providing type-safe configuration
with validation and sensible defaults.

Usage:
    from library_sync.models.config_models import AppConfig
    config = AppConfig.from_yaml("config.yml")
"""

import os
from typing import Any, List, Literal

from pydantic import BaseModel, ConfigDict, Field


class GoogleDriveConfig(BaseModel):
    """
    Google Drive API configuration.

    Credentials are not part of this block; they come from the environment
    (see library_sync.config.Settings). This block only tunes how the client
    talks to the API: endpoints, paging, pacing and retry policy.
    """
    model_config = ConfigDict(extra='forbid')

    api_base_url: str = Field(
        default="https://www.googleapis.com/drive/v3",
        description="Drive v3 REST base URL"
    )
    token_url: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="OAuth2 token endpoint used for refresh-token exchange"
    )
    page_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Entries requested per folder listing page"
    )
    timeout: int = Field(
        default=60,
        ge=1,
        le=600,
        description="Request timeout in seconds"
    )
    api_delay_ms: int = Field(
        default=100,
        ge=0,
        le=60000,
        description="Fixed delay applied before every remote list/get call"
    )
    rate_limit_backoff_seconds: float = Field(
        default=5.0,
        ge=0,
        le=600,
        description="Fixed sleep after a rate-limit or transient error before retrying"
    )
    max_retries: int = Field(
        default=5,
        ge=0,
        le=50,
        description="Retries of the same call before the folder/file is given up"
    )


class SyncConfig(BaseModel):
    """
    Tree walker configuration.

    mode:
    - reference: catalog files in place (external id = Drive file id)
    - copy: copy each file into a canonical folder under UPLOAD_FOLDER_ID
    """
    model_config = ConfigDict(extra='forbid')

    mode: Literal["reference", "copy"] = Field(
        default="reference",
        description="Ingestion mode"
    )
    max_depth: int = Field(
        default=12,
        ge=1,
        le=100,
        description="Folders deeper than this are abandoned and counted as errors"
    )
    batch_commit_size: int = Field(
        default=50,
        ge=1,
        le=10000,
        description="Commit resource upserts every N files"
    )
    folder_exclude_patterns: List[str] = Field(
        default_factory=list,
        description="fnmatch patterns for folders whose subtree is skipped"
    )
    transparent_folder_patterns: List[str] = Field(
        default_factory=lambda: ["*Attribute*"],
        description="fnmatch patterns for grouping folders that create no tag"
    )
    tag_file_name_attributes: bool = Field(
        default=False,
        description="Also apply attribute rules to file names"
    )


class AppConfig(BaseModel):
    """
    Root application configuration.

    This is the top-level configuration object that contains all service configs.
    """
    model_config = ConfigDict(extra='forbid')

    version: str = Field(
        default="1.0",
        description="Configuration file version"
    )
    google_drive: GoogleDriveConfig = Field(
        default_factory=GoogleDriveConfig,
        description="Google Drive client configuration"
    )
    sync: SyncConfig = Field(
        default_factory=SyncConfig,
        description="Tree walker configuration"
    )

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "AppConfig":
        """
        Load and parse configuration from YAML file.

        Args:
            yaml_path: Path to config.yml file

        Returns:
            Validated AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml

        if not os.path.exists(yaml_path):
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        resolved_config = cls._resolve_env_vars(raw_config)

        return cls(**resolved_config)

    @classmethod
    def _resolve_env_vars(cls, obj: Any) -> Any:
        """
        Recursively resolve ${ENV_VAR} references in configuration.

        Supports ${VAR_NAME} or ${VAR_NAME:-default}. Unset variables without
        a default resolve to None so partial configs still load.
        """
        if isinstance(obj, dict):
            return {k: cls._resolve_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [cls._resolve_env_vars(item) for item in obj]
        elif isinstance(obj, str):
            if obj.startswith("${") and obj.endswith("}"):
                inner = obj[2:-1]
                if ":-" in inner:
                    var_name, default_value = inner.split(":-", 1)
                    return os.getenv(var_name, default_value)
                return os.getenv(inner)
            return obj
        else:
            return obj
