"""
Configuration loader service for YAML-based configuration.

This service loads and caches configuration from config.yml, providing type-safe
access to the Drive client and tree walker settings with environment variable
resolution and validation.

Usage:
    from library_sync.services.config_loader import config_loader

    drive_config = config_loader.get_google_drive_config()
    sync_config = config_loader.get_sync_config()

    # Get specific value by dot notation
    depth = config_loader.get("sync.max_depth")
"""

import logging
from pathlib import Path
from typing import Any, Optional

from ..config import settings
from ..models.config_models import AppConfig, GoogleDriveConfig, SyncConfig

logger = logging.getLogger("library_sync.config_loader")


class ConfigLoader:
    """
    Configuration loader and cache manager.

    Loads config.yml, validates against Pydantic models, resolves environment
    variables, and provides typed access methods. A missing file is not an
    error: every setting has a default.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration loader.

        Args:
            config_path: Path to config.yml (defaults to CONFIG_PATH, then ./config.yml)
        """
        if config_path is None:
            candidate_paths = []
            if settings.config_path:
                candidate_paths.append(Path(settings.config_path))
            candidate_paths.append(Path.cwd() / "config.yml")
            config_path = str(candidate_paths[0])
            for candidate in candidate_paths:
                if candidate.exists():
                    config_path = str(candidate)
                    break

        self.config_path = config_path
        self._config: Optional[AppConfig] = None
        self._loaded = False

    def load(self) -> AppConfig:
        """
        Load and parse configuration file.

        Returns:
            Validated AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        logger.info(f"Loading configuration from: {self.config_path}")

        try:
            self._config = AppConfig.from_yaml(self.config_path)
            self._loaded = True
            logger.info("Configuration loaded successfully")
            return self._config
        except FileNotFoundError:
            self._loaded = False
            raise
        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            self._loaded = False
            raise ValueError(f"Configuration error: {e}") from e

    def reload(self) -> AppConfig:
        """Reload configuration from file."""
        logger.info("Reloading configuration")
        self._config = None
        self._loaded = False
        return self.load()

    def is_loaded(self) -> bool:
        return self._loaded and self._config is not None

    def get_config(self) -> AppConfig:
        """
        Get the full configuration object.

        Falls back to defaults when the file does not exist. Invalid files
        still raise, since running with a half-read config is worse than
        not running.
        """
        if not self.is_loaded():
            try:
                return self.load()
            except FileNotFoundError:
                logger.warning(f"Configuration file not found: {self.config_path}; using defaults")
                self._config = AppConfig()
                self._loaded = True
        return self._config

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Examples:
            >>> config_loader.get("google_drive.page_size")
            100
            >>> config_loader.get("sync.unknown", 3)
            3
        """
        obj: Any = self.get_config()
        for key in key_path.split('.'):
            if hasattr(obj, key):
                obj = getattr(obj, key)
            elif isinstance(obj, dict) and key in obj:
                obj = obj[key]
            else:
                return default
        return obj

    # -------------------------------------------------------------------------
    # Typed configuration getters
    # -------------------------------------------------------------------------

    def get_google_drive_config(self) -> GoogleDriveConfig:
        return self.get_config().google_drive

    def get_sync_config(self) -> SyncConfig:
        return self.get_config().sync


# Global config loader instance
config_loader = ConfigLoader()
