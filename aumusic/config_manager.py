"""
Configuration management using database storage.

Provides access to configuration values with defaults, environment overrides
and type conversion. Components never read configuration directly; they are
handed an immutable Settings snapshot at construction time.
"""

import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .database import ConfigRepository, Database

# Environment variables named AUMUSIC_<KEY> take precedence over stored values
ENV_PREFIX = "AUMUSIC_"

@dataclass(frozen=True)
class Settings:
    """Read-only configuration shared by all request workers."""

    jwt_secret: str
    media_root: Path
    max_upload_bytes: int
    token_ttl_seconds: int = 0  # 0 disables the exp claim

class ConfigManager:
    """Manages configuration stored in database."""

    # Default configuration values
    DEFAULTS = {
        "jwt_secret": None,  # Generated and persisted on first start
        "media_root": str(Path.home() / ".aumusic" / "music"),
        "max_upload_bytes": str(500 << 20),
        "token_ttl_seconds": "0",
        "port": "8081",
    }

    def __init__(self, database: Database):
        """
        Initialize ConfigManager.

        Args:
            database: Database instance
        """
        self.database = database
        self.repository = ConfigRepository(database)
        self.logger = logging.getLogger(__name__)
        self.repository.initialize_defaults(self.DEFAULTS)

        if not self.repository.get("jwt_secret"):
            self.logger.info("No signing secret configured, generating one")
            self.repository.set("jwt_secret", secrets.token_urlsafe(32))

    def get(self, key: str, default: Any = None) -> Optional[str]:
        """
        Get a configuration value.

        Args:
            key: Configuration key
            default: Default value if not found (uses DEFAULTS if None)

        Returns:
            Configuration value as string, or None if not found
        """
        env_value = os.environ.get(ENV_PREFIX + key.upper())
        if env_value:
            return env_value

        if default is None:
            default = self.DEFAULTS.get(key)

        entry = self.repository.get(key)
        if entry:
            return entry.value if entry.value else default
        return default

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        """Get configuration value as integer."""
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except ValueError:
            self.logger.warning("Invalid integer value for %s: %s", key, value)
            return default

    def set(self, key: str, value: Any) -> bool:
        """
        Set a configuration value.

        Args:
            key: Configuration key
            value: Value to set (will be converted to string)

        Returns:
            True if successful
        """
        return self.repository.set(key, str(value))

    def settings(self) -> Settings:
        """Build the Settings snapshot handed to components."""
        return Settings(
            jwt_secret=self.get("jwt_secret"),
            media_root=Path(self.get("media_root")).expanduser(),
            max_upload_bytes=self.get_int("max_upload_bytes", 500 << 20),
            token_ttl_seconds=self.get_int("token_ttl_seconds", 0),
        )
