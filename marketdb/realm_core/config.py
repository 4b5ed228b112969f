"""
Configuration management for the realm core.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.
HTTP API settings live in api/settings.py (pydantic-settings).

Invariants:
    - All settings have sensible defaults for local development
    - Unknown enum-like values fail fast in validate()

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep from_env() and the dataclass defaults in sync
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)


class SlugCollisionPolicy(Enum):
    """What RealmRegistry does when a derived shop slug is taken."""

    REJECT = "reject"
    SUFFIX = "suffix"


@dataclass(frozen=True)
class StorageConfig:
    """Local replica storage configuration.

    Attributes:
        data_dir: Directory holding the SQLite database
        db_filename: Database file name inside data_dir
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "./var/marketdb"
    db_filename: str = "market.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -16000  # 16MB

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.db_filename

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "./var/marketdb"),
            db_filename=os.getenv("DB_FILENAME", "market.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-16000")),
        )


@dataclass(frozen=True)
class RealmConfig:
    """Realm naming configuration.

    Attributes:
        slug_collision: Policy for a shop name whose slug is already taken
        slug_max_length: Maximum slug length (excluding the "shop/" prefix)
    """

    slug_collision: SlugCollisionPolicy = SlugCollisionPolicy.REJECT
    slug_max_length: int = 64

    @classmethod
    def from_env(cls) -> RealmConfig:
        """Load configuration from environment variables."""
        policy_str = os.getenv("REALM_SLUG_COLLISION", "reject").lower()
        try:
            policy = SlugCollisionPolicy(policy_str)
        except ValueError:
            raise ValueError(
                f"Invalid REALM_SLUG_COLLISION '{policy_str}'. Must be one of: reject, suffix"
            )
        return cls(
            slug_collision=policy,
            slug_max_length=int(os.getenv("REALM_SLUG_MAX_LENGTH", "64")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class CoreConfig:
    """Complete realm core configuration.

    Attributes:
        storage: Local storage configuration
        realms: Realm naming configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    realms: RealmConfig = field(default_factory=RealmConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> CoreConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            realms=RealmConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.db_filename:
            raise ValueError("DB_FILENAME must not be empty")
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must be >= 0")
        if self.realms.slug_max_length < 1:
            raise ValueError("REALM_SLUG_MAX_LENGTH must be >= 1")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Core configuration loaded",
            extra={
                "db_path": str(self.storage.db_path),
                "wal_mode": self.storage.wal_mode,
                "slug_collision": self.realms.slug_collision.value,
                "log_level": self.observability.log_level,
            },
        )
