"""
Configuration management for the milestone store.

Configuration is read from environment variables. This module provides
typed configuration classes with validation, plus the helper that
separates store options from engine-native client options.

Invariants:
    - All settings have sensible defaults for local development
    - Options handed to the MongoDB client never contain store-only keys
    - Credentials in connection strings are never logged

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Any new store-only option must be added to STORE_OPTION_KEYS
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Tuple

from .engine.base import redact_url

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 1000

# Keys consumed by the store itself; everything else goes to the client
STORE_OPTION_KEYS = (
    "mongo",
    "interval",
    "disable_index_creation",
    "disableIndexCreation",
    "index_cache",
)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class MongoConfig:
    """MongoDB connection configuration.

    Attributes:
        url: MongoDB connection string (database taken from the path)
        app_name: Application name reported to the server
        server_selection_timeout_ms: How long to wait for a usable server
        max_pool_size: Maximum connections in the client pool
    """

    url: str = "mongodb://localhost:27017/sharedb"
    app_name: str | None = None
    server_selection_timeout_ms: int = 30000
    max_pool_size: int = 100

    @classmethod
    def from_env(cls) -> MongoConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("MONGO_URL", "mongodb://localhost:27017/sharedb"),
            app_name=os.getenv("MONGO_APP_NAME"),
            server_selection_timeout_ms=int(
                os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "30000")
            ),
            max_pool_size=int(os.getenv("MONGO_MAX_POOL_SIZE", "100")),
        )

    def client_options(self) -> Dict[str, Any]:
        """Build keyword options for AsyncMongoClient."""
        options: Dict[str, Any] = {
            "serverSelectionTimeoutMS": self.server_selection_timeout_ms,
            "maxPoolSize": self.max_pool_size,
        }
        if self.app_name:
            options["appname"] = self.app_name
        return options


@dataclass(frozen=True)
class MilestoneConfig:
    """Milestone behaviour configuration.

    Attributes:
        interval: Versions between milestones; stored for the caller's
            scheduling, not used by the store itself
        disable_index_creation: Skip automatic index creation
    """

    interval: int = DEFAULT_INTERVAL
    disable_index_creation: bool = False

    @classmethod
    def from_env(cls) -> MilestoneConfig:
        """Load configuration from environment variables."""
        return cls(
            interval=int(os.getenv("MILESTONE_INTERVAL", str(DEFAULT_INTERVAL))),
            disable_index_creation=_env_bool("MILESTONE_DISABLE_INDEX_CREATION"),
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
class StoreConfig:
    """Complete milestone store configuration.

    Attributes:
        mongo: MongoDB connection configuration
        milestone: Milestone behaviour configuration
        observability: Logging configuration
    """

    mongo: MongoConfig = field(default_factory=MongoConfig)
    milestone: MilestoneConfig = field(default_factory=MilestoneConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            mongo=MongoConfig.from_env(),
            milestone=MilestoneConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.mongo.url:
            raise ValueError("MONGO_URL is required")
        if not self.mongo.url.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError("MONGO_URL must start with mongodb:// or mongodb+srv://")
        if self.milestone.interval <= 0:
            raise ValueError("MILESTONE_INTERVAL must be a positive integer")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be one of: json, text")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Milestone store configuration loaded",
            extra={
                "mongo_url": redact_url(self.mongo.url),
                "interval": self.milestone.interval,
                "disable_index_creation": self.milestone.disable_index_creation,
                "log_level": self.observability.log_level,
            },
        )


def split_store_options(options: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Separate store options from client options.

    Args:
        options: Mixed option mapping as passed by a caller

    Returns:
        (store_options, client_options); the input mapping is not modified
    """
    store_options: Dict[str, Any] = {}
    client_options: Dict[str, Any] = {}
    for key, value in options.items():
        if key in STORE_OPTION_KEYS:
            store_options[key] = value
        else:
            client_options[key] = value
    return store_options, client_options
