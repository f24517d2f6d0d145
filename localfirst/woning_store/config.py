"""
Configuration management for Woning Store.

All configuration is done via environment variables with defaults suited to
a single-user local install. This module provides typed configuration
classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The remote token is never logged or exposed in error messages
    - Size limits are expressed in bytes of UTF-8 encoded JSON

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env variable names prefixed with WONING_ (except LOG_*)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported underlying persistent store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class RemoteBackend(Enum):
    """Supported remote document store backends."""

    NONE = "none"
    MEMORY = "memory"
    HTTP = "http"


@dataclass(frozen=True)
class KvsConfig:
    """Key-value store configuration.

    Attributes:
        backend: Underlying persistent store backend
        sqlite_path: Database file for the sqlite backend
        capacity_bytes: Total capacity of the underlying store
        max_item_bytes: Ceiling for a single serialized value
        fallback_budget_bytes: Total budget of the in-memory fallback
        archive_retention_years: Archives older than this are pruned on quota errors
    """

    backend: StoreBackend = StoreBackend.MEMORY
    sqlite_path: str = "woning.db"
    capacity_bytes: int = 5 * 1024 * 1024  # 5MB
    max_item_bytes: int = 1024 * 1024  # 1MB
    fallback_budget_bytes: int = 5 * 1024 * 1024  # 5MB
    archive_retention_years: int = 2

    @classmethod
    def from_env(cls) -> KvsConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("WONING_STORE_BACKEND", "memory").lower()
        try:
            backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid WONING_STORE_BACKEND '{backend_str}'. Must be one of: memory, sqlite"
            )
        return cls(
            backend=backend,
            sqlite_path=os.getenv("WONING_SQLITE_PATH", "woning.db"),
            capacity_bytes=int(os.getenv("WONING_STORE_CAPACITY_BYTES", str(5 * 1024 * 1024))),
            max_item_bytes=int(os.getenv("WONING_MAX_ITEM_BYTES", str(1024 * 1024))),
            fallback_budget_bytes=int(
                os.getenv("WONING_FALLBACK_BUDGET_BYTES", str(5 * 1024 * 1024))
            ),
            archive_retention_years=int(os.getenv("WONING_ARCHIVE_RETENTION_YEARS", "2")),
        )


@dataclass(frozen=True)
class CacheConfig:
    """Read-through cache configuration.

    Attributes:
        ttl_seconds: Absolute lifetime of a cached entity list
    """

    ttl_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> CacheConfig:
        """Load configuration from environment variables."""
        return cls(ttl_seconds=float(os.getenv("WONING_CACHE_TTL_SECONDS", "30")))


@dataclass(frozen=True)
class ReplicatorConfig:
    """Remote replication configuration.

    Attributes:
        backend: Remote document store backend
        base_url: Base URL of the HTTP document store
        token: Bearer token for the HTTP document store
        timeout_seconds: HTTP client timeout
        outbox_capacity: Maximum pending replication tasks
        max_attempts: Attempts per task before it is dropped
        backoff_base_ms: First retry delay
        backoff_max_ms: Upper bound on retry delay
    """

    backend: RemoteBackend = RemoteBackend.NONE
    base_url: str = "http://localhost:8080"
    token: str | None = None
    timeout_seconds: float = 10.0
    outbox_capacity: int = 1000
    max_attempts: int = 5
    backoff_base_ms: int = 500
    backoff_max_ms: int = 60_000

    @property
    def enabled(self) -> bool:
        return self.backend != RemoteBackend.NONE

    @classmethod
    def from_env(cls) -> ReplicatorConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("WONING_REMOTE_BACKEND", "none").lower()
        try:
            backend = RemoteBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid WONING_REMOTE_BACKEND '{backend_str}'. Must be one of: none, memory, http"
            )
        return cls(
            backend=backend,
            base_url=os.getenv("WONING_REMOTE_URL", "http://localhost:8080"),
            token=os.getenv("WONING_REMOTE_TOKEN"),
            timeout_seconds=float(os.getenv("WONING_REMOTE_TIMEOUT_SECONDS", "10")),
            outbox_capacity=int(os.getenv("WONING_OUTBOX_CAPACITY", "1000")),
            max_attempts=int(os.getenv("WONING_REPLICATION_MAX_ATTEMPTS", "5")),
            backoff_base_ms=int(os.getenv("WONING_REPLICATION_BACKOFF_MS", "500")),
            backoff_max_ms=int(os.getenv("WONING_REPLICATION_BACKOFF_MAX_MS", "60000")),
        )


@dataclass(frozen=True)
class ArchiverConfig:
    """Archival scheduler configuration.

    Attributes:
        enabled: Whether the monthly check runs on start
        remittance_commission_rate: Agency commission withheld on owner remittances
    """

    enabled: bool = True
    remittance_commission_rate: float = 0.10

    @classmethod
    def from_env(cls) -> ArchiverConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=os.getenv("WONING_ARCHIVER_ENABLED", "true").lower() == "true",
            remittance_commission_rate=float(os.getenv("WONING_COMMISSION_RATE", "0.10")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class StoreConfig:
    """Complete store configuration.

    Attributes:
        kvs: Key-value store configuration
        cache: Cache configuration
        replicator: Replication configuration
        archiver: Archiver configuration
        observability: Logging configuration
    """

    kvs: KvsConfig = field(default_factory=KvsConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    replicator: ReplicatorConfig = field(default_factory=ReplicatorConfig)
    archiver: ArchiverConfig = field(default_factory=ArchiverConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            kvs=KvsConfig.from_env(),
            cache=CacheConfig.from_env(),
            replicator=ReplicatorConfig.from_env(),
            archiver=ArchiverConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.kvs.max_item_bytes <= 0:
            raise ValueError("WONING_MAX_ITEM_BYTES must be positive")
        if self.kvs.max_item_bytes > self.kvs.capacity_bytes:
            raise ValueError("WONING_MAX_ITEM_BYTES cannot exceed WONING_STORE_CAPACITY_BYTES")
        if self.kvs.fallback_budget_bytes < 0:
            raise ValueError("WONING_FALLBACK_BUDGET_BYTES cannot be negative")
        if self.kvs.backend == StoreBackend.SQLITE and not self.kvs.sqlite_path:
            raise ValueError("WONING_SQLITE_PATH is required when WONING_STORE_BACKEND=sqlite")
        if self.cache.ttl_seconds < 0:
            raise ValueError("WONING_CACHE_TTL_SECONDS cannot be negative")
        if self.replicator.backend == RemoteBackend.HTTP and not self.replicator.base_url:
            raise ValueError("WONING_REMOTE_URL is required when WONING_REMOTE_BACKEND=http")
        if self.replicator.outbox_capacity < 1:
            raise ValueError("WONING_OUTBOX_CAPACITY must be at least 1")
        if self.replicator.max_attempts < 1:
            raise ValueError("WONING_REPLICATION_MAX_ATTEMPTS must be at least 1")
        if not 0 <= self.archiver.remittance_commission_rate < 1:
            raise ValueError("WONING_COMMISSION_RATE must be in [0, 1)")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Store configuration loaded",
            extra={
                "store_backend": self.kvs.backend.value,
                "sqlite_path": self.kvs.sqlite_path
                if self.kvs.backend == StoreBackend.SQLITE
                else None,
                "capacity_bytes": self.kvs.capacity_bytes,
                "max_item_bytes": self.kvs.max_item_bytes,
                "cache_ttl_seconds": self.cache.ttl_seconds,
                "remote_backend": self.replicator.backend.value,
                "remote_url": self.replicator.base_url
                if self.replicator.backend == RemoteBackend.HTTP
                else None,
                "archiver_enabled": self.archiver.enabled,
                "log_level": self.observability.log_level,
            },
        )
