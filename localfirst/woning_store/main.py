"""
Woning Store - wiring and entry point.

WoningStore builds every component from one StoreConfig:

    persistent store -> StorageContext -> KeyValueStore -> ReadThroughCache
    -> PydanticValidator -> Replicator -> EntityRepository -> ArchivalScheduler

Usage:
    python -m localfirst.woning_store.main --agency agency-42

runs one maintenance cycle (monthly archive check, outbox flush) and prints
storage statistics as JSON.

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Repository calls work before start(); start() only adds background work
    - stop() flushes the replication outbox before releasing the remote client
    - Namespace switches go through the shared StorageContext barrier
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from typing import Any, Dict, Optional

import json_log_formatter

from .archive import ArchivalScheduler
from .cache import ReadThroughCache
from .config import StoreConfig
from .context import MemoryFallback, StorageContext
from .kvs import KeyValueStore, PersistentStore, create_persistent_store
from .replicate import RemoteDocumentStore, Replicator, create_document_store
from .repository import EntityRepository
from .schema import PRUNABLE_ARCHIVE_KEYS, PydanticValidator

logger = logging.getLogger(__name__)


def setup_logging(config: StoreConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Store configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class WoningStore:
    """Woning Store orchestrator.

    Attributes:
        config: Store configuration
        context: Shared storage context
        kvs: Key-value store
        cache: Read-through cache
        replicator: Remote replicator
        repository: Entity repository
        archiver: Archival scheduler

    Example:
        >>> store = WoningStore()
        >>> store.switch_namespace("agency-42")
        >>> await store.start()
        >>> store.repository.add_owner({"name": "Kouassi"})
        >>> await store.stop()
    """

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        backend: Optional[PersistentStore] = None,
        remote: Optional[RemoteDocumentStore] = None,
    ) -> None:
        """Build the component graph.

        Args:
            config: Optional configuration (loaded from env if not provided)
            backend: Underlying persistent store (built from config if not provided)
            remote: Remote document store (built from config if not provided)
        """
        self.config = config or StoreConfig.from_env()
        self._running = False

        self.backend = backend if backend is not None else create_persistent_store(self.config.kvs)
        self.remote = remote if remote is not None else create_document_store(self.config.replicator)

        self.context = StorageContext(fallback=MemoryFallback(self.config.kvs.fallback_budget_bytes))
        self.kvs = KeyValueStore(
            self.backend,
            self.context,
            max_item_bytes=self.config.kvs.max_item_bytes,
            prunable_keys=PRUNABLE_ARCHIVE_KEYS,
            retention_years=self.config.kvs.archive_retention_years,
        )
        self.cache = ReadThroughCache(self.kvs, self.context, ttl_seconds=self.config.cache.ttl_seconds)
        self.replicator = Replicator(
            self.remote,
            self.context,
            outbox_capacity=self.config.replicator.outbox_capacity,
            max_attempts=self.config.replicator.max_attempts,
            backoff_base_ms=self.config.replicator.backoff_base_ms,
            backoff_max_ms=self.config.replicator.backoff_max_ms,
        )
        self.repository = EntityRepository(
            self.kvs,
            self.cache,
            PydanticValidator(),
            self.replicator,
            self.context,
        )
        self.archiver = ArchivalScheduler(
            self.repository,
            self.replicator,
            self.kvs,
            commission_rate=self.config.archiver.remittance_commission_rate,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, today: Optional[date] = None) -> None:
        """Start background replication and run the monthly archive check."""
        if self._running:
            logger.warning("Store already running")
            return

        self.config.log_config()
        connect = getattr(self.remote, "connect", None)
        if connect is not None:
            await connect()
        await self.replicator.start()
        self._running = True

        if self.config.archiver.enabled:
            self.run_archive_check(today)

        logger.info("Woning store started", extra={"namespace": self.context.namespace})

    def run_archive_check(self, today: Optional[date] = None) -> Optional[Dict[str, Any]]:
        """Run the monthly archive check for the active namespace."""
        if not self.context.namespace:
            logger.info("No active namespace, skipping archive check")
            return None
        return self.archiver.check_and_archive(today)

    def switch_namespace(self, agency_id: Optional[str]) -> None:
        """Make agency_id the active namespace.

        Raises:
            NamespaceError: If a repository mutation is in progress
        """
        self.context.switch_namespace(agency_id)

    def logout(self) -> None:
        """Drop the active namespace; later writes are not isolated or replicated."""
        self.context.switch_namespace(None)

    async def stop(self) -> None:
        """Flush the outbox and release the remote client."""
        if not self._running:
            return

        logger.info("Stopping woning store")
        await self.replicator.stop(drain=True)

        close = getattr(self.remote, "close", None)
        if close is not None:
            await close()

        self._running = False
        logger.info("Woning store stopped")

    def stats(self) -> Dict[str, Any]:
        return {
            "storage": self.kvs.stats(),
            "cache": self.cache.stats(),
            "replication": self.replicator.stats(),
            "archives": self.archiver.archive_stats() if self.context.namespace else None,
        }


async def run_maintenance(store: WoningStore, agency_id: Optional[str]) -> Dict[str, Any]:
    """One maintenance cycle: archive check, outbox flush, statistics."""
    store.switch_namespace(agency_id)
    await store.start()
    try:
        return store.stats()
    finally:
        await store.stop()


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run Woning Store maintenance for one agency")
    parser.add_argument("--agency", help="Agency id (namespace) to maintain")
    args = parser.parse_args(argv)

    # Load configuration
    try:
        config = StoreConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    store = WoningStore(config)
    stats = asyncio.run(run_maintenance(store, args.agency))
    print(json.dumps(stats, indent=2, default=str))


if __name__ == "__main__":
    main()
