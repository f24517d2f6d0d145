"""
Namespaced key-value store over a capacity-bounded persistent store.

KeyValueStore is the only component that talks to the PersistentStore.
It adds, in order:
- Tenant isolation: every key is prefixed with the context namespace
- Sensitive envelopes for entity kinds that declare themselves sensitive
- Size governance: oversized or unserializable values are rejected
- Quota recovery: prune old archives, retry once, then fall back to memory
- Permanent memory mode when the store fails its availability check

Write outcomes:
    PERSISTED    value is in the persistent store
    MEMORY_ONLY  value is held in the bounded memory fallback only
    REJECTED     nothing was written; any previous value is unchanged

Invariants:
    - A REJECTED write leaves the previous value for the key untouched
    - The quota retry happens at most once per write
    - Pruning never recurses into another quota recovery
    - Reads prefer the memory fallback copy, which is always the newest
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping

from ..context import StorageContext
from .base import PersistentStore, PersistentStoreError, QuotaExceededError
from .envelope import is_envelope, unwrap, wrap

logger = logging.getLogger(__name__)


class WriteResult(Enum):
    """Outcome of KeyValueStore.set."""

    PERSISTED = "persisted"
    MEMORY_ONLY = "memory_only"
    REJECTED = "rejected"

    @property
    def ok(self) -> bool:
        return self is not WriteResult.REJECTED


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _years_before(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        # 29 February
        return moment.replace(year=moment.year - years, day=28)


class KeyValueStore:
    """Tenant-isolated JSON store with quota recovery.

    Attributes:
        backend: Underlying persistent store
        context: Shared storage context (namespace, memory fallback)
        max_item_bytes: Ceiling for one serialized value
        prunable_keys: Archive keys mapped to the timestamp field used for pruning
        retention_years: Archives older than this are pruned on quota errors
        available: False when the backend failed the availability check

    Example:
        >>> kvs = KeyValueStore(InMemoryPersistentStore(), StorageContext(namespace="a1"))
        >>> kvs.set("crm_owners", [{"id": "o1"}]).ok
        True
        >>> kvs.get("crm_owners", [])
        [{'id': 'o1'}]
    """

    CHECK_KEY = "__storage_test__"

    def __init__(
        self,
        backend: PersistentStore,
        context: StorageContext,
        max_item_bytes: int = 1024 * 1024,
        prunable_keys: Mapping[str, str] | None = None,
        retention_years: int = 2,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.backend = backend
        self.context = context
        self.max_item_bytes = max_item_bytes
        self.prunable_keys = dict(prunable_keys or {})
        self.retention_years = retention_years
        self.clock = clock

        self._pruning = False
        self.reads = 0
        self.writes = 0
        self.rejected_writes = 0
        self.fallback_writes = 0
        self.available = self._check_availability()

    def _check_availability(self) -> bool:
        """Check the backend once with a write/remove round-trip."""
        try:
            self.backend.set_item(self.CHECK_KEY, "test")
            self.backend.remove_item(self.CHECK_KEY)
            return True
        except (PersistentStoreError, OSError) as e:
            logger.warning(
                "Persistent store unavailable, using memory fallback for this process",
                extra={"error": str(e)},
            )
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """Read and deserialize a value, unwrapping any sensitive envelope.

        Returns default when the key is missing, unreadable or corrupt.
        """
        self.reads += 1
        prefixed = self.context.prefixed(key)

        raw = self.context.fallback.get(prefixed)
        if raw is None and self.available:
            try:
                raw = self.backend.get_item(prefixed)
            except PersistentStoreError as e:
                logger.error(f"Error reading {key}: {e}", extra={"key": prefixed})
                return default

        if raw is None:
            return default

        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt value for {key}: {e}", extra={"key": prefixed})
            return default
        return unwrap(value)

    def set(self, key: str, value: Any, sensitive: bool = False) -> WriteResult:
        """Serialize and store a value.

        Args:
            key: Unprefixed key
            value: JSON-serializable value
            sensitive: Wrap the value in a sensitive envelope

        Returns:
            WriteResult describing where the value ended up
        """
        self.writes += 1
        prefixed = self.context.prefixed(key)
        payload = wrap(value) if sensitive else value

        try:
            serialized = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        except ValueError as e:
            # json raises ValueError("Circular reference detected")
            logger.error(f"Cannot serialize {key}: circular reference detected", extra={"error": str(e)})
            return self._reject(key)
        except TypeError as e:
            logger.error(f"Cannot serialize {key}: {e}")
            return self._reject(key)

        size = len(serialized.encode("utf-8"))
        if size > self.max_item_bytes:
            logger.error(
                f"Item {key} too large ({size} bytes). Max: {self.max_item_bytes} bytes",
                extra={"key": prefixed, "size_bytes": size},
            )
            return self._reject(key)

        if not self.available:
            return self._write_fallback(prefixed, serialized)

        try:
            self.backend.set_item(prefixed, serialized)
        except QuotaExceededError:
            if self._pruning:
                return self._write_fallback(prefixed, serialized)
            logger.error("Storage quota exceeded, pruning old archives", extra={"key": prefixed})
            self.prune_archives()
            try:
                self.backend.set_item(prefixed, serialized)
            except PersistentStoreError as retry_error:
                logger.error(
                    f"Cannot store {key} even after pruning: {retry_error}",
                    extra={"key": prefixed},
                )
                return self._write_fallback(prefixed, serialized)
        except PersistentStoreError as e:
            logger.error(f"Error writing {key}: {e}", extra={"key": prefixed})
            return self._write_fallback(prefixed, serialized)

        self.context.fallback.pop(prefixed)
        return WriteResult.PERSISTED

    def _write_fallback(self, prefixed: str, serialized: str) -> WriteResult:
        if self.context.fallback.put(prefixed, serialized):
            self.fallback_writes += 1
            logger.warning("Value held in memory fallback only", extra={"key": prefixed})
            return WriteResult.MEMORY_ONLY
        logger.error(
            "Memory fallback full, write dropped",
            extra={"key": prefixed, "budget_bytes": self.context.fallback.budget_bytes},
        )
        self.rejected_writes += 1
        return WriteResult.REJECTED

    def _reject(self, key: str) -> WriteResult:
        self.rejected_writes += 1
        logger.warning("Write rejected", extra={"key": self.context.prefixed(key)})
        return WriteResult.REJECTED

    def remove(self, key: str) -> None:
        prefixed = self.context.prefixed(key)
        if self.available:
            try:
                self.backend.remove_item(prefixed)
            except PersistentStoreError as e:
                logger.error(f"Error removing {key}: {e}", extra={"key": prefixed})
        self.context.fallback.pop(prefixed)

    def clear_namespace(self) -> int:
        """Remove every key of the active namespace.

        Does nothing when no namespace is active, so a pre-login call can
        never wipe all agencies.

        Returns:
            Number of keys removed
        """
        prefix = self.context.prefix
        if not prefix:
            return 0

        removed = 0
        if self.available:
            try:
                for key in [k for k in self.backend.keys() if k.startswith(prefix)]:
                    self.backend.remove_item(key)
                    removed += 1
            except PersistentStoreError as e:
                logger.error(f"Error clearing namespace data: {e}", extra={"prefix": prefix})
        for key in self.context.fallback.keys_with_prefix(prefix):
            self.context.fallback.pop(key)
            removed += 1

        self.context.cache_entries.clear()
        logger.info("Namespace data cleared", extra={"prefix": prefix, "removed": removed})
        return removed

    def prune_archives(self) -> int:
        """Drop archive records older than the retention window.

        Writes go straight to the backend (no quota recovery) so pruning
        can never recurse.

        Returns:
            Number of archive records removed
        """
        if self._pruning:
            logger.warning("Archive pruning already running, skipping")
            return 0

        self._pruning = True
        removed = 0
        try:
            cutoff = _years_before(self.clock(), self.retention_years)
            for key, date_field in self.prunable_keys.items():
                prefixed = self.context.prefixed(key)
                raw = self.backend.get_item(prefixed)
                if raw is None:
                    continue
                try:
                    stored = json.loads(raw)
                except json.JSONDecodeError:
                    continue

                records = unwrap(stored)
                if not isinstance(records, list):
                    continue

                kept = []
                for record in records:
                    stamp = _parse_timestamp(record.get(date_field)) if isinstance(record, dict) else None
                    if stamp is not None and stamp <= cutoff:
                        continue
                    kept.append(record)

                if len(kept) < len(records):
                    payload = wrap(kept) if is_envelope(stored) else kept
                    try:
                        self.backend.set_item(
                            prefixed, json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
                        )
                        removed += len(records) - len(kept)
                    except PersistentStoreError as e:
                        logger.error(f"Cannot prune archives in {key}: {e}")
        except PersistentStoreError as e:
            logger.error(f"Error pruning old archives: {e}")
        finally:
            self._pruning = False

        logger.info("Pruned old archive records", extra={"removed": removed})
        return removed

    def stats(self) -> dict[str, Any]:
        """Storage statistics for the active namespace."""
        prefix = self.context.prefix
        used = 0
        if self.available:
            try:
                for key in self.backend.keys():
                    if key.startswith(prefix):
                        value = self.backend.get_item(key) or ""
                        used += len(key.encode("utf-8")) + len(value.encode("utf-8"))
            except PersistentStoreError as e:
                logger.error(f"Error computing storage size: {e}")
        return {
            "available": self.available,
            "namespace": self.context.namespace,
            "used_bytes": used,
            "fallback_bytes": self.context.fallback.size(),
            "fallback_entries": len(self.context.fallback),
            "using_fallback": not self.available or len(self.context.fallback) > 0,
            "reads": self.reads,
            "writes": self.writes,
            "rejected_writes": self.rejected_writes,
            "fallback_writes": self.fallback_writes,
        }
