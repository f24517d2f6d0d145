"""
Read-through cache for entity collections.

Each entity kind's list is cached with an absolute TTL measured from the
fetch that populated it. A miss or an expired entry reads through the
KeyValueStore and repopulates.

Consistency:
    Every repository write invalidates the kind and primes it with the
    collection it just persisted, so the next read in this process sees
    the mutation without another store read. Other processes sharing the
    store may observe stale lists for up to one TTL.

Invariants:
    - Entries live in the StorageContext map and vanish on namespace switch
    - Callers always receive deep copies; cached lists are never aliased
"""

from __future__ import annotations

import copy
import logging
import time
from typing import Any, Callable

from .context import CacheEntry, StorageContext
from .kvs.store import KeyValueStore
from .schema.kinds import EntityKind

logger = logging.getLogger(__name__)


class ReadThroughCache:
    """TTL cache of entity lists in front of the KVS.

    Attributes:
        kvs: Key-value store to read through
        context: Storage context holding the cache map
        ttl_seconds: Absolute entry lifetime

    Example:
        >>> cache = ReadThroughCache(kvs, context, ttl_seconds=30)
        >>> owners = cache.get_cached(EntityKind.OWNER)
    """

    def __init__(
        self,
        kvs: KeyValueStore,
        context: StorageContext,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.kvs = kvs
        self.context = context
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.hits = 0
        self.misses = 0

    def _fresh_entry(self, kind: EntityKind) -> CacheEntry | None:
        entry = self.context.cache_entries.get(kind.storage_key)
        if entry is None:
            return None
        if self.clock() - entry.fetched_at >= self.ttl_seconds:
            del self.context.cache_entries[kind.storage_key]
            return None
        return entry

    def get_cached(self, kind: EntityKind) -> list[dict[str, Any]]:
        """Return the entity list for kind, reading through on miss or expiry."""
        entry = self._fresh_entry(kind)
        if entry is not None:
            self.hits += 1
            return copy.deepcopy(entry.items)

        self.misses += 1
        items = self.kvs.get(kind.storage_key, [])
        if not isinstance(items, list):
            logger.error(
                "Stored collection is not a list, ignoring it",
                extra={"kind": kind.label, "type": type(items).__name__},
            )
            items = []
        self.context.cache_entries[kind.storage_key] = CacheEntry(items=items, fetched_at=self.clock())
        return copy.deepcopy(items)

    def prime(self, kind: EntityKind, items: list[dict[str, Any]]) -> None:
        """Populate kind with a collection that was just persisted."""
        self.context.cache_entries[kind.storage_key] = CacheEntry(
            items=copy.deepcopy(items),
            fetched_at=self.clock(),
        )

    def invalidate(self, kind: EntityKind | None = None) -> None:
        """Drop the entry for kind, or every entry when kind is None."""
        if kind is None:
            self.context.cache_entries.clear()
        else:
            self.context.cache_entries.pop(kind.storage_key, None)

    def stats(self) -> dict[str, Any]:
        return {
            "entries": len(self.context.cache_entries),
            "hits": self.hits,
            "misses": self.misses,
            "ttl_seconds": self.ttl_seconds,
        }
