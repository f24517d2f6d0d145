"""
Shared storage context for Woning Store.

The StorageContext owns the state that every component of one store
instance shares:
- The active agency namespace and its key prefix
- The read-through cache map
- The bounded in-memory fallback map

Passing one context into the KVS, cache, repository and replicator keeps
several isolated store instances possible in the same process (tests run
side by side without touching each other).

Invariants:
    - Every key is prefixed with the active namespace prefix
    - No namespace prefix is a prefix of another namespace's prefix
    - Switching namespace clears the cache map and bumps the generation
    - A switch never happens while a repository mutation is in progress
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from .errors import NamespaceError

logger = logging.getLogger(__name__)

NAMESPACE_PREFIX_FORMAT = "agency_{namespace}_"


def escape_namespace(namespace: str) -> str:
    """Escape the prefix separator so no prefix is a prefix of another.

    "a" and "a_b" map to "agency_a_" and "agency_a%5Fb_".
    """
    return namespace.replace("%", "%25").replace("_", "%5F")


@dataclass
class CacheEntry:
    """A cached entity list.

    Attributes:
        items: Cached documents
        fetched_at: Monotonic time of the fetch that populated the entry
    """

    items: list[dict[str, Any]]
    fetched_at: float


class MemoryFallback:
    """Bounded map used when the persistent store cannot take a write.

    Values are held as serialized JSON so their size is known and callers
    cannot mutate them after the fact.

    Example:
        >>> fallback = MemoryFallback(budget_bytes=1024)
        >>> fallback.put("agency_a_crm_owners", "[]")
        True
    """

    def __init__(self, budget_bytes: int) -> None:
        self.budget_bytes = budget_bytes
        self._values: dict[str, str] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    @staticmethod
    def _entry_size(key: str, serialized: str) -> int:
        return len(key.encode("utf-8")) + len(serialized.encode("utf-8"))

    def size(self) -> int:
        """Total bytes currently held."""
        return sum(self._entry_size(k, v) for k, v in self._values.items())

    def put(self, key: str, serialized: str) -> bool:
        """Store a value if the budget allows it.

        Replacing an existing key only counts the difference.

        Returns:
            True if stored, False if the budget would be exceeded
        """
        current = self.size()
        if key in self._values:
            current -= self._entry_size(key, self._values[key])
        if current + self._entry_size(key, serialized) > self.budget_bytes:
            return False
        self._values[key] = serialized
        return True

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def pop(self, key: str) -> str | None:
        return self._values.pop(key, None)

    def keys_with_prefix(self, prefix: str) -> list[str]:
        return [k for k in self._values if k.startswith(prefix)]

    def clear(self) -> None:
        self._values.clear()


@dataclass
class StorageContext:
    """Process state shared by one store instance.

    Attributes:
        namespace: Active agency id, None before login
        fallback: Bounded in-memory fallback map
        cache_entries: Read-through cache map (entity storage key -> entry)
        generation: Incremented on every namespace switch
    """

    namespace: str | None = None
    fallback: MemoryFallback = field(default_factory=lambda: MemoryFallback(5 * 1024 * 1024))
    cache_entries: dict[str, CacheEntry] = field(default_factory=dict)
    generation: int = 0
    _active_operations: int = 0

    @property
    def prefix(self) -> str:
        """Key prefix for the active namespace ("" when no namespace)."""
        if not self.namespace:
            return ""
        return NAMESPACE_PREFIX_FORMAT.format(namespace=escape_namespace(self.namespace))

    def prefixed(self, key: str) -> str:
        return self.prefix + key

    @property
    def in_operation(self) -> bool:
        return self._active_operations > 0

    @contextmanager
    def operation(self) -> Iterator[None]:
        """Mark a repository mutation as in progress."""
        self._active_operations += 1
        try:
            yield
        finally:
            self._active_operations -= 1

    def switch_namespace(self, namespace: str | None) -> None:
        """Swap the active namespace.

        Clears every cached entity list so nothing read under the previous
        namespace can be served under the new one.

        Raises:
            NamespaceError: If a repository mutation is in progress
        """
        if self._active_operations:
            raise NamespaceError(
                "Cannot switch namespace while a storage operation is in progress"
            )
        previous = self.namespace
        self.namespace = namespace or None
        self.cache_entries.clear()
        self.generation += 1
        logger.info(
            "Namespace switched",
            extra={"previous": previous, "namespace": self.namespace, "generation": self.generation},
        )
