"""
In-memory persistent store implementation.

This module provides a capacity-bounded in-memory backend for:
- Unit tests
- Integration tests that simulate quota exhaustion
- Local development without a database file

Invariants:
    - All data is lost on process exit
    - Size accounting matches the sqlite backend (UTF-8 bytes of key + value)
    - set_item raises QuotaExceededError exactly when capacity would be exceeded

How to change safely:
    - This is test-oriented code, changes don't affect the sqlite backend
    - Keep interface compatible with the PersistentStore protocol
"""

from __future__ import annotations

import logging
from typing import Iterable

from .base import QuotaExceededError, StoreUnavailableError

logger = logging.getLogger(__name__)


class InMemoryPersistentStore:
    """In-memory implementation of PersistentStore.

    Attributes:
        capacity_bytes: Total capacity across all keys
        available: When False every write raises StoreUnavailableError

    Example:
        >>> store = InMemoryPersistentStore(capacity_bytes=64)
        >>> store.set_item("k", "v")
        >>> store.used_bytes()
        2
    """

    def __init__(self, capacity_bytes: int = 5 * 1024 * 1024, available: bool = True) -> None:
        self.capacity_bytes = capacity_bytes
        self.available = available
        self._items: dict[str, str] = {}
        self._forced_quota_failures = 0
        self.write_attempts = 0

    @staticmethod
    def _entry_size(key: str, value: str) -> int:
        return len(key.encode("utf-8")) + len(value.encode("utf-8"))

    def used_bytes(self) -> int:
        return sum(self._entry_size(k, v) for k, v in self._items.items())

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.write_attempts += 1
        if not self.available:
            raise StoreUnavailableError("Persistent store is not available")

        if self._forced_quota_failures > 0:
            self._forced_quota_failures -= 1
            raise QuotaExceededError("Quota exceeded (injected)")

        used = self.used_bytes()
        if key in self._items:
            used -= self._entry_size(key, self._items[key])
        if used + self._entry_size(key, value) > self.capacity_bytes:
            raise QuotaExceededError(
                f"Quota exceeded: {used} + {self._entry_size(key, value)} > {self.capacity_bytes}"
            )
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        if not self.available:
            raise StoreUnavailableError("Persistent store is not available")
        self._items.pop(key, None)

    def keys(self) -> Iterable[str]:
        return list(self._items.keys())

    # Testing helpers

    def fail_next_writes(self, count: int) -> None:
        """Make the next `count` writes raise QuotaExceededError (testing helper)."""
        self._forced_quota_failures = count

    def raw_items(self) -> dict[str, str]:
        """Snapshot of all stored strings (testing helper)."""
        return dict(self._items)

    def keys_with_prefix(self, prefix: str) -> list[str]:
        return [k for k in self._items if k.startswith(prefix)]
