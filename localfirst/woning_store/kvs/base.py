"""
Base protocol and errors for the underlying persistent store.

This module defines the PersistentStore protocol that every local backend
must implement: a synchronous string-to-string map with a fixed total
capacity, modelled on the browser storage primitive the application was
first written against.

Invariants:
    - Values are opaque strings (the KVS owns serialization)
    - set_item either stores the whole value or raises; no partial writes
    - Capacity exhaustion is reported with QuotaExceededError

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the protocol synchronous; callers rely on immediate consistency
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Iterable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import KvsConfig


class PersistentStoreError(Exception):
    """Base exception for persistent store operations."""
    pass


class QuotaExceededError(PersistentStoreError):
    """The store has no room left for the write."""
    pass


class StoreUnavailableError(PersistentStoreError):
    """The store cannot be used at all (e.g. private browsing, read-only disk)."""
    pass


@runtime_checkable
class PersistentStore(Protocol):
    """Protocol for local persistent store backends.

    Example:
        >>> store = InMemoryPersistentStore(capacity_bytes=1024)
        >>> store.set_item("agency_a_crm_owners", "[]")
        >>> store.get_item("agency_a_crm_owners")
        '[]'
    """

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        """Return the stored string, or None if the key is absent."""
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store a string under key.

        Raises:
            QuotaExceededError: If the store capacity would be exceeded
            StoreUnavailableError: If the store cannot be written
        """
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove key; missing keys are ignored."""
        ...

    @abstractmethod
    def keys(self) -> Iterable[str]:
        """Return all stored keys."""
        ...


def create_persistent_store(config: "KvsConfig") -> PersistentStore:
    """Factory function to create a persistent store from configuration.

    Args:
        config: KVS configuration

    Returns:
        Appropriate PersistentStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryPersistentStore
    from .sqlite import SqlitePersistentStore

    if config.backend == StoreBackend.MEMORY:
        return InMemoryPersistentStore(capacity_bytes=config.capacity_bytes)
    elif config.backend == StoreBackend.SQLITE:
        return SqlitePersistentStore(config.sqlite_path, capacity_bytes=config.capacity_bytes)
    else:
        raise ValueError(f"Unsupported store backend: {config.backend}")
