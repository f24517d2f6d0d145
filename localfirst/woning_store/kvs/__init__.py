"""
Key-value storage layer for Woning Store.

This module provides:
- The PersistentStore protocol for local backends
- In-memory and SQLite backends
- KeyValueStore: namespacing, envelopes, size governance, quota recovery

Invariants:
    - Only KeyValueStore talks to a PersistentStore
    - Failed writes never leave partial values behind
"""

from .base import (
    PersistentStore,
    PersistentStoreError,
    QuotaExceededError,
    StoreUnavailableError,
    create_persistent_store,
)
from .memory import InMemoryPersistentStore
from .sqlite import SqlitePersistentStore
from .store import KeyValueStore, WriteResult

__all__ = [
    # Protocol and errors
    "PersistentStore",
    "PersistentStoreError",
    "QuotaExceededError",
    "StoreUnavailableError",
    # Factory
    "create_persistent_store",
    # Implementations
    "InMemoryPersistentStore",
    "SqlitePersistentStore",
    # Namespaced store
    "KeyValueStore",
    "WriteResult",
]
