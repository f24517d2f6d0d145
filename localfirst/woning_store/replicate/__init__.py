"""
Remote replication for Woning Store.

This module provides:
- RemoteDocumentStore: Protocol for remote document stores
- InMemoryDocumentStore: Dict-backed store for tests and local runs
- HttpDocumentStore: REST document store over httpx
- Replicator: Bounded outbox with background retry
- clean_for_remote: Payload normalization before upload
"""

from .base import RemoteDocumentStore, RemoteStoreError, ReplicationAction, create_document_store
from .cleaning import ABSENT, clean_for_remote
from .http import HttpDocumentStore
from .memory import InMemoryDocumentStore
from .replicator import ReplicationTask, Replicator

__all__ = [
    "ABSENT",
    "HttpDocumentStore",
    "InMemoryDocumentStore",
    "RemoteDocumentStore",
    "RemoteStoreError",
    "ReplicationAction",
    "ReplicationTask",
    "Replicator",
    "clean_for_remote",
    "create_document_store",
]
