"""
Base protocol and types for the remote document store.

Documents live under agencies/{namespace}/{collection}/{id} and carry the
same id as the local entity.

Invariants:
    - add_document uses the id inside the document (never server-generated)
    - Every failure is reported as RemoteStoreError; callers only need
      "succeeded or failed"

How to change safely:
    - Protocol changes require updating all implementations
    - Keep operations idempotent per id so retries are harmless
"""

from __future__ import annotations

from abc import abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import ReplicatorConfig


class RemoteStoreError(Exception):
    """Remote document store operation failed."""
    pass


class ReplicationAction(Enum):
    """Mutation kinds mirrored to the remote store."""

    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


@runtime_checkable
class RemoteDocumentStore(Protocol):
    """Protocol for remote document store backends.

    Example:
        >>> remote = InMemoryDocumentStore()
        >>> await remote.add_document("agency_1", "owners", {"id": "o1", "name": "Ama"})
    """

    @abstractmethod
    async def add_document(self, namespace: str, collection: str, doc: Dict[str, Any]) -> str:
        """Create (or replace) a document; doc must contain "id".

        Returns:
            The document id

        Raises:
            RemoteStoreError: If the write fails
        """
        ...

    @abstractmethod
    async def update_document(
        self,
        namespace: str,
        collection: str,
        doc_id: str,
        patch: Dict[str, Any],
    ) -> None:
        """Merge patch into an existing document.

        Raises:
            RemoteStoreError: If the write fails
        """
        ...

    @abstractmethod
    async def delete_document(self, namespace: str, collection: str, doc_id: str) -> None:
        """Delete a document.

        Raises:
            RemoteStoreError: If the delete fails
        """
        ...


def create_document_store(config: "ReplicatorConfig") -> RemoteDocumentStore | None:
    """Factory function to create a remote store from configuration.

    Returns:
        RemoteDocumentStore, or None when replication is disabled

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import RemoteBackend
    from .http import HttpDocumentStore
    from .memory import InMemoryDocumentStore

    if config.backend == RemoteBackend.NONE:
        return None
    elif config.backend == RemoteBackend.MEMORY:
        return InMemoryDocumentStore()
    elif config.backend == RemoteBackend.HTTP:
        return HttpDocumentStore(
            base_url=config.base_url,
            token=config.token,
            timeout_seconds=config.timeout_seconds,
        )
    else:
        raise ValueError(f"Unsupported remote backend: {config.backend}")
