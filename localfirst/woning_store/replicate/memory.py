"""
In-memory remote document store for testing.

This module provides a document store that keeps everything in a dict for:
- Unit tests of the replicator
- Integration tests of the full write path
- Local development without a backend

Invariants:
    - All data is lost on process exit
    - Same id semantics as the HTTP backend
    - Injected failures are consumed in order, one per operation
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from .base import RemoteStoreError

logger = logging.getLogger(__name__)


class InMemoryDocumentStore:
    """Dict-backed implementation of RemoteDocumentStore.

    Example:
        >>> remote = InMemoryDocumentStore()
        >>> await remote.add_document("agency_1", "owners", {"id": "o1"})
        >>> remote.get_document("agency_1", "owners", "o1")
        {'id': 'o1'}
    """

    def __init__(self, latency_seconds: float = 0.0) -> None:
        self.latency_seconds = latency_seconds
        self._docs: Dict[Tuple[str, str], Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._failures: List[Exception] = []
        self.calls: List[Tuple[str, str, str, Optional[str]]] = []

    async def _before_call(self, action: str, namespace: str, collection: str, doc_id: Optional[str]) -> None:
        self.calls.append((action, namespace, collection, doc_id))
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        if self._failures:
            raise self._failures.pop(0)

    async def add_document(self, namespace: str, collection: str, doc: Dict[str, Any]) -> str:
        doc_id = doc.get("id")
        await self._before_call("add", namespace, collection, doc_id)
        if not doc_id:
            raise RemoteStoreError("Document id is required for synchronisation")
        self._docs[(namespace, collection)][doc_id] = copy.deepcopy(doc)
        logger.debug("Document added", extra={"collection": collection, "doc_id": doc_id})
        return doc_id

    async def update_document(
        self,
        namespace: str,
        collection: str,
        doc_id: str,
        patch: Dict[str, Any],
    ) -> None:
        await self._before_call("update", namespace, collection, doc_id)
        docs = self._docs[(namespace, collection)]
        if doc_id not in docs:
            raise RemoteStoreError(f"Document not found: {collection}/{doc_id}")
        docs[doc_id].update(copy.deepcopy(patch))

    async def delete_document(self, namespace: str, collection: str, doc_id: str) -> None:
        await self._before_call("delete", namespace, collection, doc_id)
        self._docs[(namespace, collection)].pop(doc_id, None)

    # Testing helpers

    def inject_failures(self, *errors: Exception) -> None:
        """Make the next operations raise these errors, in order (testing helper)."""
        self._failures.extend(errors)

    def get_document(self, namespace: str, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._docs.get((namespace, collection), {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def list_documents(self, namespace: str, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(d) for d in self._docs.get((namespace, collection), {}).values()]
