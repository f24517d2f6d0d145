"""
HTTP remote document store.

Documents are addressed as

    {base_url}/agencies/{namespace}/{collection}/{doc_id}

and written with PUT (create or replace), PATCH (merge) and DELETE.

Invariants:
    - The bearer token is sent as a header and never logged
    - Transport errors and non-2xx responses surface as RemoteStoreError
    - A 404 on DELETE counts as success (the document is already gone)

How to change safely:
    - Keep the URL layout stable; remote data is addressed by it
    - Timeouts come from the client; callers never cancel a started send
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from .base import RemoteStoreError

logger = logging.getLogger(__name__)


class HttpDocumentStore:
    """RemoteDocumentStore backed by a REST document API.

    The underlying httpx.AsyncClient is created lazily on first use or by
    connect(), and released by close().

    Example:
        >>> remote = HttpDocumentStore("https://api.example.test", token="t0k3n")
        >>> await remote.connect()
        >>> await remote.add_document("agency_1", "owners", {"id": "o1"})
        >>> await remote.close()
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout_seconds,
            transport=self._transport,
        )
        logger.info("Connected to remote document store", extra={"base_url": self.base_url})

    async def close(self) -> None:
        """Release the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Remote document store client closed")

    @staticmethod
    def _path(namespace: str, collection: str, doc_id: str) -> str:
        return "/agencies/{}/{}/{}".format(
            quote(namespace, safe=""),
            quote(collection, safe=""),
            quote(doc_id, safe=""),
        )

    async def _request(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        allow_missing: bool = False,
    ) -> httpx.Response:
        if self._client is None:
            await self.connect()
        assert self._client is not None

        try:
            response = await self._client.request(method, path, json=json_body)
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"{method} {path} failed: {e}") from e

        if allow_missing and response.status_code == 404:
            return response
        if response.is_error:
            raise RemoteStoreError(f"{method} {path} returned HTTP {response.status_code}")
        return response

    async def add_document(self, namespace: str, collection: str, doc: Dict[str, Any]) -> str:
        doc_id = doc.get("id")
        if not doc_id:
            raise RemoteStoreError("Document id is required for synchronisation")
        await self._request("PUT", self._path(namespace, collection, doc_id), json_body=doc)
        return doc_id

    async def update_document(
        self,
        namespace: str,
        collection: str,
        doc_id: str,
        patch: Dict[str, Any],
    ) -> None:
        await self._request("PATCH", self._path(namespace, collection, doc_id), json_body=patch)

    async def delete_document(self, namespace: str, collection: str, doc_id: str) -> None:
        await self._request(
            "DELETE",
            self._path(namespace, collection, doc_id),
            allow_missing=True,
        )
