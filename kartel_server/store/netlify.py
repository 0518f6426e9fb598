"""
Netlify Blobs record store.

Talks to the Netlify Blobs REST API over httpx. Each collection maps to a
blob store of the same name on the configured site.

Endpoints (relative to ``base_url``):
    GET    /{site_id}/{store}/{key}        read a blob (404 when absent)
    PUT    /{site_id}/{store}/{key}        write a blob
    DELETE /{site_id}/{store}/{key}        delete a blob
    GET    /{site_id}/{store}?cursor=...   list keys, paginated

Invariants:
    - 404 on read means "absent", never an error
    - Any other non-2xx response or transport failure raises StorageError
    - Listing follows ``next_cursor`` until exhausted
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from ..errors import StorageError
from .base import RecordStore

logger = logging.getLogger(__name__)


class NetlifyBlobStore(RecordStore):
    """RecordStore backed by Netlify Blobs.

    Example:
        >>> store = NetlifyBlobStore(site_id="abc", access_token="nfp_...")
        >>> await store.connect()
        >>> await store.get("applications", "_list")
    """

    def __init__(
        self,
        site_id: str,
        access_token: str,
        base_url: str = "https://api.netlify.com/api/v1/blobs",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            site_id: Netlify site ID
            access_token: Netlify personal access token
            base_url: Blobs API base URL
            timeout_seconds: Per-request timeout
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.site_id = site_id
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._access_token = access_token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/{quote(self.site_id, safe='')}",
            headers={"Authorization": f"Bearer {self._access_token}"},
            timeout=self.timeout_seconds,
            transport=self._transport,
        )
        logger.info(f"Netlify blob store connected: site={self.site_id}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _require_client(self, collection: str, key: str | None = None) -> httpx.AsyncClient:
        if self._client is None:
            raise StorageError("Store is not connected", collection=collection, key=key)
        return self._client

    @staticmethod
    def _path(collection: str, key: str | None = None) -> str:
        path = f"/{quote(collection, safe='')}"
        if key is not None:
            path += f"/{quote(key, safe='')}"
        return path

    async def _request(
        self,
        method: str,
        collection: str,
        key: str | None = None,
        **kwargs,
    ) -> httpx.Response:
        client = self._require_client(collection, key)
        try:
            return await client.request(method, self._path(collection, key), **kwargs)
        except httpx.HTTPError as e:
            raise StorageError(
                f"Blob store {method} {collection}/{key or ''} failed: {e}",
                collection=collection,
                key=key,
            )

    @staticmethod
    def _raise_for_status(response: httpx.Response, collection: str, key: str | None) -> None:
        if response.is_success:
            return
        raise StorageError(
            f"Blob store returned {response.status_code} for {collection}/{key or ''}",
            collection=collection,
            key=key,
        )

    async def get_text(self, collection: str, key: str) -> str | None:
        response = await self._request("GET", collection, key)
        if response.status_code == 404:
            return None
        self._raise_for_status(response, collection, key)
        return response.text

    async def set_text(self, collection: str, key: str, text: str) -> None:
        response = await self._request(
            "PUT",
            collection,
            key,
            content=text.encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
        self._raise_for_status(response, collection, key)

    async def delete(self, collection: str, key: str) -> None:
        response = await self._request("DELETE", collection, key)
        if response.status_code == 404:
            return
        self._raise_for_status(response, collection, key)

    async def list_keys(self, collection: str, prefix: str | None = None) -> list[str]:
        keys: list[str] = []
        cursor: str | None = None
        while True:
            params: dict[str, str] = {}
            if prefix:
                params["prefix"] = prefix
            if cursor:
                params["cursor"] = cursor
            response = await self._request("GET", collection, params=params)
            self._raise_for_status(response, collection, None)
            try:
                body = response.json()
            except ValueError as e:
                raise StorageError(f"Blob store list response is not JSON: {e}", collection)
            keys.extend(blob["key"] for blob in body.get("blobs", []) if blob.get("key"))
            cursor = body.get("next_cursor")
            if not cursor:
                break
        return keys
