"""
In-memory record store for tests and local development.

Invariants:
    - All data is lost on process exit
    - Values are kept as serialized text so corrupt blobs can be simulated
    - Safe to use from multiple coroutines

How to change safely:
    - This is test/dev code, changes don't affect production
    - Keep interface compatible with the RecordStore protocol
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from ..errors import StorageError
from .base import RecordStore

logger = logging.getLogger(__name__)


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed RecordStore.

    Example:
        >>> store = InMemoryRecordStore()
        >>> await store.connect()
        >>> await store.set_text("applications", "_list", "{not json")
        >>> await store.get_text("applications", "_list")
        '{not json'
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, str]] = defaultdict(dict)
        self._failures: dict[tuple[str, str, str], StorageError] = {}
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryRecordStore connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._collections.clear()
        self._failures.clear()
        logger.debug("InMemoryRecordStore closed")

    def _check(self, operation: str, collection: str, key: str) -> None:
        if not self._connected:
            raise StorageError("Store is not connected", collection=collection, key=key)
        failure = self._failures.get((operation, collection, key))
        if failure is not None:
            raise failure

    async def get_text(self, collection: str, key: str) -> str | None:
        self._check("get", collection, key)
        async with self._lock:
            return self._collections.get(collection, {}).get(key)

    async def set_text(self, collection: str, key: str, text: str) -> None:
        self._check("set", collection, key)
        async with self._lock:
            self._collections[collection][key] = text

    async def delete(self, collection: str, key: str) -> None:
        self._check("delete", collection, key)
        async with self._lock:
            self._collections.get(collection, {}).pop(key, None)

    async def list_keys(self, collection: str, prefix: str | None = None) -> list[str]:
        self._check("list", collection, "*")
        async with self._lock:
            keys = list(self._collections.get(collection, {}).keys())
        if prefix:
            keys = [k for k in keys if k.startswith(prefix)]
        return keys

    # Testing helpers

    def inject_failure(
        self,
        operation: str,
        collection: str,
        key: str = "*",
        message: str = "Injected storage failure",
    ) -> None:
        """Make every ``operation`` on ``collection/key`` raise StorageError.

        ``operation`` is one of get, set, delete, list. Use key ``*`` for list.
        """
        self._failures[(operation, collection, key)] = StorageError(
            message, collection=collection, key=key
        )

    def clear_failures(self) -> None:
        """Remove all injected failures."""
        self._failures.clear()

    def count(self, collection: str) -> int:
        """Number of keys stored in a collection."""
        return len(self._collections.get(collection, {}))
