"""
Base protocol for the record store abstraction.

The record store is a flat key-value blob store addressed by
``(collection, key)``. It is the only component that touches the external
storage wire protocol; everything above it works with decoded JSON values.

Invariants:
    - get() returns None for absent keys, it never raises "not found"
    - Transport failures surface as StorageError
    - Undecodable blobs surface as RecordDecodeError (a StorageError)
    - No transactions and no conditional writes; last writer wins

How to change safely:
    - Protocol changes require updating all implementations
    - New backends must pass tests/unit/test_store_backends.py
"""

from __future__ import annotations

import json
from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..errors import ConfigurationError, RecordDecodeError

if TYPE_CHECKING:
    from ..config import StoreConfig


def encode_value(value: Any) -> str:
    """Serialize a value for storage."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def decode_value(text: str | None, collection: str, key: str) -> Any:
    """Parse a stored blob as JSON.

    Raises:
        RecordDecodeError: If the blob is not valid JSON
    """
    if text is None:
        return None
    if not text.strip():
        raise RecordDecodeError("Stored value is empty", collection=collection, key=key)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise RecordDecodeError(
            f"Failed to parse {collection}/{key} as JSON: {e}",
            collection=collection,
            key=key,
        )


@runtime_checkable
class RecordStore(Protocol):
    """Protocol for record store backends.

    Example:
        >>> store = InMemoryRecordStore()
        >>> await store.connect()
        >>> await store.set("venues", "venue_1", {"id": "venue_1"})
        >>> await store.get("venues", "venue_1")
        {'id': 'venue_1'}
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open connections or files. Must be called before use."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources."""
        ...

    @abstractmethod
    async def get_text(self, collection: str, key: str) -> str | None:
        """Read a raw blob.

        Returns:
            The stored text, or None if the key is absent

        Raises:
            StorageError: If the backend fails
        """
        ...

    @abstractmethod
    async def set_text(self, collection: str, key: str, text: str) -> None:
        """Write a raw blob, replacing any previous value.

        Raises:
            StorageError: If the backend fails
        """
        ...

    @abstractmethod
    async def delete(self, collection: str, key: str) -> None:
        """Delete a key. Deleting an absent key is not an error.

        Raises:
            StorageError: If the backend fails
        """
        ...

    @abstractmethod
    async def list_keys(self, collection: str, prefix: str | None = None) -> list[str]:
        """List keys in a collection, optionally filtered by prefix.

        Raises:
            StorageError: If the backend fails
        """
        ...

    async def get(self, collection: str, key: str) -> Any:
        """Read and decode a JSON blob (None if absent)."""
        return decode_value(await self.get_text(collection, key), collection, key)

    async def set(self, collection: str, key: str, value: Any) -> None:
        """Encode and write a JSON blob."""
        await self.set_text(collection, key, encode_value(value))

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the store is ready for use."""
        ...


def create_record_store(config: StoreConfig) -> RecordStore:
    """Factory function to create a record store from configuration.

    Args:
        config: Store configuration

    Returns:
        Appropriate RecordStore implementation

    Raises:
        ConfigurationError: If the backend is missing required settings
    """
    from ..config import StoreBackend
    from .memory import InMemoryRecordStore
    from .netlify import NetlifyBlobStore
    from .sqlite import SqliteRecordStore

    if config.backend == StoreBackend.MEMORY:
        return InMemoryRecordStore()
    elif config.backend == StoreBackend.SQLITE:
        return SqliteRecordStore(config.sqlite_path)
    elif config.backend == StoreBackend.NETLIFY:
        if not config.netlify_site_id or not config.netlify_access_token:
            raise ConfigurationError("Server configuration error - missing Netlify credentials")
        return NetlifyBlobStore(
            site_id=config.netlify_site_id,
            access_token=config.netlify_access_token,
            base_url=config.netlify_blobs_url,
            timeout_seconds=config.timeout_seconds,
        )
    else:
        raise ConfigurationError(f"Unsupported store backend: {config.backend}")
