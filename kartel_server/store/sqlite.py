"""
SQLite-backed record store.

Single-file persistence for local development and small deployments.
Every collection lives in one ``blobs`` table keyed by (collection, key).

Table schema:
    blobs:
        - collection TEXT
        - key TEXT
        - value TEXT (serialized JSON)
        - updated_at INTEGER (Unix ms)
        - PRIMARY KEY (collection, key)

Invariants:
    - One connection per operation, SQLite handles concurrent access
    - Writes are single statements, so each write is atomic on its own
    - sqlite3 errors are re-raised as StorageError
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import StorageError
from .base import RecordStore

logger = logging.getLogger(__name__)


class SqliteRecordStore(RecordStore):
    """RecordStore persisted to a SQLite database file.

    Example:
        >>> store = SqliteRecordStore("/var/lib/kartel/kartel.db")
        >>> await store.connect()
        >>> await store.set("events", "evt_1", {"id": "evt_1"})
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000) -> None:
        """Initialize the store.

        Args:
            db_path: Path of the SQLite database file
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection for one operation."""
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute("PRAGMA journal_mode = WAL")
            yield conn
        finally:
            conn.close()

    async def connect(self) -> None:
        """Create the database file and schema if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._lock:
            try:
                with self._get_connection() as conn:
                    conn.executescript("""
                        CREATE TABLE IF NOT EXISTS blobs (
                            collection TEXT NOT NULL,
                            key TEXT NOT NULL,
                            value TEXT NOT NULL,
                            updated_at INTEGER NOT NULL,
                            PRIMARY KEY (collection, key)
                        );
                    """)
            except sqlite3.Error as e:
                raise StorageError(f"Failed to open record store: {e}")
        self._connected = True
        logger.info(f"SQLite record store ready: {self.db_path}")

    async def close(self) -> None:
        self._connected = False

    def _ensure_connected(self, collection: str, key: str | None = None) -> None:
        if not self._connected:
            raise StorageError("Store is not connected", collection=collection, key=key)

    async def get_text(self, collection: str, key: str) -> str | None:
        self._ensure_connected(collection, key)
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT value FROM blobs WHERE collection = ? AND key = ?",
                    (collection, key),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read {collection}/{key}: {e}", collection, key)
        return row[0] if row else None

    async def set_text(self, collection: str, key: str, text: str) -> None:
        self._ensure_connected(collection, key)
        now_ms = int(time.time() * 1000)
        async with self._lock:
            try:
                with self._get_connection() as conn:
                    conn.execute(
                        """
                        INSERT INTO blobs (collection, key, value, updated_at)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT (collection, key)
                        DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                        """,
                        (collection, key, text, now_ms),
                    )
            except sqlite3.Error as e:
                raise StorageError(f"Failed to write {collection}/{key}: {e}", collection, key)

    async def delete(self, collection: str, key: str) -> None:
        self._ensure_connected(collection, key)
        async with self._lock:
            try:
                with self._get_connection() as conn:
                    conn.execute(
                        "DELETE FROM blobs WHERE collection = ? AND key = ?",
                        (collection, key),
                    )
            except sqlite3.Error as e:
                raise StorageError(f"Failed to delete {collection}/{key}: {e}", collection, key)

    async def list_keys(self, collection: str, prefix: str | None = None) -> list[str]:
        self._ensure_connected(collection)
        try:
            with self._get_connection() as conn:
                if prefix:
                    rows = conn.execute(
                        "SELECT key FROM blobs WHERE collection = ? AND substr(key, 1, ?) = ? "
                        "ORDER BY key",
                        (collection, len(prefix), prefix),
                    ).fetchall()
                else:
                    rows = conn.execute(
                        "SELECT key FROM blobs WHERE collection = ? ORDER BY key",
                        (collection,),
                    ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list {collection}: {e}", collection)
        return [row[0] for row in rows]
