"""
Record store abstraction for the Kartel backend.

This module provides a pluggable key-value blob store supporting:
- Netlify Blobs (production)
- SQLite (single-file local persistence)
- In-memory (for testing)

Individually keyed records are the source of truth. The per-collection
list blobs written beside them are derived views that can be rebuilt from
the individual records.

Invariants:
    - Reads of absent keys return None
    - Backend failures surface as StorageError
    - Last writer wins, there are no conditional writes

How to change safely:
    - New backends must implement the RecordStore protocol
    - Run tests/unit/test_store_backends.py against every backend
"""

from .base import RecordStore, create_record_store, decode_value, encode_value
from .memory import InMemoryRecordStore
from .netlify import NetlifyBlobStore
from .sqlite import SqliteRecordStore

__all__ = [
    # Protocol and helpers
    "RecordStore",
    "create_record_store",
    "encode_value",
    "decode_value",
    # Implementations
    "InMemoryRecordStore",
    "NetlifyBlobStore",
    "SqliteRecordStore",
]
