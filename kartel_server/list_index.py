"""
List/index consistency manager.

Every collection keeps a denormalized list blob (``_list`` or
``all-<name>``) holding full copies of its records, beside the individually
keyed records themselves. The individual records are authoritative; the
list is a cache that may be absent, stale, duplicated or corrupt.

Write protocol:
    1. Primary write: the individual record. Failure fails the operation.
    2. Best-effort fan-out: read-modify-write of the list blob. Failure is
       logged and returned as a warning on the WriteResult.

Invariants:
    - A list write failure never fails an operation whose record write succeeded
    - read_list() never rebuilds automatically; rebuild() is an explicit action
    - rebuild() is idempotent when no writes intervene
    - Concurrent writers race on the list blob and the last one wins

How to change safely:
    - Keep record-then-list ordering; list-first would let the cache lead the truth
    - Sorting changes are visible to every list consumer, update their tests
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .config import ListReadMode
from .errors import RecordDecodeError, StorageError
from .records import CollectionSpec, Record, recency
from .store.base import RecordStore, decode_value

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class WriteResult(Generic[T]):
    """Outcome of a primary write followed by best-effort fan-out.

    Attributes:
        value: The value produced by the primary write
        warnings: Non-fatal failures from the fan-out stage
    """

    value: T
    warnings: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        """True when every fan-out step succeeded."""
        return not self.warnings

    def merge(self, other: WriteResult[Any]) -> WriteResult[T]:
        """Fold another result's warnings into this one."""
        self.warnings.extend(other.warnings)
        return self


@dataclass
class RebuildSummary:
    """Result of scanning a collection's individual records.

    Attributes:
        collection: Collection that was scanned
        recovered: Number of valid records found
        status_breakdown: Count of records per ``status`` value
        total_keys: Number of keys listed in the collection (list key included)
        skipped: Keys that were unreadable or lacked the required field
        records: The recovered records, newest first
        persisted: Whether the list blob was overwritten
    """

    collection: str
    recovered: int
    status_breakdown: dict[str, int]
    total_keys: int
    skipped: list[str] = field(default_factory=list)
    records: list[Record] = field(default_factory=list)
    persisted: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses (records omitted)."""
        return {
            "collection": self.collection,
            "recovered": self.recovered,
            "statusBreakdown": dict(self.status_breakdown),
            "totalBlobs": self.total_keys,
            "skipped": list(self.skipped),
            "persisted": self.persisted,
        }


def sort_by_recency(records: list[Record], spec: CollectionSpec) -> list[Record]:
    """Newest first; ties broken by id so the order is deterministic."""
    return sorted(
        records,
        key=lambda r: (recency(r, spec.recency_fields), str(r.get("id", ""))),
        reverse=True,
    )


class ListIndex:
    """Maintains list blobs beside individually keyed records.

    Example:
        >>> index = ListIndex(store)
        >>> result = await index.append_or_update(EVENTS, {"id": "evt_1", "name": "Karting"})
        >>> await index.read_list(EVENTS)
        [{'id': 'evt_1', 'name': 'Karting'}]
    """

    def __init__(
        self,
        store: RecordStore,
        read_mode: ListReadMode = ListReadMode.CACHED,
    ) -> None:
        self.store = store
        self.read_mode = read_mode

    async def _read_cached(self, spec: CollectionSpec) -> list[Record]:
        try:
            value = await self.store.get(spec.name, spec.list_key)
        except RecordDecodeError as e:
            logger.warning(f"List {spec.name}/{spec.list_key} is malformed, treating as empty: {e}")
            return []
        if value is None:
            return []
        if not isinstance(value, list):
            logger.warning(
                f"List {spec.name}/{spec.list_key} is not an array "
                f"({type(value).__name__}), treating as empty"
            )
            return []
        return [item for item in value if isinstance(item, dict)]

    async def read_list(self, spec: CollectionSpec) -> list[Record]:
        """Return the collection's records as consumers see them.

        In cached mode this is the list blob (empty when absent or
        malformed). In scan mode it is derived from the individual records
        and nothing is written.

        Raises:
            StorageError: If the store itself fails
        """
        if self.read_mode == ListReadMode.SCAN:
            summary = await self.scan(spec)
            return summary.records
        return await self._read_cached(spec)

    async def get_record(self, spec: CollectionSpec, record_id: str) -> Record | None:
        """Load a record by id, falling back to the list copy.

        Records created before individual keys were written exist only in
        the list, so the list is consulted when the key is absent.
        """
        if not record_id or record_id == spec.list_key:
            return None
        record = await self.store.get(spec.name, record_id)
        if isinstance(record, dict):
            return record
        for item in await self._read_cached(spec):
            if item.get("id") == record_id:
                return dict(item)
        return None

    async def append_or_update(
        self,
        spec: CollectionSpec,
        record: Record,
        keep: Callable[[Record], bool] | None = None,
    ) -> WriteResult[Record]:
        """Persist a record, then sync its list entry.

        ``keep``, when given, filters the other list entries during the sync.

        Raises:
            StorageError: If the individual record write fails
        """
        record_id = record.get("id")
        if not record_id:
            raise ValueError("record must have an id")
        await self.store.set(spec.name, record_id, record)

        result: WriteResult[Record] = WriteResult(value=record)
        try:
            items = await self._read_cached(spec)
            updated: list[Record] = []
            replaced = False
            for item in items:
                if item.get("id") == record_id:
                    if not replaced:
                        updated.append(record)
                        replaced = True
                    continue
                if keep is None or keep(item):
                    updated.append(item)
            if not replaced:
                updated.append(record)
            await self.store.set(spec.name, spec.list_key, updated)
        except StorageError as e:
            message = f"List sync failed for {spec.name}/{record_id}: {e.message}"
            logger.warning(message)
            result.warnings.append(message)
        return result

    async def remove(self, spec: CollectionSpec, record_id: str) -> WriteResult[str]:
        """Delete a record, then drop it from the list.

        Raises:
            StorageError: If the individual record delete fails
        """
        await self.store.delete(spec.name, record_id)

        result: WriteResult[str] = WriteResult(value=record_id)
        try:
            items = await self._read_cached(spec)
            remaining = [item for item in items if item.get("id") != record_id]
            if len(remaining) != len(items):
                await self.store.set(spec.name, spec.list_key, remaining)
        except StorageError as e:
            message = f"List removal failed for {spec.name}/{record_id}: {e.message}"
            logger.warning(message)
            result.warnings.append(message)
        return result

    async def replace_list(self, spec: CollectionSpec, records: list[Record]) -> WriteResult[int]:
        """Overwrite the list blob as a best-effort step."""
        result: WriteResult[int] = WriteResult(value=len(records))
        try:
            await self.store.set(spec.name, spec.list_key, records)
        except StorageError as e:
            message = f"List write failed for {spec.name}: {e.message}"
            logger.warning(message)
            result.warnings.append(message)
        return result

    async def scan(self, spec: CollectionSpec) -> RebuildSummary:
        """Derive a collection's list from its individual records.

        Keys that cannot be read or parsed, or whose record lacks the
        collection's required field, are skipped.

        Raises:
            StorageError: If listing keys fails
        """
        keys = await self.store.list_keys(spec.name)
        records: list[Record] = []
        skipped: list[str] = []

        for key in keys:
            if key == spec.list_key:
                continue
            try:
                text = await self.store.get_text(spec.name, key)
                value = decode_value(text, spec.name, key)
            except StorageError as e:
                logger.info(f"Skipping unreadable record {spec.name}/{key}: {e.message}")
                skipped.append(key)
                continue
            if not isinstance(value, dict) or not value.get(spec.required_field):
                logger.info(f"Skipping invalid record {spec.name}/{key}")
                skipped.append(key)
                continue
            records.append(value)

        records = sort_by_recency(records, spec)
        breakdown = Counter(str(r.get("status") or "unknown") for r in records)
        return RebuildSummary(
            collection=spec.name,
            recovered=len(records),
            status_breakdown=dict(breakdown),
            total_keys=len(keys),
            skipped=skipped,
            records=records,
        )

    async def rebuild(self, spec: CollectionSpec, dry_run: bool = False) -> RebuildSummary:
        """Re-derive the list blob from individual records and overwrite it.

        Raises:
            StorageError: If listing keys or writing the list fails
        """
        logger.info(f"Rebuilding list for collection {spec.name}")
        summary = await self.scan(spec)
        if not dry_run:
            await self.store.set(spec.name, spec.list_key, summary.records)
            summary.persisted = True
        logger.info(
            f"Rebuilt {spec.name}: recovered={summary.recovered} "
            f"skipped={len(summary.skipped)} total_keys={summary.total_keys}"
        )
        return summary
