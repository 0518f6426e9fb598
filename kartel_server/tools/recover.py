"""
Recover CLI tool for the Kartel backend.

Rebuilds a collection's denormalized list blob from its individually
keyed records. Use it after a failed list sync left the list out of
date, or to audit the drift with ``--dry-run``.

Usage:
    kartel-recover --collection applications [--dry-run]

Invariants:
    - Recovery is idempotent (can be re-run safely)
    - Individual records are never modified, only the list blob
    - Dry runs never write

How to change safely:
    - New collections only need a CollectionSpec in records.py
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from ..config import StoreConfig
from ..errors import KartelError
from ..list_index import ListIndex, RebuildSummary
from ..records import COLLECTIONS
from ..store import RecordStore, create_record_store

logger = logging.getLogger(__name__)


async def recover(
    config: StoreConfig,
    collection: str,
    dry_run: bool = False,
    store: RecordStore | None = None,
) -> RebuildSummary:
    """Rebuild one collection's list against the configured store.

    Only the store is opened, so no auth, email or push settings are needed.

    Args:
        config: Store configuration (selects the backend)
        collection: Collection name, a key of COLLECTIONS
        dry_run: Report what would be recovered without writing
        store: Already connected store to use instead of opening one

    Returns:
        RebuildSummary for the collection
    """
    owned = store is None
    if store is None:
        store = create_record_store(config)
        await store.connect()
    try:
        index = ListIndex(store, config.list_read_mode)
        return await index.rebuild(COLLECTIONS[collection], dry_run=dry_run)
    finally:
        if owned:
            await store.close()


def main() -> None:
    """CLI entry point for recover tool."""
    parser = argparse.ArgumentParser(
        description="Rebuild a Kartel collection list from its individual records"
    )
    parser.add_argument(
        "--collection",
        choices=sorted(COLLECTIONS),
        default="applications",
        help="Collection to rebuild",
    )
    parser.add_argument("--dry-run", action="store_true", help="Don't make changes")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = StoreConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        summary = asyncio.run(recover(config, args.collection, dry_run=args.dry_run))
    except KartelError as e:
        print(f"Recovery failed: {e.message}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(summary.to_dict(), indent=2))
    sys.exit(0)


if __name__ == "__main__":
    main()
