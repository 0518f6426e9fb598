"""Venues. Names are unique (case-insensitive) and in-use venues cannot be deleted."""

from __future__ import annotations

import logging
from typing import Any

from ..errors import ConflictError, NotFoundError, ValidationError
from ..list_index import ListIndex, WriteResult
from ..records import EVENTS, VENUES, Clock, Record, generate_id, to_iso, utc_now
from .common import clean_str, is_blank

logger = logging.getLogger(__name__)

OPTIONAL_FIELDS = ("phone", "website", "notes")


def sort_venues(records: list[Record], home_venue_id: str | None = None) -> list[Record]:
    """Home venue first, then by name."""
    return sorted(
        records,
        key=lambda r: (r.get("id") != home_venue_id, str(r.get("name") or "").lower()),
    )


def _optional(value: Any) -> str | None:
    return clean_str(value) or None


class VenueService:
    """CRUD for venues."""

    def __init__(self, index: ListIndex, clock: Clock = utc_now) -> None:
        self.index = index
        self._clock = clock

    async def list_venues(self, home_venue_id: str | None = None) -> list[Record]:
        return sort_venues(await self.index.read_list(VENUES), home_venue_id)

    async def get_venue(self, venue_id: str) -> Record:
        record = await self.index.get_record(VENUES, venue_id)
        if record is None:
            raise NotFoundError("Venue not found", "venue", venue_id)
        return record

    async def _ensure_unique_name(self, name: str, exclude_id: str | None = None) -> None:
        wanted = name.strip().lower()
        for venue in await self.index.read_list(VENUES):
            if venue.get("id") == exclude_id:
                continue
            if str(venue.get("name") or "").strip().lower() == wanted:
                raise ConflictError("A venue with this name already exists")

    async def create_venue(self, fields: dict[str, Any]) -> WriteResult[Record]:
        """Raises ValidationError or ConflictError (duplicate name)."""
        if is_blank(fields.get("name")) or is_blank(fields.get("address")):
            raise ValidationError("Name and address are required", "name")
        name = clean_str(fields["name"])
        await self._ensure_unique_name(name)

        now = to_iso(self._clock())
        venue: Record = {
            "id": generate_id(VENUES.id_prefix, self._clock()),
            "name": name,
            "address": clean_str(fields["address"]),
            **{key: _optional(fields.get(key)) for key in OPTIONAL_FIELDS},
            "createdAt": now,
            "updatedAt": now,
            "createdBy": "Admin",
        }
        result = await self.index.append_or_update(VENUES, venue)
        logger.info(f"Venue created: {venue['id']}")
        return result

    async def update_venue(self, venue_id: str, fields: dict[str, Any]) -> WriteResult[Record]:
        """Raises ValidationError, NotFoundError or ConflictError (duplicate name)."""
        if is_blank(venue_id):
            raise ValidationError("Venue ID is required", "venueId")
        if "name" in fields and is_blank(fields["name"]):
            raise ValidationError("Name and address are required", "name")
        if "address" in fields and is_blank(fields["address"]):
            raise ValidationError("Name and address are required", "address")

        venue = await self.get_venue(venue_id)
        if "name" in fields:
            await self._ensure_unique_name(clean_str(fields["name"]), exclude_id=venue_id)

        updated = dict(venue)
        for key in ("name", "address"):
            if key in fields:
                updated[key] = clean_str(fields[key])
        for key in OPTIONAL_FIELDS:
            if key in fields:
                updated[key] = _optional(fields[key])
        updated["updatedAt"] = to_iso(self._clock())
        return await self.index.append_or_update(VENUES, updated)

    async def delete_venue(self, venue_id: str) -> WriteResult[str]:
        """Delete a venue no event refers to.

        Raises:
            NotFoundError: If the venue does not exist
            ConflictError: If events still use the venue
        """
        if is_blank(venue_id):
            raise ValidationError("Venue ID is required", "venueId")
        venue = await self.get_venue(venue_id)
        name = str(venue.get("name") or "").strip().lower()
        in_use = [
            e
            for e in await self.index.read_list(EVENTS)
            if e.get("venueId") == venue_id
            or (name and str(e.get("venue") or "").strip().lower() == name)
        ]
        if in_use:
            raise ConflictError(
                f"Cannot delete venue. It is being used by {len(in_use)} event(s). "
                "Please update or delete those events first."
            )
        result = await self.index.remove(VENUES, venue_id)
        logger.info(f"Venue deleted: {venue_id}")
        return result
