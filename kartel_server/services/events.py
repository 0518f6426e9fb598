"""
Events and event sign-up.

Events nest their ``attendees`` array, ordered by sign-up time. A member
appears at most once per event.

Announcements email every approved member. Each recipient is sent to
independently and a failed send only counts against the totals.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from ..config import ServerConfig
from ..errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from ..list_index import ListIndex, WriteResult
from ..notify import templates
from ..notify.email import DisabledEmailSender, EmailSender
from ..records import (
    APPLICATIONS,
    EPOCH_FALLBACK,
    EVENTS,
    VENUES,
    Clock,
    Record,
    generate_id,
    parse_iso,
    to_iso,
    utc_now,
)
from .applications import STATUS_APPROVED
from .common import clean_str, is_blank, require_fields

logger = logging.getLogger(__name__)

EVENT_STATUSES = ("upcoming", "completed", "cancelled")
IMMUTABLE_FIELDS = ("id", "createdAt", "createdBy", "attendees")


def event_date(record: Record):
    return parse_iso(record.get("date")) or EPOCH_FALLBACK


def sort_by_date(records: list[Record]) -> list[Record]:
    """Newest event date first."""
    return sorted(records, key=lambda r: (event_date(r), str(r.get("id", ""))), reverse=True)


def _max_attendees(value: Any) -> int | None:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


@dataclass
class AnnouncementResult:
    """Outcome of an event announcement.

    Attributes:
        event_id: Event that was announced
        sent: Emails delivered
        failed: Emails that could not be delivered
    """

    event_id: str
    sent: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.sent + self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": f"Event announcement sent to {self.sent} members",
            "stats": {"sent": self.sent, "failed": self.failed, "total": self.total},
        }


class EventService:
    """CRUD for events plus member sign-up and announcements."""

    def __init__(
        self,
        index: ListIndex,
        clock: Clock = utc_now,
        email: EmailSender | None = None,
        config: ServerConfig | None = None,
    ) -> None:
        self.index = index
        self._clock = clock
        self.email = email or DisabledEmailSender()
        self.config = config or ServerConfig()

    async def list_events(self) -> list[Record]:
        return sort_by_date(await self.index.read_list(EVENTS))

    async def get_event(self, event_id: str) -> Record:
        """Raises NotFoundError if the event does not exist."""
        record = await self.index.get_record(EVENTS, event_id)
        if record is None:
            raise NotFoundError("Event not found", "event", event_id)
        record["attendees"] = record.get("attendees") or []
        return record

    async def create_event(self, fields: dict[str, Any], created_by: str = "Admin") -> WriteResult[Record]:
        """Raises ValidationError if name, date or venue is missing."""
        require_fields(fields, ("name", "date", "venue"))
        now = self._clock()
        event: Record = {
            "id": generate_id(EVENTS.id_prefix, now),
            "name": clean_str(fields["name"]),
            "description": clean_str(fields.get("description")),
            "date": clean_str(fields["date"]),
            "time": clean_str(fields.get("time")),
            "venue": clean_str(fields["venue"]),
            "venueId": fields.get("venueId"),
            "venueAddress": clean_str(fields.get("venueAddress")),
            "maxAttendees": _max_attendees(fields.get("maxAttendees")),
            "attendees": [],
            "photos": [],
            "status": "upcoming",
            "createdAt": to_iso(now),
            "createdBy": created_by,
        }
        result = await self.index.append_or_update(EVENTS, event)
        logger.info(f"Event created: {event['id']}")
        return result

    async def update_event(self, event_id: str, updates: dict[str, Any]) -> WriteResult[Record]:
        """Merge field updates into an event.

        Raises:
            ValidationError: If the id is missing or the status is unknown
            NotFoundError: If the event does not exist
        """
        if is_blank(event_id):
            raise ValidationError("Missing eventId", "eventId")
        status = updates.get("status")
        if status is not None and status not in EVENT_STATUSES:
            raise ValidationError(f"Invalid status '{status}'", "status")

        event = await self.get_event(event_id)
        changes = {k: v for k, v in updates.items() if k not in IMMUTABLE_FIELDS}
        if "maxAttendees" in changes:
            changes["maxAttendees"] = _max_attendees(changes["maxAttendees"])
        updated = {
            **event,
            **changes,
            "updatedAt": to_iso(self._clock()),
            "updatedBy": "Admin",
        }
        return await self.index.append_or_update(EVENTS, updated)

    async def delete_event(self, event_id: str) -> WriteResult[str]:
        """Raises NotFoundError if the event does not exist."""
        await self.get_event(event_id)
        result = await self.index.remove(EVENTS, event_id)
        logger.info(f"Event deleted: {event_id}")
        return result

    async def sign_up(self, event_id: str, attendee: dict[str, Any]) -> WriteResult[Record]:
        """Add a member to an event's attendees.

        Returns the new attendee entry.

        Raises:
            ValidationError: If attendee details are missing
            NotFoundError: If the event does not exist
            ConflictError: If the member is already signed up, or the event is full
        """
        if is_blank(event_id):
            raise ValidationError("Missing required field: eventId", "eventId")
        require_fields(attendee, ("memberId", "name", "email"))

        event = await self.get_event(event_id)
        attendees = list(event["attendees"])
        member_id = str(attendee["memberId"])
        if any(str(a.get("memberId")) == member_id for a in attendees):
            raise ConflictError("You are already signed up for this event.")
        limit = _max_attendees(event.get("maxAttendees"))
        if limit is not None and len(attendees) >= limit:
            raise ConflictError("This event is full.")

        entry = {
            "memberId": member_id,
            "name": clean_str(attendee["name"]),
            "email": clean_str(attendee["email"]),
            "company": clean_str(attendee.get("company")),
            "registeredAt": to_iso(self._clock()),
            "attended": False,
        }
        attendees.append(entry)
        write = await self.index.append_or_update(EVENTS, {**event, "attendees": attendees})
        logger.info(f"Member {member_id} signed up for {event_id}")
        return WriteResult(value=entry, warnings=write.warnings)

    async def cancel_sign_up(self, event_id: str, member_id: str) -> WriteResult[Record]:
        """Remove a member from an event's attendees.

        Raises:
            ValidationError: If the event or member id is missing
            NotFoundError: If the event does not exist
            ConflictError: If the member is not signed up
        """
        if is_blank(event_id) or is_blank(member_id):
            raise ValidationError("Missing eventId or memberId", "eventId")
        event = await self.get_event(event_id)
        attendees = [a for a in event["attendees"] if str(a.get("memberId")) != str(member_id)]
        if len(attendees) == len(event["attendees"]):
            raise ConflictError("You are not signed up for this event.")
        result = await self.index.append_or_update(EVENTS, {**event, "attendees": attendees})
        logger.info(f"Member {member_id} cancelled sign-up for {event_id}")
        return result

    async def events_for_member(self, member_id: str) -> list[Record]:
        """Event list annotated with the caller's sign-up state.

        Other attendees' contact details are not exposed.
        """
        view = []
        for event in await self.list_events():
            attendees = event.get("attendees") or []
            item = {k: v for k, v in event.items() if k != "attendees"}
            item["attendeeCount"] = len(attendees)
            item["isSignedUp"] = any(str(a.get("memberId")) == str(member_id) for a in attendees)
            item["attendeeNames"] = [a.get("name") for a in attendees if a.get("name")]
            view.append(item)
        return view

    async def announce_event(self, event_id: str) -> AnnouncementResult:
        """Email an event announcement to every approved member.

        Raises:
            ValidationError: If the event id is missing
            NotFoundError: If the event does not exist
        """
        if is_blank(event_id):
            raise ValidationError("Missing eventId", "eventId")
        event = await self.get_event(event_id)
        venue = None
        if not is_blank(event.get("venueId")):
            venue = await self.index.get_record(VENUES, str(event["venueId"]))

        members = [
            r for r in await self.index.read_list(APPLICATIONS)
            if r.get("status") == STATUS_APPROVED and not is_blank(r.get("email"))
        ]
        register_url = f"{self.config.email.link_base_url}/members.html?event={event_id}"
        result = AnnouncementResult(event_id=event_id)

        async def deliver(member: Record) -> bool:
            subject, html = templates.event_announcement(member, event, venue, register_url)
            try:
                await self.email.send(str(member["email"]), subject, html)
                return True
            except UpstreamError as e:
                logger.warning(f"Announcement to {member['email']} failed: {e.message}")
                return False
            except Exception as e:
                logger.error(
                    f"Announcement to {member['email']} failed unexpectedly: {e}", exc_info=True
                )
                return False

        for delivered in await asyncio.gather(*(deliver(m) for m in members)):
            if delivered:
                result.sent += 1
            else:
                result.failed += 1

        logger.info(f"Event {event_id} announced: sent={result.sent} failed={result.failed}")
        return result
