"""
Record conventions shared by every collection.

A record is a JSON object with a unique ``id`` stored under its own key in a
named collection. Field names are camelCase because the same blobs are read
by the browser front end.

Invariants:
    - Record ids have the form ``<prefix>_<unix-ms>_<random9>``
    - Timestamps are UTC ISO-8601 strings with millisecond precision and a ``Z`` suffix
    - Collection names and list keys are defined here and nowhere else
"""

from __future__ import annotations

import re
import secrets
import string
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

Record = dict[str, Any]
Clock = Callable[[], datetime]

_ID_ALPHABET = string.digits + string.ascii_lowercase
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Records without any recency field sort as if created at this instant
EPOCH_FALLBACK = datetime(2020, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class CollectionSpec:
    """Static description of a collection.

    Attributes:
        name: Store (collection) name
        id_prefix: Prefix for generated record ids
        list_key: Key of the denormalized list blob
        required_field: Field a stored blob must carry to count as a record
        recency_fields: Fields tried in order when sorting by recency
    """

    name: str
    id_prefix: str
    list_key: str = "_list"
    required_field: str = "id"
    recency_fields: tuple[str, ...] = ("createdAt", "submittedAt", "submissionDate")


APPLICATIONS = CollectionSpec("applications", "app", required_field="email")
EVENTS = CollectionSpec("events", "evt")
VENUES = CollectionSpec("venues", "venue")
FAQS = CollectionSpec("faqs", "faq")
PUSH_SUBSCRIPTIONS = CollectionSpec("push-subscriptions", "sub", list_key="all-subscriptions")

COLLECTIONS: dict[str, CollectionSpec] = {
    spec.name: spec for spec in (APPLICATIONS, EVENTS, VENUES, FAQS, PUSH_SUBSCRIPTIONS)
}

# Token stores are keyed by the token string and have no list
ADMIN_TOKENS = "admin-tokens"
LOGIN_TOKENS = "login-tokens"
PASSWORD_RESET_TOKENS = "password-reset-tokens"

# Singleton content blobs
CONTENT = "kartel-content"
GALLERY_KEY = "gallery"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Format a datetime the way browsers' ``Date.toISOString`` does."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_iso(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp, returning None when it is not one."""
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_id(prefix: str, now: datetime | None = None) -> str:
    """Generate a record id like ``app_1718000000000_k3j9x0a2b``."""
    now = now or utc_now()
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{prefix}_{millis}_{suffix}"


def recency(record: Record, fields: tuple[str, ...]) -> datetime:
    """Return the first parseable recency timestamp of a record."""
    for name in fields:
        parsed = parse_iso(record.get(name))
        if parsed is not None:
            return parsed
    return EPOCH_FALLBACK


def display_name(record: Record) -> str:
    """Best available human name for an application or member."""
    if record.get("fullName"):
        return str(record["fullName"])
    joined = f"{record.get('firstName') or ''} {record.get('lastName') or ''}".strip()
    return joined or str(record.get("name") or record.get("email") or "")


def normalize_email(value: Any) -> str:
    """Lower-case and strip an email for comparisons."""
    return str(value or "").strip().lower()


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(_EMAIL_RE.match(value.strip()))
