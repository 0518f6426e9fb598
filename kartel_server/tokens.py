"""
Single-use, time-bounded tokens.

Used for admin password setup links, magic-link logins and password
resets. Each token is a 32-byte random hex string stored under its own key
in a dedicated collection.

Lifecycle:
    issued (unused, unexpired) -> consumed (used=true)
    issued -> expired (checked at validation time, never swept)

Invariants:
    - A token is consumed at most once
    - Expiry is checked before ``used``, so an expired token always reports expired
    - validate() never consumes; read-only previews do not burn the token
    - Full token values are never logged
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from .errors import (
    StorageError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
)
from .records import Clock, parse_iso, to_iso, utc_now
from .store.base import RecordStore

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def token_hint(token: str) -> str:
    """Loggable prefix of a token."""
    return f"{token[:8]}..." if token else "<empty>"


@dataclass
class IssuedToken:
    """A freshly issued token.

    Attributes:
        token: The secret token string
        expires_at: ISO expiry timestamp
        record: The stored token record
    """

    token: str
    expires_at: str
    record: dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenRecord:
    """A validated token.

    Attributes:
        token: The token string
        subject_id: Id of the record the token refers to
        email: Email the token was issued for
        data: Full stored record (including extra fields)
    """

    token: str
    subject_id: str
    email: str
    data: dict[str, Any]


class TokenManager:
    """Issues, validates and consumes tokens in one collection.

    Example:
        >>> tokens = TokenManager(store, "login-tokens", "memberId")
        >>> issued = await tokens.issue("app_1", "jane@x.com", ttl_seconds=1800)
        >>> record = await tokens.validate_and_consume(issued.token)
        >>> await tokens.validate(issued.token)
        Traceback (most recent call last):
        TokenAlreadyUsedError: Token has already been used
    """

    def __init__(
        self,
        store: RecordStore,
        collection: str,
        subject_field: str,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Record store holding the token collection
            collection: Token collection name
            subject_field: Field naming the subject id (applicationId, memberId)
            clock: Source of the current time
        """
        self.store = store
        self.collection = collection
        self.subject_field = subject_field
        self._clock = clock

    async def issue(
        self,
        subject_id: str,
        email: str,
        ttl_seconds: int,
        **extra: Any,
    ) -> IssuedToken:
        """Create and store a new token.

        Raises:
            StorageError: If the token cannot be stored
        """
        token = secrets.token_hex(TOKEN_BYTES)
        now = self._clock()
        expires_at = to_iso(now + timedelta(seconds=ttl_seconds))
        record: dict[str, Any] = {
            self.subject_field: subject_id,
            "email": email,
            "createdAt": to_iso(now),
            "expiresAt": expires_at,
            "used": False,
            **extra,
        }
        await self.store.set(self.collection, token, record)
        logger.info(f"Issued {self.collection} token {token_hint(token)} for {subject_id}")
        return IssuedToken(token=token, expires_at=expires_at, record=record)

    async def _load(self, token: str) -> dict[str, Any]:
        if not token:
            raise TokenNotFoundError()
        data = await self.store.get(self.collection, token)
        if not isinstance(data, dict):
            raise TokenNotFoundError()
        return data

    async def validate(self, token: str) -> TokenRecord:
        """Check a token without consuming it.

        Raises:
            TokenNotFoundError: If the token does not exist
            TokenExpiredError: If the token is past its expiry (it is deleted)
            TokenAlreadyUsedError: If the token was already consumed
        """
        data = await self._load(token)

        expires_at = parse_iso(data.get("expiresAt"))
        if expires_at is None or self._clock() > expires_at:
            try:
                await self.store.delete(self.collection, token)
            except StorageError as e:
                logger.warning(f"Failed to delete expired token {token_hint(token)}: {e.message}")
            raise TokenExpiredError()

        if data.get("used"):
            raise TokenAlreadyUsedError()

        return TokenRecord(
            token=token,
            subject_id=str(data.get(self.subject_field) or ""),
            email=str(data.get("email") or ""),
            data=data,
        )

    async def consume(self, record: TokenRecord) -> TokenRecord:
        """Mark a validated token as used.

        Raises:
            StorageError: If the token cannot be written back
        """
        data = dict(record.data)
        data["used"] = True
        data["usedAt"] = to_iso(self._clock())
        await self.store.set(self.collection, record.token, data)
        logger.info(f"Consumed {self.collection} token {token_hint(record.token)}")
        return TokenRecord(
            token=record.token,
            subject_id=record.subject_id,
            email=record.email,
            data=data,
        )

    async def validate_and_consume(self, token: str) -> TokenRecord:
        """Validate then immediately consume a token."""
        record = await self.validate(token)
        return await self.consume(record)
