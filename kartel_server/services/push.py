"""
Push notification subscriptions and broadcast.

Subscriptions are keyed ``<userType>-<userId>`` so a user re-subscribing
replaces their previous entry. The ``all-subscriptions`` list drops entries
older than the configured maximum age whenever it is rewritten.

Invariants:
    - Sends within one broadcast run concurrently and fail independently
    - A subscription reported gone (410) is deleted along with its list entry
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from ..errors import UpstreamError, ValidationError
from ..list_index import ListIndex, WriteResult
from ..notify.push import PushGoneError, PushSender
from ..records import PUSH_SUBSCRIPTIONS, Clock, Record, parse_iso, to_iso, utc_now
from .common import is_blank

logger = logging.getLogger(__name__)

USER_TYPES = ("member", "admin")
BROADCAST_TARGETS = ("all", *USER_TYPES)


@dataclass
class BroadcastResult:
    """Outcome of a broadcast.

    Attributes:
        user_type: Audience that was targeted
        sent: Deliveries that succeeded
        failed: Deliveries that failed
        removed: Subscription ids deleted because they were gone
        warnings: Non-fatal cleanup failures
    """

    user_type: str
    sent: int = 0
    failed: int = 0
    removed: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.sent + self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": f"Notifications sent to {self.user_type} users",
            "sent": self.sent,
            "failed": self.failed,
            "total": self.total,
            "removed": list(self.removed),
        }


class PushService:
    def __init__(
        self,
        index: ListIndex,
        sender: PushSender,
        max_age_days: int = 90,
        clock: Clock = utc_now,
    ) -> None:
        self.index = index
        self.sender = sender
        self.max_age = timedelta(days=max_age_days)
        self._clock = clock

    def _is_fresh(self, record: Record) -> bool:
        created = parse_iso(record.get("createdAt"))
        return created is not None and created > self._clock() - self.max_age

    async def subscribe(
        self,
        subscription: Any,
        user_type: str,
        user_id: str | None = None,
    ) -> WriteResult[Record]:
        """Store or replace a browser push subscription.

        Raises:
            ValidationError: If the subscription or user type is missing or invalid
        """
        if not isinstance(subscription, dict) or not subscription.get("endpoint"):
            raise ValidationError("Missing subscription or userType", "subscription")
        if is_blank(user_type):
            raise ValidationError("Missing subscription or userType", "userType")
        if user_type not in USER_TYPES:
            raise ValidationError("userType must be member or admin", "userType")

        now = self._clock()
        suffix = user_id if not is_blank(user_id) else str(int(now.timestamp() * 1000))
        record: Record = {
            "id": f"{user_type}-{suffix}",
            "subscription": subscription,
            "userType": user_type,
            "userId": user_id,
            "createdAt": to_iso(now),
            "active": True,
        }
        result = await self.index.append_or_update(PUSH_SUBSCRIPTIONS, record, keep=self._is_fresh)
        logger.info(f"Push subscription stored: {record['id']}")
        return result

    async def broadcast(
        self,
        title: str,
        body: str,
        user_type: str = "all",
        data: dict[str, Any] | None = None,
        require_interaction: bool = True,
    ) -> BroadcastResult:
        """Send a notification to every matching subscription.

        Raises:
            ValidationError: If title or body is missing, or the audience is unknown
        """
        if is_blank(title) or is_blank(body):
            raise ValidationError("Missing title or body", "title")
        if user_type not in BROADCAST_TARGETS:
            raise ValidationError("userType must be all, member or admin", "userType")

        subscriptions = await self.index.read_list(PUSH_SUBSCRIPTIONS)
        targets = [
            s for s in subscriptions
            if user_type == "all" or s.get("userType") == user_type
        ]
        result = BroadcastResult(user_type=user_type)
        if not targets:
            return result

        payload = json.dumps(
            {
                "title": title,
                "body": body,
                "icon": "/icons/icon-192x192.svg",
                "badge": "/icons/icon-96x96.svg",
                "data": {
                    **(data or {}),
                    "timestamp": int(self._clock().timestamp() * 1000),
                    "isAdmin": user_type == "admin",
                },
                "requireInteraction": require_interaction,
                "actions": [
                    {"action": "open", "title": "Open App"},
                    {"action": "dismiss", "title": "Dismiss"},
                ],
            }
        )

        async def deliver(target: Record) -> str:
            try:
                await self.sender.send_notification(target.get("subscription") or {}, payload)
                return "sent"
            except PushGoneError:
                logger.info(f"Push subscription gone: {target.get('id')}")
                return "gone"
            except UpstreamError as e:
                logger.warning(f"Push to {target.get('id')} failed: {e.message}")
                return "failed"
            except Exception as e:
                logger.error(f"Push to {target.get('id')} failed unexpectedly: {e}", exc_info=True)
                return "failed"

        outcomes = await asyncio.gather(*(deliver(t) for t in targets))

        for target, outcome in zip(targets, outcomes):
            if outcome == "sent":
                result.sent += 1
                continue
            result.failed += 1
            if outcome == "gone" and target.get("id"):
                removal = await self.index.remove(PUSH_SUBSCRIPTIONS, str(target["id"]))
                result.removed.append(str(target["id"]))
                result.warnings.extend(removal.warnings)

        logger.info(f"Push broadcast to {user_type}: sent={result.sent} failed={result.failed}")
        return result
