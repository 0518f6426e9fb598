"""
Web push delivery.

The production sender signs VAPID requests with pywebpush. pywebpush is
blocking, so each send runs in a worker thread.

Invariants:
    - A subscription the push service reports as gone (HTTP 410) raises
      PushGoneError so callers can delete it
    - Any other failure raises UpstreamError
"""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import requests
from pywebpush import WebPushException, webpush

from ..config import PushConfig
from ..errors import UpstreamError

logger = logging.getLogger(__name__)


class PushGoneError(UpstreamError):
    """The push service no longer accepts this subscription."""

    def __init__(self, message: str = "Push subscription is gone") -> None:
        super().__init__(message, service="webpush")


@runtime_checkable
class PushSender(Protocol):
    """Protocol for push delivery backends."""

    @abstractmethod
    async def send_notification(self, subscription: dict[str, Any], payload_json: str) -> None:
        """Deliver one push message.

        Raises:
            PushGoneError: If the subscription has expired (410)
            UpstreamError: If delivery fails otherwise
        """
        ...


class WebPushSender(PushSender):
    """VAPID-signed web push via pywebpush."""

    def __init__(self, config: PushConfig) -> None:
        self.config = config

    def _send_blocking(self, subscription: dict[str, Any], payload_json: str) -> None:
        webpush(
            subscription_info=subscription,
            data=payload_json,
            vapid_private_key=self.config.vapid_private_key,
            vapid_claims={"sub": self.config.vapid_subject},
        )

    async def send_notification(self, subscription: dict[str, Any], payload_json: str) -> None:
        try:
            await asyncio.to_thread(self._send_blocking, subscription, payload_json)
        except WebPushException as e:
            status = getattr(e.response, "status_code", None)
            if status == 410:
                raise PushGoneError()
            raise UpstreamError(f"Push delivery failed: {e}", service="webpush")
        except requests.RequestException as e:
            raise UpstreamError(f"Push endpoint unreachable: {e}", service="webpush")


class DisabledPushSender(PushSender):
    """Used when VAPID keys are not configured."""

    async def send_notification(self, subscription: dict[str, Any], payload_json: str) -> None:
        raise UpstreamError("Push notifications not configured", service="webpush")


@dataclass
class RecordingPushSender(PushSender):
    """Keeps sent payloads in memory. For tests and local development.

    Attributes:
        sent: (endpoint, payload) pairs delivered so far
        gone_endpoints: Endpoints that answer as if expired (410)
        failing_endpoints: Endpoints that fail with a generic error
    """

    sent: list[tuple[str, str]] = field(default_factory=list)
    gone_endpoints: set[str] = field(default_factory=set)
    failing_endpoints: set[str] = field(default_factory=set)

    async def send_notification(self, subscription: dict[str, Any], payload_json: str) -> None:
        endpoint = str(subscription.get("endpoint", ""))
        if endpoint in self.gone_endpoints:
            raise PushGoneError()
        if endpoint in self.failing_endpoints:
            raise UpstreamError("Injected push failure", service="webpush")
        self.sent.append((endpoint, payload_json))


def create_push_sender(config: PushConfig) -> PushSender:
    """Factory returning the sender for the given configuration."""
    if config.enabled:
        return WebPushSender(config)
    logger.info("VAPID keys not configured, push notifications disabled")
    return DisabledPushSender()
