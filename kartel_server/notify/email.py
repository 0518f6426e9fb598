"""
Outbound email.

Senders share one narrow interface, ``send(to, subject, html)``. The
production sender posts to the SendGrid v3 REST API with httpx. Callers on
best-effort paths catch UpstreamError and log it.

Invariants:
    - send() either delivers to the provider or raises UpstreamError
    - API keys never appear in logs or error messages
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import httpx

from ..config import EmailConfig
from ..errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    """A rendered email."""

    to: str
    subject: str
    html: str
    from_email: str | None = None
    from_name: str | None = None


@runtime_checkable
class EmailSender(Protocol):
    """Protocol for email delivery backends."""

    @abstractmethod
    async def send(self, to: str, subject: str, html: str, from_: str | None = None) -> None:
        """Deliver one email.

        Raises:
            UpstreamError: If delivery fails or email is not configured
        """
        ...

    async def close(self) -> None:
        """Release resources."""
        return None


class SendGridEmailSender(EmailSender):
    """Delivers email through the SendGrid v3 mail/send endpoint.

    Example:
        >>> sender = SendGridEmailSender(config.email)
        >>> await sender.send("jane@x.com", "Welcome", "<p>Hello</p>")
    """

    def __init__(
        self,
        config: EmailConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._client = httpx.AsyncClient(
            timeout=config.timeout_seconds,
            headers={"Authorization": f"Bearer {config.sendgrid_api_key}"},
            transport=transport,
        )

    async def send(self, to: str, subject: str, html: str, from_: str | None = None) -> None:
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": from_ or self.config.from_email, "name": self.config.from_name},
            "subject": subject,
            "content": [{"type": "text/html", "value": html}],
        }
        try:
            response = await self._client.post(self.config.sendgrid_url, json=payload)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Email delivery failed: {e}", service="sendgrid")
        if not response.is_success:
            raise UpstreamError(
                f"Email delivery failed with status {response.status_code}",
                service="sendgrid",
            )
        logger.info(f"Email sent to {to}: {subject}")

    async def close(self) -> None:
        await self._client.aclose()


class DisabledEmailSender(EmailSender):
    """Used when SendGrid is not configured. Every send fails fast."""

    async def send(self, to: str, subject: str, html: str, from_: str | None = None) -> None:
        logger.info(f"Email not configured, skipping message to {to}: {subject}")
        raise UpstreamError("Email service not configured", service="email")


@dataclass
class RecordingEmailSender(EmailSender):
    """Keeps sent messages in memory. For tests and local development.

    Attributes:
        sent: Messages delivered so far
        fail: When true, every send raises UpstreamError
        failing_addresses: Recipients whose sends raise UpstreamError
    """

    sent: list[EmailMessage] = field(default_factory=list)
    fail: bool = False
    failing_addresses: set[str] = field(default_factory=set)

    async def send(self, to: str, subject: str, html: str, from_: str | None = None) -> None:
        if self.fail or to in self.failing_addresses:
            raise UpstreamError("Injected email failure", service="email")
        self.sent.append(EmailMessage(to=to, subject=subject, html=html, from_email=from_))

    # Testing helpers

    def to(self, address: str) -> list[EmailMessage]:
        """Messages sent to one address."""
        return [m for m in self.sent if m.to == address]

    def clear(self) -> None:
        self.sent.clear()


def create_email_sender(config: EmailConfig) -> EmailSender:
    """Factory returning the sender for the given configuration."""
    if config.enabled:
        return SendGridEmailSender(config)
    return DisabledEmailSender()
