"""Helpers shared by the domain services."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..errors import UpstreamError, ValidationError
from ..list_index import WriteResult
from ..notify.email import EmailSender

logger = logging.getLogger(__name__)


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def require_fields(data: Mapping[str, Any], names: Iterable[str]) -> None:
    """Raise ValidationError naming the first missing field."""
    for name in names:
        if is_blank(data.get(name)):
            raise ValidationError(f"Missing required field: {name}", field_name=name)


def clean_str(value: Any) -> str:
    return "" if value is None else str(value).strip()


async def send_best_effort(
    sender: EmailSender,
    result: WriteResult[Any],
    to: str,
    subject: str,
    html: str,
) -> bool:
    """Send an email, recording a failure as a warning instead of raising."""
    try:
        await sender.send(to, subject, html)
        return True
    except UpstreamError as e:
        message = f"Email '{subject}' to {to} failed: {e.message}"
        logger.warning(message)
        result.warnings.append(message)
        return False
