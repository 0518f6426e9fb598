"""Frequently asked questions, displayed in ``order``."""

from __future__ import annotations

import logging
from typing import Any

from ..errors import NotFoundError, ValidationError
from ..list_index import ListIndex, WriteResult
from ..records import FAQS, Clock, Record, generate_id, to_iso, utc_now
from .common import clean_str, is_blank, require_fields

logger = logging.getLogger(__name__)

DEFAULT_ORDER = 999


def faq_order(record: Record) -> int:
    try:
        return int(record.get("order"))
    except (TypeError, ValueError):
        return DEFAULT_ORDER


class FaqService:
    def __init__(self, index: ListIndex, clock: Clock = utc_now) -> None:
        self.index = index
        self._clock = clock

    async def list_faqs(self) -> list[Record]:
        faqs = await self.index.read_list(FAQS)
        return sorted(faqs, key=lambda r: (faq_order(r), str(r.get("id", ""))))

    async def upsert_faq(self, fields: dict[str, Any]) -> WriteResult[Record]:
        """Create a FAQ, or replace the one with the given id.

        New FAQs without an explicit order go to the end.

        Raises:
            ValidationError: If question or answer is missing
        """
        require_fields(fields, ("question", "answer"))
        existing = await self.list_faqs()
        faq_id = clean_str(fields.get("id")) or generate_id(FAQS.id_prefix, self._clock())

        order = fields.get("order")
        if is_blank(order):
            current = next((f for f in existing if f.get("id") == faq_id), None)
            order = current.get("order") if current else len(existing) + 1
        try:
            order = int(order)
        except (TypeError, ValueError):
            raise ValidationError("FAQ order must be a number", "order")

        faq: Record = {
            "id": faq_id,
            "question": clean_str(fields["question"]),
            "answer": clean_str(fields["answer"]),
            "order": order,
            "lastUpdated": to_iso(self._clock()),
        }
        return await self.index.append_or_update(FAQS, faq)

    async def delete_faq(self, faq_id: str) -> WriteResult[str]:
        """Raises NotFoundError if the FAQ does not exist."""
        if is_blank(faq_id):
            raise ValidationError("FAQ ID is required", "id")
        if await self.index.get_record(FAQS, faq_id) is None:
            raise NotFoundError("FAQ not found", "faq", faq_id)
        result = await self.index.remove(FAQS, faq_id)
        logger.info(f"FAQ deleted: {faq_id}")
        return result
