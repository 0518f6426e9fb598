"""
Unit tests for FAQs.
"""

import pytest

from kartel_server.errors import NotFoundError, ValidationError
from kartel_server.records import FAQS
from kartel_server.services import FaqService


@pytest.fixture
def service(index, clock):
    return FaqService(index, clock)


class TestFaqService:
    """Tests for FaqService."""

    @pytest.mark.asyncio
    async def test_new_faqs_go_to_the_end(self, service):
        first = (await service.upsert_faq({"question": "Who?", "answer": "Us"})).value
        second = (await service.upsert_faq({"question": "Where?", "answer": "Here"})).value

        assert first["order"] == 1
        assert second["order"] == 2
        assert [f["question"] for f in await service.list_faqs()] == ["Who?", "Where?"]

    @pytest.mark.asyncio
    async def test_explicit_order(self, service):
        await service.upsert_faq({"question": "Later", "answer": "a", "order": 5})
        await service.upsert_faq({"question": "Sooner", "answer": "b", "order": "2"})

        assert [f["question"] for f in await service.list_faqs()] == ["Sooner", "Later"]

    @pytest.mark.asyncio
    async def test_update_keeps_order(self, service):
        faq = (await service.upsert_faq({"question": "Q", "answer": "A", "order": 7})).value

        updated = (
            await service.upsert_faq({"id": faq["id"], "question": "Q2", "answer": "A2"})
        ).value

        assert updated["id"] == faq["id"]
        assert updated["order"] == 7
        assert len(await service.list_faqs()) == 1

    @pytest.mark.asyncio
    async def test_missing_order_sorts_last(self, service, index):
        await index.append_or_update(FAQS, {"id": "faq_legacy", "question": "Old", "answer": "x"})
        await service.upsert_faq({"question": "New", "answer": "y", "order": 1})

        assert [f["question"] for f in await service.list_faqs()] == ["New", "Old"]

    @pytest.mark.asyncio
    async def test_requires_question_and_answer(self, service):
        with pytest.raises(ValidationError):
            await service.upsert_faq({"question": "No answer"})

    @pytest.mark.asyncio
    async def test_non_numeric_order(self, service):
        with pytest.raises(ValidationError):
            await service.upsert_faq({"question": "Q", "answer": "A", "order": "first"})

    @pytest.mark.asyncio
    async def test_delete(self, service):
        faq = (await service.upsert_faq({"question": "Q", "answer": "A"})).value
        await service.delete_faq(faq["id"])
        assert await service.list_faqs() == []

    @pytest.mark.asyncio
    async def test_delete_missing(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            await service.delete_faq("faq_nope")
        assert exc_info.value.message == "FAQ not found"
