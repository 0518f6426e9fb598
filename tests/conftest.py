"""
Shared fixtures for the Kartel test suite.
"""

from datetime import datetime, timedelta, timezone

import pytest

from kartel_server.list_index import ListIndex
from kartel_server.notify import RecordingEmailSender, RecordingPushSender
from kartel_server.store import InMemoryRecordStore


class FrozenClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
async def store():
    store = InMemoryRecordStore()
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def index(store):
    return ListIndex(store)


@pytest.fixture
def email():
    return RecordingEmailSender()


@pytest.fixture
def push_sender():
    return RecordingPushSender()
