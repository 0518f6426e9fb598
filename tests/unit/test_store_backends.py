"""
Unit tests for record store backends.

Tests cover:
- In-memory store lifecycle and testing helpers
- SQLite persistence across store instances
- Netlify Blobs wire protocol against a mock transport
- Backend factory selection
"""

import json

import httpx
import pytest

from kartel_server.config import StoreBackend, StoreConfig
from kartel_server.errors import ConfigurationError, RecordDecodeError, StorageError
from kartel_server.store import (
    InMemoryRecordStore,
    NetlifyBlobStore,
    SqliteRecordStore,
    create_record_store,
    decode_value,
    encode_value,
)


class TestCodec:
    """Tests for JSON blob encoding."""

    def test_encode_is_compact(self):
        assert encode_value({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'

    def test_decode_absent_is_none(self):
        assert decode_value(None, "events", "evt_1") is None

    def test_decode_invalid_json(self):
        with pytest.raises(RecordDecodeError) as exc_info:
            decode_value("{not json", "events", "evt_1")
        assert exc_info.value.collection == "events"
        assert exc_info.value.key == "evt_1"

    def test_decode_empty_blob(self):
        with pytest.raises(RecordDecodeError):
            decode_value("   ", "events", "evt_1")


class TestInMemoryRecordStore:
    """Tests for InMemoryRecordStore."""

    @pytest.fixture
    async def store(self):
        store = InMemoryRecordStore()
        await store.connect()
        yield store
        await store.close()

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        store = InMemoryRecordStore()
        with pytest.raises(StorageError):
            await store.get("events", "evt_1")

    @pytest.mark.asyncio
    async def test_get_absent_returns_none(self, store):
        assert await store.get("events", "missing") is None

    @pytest.mark.asyncio
    async def test_set_get_delete(self, store):
        await store.set("venues", "venue_1", {"id": "venue_1", "name": "Track"})
        assert await store.get("venues", "venue_1") == {"id": "venue_1", "name": "Track"}

        await store.delete("venues", "venue_1")
        assert await store.get("venues", "venue_1") is None

    @pytest.mark.asyncio
    async def test_delete_absent_is_noop(self, store):
        await store.delete("venues", "nothing-here")

    @pytest.mark.asyncio
    async def test_list_keys_with_prefix(self, store):
        await store.set("push-subscriptions", "member-1", {})
        await store.set("push-subscriptions", "member-2", {})
        await store.set("push-subscriptions", "admin-1", {})

        assert sorted(await store.list_keys("push-subscriptions")) == [
            "admin-1",
            "member-1",
            "member-2",
        ]
        assert sorted(await store.list_keys("push-subscriptions", prefix="member-")) == [
            "member-1",
            "member-2",
        ]

    @pytest.mark.asyncio
    async def test_corrupt_blob_raises_decode_error(self, store):
        await store.set_text("applications", "_list", "{not json")
        assert await store.get_text("applications", "_list") == "{not json"
        with pytest.raises(RecordDecodeError):
            await store.get("applications", "_list")

    @pytest.mark.asyncio
    async def test_inject_failure(self, store):
        store.inject_failure("set", "events", "_list")
        with pytest.raises(StorageError):
            await store.set("events", "_list", [])

        # Other keys are unaffected
        await store.set("events", "evt_1", {"id": "evt_1"})

        store.clear_failures()
        await store.set("events", "_list", [])
        assert store.count("events") == 2


class TestSqliteRecordStore:
    """Tests for SqliteRecordStore."""

    @pytest.fixture
    async def store(self, tmp_path):
        store = SqliteRecordStore(str(tmp_path / "kartel.db"))
        await store.connect()
        yield store
        await store.close()

    @pytest.mark.asyncio
    async def test_requires_connection(self, tmp_path):
        store = SqliteRecordStore(str(tmp_path / "kartel.db"))
        with pytest.raises(StorageError):
            await store.get_text("events", "evt_1")

    @pytest.mark.asyncio
    async def test_set_overwrites(self, store):
        await store.set("faqs", "faq_1", {"id": "faq_1", "order": 1})
        await store.set("faqs", "faq_1", {"id": "faq_1", "order": 2})
        assert await store.get("faqs", "faq_1") == {"id": "faq_1", "order": 2}

    @pytest.mark.asyncio
    async def test_collections_are_isolated(self, store):
        await store.set("events", "shared", {"kind": "event"})
        await store.set("venues", "shared", {"kind": "venue"})
        assert (await store.get("events", "shared"))["kind"] == "event"
        assert await store.list_keys("venues") == ["shared"]

    @pytest.mark.asyncio
    async def test_list_keys_prefix(self, store):
        for key in ("admin-1", "member-1", "member-2"):
            await store.set("push-subscriptions", key, {})
        assert await store.list_keys("push-subscriptions", prefix="member-") == [
            "member-1",
            "member-2",
        ]

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "kartel.db")
        first = SqliteRecordStore(path)
        await first.connect()
        await first.set("applications", "app_1", {"id": "app_1", "email": "a@example.com"})
        await first.close()

        second = SqliteRecordStore(path)
        await second.connect()
        assert await second.get("applications", "app_1") == {
            "id": "app_1",
            "email": "a@example.com",
        }

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.set("events", "evt_1", {"id": "evt_1"})
        await store.delete("events", "evt_1")
        await store.delete("events", "evt_1")
        assert await store.get("events", "evt_1") is None


class FakeBlobsApi:
    """Minimal in-process Netlify Blobs API for httpx.MockTransport."""

    def __init__(self, page_size: int = 2) -> None:
        self.blobs: dict[tuple[str, str], str] = {}
        self.page_size = page_size
        self.requests: list[httpx.Request] = []
        self.fail_with: int | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with)

        parts = request.url.path.split("/")
        # /api/v1/blobs/<site>/<store>[/<key>]
        store = parts[5]
        key = parts[6] if len(parts) > 6 else None

        if key is None:
            prefix = request.url.params.get("prefix", "")
            keys = sorted(k for (s, k) in self.blobs if s == store and k.startswith(prefix))
            start = int(request.url.params.get("cursor") or 0)
            page = keys[start : start + self.page_size]
            body = {"blobs": [{"key": k} for k in page]}
            if start + self.page_size < len(keys):
                body["next_cursor"] = str(start + self.page_size)
            return httpx.Response(200, json=body)

        if request.method == "GET":
            if (store, key) not in self.blobs:
                return httpx.Response(404)
            return httpx.Response(200, text=self.blobs[(store, key)])
        if request.method == "PUT":
            self.blobs[(store, key)] = request.content.decode("utf-8")
            return httpx.Response(200)
        if request.method == "DELETE":
            if self.blobs.pop((store, key), None) is None:
                return httpx.Response(404)
            return httpx.Response(204)
        return httpx.Response(405)


class TestNetlifyBlobStore:
    """Tests for NetlifyBlobStore over a mock transport."""

    @pytest.fixture
    def api(self):
        return FakeBlobsApi()

    @pytest.fixture
    async def store(self, api):
        store = NetlifyBlobStore(
            site_id="site-123",
            access_token="nfp_secret",
            transport=httpx.MockTransport(api),
        )
        await store.connect()
        yield store
        await store.close()

    @pytest.mark.asyncio
    async def test_round_trip_and_auth_header(self, store, api):
        await store.set("events", "evt_1", {"id": "evt_1"})
        assert await store.get("events", "evt_1") == {"id": "evt_1"}

        put = api.requests[0]
        assert put.method == "PUT"
        assert put.url.path == "/api/v1/blobs/site-123/events/evt_1"
        assert put.headers["Authorization"] == "Bearer nfp_secret"
        assert json.loads(put.content) == {"id": "evt_1"}

    @pytest.mark.asyncio
    async def test_missing_blob_is_none(self, store):
        assert await store.get_text("events", "missing") is None

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, store):
        await store.delete("events", "missing")

    @pytest.mark.asyncio
    async def test_list_follows_cursor(self, store, api):
        for key in ("a", "b", "c", "d", "e"):
            api.blobs[("faqs", key)] = "{}"
        api.blobs[("events", "x")] = "{}"

        assert await store.list_keys("faqs") == ["a", "b", "c", "d", "e"]
        list_requests = [r for r in api.requests if r.url.path.endswith("/faqs")]
        assert len(list_requests) == 3

    @pytest.mark.asyncio
    async def test_server_error_raises_storage_error(self, store, api):
        api.fail_with = 500
        with pytest.raises(StorageError):
            await store.get_text("events", "evt_1")
        with pytest.raises(StorageError):
            await store.set("events", "evt_1", {})

    @pytest.mark.asyncio
    async def test_transport_error_raises_storage_error(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        store = NetlifyBlobStore("site", "token", transport=httpx.MockTransport(boom))
        await store.connect()
        with pytest.raises(StorageError):
            await store.get_text("events", "evt_1")
        await store.close()

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        store = NetlifyBlobStore("site", "token")
        with pytest.raises(StorageError):
            await store.get_text("events", "evt_1")


class TestCreateRecordStore:
    """Tests for the backend factory."""

    def test_memory_backend(self):
        assert isinstance(create_record_store(StoreConfig()), InMemoryRecordStore)

    def test_sqlite_backend(self, tmp_path):
        config = StoreConfig(backend=StoreBackend.SQLITE, sqlite_path=str(tmp_path / "k.db"))
        assert isinstance(create_record_store(config), SqliteRecordStore)

    def test_netlify_backend(self):
        config = StoreConfig(
            backend=StoreBackend.NETLIFY,
            netlify_site_id="site",
            netlify_access_token="token",
        )
        assert isinstance(create_record_store(config), NetlifyBlobStore)

    def test_netlify_without_credentials(self):
        with pytest.raises(ConfigurationError):
            create_record_store(StoreConfig(backend=StoreBackend.NETLIFY))
