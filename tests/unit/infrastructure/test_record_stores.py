"""
Unit tests for the persistence backends.

MongoDB and Redis clients are replaced by mocks; the tests check the queries
and keys each backend issues and how driver errors are translated.
"""

import json
from fnmatch import fnmatchcase
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import ConnectionFailure
from redis.exceptions import ConnectionError as RedisConnectionError

from agentrun.core.domain.events import Event
from agentrun.core.domain.models import StoredRecord
from agentrun.core.errors import StorageError
from agentrun.infrastructure.persistence.codec import (
    COMPRESSED_MARKER,
    decode_payload,
    encode_payload,
)
from agentrun.infrastructure.persistence.config import ContextStoreConfig, EventStoreConfig
from agentrun.infrastructure.persistence.factory import create_event_log, create_record_store
from agentrun.infrastructure.persistence.memory_store import (
    InMemoryEventLog,
    InMemoryRecordStore,
)
from agentrun.infrastructure.persistence.mongo_store import MongoEventLog, MongoRecordStore
from agentrun.infrastructure.persistence.redis_store import RedisRecordStore


class DictRedis:
    """Minimal async Redis client over a dict, with glob matching for SCAN."""

    def __init__(self):
        self.data: dict[str, str] = {}

    async def set(self, key, value, px=None):
        self.data[key] = value

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, *keys):
        return sum(self.data.pop(key, None) is not None for key in keys)

    async def scan_iter(self, match="*"):
        for key in list(self.data):
            if fnmatchcase(key, match):
                yield key


def mongo_client(collection: MagicMock) -> MagicMock:
    client = MagicMock()
    client.close = AsyncMock()
    database = MagicMock()
    client.__getitem__.return_value = database
    database.__getitem__.return_value = collection
    return client


@pytest.fixture
def collection():
    coll = MagicMock()
    coll.create_index = AsyncMock()
    coll.replace_one = AsyncMock()
    coll.insert_one = AsyncMock()
    coll.find_one = AsyncMock(return_value=None)
    coll.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
    coll.delete_many = AsyncMock(return_value=MagicMock(deleted_count=3))
    coll.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    coll.count_documents = AsyncMock(return_value=7)
    return coll


class TestCodec:
    """Tests for payload compression."""

    def test_uncompressed_passes_through(self):
        payload = {"a": 1}
        assert encode_payload(payload, compress=False) is payload
        assert decode_payload(payload) is payload

    def test_compressed_payload_is_opaque(self):
        """Test compressed payloads hide their content and decode back."""
        payload = {"history": ["x" * 200] * 5}
        stored = encode_payload(payload, compress=True)

        assert list(stored) == [COMPRESSED_MARKER]
        assert len(json.dumps(stored)) < len(json.dumps(payload))
        assert decode_payload(stored) == payload


class TestInMemoryRecordStore:
    """Tests for the in-memory record store."""

    @pytest.mark.asyncio
    async def test_put_overwrites_and_lists_per_tenant(self, clock):
        store = InMemoryRecordStore("sessions", clock=clock)
        await store.put(StoredRecord("t1", "r1", {"v": 1}, created_at=clock.now))
        await store.put(StoredRecord("t1", "r1", {"v": 2}, created_at=clock.now))
        await store.put(StoredRecord("t2", "r1", {"v": 3}, created_at=clock.now))

        assert (await store.get("t1", "r1")).payload == {"v": 2}
        assert [r.payload for r in await store.list("t1")] == [{"v": 2}]
        assert await store.delete("t1", "r1") is True
        assert await store.delete("t1", "r1") is False


class TestMongoRecordStore:
    """Tests for MongoRecordStore."""

    @pytest.mark.asyncio
    async def test_put_upserts_by_tenant_and_id(self, collection, clock):
        """Test put creates indexes once and upserts on (tenant_id, id)."""
        store = MongoRecordStore(
            "mongodb://db", "agentrun", "sessions", clock=clock, client=mongo_client(collection)
        )
        record = StoredRecord("t1", "s1", {"history": []}, created_at=100, ttl_ms=50)

        await store.put(record)
        await store.put(record)

        assert collection.create_index.await_count == 2
        filter_, document = collection.replace_one.await_args.args
        assert filter_ == {"tenant_id": "t1", "id": "s1"}
        assert document["expires_at"] == 150
        assert collection.replace_one.await_args.kwargs == {"upsert": True}

    @pytest.mark.asyncio
    async def test_get_filters_expired(self, collection, clock):
        """Test get only matches records that have not expired."""
        collection.find_one.return_value = {
            "tenant_id": "t1",
            "id": "s1",
            "payload": {"k": "v"},
            "created_at": 100,
            "ttl_ms": None,
        }
        store = MongoRecordStore(
            "mongodb://db", "agentrun", "sessions", clock=clock, client=mongo_client(collection)
        )

        record = await store.get("t1", "s1")

        query = collection.find_one.await_args.args[0]
        assert query["tenant_id"] == "t1"
        assert {"expires_at": {"$gte": clock.now}} in query["$or"]
        assert record.payload == {"k": "v"}

    @pytest.mark.asyncio
    async def test_compressed_payload_is_decoded(self, collection, clock):
        """Test payloads written compressed are transparently decoded."""
        collection.find_one.return_value = {
            "tenant_id": "t1",
            "id": "s1",
            "payload": encode_payload({"big": "data"}, compress=True),
            "created_at": 100,
        }
        store = MongoRecordStore(
            "mongodb://db",
            "agentrun",
            "sessions",
            enable_compression=True,
            clock=clock,
            client=mongo_client(collection),
        )
        assert (await store.get("t1", "s1")).payload == {"big": "data"}

    @pytest.mark.asyncio
    async def test_delete_expired(self, collection):
        store = MongoRecordStore("mongodb://db", "agentrun", "s", client=mongo_client(collection))
        assert await store.delete_expired(500) == 3
        collection.delete_many.assert_awaited_once_with(
            {"expires_at": {"$ne": None, "$lt": 500}}
        )

    @pytest.mark.asyncio
    async def test_driver_error_becomes_storage_error(self, collection):
        """Test PyMongoError is translated into StorageError."""
        collection.find_one.side_effect = ConnectionFailure("no server")
        store = MongoRecordStore("mongodb://db", "agentrun", "s", client=mongo_client(collection))

        with pytest.raises(StorageError) as exc_info:
            await store.get("t1", "s1")
        assert exc_info.value.operation == "get"


class TestMongoEventLog:
    """Tests for MongoEventLog."""

    @pytest.mark.asyncio
    async def test_query_after_cursor(self, collection):
        """Test replay queries by timestamp then sequence after the cursor."""
        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.to_list = AsyncMock(
            return_value=[{"id": "evt-1", "type": "a", "timestamp": 10, "sequence": 4}]
        )
        collection.find.return_value = cursor
        log = MongoEventLog("mongodb://db", "agentrun", client=mongo_client(collection))

        events = await log.query(0, after=(10, 3), only_unprocessed=True, limit=5)

        query = collection.find.call_args.args[0]
        assert {"timestamp": {"$gte": 0}} in query["$and"]
        assert {"processed": False} in query["$and"]
        assert {
            "$or": [{"timestamp": {"$gt": 10}}, {"timestamp": 10, "sequence": {"$gt": 3}}]
        } in query["$and"]
        cursor.limit.assert_called_once_with(5)
        assert events == [Event(type="a", id="evt-1", timestamp=10, sequence=4)]

    @pytest.mark.asyncio
    async def test_set_processed_unknown(self, collection):
        collection.update_one.return_value = MagicMock(matched_count=0)
        log = MongoEventLog("mongodb://db", "agentrun", client=mongo_client(collection))
        assert await log.set_processed("evt-missing") is False

    @pytest.mark.asyncio
    async def test_insert_stores_event_document(self, collection):
        log = MongoEventLog("mongodb://db", "agentrun", client=mongo_client(collection))
        await log.insert(Event(type="a", id="evt-1", timestamp=1, sequence=1))

        document = collection.insert_one.await_args.args[0]
        assert document["id"] == "evt-1"
        assert document["processed"] is False


class TestRedisRecordStore:
    """Tests for RedisRecordStore."""

    @pytest.fixture
    def client(self):
        client = AsyncMock()
        client.get.return_value = None
        client.delete.return_value = 1
        return client

    @pytest.mark.asyncio
    async def test_put_sets_prefixed_key_with_ttl(self, client, clock):
        """Test keys are namespaced by prefix, collection and tenant."""
        store = RedisRecordStore("redis://r", "sessions", key_prefix="app", clock=clock, client=client)
        await store.put(StoredRecord("t1", "s1", {"v": 1}, created_at=clock.now, ttl_ms=1000))

        key, value = client.set.await_args.args
        assert key == "app:sessions:t1:s1"
        assert client.set.await_args.kwargs == {"px": 1000}
        assert json.loads(value)["payload"] == {"v": 1}

    @pytest.mark.asyncio
    async def test_put_without_ttl(self, client, clock):
        store = RedisRecordStore("redis://r", "memory", clock=clock, client=client)
        await store.put(StoredRecord("t1", "k", {"v": 1}, created_at=clock.now))
        assert client.set.await_args.kwargs == {"px": None}

    @pytest.mark.asyncio
    async def test_get_hides_expired(self, client, clock):
        """Test a record past its TTL is not returned even if Redis still holds it."""
        client.get.return_value = json.dumps(
            {"tenant_id": "t1", "id": "s1", "payload": {}, "created_at": clock.now - 2000, "ttl_ms": 1000}
        )
        store = RedisRecordStore("redis://r", "sessions", clock=clock, client=client)
        assert await store.get("t1", "s1") is None

    @pytest.mark.asyncio
    async def test_redis_error_becomes_storage_error(self, client, clock):
        client.set.side_effect = RedisConnectionError("refused")
        store = RedisRecordStore("redis://r", "sessions", clock=clock, client=client)

        with pytest.raises(StorageError) as exc_info:
            await store.put(StoredRecord("t1", "s1", {}, created_at=clock.now))
        assert exc_info.value.operation == "put"

    @pytest.mark.asyncio
    async def test_separator_in_tenant_id_does_not_collide(self, clock):
        """Test tenant 'acme:eu' with id 's1' and tenant 'acme' with id 'eu:s1' stay apart."""
        client = DictRedis()
        store = RedisRecordStore("redis://r", "sessions", clock=clock, client=client)
        await store.put(StoredRecord("acme:eu", "s1", {"owner": "eu"}, created_at=clock.now))

        assert await store.get("acme", "eu:s1") is None
        assert await store.list("acme") == []
        assert (await store.get("acme:eu", "s1")).payload == {"owner": "eu"}
        assert list(client.data) == ["agentrun:sessions:acme%3Aeu:s1"]

    @pytest.mark.asyncio
    async def test_glob_characters_in_tenant_id_are_literal(self, clock):
        store = RedisRecordStore("redis://r", "memory", clock=clock, client=DictRedis())
        await store.put(StoredRecord("acme", "m1", {"v": 1}, created_at=clock.now))
        await store.put(StoredRecord("a*", "m2", {"v": 2}, created_at=clock.now))
        await store.put(StoredRecord("[a]cme", "m3", {"v": 3}, created_at=clock.now))

        assert [r.id for r in await store.list("a*")] == ["m2"]
        assert [r.id for r in await store.list("[a]cme")] == ["m3"]
        assert [r.id for r in await store.list("acme")] == ["m1"]

    @pytest.mark.asyncio
    async def test_record_stored_under_foreign_key_is_ignored(self, clock):
        """Test get and list drop documents whose tenant does not match the request."""
        client = DictRedis()
        client.data["agentrun:memory:acme:m1"] = json.dumps(
            {"tenant_id": "other", "id": "m1", "payload": {}, "created_at": clock.now, "ttl_ms": None}
        )
        store = RedisRecordStore("redis://r", "memory", clock=clock, client=client)

        assert await store.get("acme", "m1") is None
        assert await store.list("acme") == []


class TestFactory:
    """Tests for backend construction from config."""

    def test_memory_backends(self):
        assert isinstance(create_record_store(ContextStoreConfig(), "sessions"), InMemoryRecordStore)
        assert isinstance(create_event_log(EventStoreConfig()), InMemoryEventLog)

    def test_network_backends_require_connection_string(self):
        with pytest.raises(ValueError, match="connection_string"):
            ContextStoreConfig(type="redis")
        with pytest.raises(ValueError, match="connection_string"):
            EventStoreConfig(type="mongodb")
