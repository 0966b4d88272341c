"""
MongoDB persistence backends.

Records are stored one document per ``(tenant_id, id)`` with a unique compound
index, so tenant isolation holds at the database level. Expiry is evaluated
on every read and physically enforced by ``delete_expired``.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient
from pymongo.errors import PyMongoError

from agentrun.core.domain.events import Event
from agentrun.core.domain.models import StoredRecord
from agentrun.core.errors import StorageError
from agentrun.core.utils import now_ms
from agentrun.infrastructure.persistence.codec import decode_payload, encode_payload

logger = structlog.get_logger()


@contextmanager
def mongo_errors(operation: str, **context: Any) -> Iterator[None]:
    """Translate driver errors into StorageError."""
    try:
        yield
    except PyMongoError as e:
        logger.error("mongodb_operation_failed", operation=operation, error=str(e), **context)
        raise StorageError(f"MongoDB {operation} failed: {e}", operation=operation) from e


def _live_filter(now: int) -> dict[str, Any]:
    return {"$or": [{"expires_at": None}, {"expires_at": {"$gte": now}}]}


class MongoRecordStore:
    """Record store backed by one MongoDB collection."""

    def __init__(
        self,
        connection_string: str,
        database: str,
        collection: str,
        enable_compression: bool = False,
        clock: Callable[[], int] = now_ms,
        client: Any | None = None,
    ):
        self._client = client or AsyncMongoClient(connection_string)
        self._collection = self._client[database][collection]
        self.collection = collection
        self.enable_compression = enable_compression
        self._clock = clock
        self._indexes_ready = False
        self.logger = logger.bind(component="mongo_record_store", collection=collection)

    async def _ensure_indexes(self) -> None:
        if self._indexes_ready:
            return
        with mongo_errors("create_index", collection=self.collection):
            await self._collection.create_index(
                [("tenant_id", ASCENDING), ("id", ASCENDING)], unique=True
            )
            await self._collection.create_index([("expires_at", ASCENDING)])
        self._indexes_ready = True

    def _to_document(self, record: StoredRecord) -> dict[str, Any]:
        return {
            "tenant_id": record.tenant_id,
            "id": record.id,
            "payload": encode_payload(record.payload, self.enable_compression),
            "created_at": record.created_at,
            "ttl_ms": record.ttl_ms,
            "expires_at": record.expires_at,
        }

    @staticmethod
    def _from_document(doc: dict[str, Any]) -> StoredRecord:
        return StoredRecord(
            tenant_id=doc["tenant_id"],
            id=doc["id"],
            payload=decode_payload(doc.get("payload") or {}),
            created_at=doc["created_at"],
            ttl_ms=doc.get("ttl_ms"),
        )

    async def put(self, record: StoredRecord) -> None:
        await self._ensure_indexes()
        with mongo_errors("put", record_id=record.id):
            await self._collection.replace_one(
                {"tenant_id": record.tenant_id, "id": record.id},
                self._to_document(record),
                upsert=True,
            )

    async def get(self, tenant_id: str, record_id: str) -> StoredRecord | None:
        query = {"tenant_id": tenant_id, "id": record_id, **_live_filter(self._clock())}
        with mongo_errors("get", record_id=record_id):
            doc = await self._collection.find_one(query, {"_id": 0})
        return self._from_document(doc) if doc else None

    async def delete(self, tenant_id: str, record_id: str) -> bool:
        with mongo_errors("delete", record_id=record_id):
            result = await self._collection.delete_one({"tenant_id": tenant_id, "id": record_id})
        return result.deleted_count > 0

    async def list(self, tenant_id: str, limit: int | None = None) -> list[StoredRecord]:
        query = {"tenant_id": tenant_id, **_live_filter(self._clock())}
        with mongo_errors("list", tenant_id=tenant_id):
            cursor = self._collection.find(query, {"_id": 0}).sort("created_at", DESCENDING)
            if limit is not None:
                cursor = cursor.limit(limit)
            docs = await cursor.to_list(length=None)
        return [self._from_document(doc) for doc in docs]

    async def delete_expired(self, now: int) -> int:
        with mongo_errors("delete_expired"):
            result = await self._collection.delete_many(
                {"expires_at": {"$ne": None, "$lt": now}}
            )
        return result.deleted_count

    async def close(self) -> None:
        await self._client.close()


class MongoEventLog:
    """Event log backed by one MongoDB collection."""

    def __init__(
        self,
        connection_string: str,
        database: str,
        collection: str = "events",
        client: Any | None = None,
    ):
        self._client = client or AsyncMongoClient(connection_string)
        self._collection = self._client[database][collection]
        self._indexes_ready = False

    async def _ensure_indexes(self) -> None:
        if self._indexes_ready:
            return
        with mongo_errors("create_index", collection="events"):
            await self._collection.create_index([("id", ASCENDING)], unique=True)
            await self._collection.create_index(
                [("timestamp", ASCENDING), ("sequence", ASCENDING)]
            )
        self._indexes_ready = True

    async def insert(self, event: Event) -> None:
        await self._ensure_indexes()
        with mongo_errors("insert", event_id=event.id):
            await self._collection.insert_one(event.to_dict())

    async def get(self, event_id: str) -> Event | None:
        with mongo_errors("get", event_id=event_id):
            doc = await self._collection.find_one({"id": event_id}, {"_id": 0})
        return Event.from_dict(doc) if doc else None

    async def query(
        self,
        since_timestamp: int,
        after: tuple[int, int] | None,
        only_unprocessed: bool,
        limit: int,
    ) -> list[Event]:
        conditions: list[dict[str, Any]] = [{"timestamp": {"$gte": since_timestamp}}]
        if after is not None:
            ts, seq = after
            conditions.append(
                {"$or": [{"timestamp": {"$gt": ts}}, {"timestamp": ts, "sequence": {"$gt": seq}}]}
            )
        if only_unprocessed:
            conditions.append({"processed": False})

        with mongo_errors("query"):
            cursor = (
                self._collection.find({"$and": conditions}, {"_id": 0})
                .sort([("timestamp", ASCENDING), ("sequence", ASCENDING)])
                .limit(limit)
            )
            docs = await cursor.to_list(length=None)
        return [Event.from_dict(doc) for doc in docs]

    async def set_processed(self, event_id: str) -> bool:
        with mongo_errors("set_processed", event_id=event_id):
            result = await self._collection.update_one(
                {"id": event_id}, {"$set": {"processed": True}}
            )
        return result.matched_count > 0

    async def count(self, only_unprocessed: bool = False) -> int:
        query = {"processed": False} if only_unprocessed else {}
        with mongo_errors("count"):
            return await self._collection.count_documents(query)

    async def timestamp_bounds(self) -> tuple[int | None, int | None]:
        with mongo_errors("timestamp_bounds"):
            oldest = await self._collection.find_one({}, sort=[("timestamp", ASCENDING)])
            newest = await self._collection.find_one({}, sort=[("timestamp", DESCENDING)])
        return (
            oldest["timestamp"] if oldest else None,
            newest["timestamp"] if newest else None,
        )

    async def last_sequence(self) -> int:
        with mongo_errors("last_sequence"):
            doc = await self._collection.find_one({}, sort=[("sequence", DESCENDING)])
        return int(doc["sequence"]) if doc else 0

    async def delete_before(self, timestamp: int) -> int:
        with mongo_errors("delete_before"):
            result = await self._collection.delete_many({"timestamp": {"$lt": timestamp}})
        return result.deleted_count

    async def delete_oldest(self, count: int) -> int:
        if count <= 0:
            return 0
        with mongo_errors("delete_oldest"):
            cursor = (
                self._collection.find({}, {"id": 1, "_id": 0})
                .sort([("timestamp", ASCENDING), ("sequence", ASCENDING)])
                .limit(count)
            )
            ids = [doc["id"] for doc in await cursor.to_list(length=None)]
            result = await self._collection.delete_many({"id": {"$in": ids}})
        return result.deleted_count

    async def close(self) -> None:
        await self._client.close()
