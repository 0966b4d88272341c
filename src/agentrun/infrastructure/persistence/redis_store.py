"""
Redis record store.

Each record lives under ``<prefix>:<collection>:<tenant_id>:<id>`` as a JSON
document. Tenant and record ids are percent-encoded, so neither can contain a
``:`` separator or a SCAN glob character. Records with a TTL are written with ``PX`` so Redis expires them on
its own; reads still check ``expires_at`` against the injected clock.
"""

import json
from urllib.parse import quote
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from agentrun.core.domain.models import StoredRecord
from agentrun.core.errors import StorageError
from agentrun.core.utils import now_ms
from agentrun.infrastructure.persistence.codec import decode_payload, encode_payload

logger = structlog.get_logger()


@contextmanager
def redis_errors(operation: str, **context: Any) -> Iterator[None]:
    try:
        yield
    except RedisError as e:
        logger.error("redis_operation_failed", operation=operation, error=str(e), **context)
        raise StorageError(f"Redis {operation} failed: {e}", operation=operation) from e


class RedisRecordStore:
    """Record store backed by Redis string keys."""

    def __init__(
        self,
        connection_string: str,
        collection: str,
        key_prefix: str = "agentrun",
        enable_compression: bool = False,
        clock: Callable[[], int] = now_ms,
        client: Any | None = None,
    ):
        self._client = client or aioredis.Redis.from_url(connection_string, decode_responses=True)
        self.collection = collection
        self.key_prefix = key_prefix
        self.enable_compression = enable_compression
        self._clock = clock

    def _key(self, tenant_id: str, record_id: str) -> str:
        tenant, record = quote(tenant_id, safe=""), quote(record_id, safe="")
        return f"{self.key_prefix}:{self.collection}:{tenant}:{record}"

    def _pattern(self, tenant_id: str | None = None) -> str:
        tenant = "*" if tenant_id is None else quote(tenant_id, safe="")
        return f"{self.key_prefix}:{self.collection}:{tenant}:*"

    def _encode(self, record: StoredRecord) -> str:
        return json.dumps(
            {
                "tenant_id": record.tenant_id,
                "id": record.id,
                "payload": encode_payload(record.payload, self.enable_compression),
                "created_at": record.created_at,
                "ttl_ms": record.ttl_ms,
            },
            default=str,
        )

    @staticmethod
    def _decode(raw: str | bytes) -> StoredRecord:
        doc = json.loads(raw)
        return StoredRecord(
            tenant_id=doc["tenant_id"],
            id=doc["id"],
            payload=decode_payload(doc.get("payload") or {}),
            created_at=doc["created_at"],
            ttl_ms=doc.get("ttl_ms"),
        )

    async def put(self, record: StoredRecord) -> None:
        key = self._key(record.tenant_id, record.id)
        remaining = None
        if record.expires_at is not None:
            # Redis rejects non-positive PX values
            remaining = max(1, record.expires_at - self._clock())
        with redis_errors("put", key=key):
            await self._client.set(key, self._encode(record), px=remaining)

    async def get(self, tenant_id: str, record_id: str) -> StoredRecord | None:
        key = self._key(tenant_id, record_id)
        with redis_errors("get", key=key):
            raw = await self._client.get(key)
        if raw is None:
            return None
        record = self._decode(raw)
        if (record.tenant_id, record.id) != (tenant_id, record_id):
            logger.warning("redis_record_mismatch", key=key, tenant_id=record.tenant_id)
            return None
        return None if record.is_expired(self._clock()) else record

    async def delete(self, tenant_id: str, record_id: str) -> bool:
        key = self._key(tenant_id, record_id)
        with redis_errors("delete", key=key):
            return await self._client.delete(key) > 0

    async def _scan(self, pattern: str) -> list[tuple[str, StoredRecord]]:
        found: list[tuple[str, StoredRecord]] = []
        with redis_errors("scan", pattern=pattern):
            async for key in self._client.scan_iter(match=pattern):
                raw = await self._client.get(key)
                if raw is not None:
                    found.append((key, self._decode(raw)))
        return found

    async def list(self, tenant_id: str, limit: int | None = None) -> list[StoredRecord]:
        now = self._clock()
        records = [
            record
            for _, record in await self._scan(self._pattern(tenant_id))
            if record.tenant_id == tenant_id and not record.is_expired(now)
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit] if limit is not None else records

    async def delete_expired(self, now: int) -> int:
        expired = [key for key, record in await self._scan(self._pattern()) if record.is_expired(now)]
        if not expired:
            return 0
        with redis_errors("delete_expired"):
            return await self._client.delete(*expired)

    async def close(self) -> None:
        await self._client.aclose()
