"""
In-memory persistence backends for development and tests.

Operations contain no await points, so each one is atomic with respect to
other asyncio tasks and a cleanup sweep never blocks readers or writers.
"""

from collections import OrderedDict
from collections.abc import Callable

import structlog

from agentrun.core.domain.events import Event
from agentrun.core.domain.models import StoredRecord
from agentrun.core.utils import now_ms

logger = structlog.get_logger()


class InMemoryRecordStore:
    """
    Record store backed by an insertion-ordered dict.

    Keys are ``(tenant_id, id)`` tuples, so identical ids under different
    tenants never collide. When ``max_items`` is reached the oldest record is
    evicted.
    """

    def __init__(
        self,
        collection: str,
        max_items: int = 10_000,
        clock: Callable[[], int] = now_ms,
    ):
        self.collection = collection
        self.max_items = max_items
        self._clock = clock
        self._records: OrderedDict[tuple[str, str], StoredRecord] = OrderedDict()
        self.logger = logger.bind(component="memory_record_store", collection=collection)

    async def put(self, record: StoredRecord) -> None:
        key = (record.tenant_id, record.id)
        if key in self._records:
            self._records.move_to_end(key)
        self._records[key] = record
        while len(self._records) > self.max_items:
            evicted_key, _ = self._records.popitem(last=False)
            self.logger.debug("record_evicted", tenant_id=evicted_key[0], record_id=evicted_key[1])

    async def get(self, tenant_id: str, record_id: str) -> StoredRecord | None:
        record = self._records.get((tenant_id, record_id))
        if record is None or record.is_expired(self._clock()):
            return None
        return record

    async def delete(self, tenant_id: str, record_id: str) -> bool:
        return self._records.pop((tenant_id, record_id), None) is not None

    async def list(self, tenant_id: str, limit: int | None = None) -> list[StoredRecord]:
        now = self._clock()
        records = [
            r
            for (tenant, _), r in self._records.items()
            if tenant == tenant_id and not r.is_expired(now)
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit] if limit is not None else records

    async def delete_expired(self, now: int) -> int:
        expired = [key for key, r in self._records.items() if r.is_expired(now)]
        for key in expired:
            del self._records[key]
        return len(expired)

    async def close(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


class InMemoryEventLog:
    """Append-only event log kept in a list ordered by ``(timestamp, sequence)``."""

    def __init__(self):
        self._events: list[Event] = []
        self._by_id: dict[str, Event] = {}

    async def insert(self, event: Event) -> None:
        self._events.append(event)
        self._by_id[event.id] = event
        if len(self._events) > 1 and _position(self._events[-2]) > _position(event):
            self._events.sort(key=_position)

    async def get(self, event_id: str) -> Event | None:
        return self._by_id.get(event_id)

    async def query(
        self,
        since_timestamp: int,
        after: tuple[int, int] | None,
        only_unprocessed: bool,
        limit: int,
    ) -> list[Event]:
        matched: list[Event] = []
        for event in self._events:
            if event.timestamp < since_timestamp:
                continue
            if after is not None and _position(event) <= after:
                continue
            if only_unprocessed and event.processed:
                continue
            matched.append(event)
            if len(matched) >= limit:
                break
        return matched

    async def set_processed(self, event_id: str) -> bool:
        event = self._by_id.get(event_id)
        if event is None:
            return False
        event.processed = True
        return True

    async def count(self, only_unprocessed: bool = False) -> int:
        if only_unprocessed:
            return sum(1 for e in self._events if not e.processed)
        return len(self._events)

    async def timestamp_bounds(self) -> tuple[int | None, int | None]:
        if not self._events:
            return None, None
        return self._events[0].timestamp, self._events[-1].timestamp

    async def last_sequence(self) -> int:
        return max((e.sequence for e in self._events), default=0)

    async def delete_before(self, timestamp: int) -> int:
        kept = [e for e in self._events if e.timestamp >= timestamp]
        removed = len(self._events) - len(kept)
        self._replace(kept)
        return removed

    async def delete_oldest(self, count: int) -> int:
        if count <= 0:
            return 0
        removed = min(count, len(self._events))
        self._replace(self._events[removed:])
        return removed

    async def close(self) -> None:
        return None

    def _replace(self, events: list[Event]) -> None:
        self._events = events
        self._by_id = {e.id: e for e in events}


def _position(event: Event) -> tuple[int, int]:
    return (event.timestamp, event.sequence)
