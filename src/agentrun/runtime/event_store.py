"""
Event Store
===========

Durable, replayable log of runtime events.

Responsibilities:
- Assign id, timestamp and sequence to appended events
- Cursor-based replay ordered by ``(timestamp, sequence)``
- Processed tracking (set exactly once)
- Retention sweep by age and count

Delivery built on top of this store is at-least-once: an event stays
unprocessed until every handler acknowledged it, so handlers must be
idempotent.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

import structlog

from agentrun.core.domain.events import Event
from agentrun.core.domain.models import EventStoreStats
from agentrun.core.errors import StorageError
from agentrun.core.interfaces.storage import EventLogProtocol
from agentrun.core.utils import generate_id, now_ms
from agentrun.infrastructure.persistence.config import EventStoreConfig
from agentrun.infrastructure.persistence.factory import create_event_log

logger = structlog.get_logger()

ReplayCursor = tuple[int, int]


@dataclass
class ReplayBatch:
    """
    One page of a replay.

    Attributes:
        events: Events in ``(timestamp, sequence)`` order
        next_cursor: Position to pass to the next ``replay`` call
        has_more: Whether further events matched at query time
    """

    events: list[Event] = field(default_factory=list)
    next_cursor: ReplayCursor | None = None
    has_more: bool = False


class EventStore:
    """
    Append-only event store over a pluggable EventLogProtocol backend.

    Example:
        >>> store = EventStore()
        >>> await store.append(Event(type="tool.called", data={"tool": "search"}))
        >>> batch = await store.replay(0, batch_size=100)
    """

    def __init__(
        self,
        log: EventLogProtocol | None = None,
        config: EventStoreConfig | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.config = config or EventStoreConfig()
        self._log = log or create_event_log(self.config)
        self._clock = clock
        self._sequence: int | None = None
        self._sequence_lock = asyncio.Lock()
        self.logger = logger.bind(component="event_store", backend=self.config.type)

    async def _next_sequence(self) -> int:
        # seeded lazily from the backend; concurrent appends must not share a seed
        async with self._sequence_lock:
            if self._sequence is None:
                self._sequence = await self._log.last_sequence()
            self._sequence += 1
            return self._sequence

    async def append(self, event: Event) -> Event:
        """
        Persist an event and return the stored record.

        Missing id and timestamp are assigned here; the sequence is always
        assigned by the store.

        Raises:
            StorageError: If the backend rejects the write
        """
        if event.id is None:
            event.id = generate_id("evt")
        if event.timestamp is None:
            event.timestamp = self._clock()

        try:
            event.sequence = await self._next_sequence()
            await self._log.insert(event)
        except StorageError:
            raise
        except Exception as e:
            self.logger.error("event_append_failed", event_id=event.id, error=str(e))
            raise StorageError(f"Failed to append event {event.id}: {e}", operation="append") from e

        self.logger.debug(
            "event_appended",
            event_id=event.id,
            event_type=event.type,
            correlation_id=event.correlation_id,
            sequence=event.sequence,
        )
        return event

    async def append_many(self, events: list[Event]) -> list[Event]:
        """Append events in order; stops at the first failure."""
        return [await self.append(event) for event in events]

    async def get(self, event_id: str) -> Event | None:
        return await self._log.get(event_id)

    async def replay(
        self,
        since_timestamp: int = 0,
        only_unprocessed: bool = False,
        batch_size: int = 100,
        cursor: ReplayCursor | None = None,
    ) -> ReplayBatch:
        """
        Return the next batch of events at or after ``since_timestamp``.

        Each call queries the live log, so events appended between calls
        show up in later batches.

        Args:
            since_timestamp: Lower bound (inclusive) on event timestamps
            only_unprocessed: Skip events already marked processed
            batch_size: Maximum number of events per batch
            cursor: ``next_cursor`` of the previous batch, None to start

        Returns:
            ReplayBatch with the events and the cursor for the next call
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        events = await self._log.query(
            since_timestamp=since_timestamp,
            after=cursor,
            only_unprocessed=only_unprocessed,
            limit=batch_size + 1,
        )
        has_more = len(events) > batch_size
        events = events[:batch_size]
        next_cursor = (events[-1].timestamp, events[-1].sequence) if events else cursor

        self.logger.debug(
            "replay_batch",
            since_timestamp=since_timestamp,
            count=len(events),
            has_more=has_more,
        )
        return ReplayBatch(events=events, next_cursor=next_cursor, has_more=has_more)

    async def iter_replay(
        self,
        since_timestamp: int = 0,
        only_unprocessed: bool = False,
        batch_size: int = 100,
    ) -> AsyncIterator[list[Event]]:
        """Yield replay batches until the log is exhausted."""
        cursor: ReplayCursor | None = None
        while True:
            batch = await self.replay(
                since_timestamp,
                only_unprocessed=only_unprocessed,
                batch_size=batch_size,
                cursor=cursor,
            )
            if batch.events:
                yield batch.events
            if not batch.has_more:
                return
            cursor = batch.next_cursor

    async def mark_processed(self, event_id: str) -> None:
        """
        Mark an event processed. Marking twice is a no-op.

        Raises:
            StorageError: If the event does not exist
        """
        if not await self._log.set_processed(event_id):
            raise StorageError(f"Unknown event id: {event_id}", operation="mark_processed")
        self.logger.debug("event_marked_processed", event_id=event_id)

    async def get_stats(self) -> EventStoreStats:
        oldest, newest = await self._log.timestamp_bounds()
        return EventStoreStats(
            total_stored_events=await self._log.count(),
            unprocessed_events=await self._log.count(only_unprocessed=True),
            oldest_event_timestamp=oldest,
            newest_event_timestamp=newest,
        )

    async def sweep(self, now: int | None = None) -> int:
        """
        Apply retention: drop events older than ``event_ttl_ms`` and then the
        oldest events beyond ``max_stored_events``.

        Returns:
            Number of events removed
        """
        now = self._clock() if now is None else now
        removed = 0
        if self.config.event_ttl_ms is not None:
            removed += await self._log.delete_before(now - self.config.event_ttl_ms)

        overflow = await self._log.count() - self.config.max_stored_events
        if overflow > 0:
            removed += await self._log.delete_oldest(overflow)

        if removed:
            self.logger.info("events_swept", removed=removed)
        return removed

    async def close(self) -> None:
        await self._log.close()
