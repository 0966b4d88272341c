"""
Runtime Bus
===========

In-process publish/subscribe for lifecycle events, backed by the EventStore.

- ``emit`` queues an event and returns immediately.
- ``emit_async`` drains earlier queued events first, then persists and
  delivers the new one, awaiting every handler.
- ``process`` drains the queue. Queue draining is serialized by one
  asyncio.Lock, so events are delivered in emission order.

Acknowledgement: an event whose handlers all succeeded is marked processed in
the store. A failed delivery is retried in place, with exponential backoff,
before any later event is delivered; only the handlers that failed run again.
After ``max_retries`` retries the event moves to ``dead_letters``. Handler
exceptions are logged per handler and never stop delivery to the other
handlers.

Handlers may emit. ``emit_async`` or ``process`` called from inside a handler
does not wait for the lock the delivering task already holds: the new event is
persisted and queued behind the one being delivered, and the outer call
delivers it before returning.
"""

import asyncio
import inspect
import random
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any

import structlog

from agentrun.core.domain.events import Event
from agentrun.core.errors import StorageError
from agentrun.core.utils import generate_id, now_ms
from agentrun.runtime.event_store import EventStore

logger = structlog.get_logger()

Handler = Callable[[Event], Awaitable[None] | None]

ALL_EVENTS = "*"

# ids of the buses whose handlers the current task is running under
_delivering: ContextVar[tuple[int, ...]] = ContextVar("agentrun_bus_delivering", default=())


@dataclass
class EmitResult:
    """
    Outcome of ``emit_async`` for one event.

    ``queued`` is True when the call came from inside a handler; delivery
    then happens after that handler returns and the counters stay at zero.
    """

    event: Event
    delivered: int = 0
    failed: int = 0
    persisted: bool = True
    queued: bool = False

    @property
    def success(self) -> bool:
        return self.failed == 0 and self.persisted


@dataclass
class ProcessStats:
    """Counters for one drain or recovery pass."""

    processed: int = 0
    failed: int = 0
    dead_lettered: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "dead_lettered": self.dead_lettered,
        }


@dataclass
class _Pending:
    event: Event
    attempts: int = 0
    persisted: bool = False
    delivered: int = 0
    # handlers still owed this event; None until the first delivery
    remaining: list[Handler] | None = None


class RuntimeBus:
    """Single-process event bus with at-least-once delivery."""

    def __init__(
        self,
        store: EventStore | None = None,
        max_retries: int = 3,
        retry_base_delay_ms: int = 100,
        retry_max_delay_ms: int = 5000,
        retry_jitter: float = 0.1,
    ):
        self.store = store or EventStore()
        self.max_retries = max_retries
        self.retry_base_delay_ms = retry_base_delay_ms
        self.retry_max_delay_ms = retry_max_delay_ms
        self.retry_jitter = retry_jitter
        self.dead_letters: list[Event] = []
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._queue: deque[_Pending] = deque()
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="runtime_bus")

    def on(self, event_type: str, handler: Handler) -> None:
        """Subscribe ``handler`` to ``event_type`` (``"*"`` for every type)."""
        self._handlers[event_type].append(handler)

    def off(self, event_type: str, handler: Handler) -> bool:
        """Unsubscribe; returns False when the handler was not registered."""
        handlers = self._handlers.get(event_type, [])
        if handler not in handlers:
            return False
        handlers.remove(handler)
        return True

    @property
    def pending(self) -> int:
        return len(self._queue)

    def retry_delay_ms(self, attempt: int) -> float:
        """
        Backoff before retry number ``attempt`` (1-based).

        Doubles from ``retry_base_delay_ms``, capped at ``retry_max_delay_ms``,
        then spread by up to ``retry_jitter`` of itself in either direction.
        """
        delay = min(self.retry_base_delay_ms * 2 ** (attempt - 1), self.retry_max_delay_ms)
        if self.retry_jitter:
            delay += delay * self.retry_jitter * (random.random() * 2 - 1)
        return max(0.0, delay)

    def _in_delivery(self) -> bool:
        return id(self) in _delivering.get() and self._lock.locked()

    def _new_event(
        self,
        event_type: str,
        payload: dict[str, Any] | None,
        correlation_id: str | None,
    ) -> Event:
        return Event(
            type=event_type,
            data=dict(payload or {}),
            id=generate_id("evt"),
            timestamp=now_ms(),
            correlation_id=correlation_id,
        )

    def emit(
        self,
        event_type: str,
        payload: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> Event:
        """Queue an event for the next ``process`` call and return it."""
        event = self._new_event(event_type, payload, correlation_id)
        self._queue.append(_Pending(event=event))
        return event

    async def emit_async(
        self,
        event_type: str,
        payload: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> EmitResult:
        """Persist and deliver an event now, after anything already queued."""
        if self._in_delivery():
            return await self._emit_from_handler(event_type, payload, correlation_id)

        async with self._lock:
            await self._drain(ProcessStats())

            pending = _Pending(event=self._new_event(event_type, payload, correlation_id))
            await self._dispatch(pending, ProcessStats())

            # events the handlers emitted
            await self._drain(ProcessStats())

        return EmitResult(
            event=pending.event,
            delivered=pending.delivered,
            failed=len(pending.remaining or []),
            persisted=pending.persisted,
        )

    async def _emit_from_handler(
        self,
        event_type: str,
        payload: dict[str, Any] | None,
        correlation_id: str | None,
    ) -> EmitResult:
        # queued events go to the store first so sequences follow emission order
        for queued in list(self._queue):
            if not queued.persisted:
                await self._persist(queued)
        pending = _Pending(event=self._new_event(event_type, payload, correlation_id))
        await self._persist(pending)
        self._queue.append(pending)
        self.logger.debug("event_queued_from_handler", event_id=pending.event.id, event_type=event_type)
        return EmitResult(event=pending.event, persisted=pending.persisted, queued=True)

    async def process(self) -> ProcessStats:
        """Drain the queue built by ``emit``."""
        stats = ProcessStats()
        if self._in_delivery():
            # the delivering call drains the queue once the handler returns
            return stats

        async with self._lock:
            await self._drain(stats)
        if stats.processed or stats.failed:
            self.logger.debug("queue_processed", **stats.to_dict())
        return stats

    async def recover(self, since_timestamp: int = 0, batch_size: int = 100) -> ProcessStats:
        """
        Redeliver events the store still holds as unprocessed.

        Used after a crash. Events whose handlers fail again stay
        unprocessed for the next recovery pass.
        """
        stats = ProcessStats()
        if self._in_delivery():
            self.logger.warning("recover_skipped_inside_handler")
            return stats

        async with self._lock:
            async for batch in self.store.iter_replay(
                since_timestamp, only_unprocessed=True, batch_size=batch_size
            ):
                for event in batch:
                    pending = _Pending(event=event, persisted=True)
                    if await self._deliver(pending):
                        stats.failed += 1
                        continue
                    await self._ack(pending)
                    stats.processed += 1
            await self._drain(ProcessStats())

        self.logger.info("events_recovered", since_timestamp=since_timestamp, **stats.to_dict())
        return stats

    async def cleanup(self) -> int:
        """
        Drain remaining events, drop handlers and queue, sweep the store.

        Returns:
            Number of events removed by the retention sweep
        """
        await self.process()
        self._handlers.clear()
        self._queue.clear()
        removed = await self.store.sweep()
        self.logger.info("bus_cleaned_up", swept=removed, dead_letters=len(self.dead_letters))
        return removed

    async def _drain(self, stats: ProcessStats) -> None:
        while self._queue:
            await self._dispatch(self._queue.popleft(), stats)

    async def _dispatch(self, pending: _Pending, stats: ProcessStats) -> None:
        if not pending.persisted:
            await self._persist(pending)

        while await self._deliver(pending):
            stats.failed += 1
            pending.attempts += 1
            if pending.attempts > self.max_retries:
                self.dead_letters.append(pending.event)
                stats.dead_lettered += 1
                self.logger.warning(
                    "event_dead_lettered",
                    event_id=pending.event.id,
                    event_type=pending.event.type,
                    attempts=pending.attempts,
                )
                return

            delay_ms = self.retry_delay_ms(pending.attempts)
            self.logger.info(
                "event_retry_scheduled",
                event_id=pending.event.id,
                attempt=pending.attempts,
                delay_ms=round(delay_ms),
            )
            if delay_ms:
                await asyncio.sleep(delay_ms / 1000)

        await self._ack(pending)
        stats.processed += 1

    async def _persist(self, pending: _Pending) -> None:
        try:
            await self.store.append(pending.event)
            pending.persisted = True
        except StorageError as e:
            self.logger.error(
                "event_persist_failed",
                event_id=pending.event.id,
                event_type=pending.event.type,
                error=str(e),
            )

    async def _deliver(self, pending: _Pending) -> int:
        """Run the handlers still owed ``pending``; returns how many failed."""
        event = pending.event
        if pending.remaining is None:
            pending.remaining = list(self._handlers.get(event.type, [])) + list(
                self._handlers.get(ALL_EVENTS, [])
            )
        handlers = pending.remaining
        if not handlers:
            return 0

        token = _delivering.set(_delivering.get() + (id(self),))
        try:
            outcomes = await asyncio.gather(*(self._call(handler, event) for handler in handlers))
        finally:
            _delivering.reset(token)

        pending.remaining = [handler for handler, ok in zip(handlers, outcomes) if not ok]
        pending.delivered += len(handlers) - len(pending.remaining)
        return len(pending.remaining)

    async def _call(self, handler: Handler, event: Event) -> bool:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
            return True
        except Exception as e:
            self.logger.error(
                "event_handler_failed",
                event_id=event.id,
                event_type=event.type,
                handler=getattr(handler, "__name__", repr(handler)),
                error=str(e),
            )
            return False

    async def _ack(self, pending: _Pending) -> None:
        if not pending.persisted:
            return
        try:
            await self.store.mark_processed(pending.event.id)
        except StorageError as e:
            self.logger.error("event_ack_failed", event_id=pending.event.id, error=str(e))
