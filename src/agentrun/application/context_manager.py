"""
Context / Session Manager
=========================

Per-tenant sessions, execution snapshots and key/value memory over three
record stores (one per collection) built from a single ContextStoreConfig.

Responsibilities:
- Create, read and update sessions; append execution history
- Store and load snapshots keyed by correlation id
- Remember / recall memory entries
- Physically evict expired records from a background cleanup task

Every record is keyed by ``(tenant_id, id)``: a lookup scoped to one tenant
never sees another tenant's records, even with identical ids. Reads never
return expired records, whether or not cleanup has run yet.

Storage errors propagate as StorageError; callers decide whether a path is
critical.
"""

import asyncio
import weakref
from collections.abc import Callable
from typing import Any

import structlog

from agentrun.core.domain.models import Session, Step, StoredRecord
from agentrun.core.errors import StorageError
from agentrun.core.interfaces.storage import RecordStoreProtocol
from agentrun.core.utils import generate_id, now_ms
from agentrun.infrastructure.persistence.config import ContextStoreConfig
from agentrun.infrastructure.persistence.factory import create_record_store

logger = structlog.get_logger()


class ContextManager:
    """
    Session, snapshot and memory persistence for the orchestrator.

    Example:
        >>> manager = ContextManager(ContextStoreConfig(), tenant_id="acme")
        >>> session = await manager.create_session()
        >>> await manager.append_history(session, steps)
        >>> history = await manager.load_execution_history(session.id)
    """

    def __init__(
        self,
        config: ContextStoreConfig | None = None,
        tenant_id: str = "default",
        clock: Callable[[], int] = now_ms,
        sessions: RecordStoreProtocol | None = None,
        snapshots: RecordStoreProtocol | None = None,
        memory: RecordStoreProtocol | None = None,
    ):
        self.config = config or ContextStoreConfig()
        self.tenant_id = tenant_id
        self._clock = clock
        names = self.config.collections
        self.sessions = sessions or create_record_store(self.config, names.sessions, clock)
        self.snapshots = snapshots or create_record_store(self.config, names.snapshots, clock)
        self.memory = memory or create_record_store(self.config, names.memory, clock)
        self._cleanup_task: asyncio.Task | None = None
        self._session_locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self.logger = logger.bind(component="context_manager", backend=self.config.type)

    def _tenant(self, tenant_id: str | None) -> str:
        return tenant_id or self.tenant_id

    # Sessions

    async def create_session(
        self,
        tenant_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> Session:
        now = self._clock()
        session = Session(
            id=session_id or generate_id("sess"),
            tenant_id=self._tenant(tenant_id),
            created_at=now,
            updated_at=now,
            ttl_ms=self.config.ttl_ms,
            metadata=dict(metadata or {}),
        )
        await self.sessions.put(session.to_record())
        self.logger.info("session_created", session_id=session.id, tenant_id=session.tenant_id)
        return session

    async def get_session_state(
        self, session_id: str, tenant_id: str | None = None
    ) -> Session | None:
        """Return the live session for this tenant, or None."""
        record = await self.sessions.get(self._tenant(tenant_id), session_id)
        return Session.from_record(record) if record else None

    async def update_session(self, session: Session) -> Session:
        session.updated_at = self._clock()
        await self.sessions.put(session.to_record())
        self.logger.debug(
            "session_updated", session_id=session.id, history=len(session.history)
        )
        return session

    def _session_lock(self, session: Session) -> asyncio.Lock:
        key = (session.tenant_id, session.id)
        lock = self._session_locks.get(key)
        if lock is None:
            lock = self._session_locks[key] = asyncio.Lock()
        return lock

    async def append_history(self, session: Session, steps: list[Step]) -> Session:
        """
        Append steps to the stored session history and persist it.

        Appends to one session are serialized and start from the stored
        history, so concurrent runs on the same session all keep their
        steps. ``session`` is refreshed with the stored history; its
        metadata is merged over the stored metadata.
        """
        async with self._session_lock(session):
            stored = await self.get_session_state(session.id, session.tenant_id)
            if stored is not None:
                stored.metadata.update(session.metadata)
                session.history = stored.history
                session.metadata = stored.metadata
            session.history.extend(steps)
            return await self.update_session(session)

    async def load_execution_history(
        self, session_id: str, tenant_id: str | None = None
    ) -> list[Step]:
        session = await self.get_session_state(session_id, tenant_id)
        return list(session.history) if session else []

    # Snapshots

    async def store_snapshot(
        self,
        correlation_id: str,
        state: dict[str, Any],
        tenant_id: str | None = None,
    ) -> None:
        await self.snapshots.put(
            StoredRecord(
                tenant_id=self._tenant(tenant_id),
                id=correlation_id,
                payload=state,
                created_at=self._clock(),
                ttl_ms=self.config.ttl_ms,
            )
        )
        self.logger.debug("snapshot_stored", correlation_id=correlation_id)

    async def load_snapshot(
        self, correlation_id: str, tenant_id: str | None = None
    ) -> dict[str, Any] | None:
        record = await self.snapshots.get(self._tenant(tenant_id), correlation_id)
        return record.payload if record else None

    # Memory

    async def remember(
        self,
        key: str,
        value: Any,
        tenant_id: str | None = None,
        ttl_ms: int | None = None,
    ) -> None:
        await self.memory.put(
            StoredRecord(
                tenant_id=self._tenant(tenant_id),
                id=key,
                payload={"key": key, "value": value},
                created_at=self._clock(),
                ttl_ms=ttl_ms,
            )
        )

    async def recall(self, key: str, tenant_id: str | None = None) -> Any | None:
        record = await self.memory.get(self._tenant(tenant_id), key)
        return record.payload.get("value") if record else None

    async def list_memories(
        self, limit: int | None = None, tenant_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Return memory entries, newest first, as ``{key, value, created_at}``."""
        records = await self.memory.list(self._tenant(tenant_id), limit)
        return [
            {"key": r.id, "value": r.payload.get("value"), "created_at": r.created_at}
            for r in records
        ]

    # Cleanup

    async def cleanup(self) -> dict[str, int]:
        """Delete expired records from every collection; returns counts per collection."""
        now = self._clock()
        removed = {
            "sessions": await self.sessions.delete_expired(now),
            "snapshots": await self.snapshots.delete_expired(now),
            "memory": await self.memory.delete_expired(now),
        }
        if any(removed.values()):
            self.logger.info("expired_records_removed", **removed)
        return removed

    async def _cleanup_loop(self) -> None:
        interval = self.config.cleanup_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                await self.cleanup()
            except StorageError as e:
                self.logger.error("cleanup_failed", error=str(e))

    def start(self) -> None:
        """Start the background cleanup task (idempotent)."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            self.logger.info(
                "cleanup_started", interval_ms=self.config.cleanup_interval_ms
            )

    async def stop(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None
        self.logger.info("cleanup_stopped")

    @property
    def running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    async def close(self) -> None:
        await self.stop()
        for store in (self.sessions, self.snapshots, self.memory):
            await store.close()
