"""
Persistence Protocols

Two narrow contracts cover all shared state in the runtime:
- RecordStoreProtocol: tenant-scoped keyed upsert with TTL (sessions,
  snapshots, memory)
- EventLogProtocol: append-only event log with processed tracking
"""

from typing import Protocol

from agentrun.core.domain.events import Event
from agentrun.core.domain.models import StoredRecord


class RecordStoreProtocol(Protocol):
    """Tenant-isolated record storage keyed by ``(tenant_id, id)``."""

    async def put(self, record: StoredRecord) -> None:
        ...

    async def get(self, tenant_id: str, record_id: str) -> StoredRecord | None:
        """Return the record, or None when absent or expired."""
        ...

    async def delete(self, tenant_id: str, record_id: str) -> bool:
        ...

    async def list(self, tenant_id: str, limit: int | None = None) -> list[StoredRecord]:
        """Return live records for one tenant, newest first."""
        ...

    async def delete_expired(self, now: int) -> int:
        """Physically remove expired records; returns how many were removed."""
        ...

    async def close(self) -> None:
        ...


class EventLogProtocol(Protocol):
    """Storage behind the EventStore."""

    async def insert(self, event: Event) -> None:
        ...

    async def get(self, event_id: str) -> Event | None:
        ...

    async def query(
        self,
        since_timestamp: int,
        after: tuple[int, int] | None,
        only_unprocessed: bool,
        limit: int,
    ) -> list[Event]:
        """
        Return events with ``timestamp >= since_timestamp`` ordered by
        ``(timestamp, sequence)``, strictly after the ``after`` position.
        """
        ...

    async def set_processed(self, event_id: str) -> bool:
        """Mark processed; returns False when the event does not exist."""
        ...

    async def count(self, only_unprocessed: bool = False) -> int:
        ...

    async def timestamp_bounds(self) -> tuple[int | None, int | None]:
        ...

    async def last_sequence(self) -> int:
        ...

    async def delete_before(self, timestamp: int) -> int:
        ...

    async def delete_oldest(self, count: int) -> int:
        ...

    async def close(self) -> None:
        ...
