"""Build persistence backends from their configuration."""

from collections.abc import Callable

import structlog

from agentrun.core.interfaces.storage import EventLogProtocol, RecordStoreProtocol
from agentrun.core.utils import now_ms
from agentrun.infrastructure.persistence.config import ContextStoreConfig, EventStoreConfig
from agentrun.infrastructure.persistence.memory_store import InMemoryEventLog, InMemoryRecordStore

logger = structlog.get_logger().bind(component="persistence_factory")


def create_record_store(
    config: ContextStoreConfig,
    collection: str,
    clock: Callable[[], int] = now_ms,
) -> RecordStoreProtocol:
    """Create a record store for one collection of a context store config."""
    logger.debug("creating_record_store", type=config.type, collection=collection)

    if config.type == "memory":
        return InMemoryRecordStore(collection, max_items=config.max_items, clock=clock)

    if config.type == "mongodb":
        from agentrun.infrastructure.persistence.mongo_store import MongoRecordStore

        return MongoRecordStore(
            connection_string=config.connection_string,
            database=config.database,
            collection=collection,
            enable_compression=config.enable_compression,
            clock=clock,
        )

    if config.type == "redis":
        from agentrun.infrastructure.persistence.redis_store import RedisRecordStore

        return RedisRecordStore(
            connection_string=config.connection_string,
            collection=collection,
            key_prefix=config.key_prefix,
            enable_compression=config.enable_compression,
            clock=clock,
        )

    raise ValueError(f"Unknown storage type: {config.type}")


def create_event_log(config: EventStoreConfig) -> EventLogProtocol:
    """Create the event log behind an EventStore."""
    logger.debug("creating_event_log", type=config.type)

    if config.type == "memory":
        return InMemoryEventLog()

    if config.type == "mongodb":
        from agentrun.infrastructure.persistence.mongo_store import MongoEventLog

        return MongoEventLog(
            connection_string=config.connection_string,
            database=config.database,
            collection=config.collection,
        )

    raise ValueError(f"Unknown event store type: {config.type}")
