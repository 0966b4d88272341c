"""
Persistence configuration.

One explicit struct per persistence concern, with every default resolved at
construction and validated fail-fast by pydantic. Nothing downstream needs to
null-check optional settings.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

BackendType = Literal["memory", "mongodb", "redis"]


class CollectionNames(BaseModel):
    """Collection (or key namespace) names per record kind."""

    model_config = ConfigDict(extra="forbid")

    sessions: str = "sessions"
    snapshots: str = "snapshots"
    memory: str = "memory"


class ContextStoreConfig(BaseModel):
    """Backend settings for the context/session manager."""

    model_config = ConfigDict(extra="forbid")

    type: BackendType = "memory"
    connection_string: str | None = None
    database: str = "agentrun"
    collections: CollectionNames = Field(default_factory=CollectionNames)
    ttl_ms: int = Field(default=24 * 60 * 60 * 1000, gt=0)
    max_items: int = Field(default=10_000, gt=0)
    enable_compression: bool = False
    cleanup_interval_ms: int = Field(default=5 * 60 * 1000, ge=10)
    key_prefix: str = "agentrun"

    @model_validator(mode="after")
    def _require_connection_string(self) -> "ContextStoreConfig":
        if self.type != "memory" and not self.connection_string:
            raise ValueError(f"connection_string is required for '{self.type}' storage")
        return self


class EventStoreConfig(BaseModel):
    """Backend and retention settings for the event store."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["memory", "mongodb"] = "memory"
    connection_string: str | None = None
    database: str = "agentrun"
    collection: str = "events"
    max_stored_events: int = Field(default=100_000, gt=0)
    event_ttl_ms: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _require_connection_string(self) -> "EventStoreConfig":
        if self.type != "memory" and not self.connection_string:
            raise ValueError(f"connection_string is required for '{self.type}' event store")
        return self
