"""
Orchestrator Configuration

One pydantic model holds every runtime setting. Defaults are resolved at
construction and invalid values fail fast with ConfigurationError, so no
component has to null-check optional settings later.

Profiles are YAML files in a config directory (``configs/dev.yaml``,
``configs/prod.yaml``), loaded by name.
"""

from pathlib import Path
from typing import Any, Literal

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from agentrun.core.errors import ConfigurationError
from agentrun.infrastructure.persistence.config import (
    BackendType,
    CollectionNames,
    ContextStoreConfig,
    EventStoreConfig,
)

logger = structlog.get_logger().bind(component="config")


class PersistorConfig(BaseModel):
    """Default backend shared by sessions, snapshots and memory."""

    model_config = ConfigDict(extra="forbid")

    type: BackendType = "memory"
    connection_string: str | None = None
    database: str = "agentrun"
    ttl_ms: int = Field(default=24 * 60 * 60 * 1000, gt=0)
    max_snapshots: int = Field(default=10_000, gt=0)
    enable_compression: bool = False
    cleanup_interval_ms: int = Field(default=5 * 60 * 1000, ge=10)
    key_prefix: str = "agentrun"

    @model_validator(mode="after")
    def _require_connection_string(self) -> "PersistorConfig":
        if self.type != "memory" and not self.connection_string:
            raise ValueError(f"persistor.connection_string is required for '{self.type}'")
        return self


class StorageTarget(BaseModel):
    """Per-collection override of the persistor backend."""

    model_config = ConfigDict(extra="forbid")

    type: BackendType | None = None
    connection_string: str | None = None
    collection: str | None = None


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    memory: StorageTarget = Field(default_factory=StorageTarget)
    session: StorageTarget = Field(default_factory=StorageTarget)
    snapshot: StorageTarget = Field(default_factory=StorageTarget)


class StrategySettings(BaseModel):
    """Budgets and tuning shared by all strategies."""

    model_config = ConfigDict(extra="forbid")

    max_tool_calls: int = Field(default=20, gt=0)
    max_plan_steps: int = Field(default=15, gt=0)
    max_time_ms: int | None = Field(default=None, gt=0)
    concurrency_limit: int = Field(default=4, gt=0)
    error_budget: int | None = Field(default=5, ge=0)
    max_correction_attempts: int = Field(default=2, ge=0)
    complexity_threshold: int = Field(default=5, ge=0)
    history_weight_threshold: int = Field(default=10, ge=0)
    tool_timeout_ms: int | None = Field(default=None, gt=0)


class BusSettings(BaseModel):
    """Delivery retries for the runtime bus."""

    model_config = ConfigDict(extra="forbid")

    max_retries: int = Field(default=3, ge=0)
    retry_base_delay_ms: int = Field(default=100, ge=0)
    retry_max_delay_ms: int = Field(default=5000, ge=0)
    retry_jitter: float = Field(default=0.1, ge=0, le=1)


class OrchestratorConfig(BaseModel):
    """
    Complete runtime configuration.

    Example:
        >>> config = OrchestratorConfig(tenant_id="acme", default_planner="react")
        >>> config.context_store_config("session").collections.sessions
        'sessions'
    """

    model_config = ConfigDict(extra="forbid")

    tenant_id: str = Field(default="default", min_length=1)
    default_planner: Literal["react", "rewoo", "auto"] = "auto"
    default_max_iterations: int = Field(default=10, gt=0)
    default_timeout_ms: int | None = Field(default=30_000, gt=0)
    enable_observability: bool = True
    log_level: str | None = None
    log_format: Literal["json", "console"] = "console"
    persistor: PersistorConfig = Field(default_factory=PersistorConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    event_store: EventStoreConfig = Field(default_factory=EventStoreConfig)
    strategy: StrategySettings = Field(default_factory=StrategySettings)
    bus: BusSettings = Field(default_factory=BusSettings)

    def context_store_config(
        self, kind: Literal["session", "snapshot", "memory"] | None = None
    ) -> ContextStoreConfig:
        """
        Effective record store settings, merged from ``persistor`` and the
        ``storage.<kind>`` override (no override when ``kind`` is None).
        """
        base = self.persistor
        target = getattr(self.storage, kind) if kind else StorageTarget()
        backend = target.type or base.type
        connection_string = target.connection_string
        if connection_string is None and backend == base.type:
            connection_string = base.connection_string

        defaults = CollectionNames()
        collections = {
            "sessions": self.storage.session.collection or defaults.sessions,
            "snapshots": self.storage.snapshot.collection or defaults.snapshots,
            "memory": self.storage.memory.collection or defaults.memory,
        }
        try:
            return ContextStoreConfig(
                type=backend,
                connection_string=connection_string,
                database=base.database,
                collections=CollectionNames(**collections),
                ttl_ms=base.ttl_ms,
                max_items=base.max_snapshots,
                enable_compression=base.enable_compression,
                cleanup_interval_ms=base.cleanup_interval_ms,
                key_prefix=base.key_prefix,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid {kind or 'persistor'} storage settings: {e}") from e

    @classmethod
    def from_mapping(cls, data: dict[str, Any] | None) -> "OrchestratorConfig":
        """
        Build and validate a config from a plain mapping.

        Raises:
            ConfigurationError: If any field is invalid
        """
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid orchestrator configuration: {e}") from e


def load_profile(profile: str, config_dir: str | Path = "configs") -> OrchestratorConfig:
    """
    Load ``<config_dir>/<profile>.yaml`` into an OrchestratorConfig.

    Raises:
        ConfigurationError: If the profile is missing or invalid
    """
    profile_path = Path(config_dir) / f"{profile}.yaml"
    if not profile_path.exists():
        logger.error(
            "profile_not_found",
            profile=profile,
            path=str(profile_path),
            hint="Ensure profile YAML exists in configs directory",
        )
        raise ConfigurationError(f"Profile not found: {profile_path}")

    with open(profile_path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Profile {profile_path} is not valid YAML: {e}") from e

    logger.debug("profile_loaded", profile=profile, config_keys=list(data.keys()))
    return OrchestratorConfig.from_mapping(data)
