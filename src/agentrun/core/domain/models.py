"""
Core Domain Models

This module defines the data models used throughout the runtime: execution
steps and results, ReWoo evidence, stop conditions, strategy configuration,
tool and agent definitions, and the persisted session/record shapes.
"""

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from agentrun.core.domain.events import Action, Observation, Thought
from agentrun.core.domain.run_context import RunContext
from agentrun.core.utils import generate_id, now_ms


class StrategyKind(str, Enum):
    """Closed set of execution strategies."""

    REACT = "react"
    REWOO = "rewoo"


class StepType(str, Enum):
    """Kind of a recorded step."""

    THINK = "think"
    ACT = "act"
    OBSERVE = "observe"
    PLAN = "plan"
    EXECUTE = "execute"
    SYNTHESIZE = "synthesize"


@dataclass
class Step:
    """
    One record per strategy iteration.

    For ReAct the type is the last phase the iteration reached: ``observe``
    for a completed tool round trip, ``act`` for a final answer and ``think``
    when the iteration was cut short after reasoning.
    """

    type: StepType
    thought: Thought | None = None
    action: Action | None = None
    result: Observation | None = None
    id: str = field(default_factory=lambda: generate_id("step"))
    timestamp: int = field(default_factory=now_ms)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "thought": self.thought.to_dict() if self.thought else None,
            "action": self.action.to_dict() if self.action else None,
            "result": self.result.to_dict() if self.result else None,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Step":
        return cls(
            type=StepType(data["type"]),
            thought=Thought.from_dict(data["thought"]) if data.get("thought") else None,
            action=Action.from_dict(data["action"]) if data.get("action") else None,
            result=Observation.from_dict(data["result"]) if data.get("result") else None,
            id=data.get("id") or generate_id("step"),
            timestamp=data.get("timestamp") or now_ms(),
            metadata=data.get("metadata") or {},
        )


@dataclass
class Evidence:
    """Output of one executed ReWoo plan step."""

    id: str
    sketch_id: str
    tool_name: str
    input: dict[str, Any]
    output: Any = None
    latency_ms: int = 0
    success: bool = True
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StopState:
    """Counters handed to stop conditions after every step."""

    turns: int
    tool_calls: int
    elapsed_ms: int
    steps: list[Step]
    plan_steps: int = 0


StopPredicate = Callable[[StopState], bool | Awaitable[bool]]


@dataclass
class StopConditions:
    """
    Budgets evaluated after every step.

    ``max_turns`` applies to ReAct, ``max_plan_steps`` to ReWoo. Limits set to
    None are not enforced.
    """

    max_turns: int | None = 10
    max_plan_steps: int | None = 15
    max_tool_calls: int | None = 20
    max_time_ms: int | None = None
    custom_conditions: list[StopPredicate] = field(default_factory=list)


@dataclass
class StrategyConfig:
    """Per-run strategy settings resolved by the orchestrator."""

    stop_conditions: StopConditions = field(default_factory=StopConditions)
    max_execution_time_ms: int | None = None
    concurrency_limit: int = 4
    error_budget: int | None = 5
    max_correction_attempts: int = 2
    tool_timeout_ms: int | None = None


@dataclass
class ToolContext:
    """Context handed to a tool when it is executed."""

    tool_name: str
    call_id: str
    correlation_id: str | None = None
    tenant_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolDefinition:
    """
    A callable tool with a JSON Schema input contract.

    ``execute`` receives the validated input dict and a ToolContext; it may be
    a coroutine function or a plain function.
    """

    name: str
    description: str
    input_schema: dict[str, Any]
    execute: Callable[[dict[str, Any], ToolContext], Any]
    categories: list[str] = field(default_factory=list)

    async def invoke(self, input: dict[str, Any], context: ToolContext) -> Any:
        result = self.execute(input, context)
        if inspect.isawaitable(result):
            result = await result
        return result


@dataclass
class ExecutionContext:
    """Everything a strategy needs to run one agent call."""

    input: str
    tools: list[ToolDefinition]
    agent_context: dict[str, Any]
    config: StrategyConfig
    run: RunContext
    history: list[Step] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def correlation_id(self) -> str:
        return self.run.correlation_id

    def get_tool(self, name: str) -> ToolDefinition | None:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None


@dataclass
class ExecutionResult:
    """
    Result of one strategy execution.

    Attributes:
        success: Whether a final answer was produced within budgets
        output: The final answer (or partial organizer output)
        error: Error string when success is False
        steps: Steps recorded during this run, in order
        execution_time_ms: Wall-clock duration of the run
        metadata: strategy, complexity, tool_calls, stop_reason, ...
    """

    success: bool
    output: Any
    error: str | None = None
    steps: list[Step] = field(default_factory=list)
    execution_time_ms: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentExecutionResult:
    """Result returned to callers of Orchestrator.call_agent()."""

    success: bool
    result: Any
    duration_ms: int
    error: str | None = None
    steps: list[Step] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentIdentity:
    """Who the agent is; at least role or goal must be set."""

    role: str | None = None
    goal: str | None = None
    expertise: list[str] = field(default_factory=list)
    description: str | None = None


@dataclass
class AgentSpec:
    """
    Agent registration request.

    ``planner`` is ``react``, ``rewoo`` or ``auto``; None means the
    orchestrator's default planner. ``tools`` restricts the agent to named
    tools; None grants every registered tool.
    """

    name: str
    identity: AgentIdentity
    planner: str | None = None
    max_iterations: int | None = None
    tools: list[str] | None = None


@dataclass
class StoredRecord:
    """
    A tenant-scoped persisted record (session, snapshot or memory entry).

    ``ttl_ms`` of None means the record never expires.
    """

    tenant_id: str
    id: str
    payload: dict[str, Any]
    created_at: int = field(default_factory=now_ms)
    ttl_ms: int | None = None

    @property
    def expires_at(self) -> int | None:
        if self.ttl_ms is None:
            return None
        return self.created_at + self.ttl_ms

    def is_expired(self, now: int) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and expires_at < now


@dataclass
class Session:
    """Per-tenant conversation state that grows as runs append history."""

    id: str
    tenant_id: str
    created_at: int = field(default_factory=now_ms)
    ttl_ms: int | None = None
    history: list[Step] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    status: str = "active"
    updated_at: int = field(default_factory=now_ms)

    def to_record(self) -> StoredRecord:
        return StoredRecord(
            tenant_id=self.tenant_id,
            id=self.id,
            payload={
                "history": [step.to_dict() for step in self.history],
                "metadata": self.metadata,
                "status": self.status,
                "updated_at": self.updated_at,
            },
            created_at=self.created_at,
            ttl_ms=self.ttl_ms,
        )

    @classmethod
    def from_record(cls, record: StoredRecord) -> "Session":
        payload = record.payload
        return cls(
            id=record.id,
            tenant_id=record.tenant_id,
            created_at=record.created_at,
            ttl_ms=record.ttl_ms,
            history=[Step.from_dict(s) for s in payload.get("history", [])],
            metadata=payload.get("metadata", {}),
            status=payload.get("status", "active"),
            updated_at=payload.get("updated_at", record.created_at),
        )


@dataclass
class EventStoreStats:
    """Derived event store statistics, recomputed on demand."""

    total_stored_events: int
    unprocessed_events: int
    oldest_event_timestamp: int | None
    newest_event_timestamp: int | None
