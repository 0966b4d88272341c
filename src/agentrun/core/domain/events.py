"""
Domain Events for Agent Execution

This module defines the facts produced while an agent runs:
- Thought: the reasoning backend's decision for the next move
- Action: the specific action to be executed (tool call or final answer)
- Observation: the result of executing an action
- Event: the persisted, replayable record emitted on every lifecycle transition

Thought/Action/Observation form the backbone of the ReAct loop; Event is what
the runtime bus appends to the event store.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class ActionType(str, Enum):
    """Type of action the agent can take."""

    TOOL_CALL = "tool_call"
    FINAL_ANSWER = "final_answer"


@dataclass
class Action:
    """
    An action to be executed by the agent.

    The action type determines which fields are relevant:
    - tool_call: requires tool_name and input
    - final_answer: requires content

    Attributes:
        type: Type of action (tool_call, final_answer)
        tool_name: Tool name to execute (for tool_call)
        input: Parameters for tool execution (for tool_call)
        content: Final answer (for final_answer)
    """

    type: ActionType
    tool_name: str | None = None
    input: dict[str, Any] = field(default_factory=dict)
    content: Any = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Action":
        data = dict(data)
        data["type"] = ActionType(data["type"])
        data["input"] = data.get("input") or {}
        return cls(**data)


@dataclass
class Thought:
    """
    Reasoning about the current step.

    Attributes:
        reasoning: Brief explanation of the decision
        action: The action decided upon
    """

    reasoning: str
    action: Action

    def to_dict(self) -> dict[str, Any]:
        return {"reasoning": self.reasoning, "action": self.action.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Thought":
        return cls(
            reasoning=data.get("reasoning", ""),
            action=Action.from_dict(data["action"]),
        )


@dataclass
class Observation:
    """
    Result of executing an action.

    Attributes:
        success: Whether the action succeeded
        output: Result data from action execution
        error: Error message if action failed
        latency_ms: Time spent executing the action
    """

    success: bool
    output: Any = None
    error: str | None = None
    latency_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Observation":
        return cls(**data)


class EventType:
    """Event type names emitted by the runtime."""

    AGENT_STARTED = "agent.started"
    AGENT_COMPLETED = "agent.completed"
    AGENT_FAILED = "agent.failed"
    STEP_COMPLETED = "step.completed"
    TOOL_CALLED = "tool.called"
    TOOL_RESULT = "tool.result"
    TOOL_ERROR = "tool.error"
    PLAN_CREATED = "plan.created"
    SESSION_CREATED = "session.created"


@dataclass
class Event:
    """
    A persisted runtime event.

    Immutable once appended except for ``processed``, which the store sets
    exactly once after successful handling. ``sequence`` is assigned by the
    store and breaks timestamp ties during replay.
    """

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    timestamp: int | None = None
    correlation_id: str | None = None
    processed: bool = False
    sequence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        return cls(
            type=data["type"],
            data=data.get("data") or {},
            id=data.get("id"),
            timestamp=data.get("timestamp"),
            correlation_id=data.get("correlation_id"),
            processed=bool(data.get("processed", False)),
            sequence=int(data.get("sequence", 0)),
        )
