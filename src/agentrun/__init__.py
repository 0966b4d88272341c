"""
agentrun - agent execution runtime.

Drives bounded ReAct / ReWoo loops against an opaque reasoning backend,
records every lifecycle transition as a replayable event and keeps
per-tenant session state on in-memory, MongoDB or Redis backends.
"""

from agentrun.application.config import OrchestratorConfig, load_profile
from agentrun.application.context_manager import ContextManager
from agentrun.application.orchestrator import Orchestrator
from agentrun.core.domain.models import (
    AgentExecutionResult,
    AgentIdentity,
    AgentSpec,
    ToolContext,
    ToolDefinition,
)
from agentrun.core.errors import (
    AgentRuntimeError,
    ConfigurationError,
    ExecutionTimeoutError,
    PlanningError,
    StorageError,
    ToolExecutionError,
)
from agentrun.runtime.bus import RuntimeBus
from agentrun.runtime.event_store import EventStore

__version__ = "0.1.0"

__all__ = [
    "AgentExecutionResult",
    "AgentIdentity",
    "AgentRuntimeError",
    "AgentSpec",
    "ConfigurationError",
    "ContextManager",
    "EventStore",
    "ExecutionTimeoutError",
    "Orchestrator",
    "OrchestratorConfig",
    "PlanningError",
    "RuntimeBus",
    "StorageError",
    "ToolContext",
    "ToolDefinition",
    "ToolExecutionError",
    "load_profile",
]
