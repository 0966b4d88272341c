"""
Runtime Error Taxonomy

All errors raised by the runtime derive from AgentRuntimeError so callers can
catch the whole family in one place:
- ConfigurationError: invalid or missing setup (unknown agent, bad tool schema)
- ToolExecutionError: a tool raised or returned an error payload
- PlanningError: reasoning output unparsable after bounded correction retries
- ExecutionTimeoutError: wall-clock budget exceeded
- StorageError: backend unreachable or write rejected
"""

from typing import Any


class AgentRuntimeError(Exception):
    """Base class for all runtime errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def describe(self) -> str:
        """Return '<ErrorClass>: <message>' as surfaced in execution results."""
        return f"{type(self).__name__}: {self.message}"


class ConfigurationError(AgentRuntimeError):
    """Invalid or missing required setup."""


class ToolExecutionError(AgentRuntimeError):
    """A tool threw, failed input validation, timed out or returned an error payload."""

    def __init__(
        self,
        message: str,
        tool_name: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.tool_name = tool_name


class PlanningError(AgentRuntimeError):
    """Reasoning backend output could not be parsed after all correction attempts."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.attempts = attempts


class ExecutionTimeoutError(AgentRuntimeError, TimeoutError):
    """The run's wall-clock deadline expired."""


class StorageError(AgentRuntimeError):
    """A persistence backend is unreachable or rejected an operation."""

    def __init__(
        self,
        message: str,
        operation: str = "unknown",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.operation = operation
