"""
Base Strategy

Shared machinery for the execution strategies:
- Wall-clock deadline enforcement around every reasoning and tool await
- Tool invocation with JSON Schema input validation and per-tool timeout
- Lifecycle events on the runtime bus
- Conversion of runtime errors into a failed ExecutionResult
"""

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import Any, TypeVar

import jsonschema
import structlog

from agentrun.core.domain.events import EventType, Observation
from agentrun.core.domain.models import (
    ExecutionContext,
    ExecutionResult,
    Step,
    StrategyKind,
    ToolContext,
)
from agentrun.core.errors import AgentRuntimeError, ExecutionTimeoutError, ToolExecutionError
from agentrun.core.interfaces.llm import ReasoningAdapterProtocol
from agentrun.core.interfaces.tools import ToolProtocol
from agentrun.core.utils import generate_id
from agentrun.runtime.bus import RuntimeBus

T = TypeVar("T")


class BaseStrategy(ABC):
    """Common contract: ``await strategy.execute(context) -> ExecutionResult``."""

    kind: StrategyKind

    def __init__(
        self,
        reasoning_adapter: ReasoningAdapterProtocol,
        bus: RuntimeBus | None = None,
    ):
        self.reasoning_adapter = reasoning_adapter
        self.bus = bus
        self.logger = structlog.get_logger().bind(component=f"{self.kind.value}_strategy")

    async def execute(self, context: ExecutionContext) -> ExecutionResult:
        """
        Run the strategy to completion.

        Never raises AgentRuntimeError: planning failures, deadline expiry and
        exhausted error budgets come back as ``success=False`` with the error
        rendered as ``"<ErrorClass>: <message>"`` and the steps recorded so far.
        """
        if context.run.timeout_ms is None and context.config.max_execution_time_ms:
            context.run.timeout_ms = context.config.max_execution_time_ms

        started = time.monotonic()
        steps: list[Step] = []
        self.logger.info(
            "strategy_started",
            correlation_id=context.correlation_id,
            tools=len(context.tools),
            input=context.input[:100],
        )

        try:
            result = await self._run(context, steps)
        except AgentRuntimeError as e:
            self.logger.error(
                "strategy_failed",
                correlation_id=context.correlation_id,
                error_type=type(e).__name__,
                error=e.message,
                steps=len(steps),
            )
            result = ExecutionResult(
                success=False,
                output=None,
                error=e.describe(),
                steps=steps,
                metadata={"error_type": type(e).__name__},
            )

        result.execution_time_ms = int((time.monotonic() - started) * 1000)
        result.metadata.setdefault("strategy", self.kind.value)
        self.logger.info(
            "strategy_finished",
            correlation_id=context.correlation_id,
            success=result.success,
            steps=len(result.steps),
            execution_time_ms=result.execution_time_ms,
        )
        return result

    @abstractmethod
    async def _run(self, context: ExecutionContext, steps: list[Step]) -> ExecutionResult:
        """Strategy body; append every recorded step to ``steps`` as it happens."""

    async def _bounded(self, awaitable: Awaitable[T], context: ExecutionContext) -> T:
        """Await within the run's remaining wall-clock budget."""
        remaining = context.run.remaining_ms()
        if remaining is None:
            return await awaitable
        if remaining <= 0:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise self._timeout_error(context)
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining / 1000)
        except TimeoutError as e:
            if isinstance(e, AgentRuntimeError):
                raise
            raise self._timeout_error(context) from e

    @staticmethod
    def _timeout_error(context: ExecutionContext) -> ExecutionTimeoutError:
        return ExecutionTimeoutError(
            f"Run {context.correlation_id} exceeded its deadline of {context.run.timeout_ms} ms",
            details={"elapsed_ms": context.run.elapsed_ms()},
        )

    async def _reason(self, prompt: str, context: ExecutionContext) -> str | dict[str, Any]:
        """One deadline-bounded call to the reasoning backend."""
        return await self._bounded(
            self.reasoning_adapter.invoke(prompt, {"response_format": "json"}),
            context,
        )

    def _emit(self, event_type: str, data: dict[str, Any], context: ExecutionContext) -> None:
        if self.bus is not None:
            self.bus.emit(event_type, data, correlation_id=context.correlation_id)

    def _record(self, step: Step, steps: list[Step], context: ExecutionContext) -> None:
        steps.append(step)
        self._emit(
            EventType.STEP_COMPLETED,
            {"step_id": step.id, "step_type": step.type.value, "index": len(steps)},
            context,
        )

    async def _invoke_tool(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        context: ExecutionContext,
    ) -> Observation:
        """
        Invoke a tool and fold any tool failure into the observation.

        ExecutionTimeoutError is not folded: it aborts the run.
        """
        call_id = generate_id("call")
        started = time.monotonic()
        self._emit(
            EventType.TOOL_CALLED,
            {"tool_name": tool_name, "call_id": call_id, "input": tool_input},
            context,
        )
        self.logger.info("tool_execution_start", tool=tool_name, call_id=call_id)

        try:
            output = await self._bounded(
                self._run_tool(tool_name, tool_input, context, call_id), context
            )
        except ToolExecutionError as e:
            latency_ms = int((time.monotonic() - started) * 1000)
            self.logger.warning(
                "tool_execution_failed", tool=tool_name, call_id=call_id, error=e.message
            )
            self._emit(
                EventType.TOOL_ERROR,
                {"tool_name": tool_name, "call_id": call_id, "error": e.describe()},
                context,
            )
            return Observation(success=False, error=e.describe(), latency_ms=latency_ms)

        latency_ms = int((time.monotonic() - started) * 1000)
        self.logger.info(
            "tool_execution_end", tool=tool_name, call_id=call_id, latency_ms=latency_ms
        )
        self._emit(
            EventType.TOOL_RESULT,
            {"tool_name": tool_name, "call_id": call_id, "latency_ms": latency_ms},
            context,
        )
        return Observation(success=True, output=output, latency_ms=latency_ms)

    async def _run_tool(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        context: ExecutionContext,
        call_id: str,
    ) -> Any:
        tool: ToolProtocol | None = context.get_tool(tool_name)
        if tool is None:
            raise ToolExecutionError(f"Tool not found: {tool_name}", tool_name)

        try:
            jsonschema.validate(tool_input, tool.input_schema)
        except jsonschema.ValidationError as e:
            raise ToolExecutionError(
                f"Invalid input for tool {tool_name}: {e.message}", tool_name
            ) from e

        tool_context = ToolContext(
            tool_name=tool_name,
            call_id=call_id,
            correlation_id=context.correlation_id,
            tenant_id=context.run.tenant_id,
            metadata={"agent_name": context.run.agent_name},
        )
        timeout_ms = context.config.tool_timeout_ms

        try:
            if timeout_ms:
                output = await asyncio.wait_for(
                    tool.invoke(tool_input, tool_context), timeout=timeout_ms / 1000
                )
            else:
                output = await tool.invoke(tool_input, tool_context)
        except (ToolExecutionError, ExecutionTimeoutError):
            raise
        except TimeoutError as e:
            raise ToolExecutionError(
                f"Tool {tool_name} timed out after {timeout_ms} ms", tool_name
            ) from e
        except Exception as e:
            raise ToolExecutionError(f"Tool {tool_name} failed: {e}", tool_name) from e

        if isinstance(output, dict) and output.get("success") is False:
            raise ToolExecutionError(
                str(output.get("error") or f"Tool {tool_name} reported failure"),
                tool_name,
                details=output,
            )
        return output
