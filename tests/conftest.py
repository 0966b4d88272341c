"""Shared fixtures for the unit tests."""

import json
from typing import Any
from unittest.mock import AsyncMock

import pytest

from agentrun.core.domain.models import (
    ExecutionContext,
    StopConditions,
    StrategyConfig,
    ToolDefinition,
)
from agentrun.core.domain.run_context import RunContext


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 1_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_tool():
    """Factory for ToolDefinitions with a permissive default schema."""

    def _make(
        name: str = "search",
        execute=None,
        schema: dict[str, Any] | None = None,
        description: str = "Test tool",
    ) -> ToolDefinition:
        if execute is None:
            execute = AsyncMock(return_value={"result": f"{name} ok"})
        return ToolDefinition(
            name=name,
            description=description,
            input_schema=schema or {"type": "object"},
            execute=execute,
        )

    return _make


@pytest.fixture
def make_context():
    """Factory for ExecutionContexts around a fresh RunContext."""

    def _make(
        input: str = "What is the weather in Berlin?",
        tools: list[ToolDefinition] | None = None,
        config: StrategyConfig | None = None,
        timeout_ms: int | None = None,
        history=None,
    ) -> ExecutionContext:
        return ExecutionContext(
            input=input,
            tools=tools or [],
            agent_context={"agent_name": "tester", "identity": {"role": "Tester"}},
            config=config or StrategyConfig(stop_conditions=StopConditions()),
            run=RunContext(tenant_id="t1", agent_name="tester", timeout_ms=timeout_ms),
            history=history or [],
        )

    return _make


@pytest.fixture
def scripted_adapter():
    """Reasoning adapter mock answering with the given payloads in order."""

    def _make(*responses: Any) -> AsyncMock:
        adapter = AsyncMock()
        adapter.invoke.side_effect = [
            json.dumps(r) if isinstance(r, (dict, list)) else r for r in responses
        ]
        return adapter

    return _make


def final_answer(content: Any, reasoning: str = "done") -> dict[str, Any]:
    return {"reasoning": reasoning, "action": {"type": "final_answer", "content": content}}


def tool_call(tool_name: str, input: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "reasoning": f"use {tool_name}",
        "action": {"type": "tool_call", "tool_name": tool_name, "input": input or {}},
    }


@pytest.fixture
def thoughts():
    """Builders for ReAct responses: ``thoughts.final(...)``, ``thoughts.tool(...)``."""

    class _Thoughts:
        final = staticmethod(final_answer)
        tool = staticmethod(tool_call)

    return _Thoughts
