"""
Agent and Tool Registries

Name-unique registration with validation at the boundary. A rejected
registration raises ConfigurationError and leaves the registry unchanged.
"""

from typing import Any

import structlog
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from agentrun.core.domain.models import AgentSpec, ToolDefinition
from agentrun.core.errors import ConfigurationError
from agentrun.core.strategies.factory import parse_planner

logger = structlog.get_logger()


class ToolRegistry:
    """Registered tools by name."""

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}
        self.logger = logger.bind(component="tool_registry")

    def register(self, tool: ToolDefinition) -> ToolDefinition:
        """
        Register a tool.

        Raises:
            ConfigurationError: On a duplicate name, an invalid JSON Schema or
                a non-callable ``execute``
        """
        if not tool.name:
            raise ConfigurationError("Tool name must not be empty")
        if tool.name in self._tools:
            raise ConfigurationError(
                f"Tool '{tool.name}' is already registered",
                details={"tool_name": tool.name},
            )
        if not callable(tool.execute):
            raise ConfigurationError(f"Tool '{tool.name}' execute must be callable")
        try:
            Draft202012Validator.check_schema(tool.input_schema)
        except SchemaError as e:
            raise ConfigurationError(
                f"Tool '{tool.name}' has an invalid input schema: {e.message}"
            ) from e

        self._tools[tool.name] = tool
        self.logger.info("tool_registered", tool_name=tool.name)
        return tool

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def resolve(self, names: list[str] | None) -> list[ToolDefinition]:
        """Tools for the given names (all tools when None), in registration order."""
        if names is None:
            return list(self._tools.values())
        return [self._tools[name] for name in names]

    def list(self) -> list[dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema,
                "categories": tool.categories,
            }
            for tool in self._tools.values()
        ]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


class AgentRegistry:
    """Registered agent specs by name."""

    def __init__(self, tools: ToolRegistry):
        self._tools = tools
        self._agents: dict[str, AgentSpec] = {}
        self.logger = logger.bind(component="agent_registry")

    def register(self, spec: AgentSpec) -> AgentSpec:
        """
        Register an agent.

        Raises:
            ConfigurationError: On a duplicate name, an identity with neither
                role nor goal, an unknown planner, a non-positive
                max_iterations or a binding to an unregistered tool
        """
        if not spec.name:
            raise ConfigurationError("Agent name must not be empty")
        if spec.name in self._agents:
            raise ConfigurationError(
                f"Agent '{spec.name}' is already registered",
                details={"agent_name": spec.name},
            )
        if spec.identity is None or not (spec.identity.role or spec.identity.goal):
            raise ConfigurationError(
                f"Agent '{spec.name}' identity needs at least a role or a goal"
            )
        if spec.planner is not None:
            parse_planner(spec.planner)
        if spec.max_iterations is not None and spec.max_iterations <= 0:
            raise ConfigurationError(
                f"Agent '{spec.name}' max_iterations must be positive, got {spec.max_iterations}"
            )
        unknown = [name for name in spec.tools or [] if name not in self._tools]
        if unknown:
            raise ConfigurationError(
                f"Agent '{spec.name}' references unknown tools: {', '.join(unknown)}",
                details={"unknown_tools": unknown},
            )

        self._agents[spec.name] = spec
        self.logger.info("agent_registered", agent_name=spec.name, planner=spec.planner)
        return spec

    def get(self, name: str) -> AgentSpec:
        """
        Raises:
            ConfigurationError: If no agent has this name
        """
        spec = self._agents.get(name)
        if spec is None:
            raise ConfigurationError(
                f"Agent '{name}' not found", details={"agent_name": name}
            )
        return spec

    def list(self) -> list[dict[str, Any]]:
        return [
            {
                "name": spec.name,
                "role": spec.identity.role,
                "goal": spec.identity.goal,
                "planner": spec.planner,
                "max_iterations": spec.max_iterations,
                "tools": spec.tools,
            }
            for spec in self._agents.values()
        ]

    def __contains__(self, name: str) -> bool:
        return name in self._agents

    def __len__(self) -> int:
        return len(self._agents)
