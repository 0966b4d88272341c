"""Unit tests for ToolRegistry and AgentRegistry."""

import pytest

from agentrun.application.registry import AgentRegistry, ToolRegistry
from agentrun.core.domain.models import AgentIdentity, AgentSpec
from agentrun.core.errors import ConfigurationError


@pytest.fixture
def tools(make_tool):
    registry = ToolRegistry()
    registry.register(make_tool("search"))
    return registry


@pytest.fixture
def agents(tools):
    return AgentRegistry(tools)


def agent(name: str = "assistant", **kwargs) -> AgentSpec:
    kwargs.setdefault("identity", AgentIdentity(role="Assistant"))
    return AgentSpec(name=name, **kwargs)


class TestToolRegistry:
    """Tests for tool registration."""

    def test_duplicate_name_keeps_first(self, tools, make_tool):
        """Test a second tool with the same name is rejected and the first stays."""
        first = tools.get("search")

        with pytest.raises(ConfigurationError, match="already registered"):
            tools.register(make_tool("search", description="Other"))

        assert tools.get("search") is first
        assert len(tools) == 1

    def test_invalid_schema_rejected(self, tools, make_tool):
        with pytest.raises(ConfigurationError, match="invalid input schema"):
            tools.register(make_tool("bad", schema={"type": "not-a-type"}))
        assert "bad" not in tools

    def test_execute_must_be_callable(self, tools, make_tool):
        with pytest.raises(ConfigurationError, match="callable"):
            tools.register(make_tool("broken", execute="not callable"))

    def test_empty_name_rejected(self, tools, make_tool):
        with pytest.raises(ConfigurationError):
            tools.register(make_tool(""))

    def test_resolve(self, tools, make_tool):
        tools.register(make_tool("fetch"))
        assert [t.name for t in tools.resolve(None)] == ["search", "fetch"]
        assert [t.name for t in tools.resolve(["fetch"])] == ["fetch"]

    def test_list(self, tools):
        [entry] = tools.list()
        assert entry["name"] == "search"
        assert entry["input_schema"] == {"type": "object"}


class TestAgentRegistry:
    """Tests for agent registration."""

    def test_register_and_get(self, agents):
        spec = agents.register(agent(planner="react", tools=["search"]))
        assert agents.get("assistant") is spec
        assert "assistant" in agents
        assert agents.list()[0]["role"] == "Assistant"

    def test_unknown_agent(self, agents):
        with pytest.raises(ConfigurationError, match="Agent 'ghost' not found"):
            agents.get("ghost")

    def test_duplicate_agent(self, agents):
        agents.register(agent())
        with pytest.raises(ConfigurationError, match="already registered"):
            agents.register(agent(identity=AgentIdentity(goal="Other")))
        assert agents.get("assistant").identity.role == "Assistant"

    def test_identity_needs_role_or_goal(self, agents):
        with pytest.raises(ConfigurationError, match="role or a goal"):
            agents.register(agent(identity=AgentIdentity(expertise=["x"])))

    def test_unknown_planner(self, agents):
        with pytest.raises(ConfigurationError, match="Unknown planner"):
            agents.register(agent(planner="tree_of_thought"))
        assert len(agents) == 0

    def test_non_positive_iterations(self, agents):
        with pytest.raises(ConfigurationError, match="max_iterations"):
            agents.register(agent(max_iterations=0))

    def test_unknown_tool_binding(self, agents):
        with pytest.raises(ConfigurationError, match="unknown tools: calendar"):
            agents.register(agent(tools=["search", "calendar"]))
