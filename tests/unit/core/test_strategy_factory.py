"""Unit tests for planner parsing, complexity scoring and strategy selection."""

from unittest.mock import AsyncMock

import pytest

from agentrun.core.domain.models import Step, StepType, StrategyKind
from agentrun.core.errors import ConfigurationError
from agentrun.core.strategies import (
    ReactStrategy,
    RewooStrategy,
    StrategyFactory,
    complexity_score,
    parse_planner,
)
from agentrun.runtime.bus import RuntimeBus


class TestParsePlanner:
    """Tests for planner tag validation."""

    @pytest.mark.parametrize(
        ("tag", "expected"),
        [
            ("react", StrategyKind.REACT),
            ("ReWoo", StrategyKind.REWOO),
            (" auto ", None),
            (StrategyKind.REWOO, StrategyKind.REWOO),
        ],
    )
    def test_valid_tags(self, tag, expected):
        assert parse_planner(tag) == expected

    def test_unknown_tag(self):
        with pytest.raises(ConfigurationError, match="Unknown planner 'tot'"):
            parse_planner("tot")


class TestComplexityScore:
    """Tests for the complexity heuristic."""

    def test_simple_question(self):
        assert complexity_score("What time is it?", tool_count=1) == 1

    def test_keywords_and_tools(self):
        """Test complex and multi-action keywords add to the tool count."""
        text = "Analyze the sales data, then generate a report"
        assert complexity_score(text, tool_count=3) == 3 + 2 + 1

    def test_keywords_match_inside_words(self):
        assert complexity_score("Explain planets", tool_count=0) == 2

    def test_length_bonuses(self):
        assert complexity_score("x" * 101, tool_count=0) == 1
        assert complexity_score("x" * 501, tool_count=0) == 3

    def test_long_history_adds_weight(self):
        assert complexity_score("hi", 0, history_length=11) == 1
        assert complexity_score("hi", 0, history_length=10) == 0
        assert complexity_score("hi", 0, history_length=4, history_weight_threshold=3) == 1


class TestStrategyFactory:
    """Tests for StrategyFactory."""

    @pytest.fixture
    def factory(self):
        return StrategyFactory(AsyncMock(), bus=RuntimeBus())

    def test_create_explicit(self, factory):
        strategy = factory.create("rewoo")
        assert isinstance(strategy, RewooStrategy)
        assert strategy.bus is factory.bus

    def test_create_rejects_auto(self, factory):
        with pytest.raises(ConfigurationError, match="auto"):
            factory.create("auto")

    def test_auto_selects_react_for_simple_task(self, factory, make_context, make_tool):
        context = make_context(input="What time is it?", tools=[make_tool("clock")])

        strategy = factory.resolve("auto", context)

        assert isinstance(strategy, ReactStrategy)
        assert context.metadata["complexity"] == 1

    def test_auto_selects_rewoo_for_complex_task(self, factory, make_context, make_tool):
        """Test a score at the threshold selects ReWoo."""
        context = make_context(
            input="Analyze the sales data, then generate a report",
            tools=[make_tool("db"), make_tool("charts")],
        )

        assert factory.select(context) == StrategyKind.REWOO
        assert context.metadata["complexity"] == 5

    def test_threshold_is_configurable(self, make_context):
        factory = StrategyFactory(AsyncMock(), complexity_threshold=1)
        assert factory.select(make_context(input="Plan a trip")) == StrategyKind.REWOO

    def test_history_counts_toward_selection(self, make_context, make_tool):
        factory = StrategyFactory(AsyncMock(), complexity_threshold=2)
        history = [Step(type=StepType.OBSERVE) for _ in range(11)]
        context = make_context(input="hi", tools=[make_tool()], history=history)

        assert factory.select(context) == StrategyKind.REWOO

    def test_explicit_planner_skips_selection(self, factory, make_context):
        context = make_context(input="Analyze and plan everything")
        assert isinstance(factory.resolve("react", context), ReactStrategy)
        assert "complexity" not in context.metadata
