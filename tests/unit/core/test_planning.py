"""Unit tests for plan validation, ordering and template resolution."""

import pytest

from agentrun.core.domain.planning import (
    ExecutionPlan,
    PlanStep,
    resolve_templates,
    topological_order,
    validate_plan,
)


def plan(*steps: PlanStep) -> ExecutionPlan:
    return ExecutionPlan(goal="test", steps=list(steps))


class TestValidatePlan:
    """Tests for structural plan validation."""

    def test_valid_plan(self):
        p = plan(
            PlanStep(id="S1", tool="search"),
            PlanStep(id="S2", tool="summarize", depends_on=["S1"]),
        )
        assert validate_plan(p, {"search", "summarize"}) == []

    def test_unknown_tool(self):
        problems = validate_plan(plan(PlanStep(id="S1", tool="hack")), {"search"})
        assert problems == ["step 'S1' uses unknown tool 'hack'"]

    def test_duplicate_ids(self):
        p = plan(PlanStep(id="S1", tool="search"), PlanStep(id="S1", tool="search"))
        assert "duplicate step id 'S1'" in validate_plan(p, {"search"})

    def test_unknown_dependency(self):
        p = plan(PlanStep(id="S1", tool="search", depends_on=["S9"]))
        assert validate_plan(p, {"search"}) == ["step 'S1' depends on unknown step 'S9'"]

    def test_self_dependency(self):
        p = plan(PlanStep(id="S1", tool="search", depends_on=["S1"]))
        assert validate_plan(p, {"search"}) == ["step 'S1' depends on itself"]

    def test_cycle(self):
        p = plan(
            PlanStep(id="S1", tool="search", depends_on=["S2"]),
            PlanStep(id="S2", tool="search", depends_on=["S1"]),
        )
        [problem] = validate_plan(p, {"search"})
        assert "dependency cycle" in problem


class TestTopologicalOrder:
    """Tests for dependency ordering."""

    def test_dependencies_first_ties_in_original_order(self):
        steps = [
            PlanStep(id="S3", tool="t", depends_on=["S1", "S2"]),
            PlanStep(id="S1", tool="t"),
            PlanStep(id="S2", tool="t"),
        ]
        assert [s.id for s in topological_order(steps)] == ["S1", "S2", "S3"]

    def test_cycle_raises(self):
        steps = [
            PlanStep(id="A", tool="t", depends_on=["B"]),
            PlanStep(id="B", tool="t", depends_on=["A"]),
        ]
        with pytest.raises(ValueError, match="cycle"):
            topological_order(steps)


class TestResolveTemplates:
    """Tests for {{step_id.path}} references."""

    def test_whole_reference_keeps_type(self):
        resolved, missing = resolve_templates({"ids": "{{S1.items}}"}, {"S1": {"items": [1, 2]}})
        assert resolved == {"ids": [1, 2]}
        assert missing == []

    def test_embedded_reference_is_rendered(self):
        resolved, missing = resolve_templates(
            {"query": "weather in {{S1.city}} today"}, {"S1": {"city": "Berlin"}}
        )
        assert resolved == {"query": "weather in Berlin today"}

    def test_list_index_path(self):
        resolved, _ = resolve_templates("{{S1.results.0.title}}", {"S1": {"results": [{"title": "A"}]}})
        assert resolved == "A"

    def test_missing_reference_reported(self):
        resolved, missing = resolve_templates({"q": "{{S2.x}}"}, {"S1": {}})
        assert resolved == {"q": "{{S2.x}}"}
        assert missing == ["S2.x"]

    def test_non_template_values_untouched(self):
        value = {"n": 3, "flag": True, "nested": {"list": ["a", "b"]}}
        resolved, missing = resolve_templates(value, {})
        assert resolved == value
        assert missing == []
