"""
Plan models for the ReWoo strategy.

A plan is an ordered list of steps, each naming a tool, its input and the ids
of the steps it depends on. Nothing here executes anything; the executor in
agentrun.core.strategies.rewoo consumes these structures.
"""

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from agentrun.core.utils import generate_id

TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")


@dataclass
class PlanStep:
    """Single step in an execution plan"""

    id: str
    tool: str
    input: dict[str, Any] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlanStep":
        return cls(
            id=str(data["id"]),
            tool=data["tool"],
            input=dict(data.get("input") or {}),
            depends_on=[str(d) for d in data.get("depends_on") or []],
            description=data.get("description", ""),
        )


@dataclass
class ExecutionPlan:
    """Complete execution plan with multiple steps"""

    goal: str
    steps: list[PlanStep]
    reasoning: str = ""
    id: str = field(default_factory=lambda: generate_id("plan"))
    created_at: datetime = field(default_factory=datetime.now)

    def get_step_by_id(self, step_id: str) -> PlanStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "goal": self.goal,
            "reasoning": self.reasoning,
            "steps": [step.to_dict() for step in self.steps],
            "created_at": self.created_at.isoformat(),
        }


def validate_plan(plan: ExecutionPlan, tool_names: set[str]) -> list[str]:
    """
    Check a plan for structural problems.

    Returns a list of human-readable problems (empty when the plan is valid):
    duplicate ids, unknown tools, unknown dependencies and cycles.
    """
    problems: list[str] = []
    seen: set[str] = set()
    for step in plan.steps:
        if step.id in seen:
            problems.append(f"duplicate step id '{step.id}'")
        seen.add(step.id)
        if step.tool not in tool_names:
            problems.append(f"step '{step.id}' uses unknown tool '{step.tool}'")

    for step in plan.steps:
        for dep in step.depends_on:
            if dep not in seen:
                problems.append(f"step '{step.id}' depends on unknown step '{dep}'")
            elif dep == step.id:
                problems.append(f"step '{step.id}' depends on itself")

    if not problems:
        try:
            topological_order(plan.steps)
        except ValueError as e:
            problems.append(str(e))
    return problems


def topological_order(steps: list[PlanStep]) -> list[PlanStep]:
    """
    Order steps so every step comes after its dependencies.

    Ties keep the planner's original order. Raises ValueError on cycles.
    """
    by_id = {step.id: step for step in steps}
    remaining_deps = {
        step.id: {d for d in step.depends_on if d in by_id} for step in steps
    }
    ordered: list[PlanStep] = []
    placed: set[str] = set()

    while len(ordered) < len(steps):
        ready = [
            step
            for step in steps
            if step.id not in placed and remaining_deps[step.id] <= placed
        ]
        if not ready:
            blocked = [s.id for s in steps if s.id not in placed]
            raise ValueError(f"dependency cycle between steps {blocked}")
        for step in ready:
            ordered.append(step)
            placed.add(step.id)
    return ordered


def _lookup_path(value: Any, path: list[str]) -> Any:
    for part in path:
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            raise KeyError(part)
    return value


def resolve_templates(value: Any, outputs: dict[str, Any]) -> tuple[Any, list[str]]:
    """
    Substitute ``{{step_id}}`` / ``{{step_id.field.path}}`` references.

    A string consisting of a single reference is replaced by the referenced
    value itself (preserving its type); references embedded in longer text
    are rendered with str(). Returns the resolved value and the references
    that could not be resolved.
    """
    missing: list[str] = []

    def resolve_ref(ref: str) -> Any:
        step_id, *path = ref.split(".")
        if step_id not in outputs:
            raise KeyError(step_id)
        return _lookup_path(outputs[step_id], path)

    def walk(item: Any) -> Any:
        if isinstance(item, dict):
            return {k: walk(v) for k, v in item.items()}
        if isinstance(item, list):
            return [walk(v) for v in item]
        if not isinstance(item, str) or "{{" not in item:
            return item

        whole = TEMPLATE_PATTERN.fullmatch(item.strip())
        if whole:
            try:
                return resolve_ref(whole.group(1))
            except KeyError:
                missing.append(whole.group(1))
                return item

        def render(match: re.Match) -> str:
            try:
                return str(resolve_ref(match.group(1)))
            except KeyError:
                missing.append(match.group(1))
                return match.group(0)

        return TEMPLATE_PATTERN.sub(render, item)

    return walk(value), missing
