"""
Structured output parsing for reasoning backend responses.

Responses are validated against pydantic models. Malformed output triggers
bounded correction re-prompts that include the model's JSON Schema; after
the last attempt a PlanningError is raised.
"""

import json
import re
from collections.abc import Awaitable, Callable
from typing import Any, Literal, TypeVar

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from agentrun.core.domain.events import Action, ActionType, Thought
from agentrun.core.domain.planning import ExecutionPlan, PlanStep
from agentrun.core.errors import PlanningError
from agentrun.core.strategies.prompts import build_correction_prompt

logger = structlog.get_logger().bind(component="output_parser")

FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

ResponseModel = TypeVar("ResponseModel", bound=BaseModel)


class ActionResponse(BaseModel):
    type: Literal["tool_call", "final_answer"]
    tool_name: str | None = None
    input: dict[str, Any] = Field(default_factory=dict)
    content: Any = None

    @field_validator("input", mode="before")
    @classmethod
    def _none_input(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="after")
    def _require_tool_name(self) -> "ActionResponse":
        if self.type == "tool_call" and not self.tool_name:
            raise ValueError("tool_call actions require tool_name")
        return self


class ThoughtResponse(BaseModel):
    """ReAct THINK output."""

    reasoning: str = ""
    action: ActionResponse

    def to_thought(self) -> Thought:
        return Thought(
            reasoning=self.reasoning,
            action=Action(
                type=ActionType(self.action.type),
                tool_name=self.action.tool_name,
                input=self.action.input,
                content=self.action.content,
            ),
        )


class PlanStepResponse(BaseModel):
    id: str
    tool: str
    input: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)
    description: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("depends_on", mode="before")
    @classmethod
    def _coerce_deps(cls, value: Any) -> Any:
        if value is None:
            return []
        return [str(v) if isinstance(v, int) else v for v in value]


class PlanResponse(BaseModel):
    """ReWoo planner output."""

    reasoning: str = ""
    steps: list[PlanStepResponse] = Field(min_length=1)

    def to_plan(self, goal: str) -> ExecutionPlan:
        return ExecutionPlan(
            goal=goal,
            reasoning=self.reasoning,
            steps=[PlanStep.from_dict(step.model_dump()) for step in self.steps],
        )


class OrganizerResponse(BaseModel):
    """ReWoo organizer output."""

    answer: Any
    citations: list[str] = Field(default_factory=list)


def extract_json(raw: str | dict[str, Any]) -> dict[str, Any]:
    """
    Pull a JSON object out of a backend response.

    Dicts are accepted as-is. Strings may be bare JSON, fenced in a
    markdown code block, or surrounded by prose.

    Raises:
        ValueError: If no JSON object can be decoded
    """
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        raise ValueError(f"Unsupported response type: {type(raw).__name__}")

    text = raw.strip()
    fenced = FENCED_JSON.search(text)
    if fenced:
        text = fenced.group(1).strip()
    elif not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("Response contains no JSON object")
        text = text[start : end + 1]

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


async def invoke_structured(
    call: Callable[[str], Awaitable[str | dict[str, Any]]],
    prompt: str,
    model: type[ResponseModel],
    max_correction_attempts: int = 2,
    validate: Callable[[ResponseModel], list[str]] | None = None,
    purpose: str = "response",
) -> ResponseModel:
    """
    Call the backend and parse its answer into ``model``.

    Args:
        call: Sends one prompt to the reasoning backend
        prompt: Initial prompt
        model: Pydantic model describing the expected JSON
        max_correction_attempts: Re-prompts allowed after the first call
        validate: Extra semantic checks; returns problems (empty when valid)
        purpose: Label used in logs and error messages

    Raises:
        PlanningError: If no valid response arrived within the attempts
    """
    total = max_correction_attempts + 1
    schema = model.model_json_schema()
    current_prompt = prompt
    last_error = ""

    for attempt in range(1, total + 1):
        raw = await call(current_prompt)
        try:
            parsed = model.model_validate(extract_json(raw))
            problems = validate(parsed) if validate else []
            if not problems:
                return parsed
            last_error = "; ".join(problems)
        except (ValueError, ValidationError) as e:
            last_error = str(e)

        logger.warning(
            "response_invalid",
            purpose=purpose,
            attempt=attempt,
            max_attempts=total,
            error=last_error[:500],
        )
        current_prompt = build_correction_prompt(
            original=prompt,
            previous=raw,
            error=last_error,
            schema=schema,
            attempt=attempt,
            max_attempts=total,
        )

    raise PlanningError(
        f"Invalid {purpose} after {total} attempts: {last_error}",
        attempts=total,
    )
