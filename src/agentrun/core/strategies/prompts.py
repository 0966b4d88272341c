"""
Prompt templates for the execution strategies.

Every template asks for STRICT JSON; the parsing module re-prompts with the
response schema when the backend answers with anything else.
"""

import json
from typing import Any

from agentrun.core.domain.models import Evidence, ExecutionContext, Step
from agentrun.core.domain.planning import ExecutionPlan

HISTORY_WINDOW = 10

REACT_PROMPT = """You are {agent_label}.
Solve the task by reasoning step by step and calling tools when needed.

TASK:
{input}

AVAILABLE_TOOLS:
{tools}

PREVIOUS_SESSION_STEPS:
{history}

STEPS_SO_FAR:
{steps}

Rules:
- Call exactly one tool per turn, or give the final answer.
- If a previous tool call failed, fix the input or choose another tool.
- Give the final answer as soon as the task is fulfilled.
- Return STRICT JSON only matching this schema:
{{
  "reasoning": "string (<= 2 sentences)",
  "action": {{
    "type": "tool_call|final_answer",
    "tool_name": "string (for tool_call)",
    "input": "object (for tool_call)",
    "content": "any (for final_answer)"
  }}
}}
"""

PLANNER_PROMPT = """You are {agent_label}, acting as the PLANNER.
Break the task into tool calls. Do not execute anything.

TASK:
{input}

AVAILABLE_TOOLS:
{tools}

PREVIOUS_SESSION_STEPS:
{history}

Rules:
- Use only the tools listed above.
- Give every step a unique id ("S1", "S2", ...).
- List in depends_on the ids whose output a step needs; independent steps run in parallel.
- Reference earlier outputs inside input strings as {{{{S1}}}} or {{{{S1.field.path}}}}.
{limit_rule}- Return STRICT JSON only matching this schema:
{{
  "reasoning": "string",
  "steps": [
    {{"id": "S1", "tool": "string", "input": {{}}, "depends_on": [], "description": "string"}}
  ]
}}
"""

ORGANIZER_PROMPT = """You are {agent_label}, acting as the ORGANIZER.
Answer the task using ONLY the evidence below.

TASK:
{input}

PLAN:
{plan}

EVIDENCE:
{evidence}
{partial_note}
Rules:
- Cite evidence inline as [E1], [E2], ... and list every cited id in "citations".
- Cite only evidence ids that appear above; never invent ids.
- Say so plainly if the evidence is insufficient.
- Return STRICT JSON only matching this schema:
{{
  "answer": "string",
  "citations": ["E1"]
}}
"""

PARTIAL_NOTE = """
NOTE: Execution stopped early ({reason}). Some planned steps did not run;
answer with what the available evidence supports.
"""

CORRECTION_PROMPT = """{original}

YOUR PREVIOUS RESPONSE WAS INVALID (attempt {attempt}/{max_attempts}):
{error}

Previous response:
{previous}

Respond again with STRICT JSON matching this JSON Schema:
{schema}
"""


def agent_label(context: ExecutionContext) -> str:
    """Describe the agent from its identity for the prompt header."""
    identity = context.agent_context.get("identity") or {}
    role = identity.get("role")
    goal = identity.get("goal")
    label = role or context.agent_context.get("agent_name") or "an assistant"
    if goal:
        label += f" whose goal is: {goal}"
    expertise = identity.get("expertise")
    if expertise:
        label += f" (expertise: {', '.join(expertise)})"
    return label


def render_tools(context: ExecutionContext) -> str:
    if not context.tools:
        return "(no tools available)"
    lines = []
    for tool in context.tools:
        schema = json.dumps(tool.input_schema, indent=2)
        lines.append(f"- {tool.name}: {tool.description}\n  input_schema: {schema}")
    return "\n".join(lines)


def _step_line(step: Step) -> str:
    parts = [f"[{step.type.value}]"]
    if step.thought:
        parts.append(f"reasoning={step.thought.reasoning!r}")
    if step.action:
        parts.append(f"action={json.dumps(step.action.to_dict(), default=str)}")
    if step.result:
        if step.result.success:
            parts.append(f"result={json.dumps(step.result.output, default=str)[:2000]}")
        else:
            parts.append(f"error={step.result.error}")
    return " ".join(parts)


def render_steps(steps: list[Step], window: int | None = None) -> str:
    if not steps:
        return "(none)"
    if window is not None:
        steps = steps[-window:]
    return "\n".join(_step_line(step) for step in steps)


def build_react_prompt(context: ExecutionContext, steps: list[Step]) -> str:
    return REACT_PROMPT.format(
        agent_label=agent_label(context),
        input=context.input,
        tools=render_tools(context),
        history=render_steps(context.history, HISTORY_WINDOW),
        steps=render_steps(steps),
    )


def build_planner_prompt(context: ExecutionContext) -> str:
    max_steps = context.config.stop_conditions.max_plan_steps
    limit_rule = f"- Use at most {max_steps} steps.\n" if max_steps else ""
    return PLANNER_PROMPT.format(
        agent_label=agent_label(context),
        input=context.input,
        tools=render_tools(context),
        history=render_steps(context.history, HISTORY_WINDOW),
        limit_rule=limit_rule,
    )


def render_evidence(evidence: list[Evidence]) -> str:
    if not evidence:
        return "(no evidence collected)"
    lines = []
    for item in evidence:
        if item.success:
            body = json.dumps(item.output, default=str)[:4000]
        else:
            body = f"FAILED: {item.error}"
        lines.append(f"[{item.id}] step={item.sketch_id} tool={item.tool_name}: {body}")
    return "\n".join(lines)


def build_organizer_prompt(
    context: ExecutionContext,
    plan: ExecutionPlan,
    evidence: list[Evidence],
    stop_reason: str | None = None,
) -> str:
    return ORGANIZER_PROMPT.format(
        agent_label=agent_label(context),
        input=context.input,
        plan=json.dumps([step.to_dict() for step in plan.steps], indent=2, default=str),
        evidence=render_evidence(evidence),
        partial_note=PARTIAL_NOTE.format(reason=stop_reason) if stop_reason else "",
    )


def build_correction_prompt(
    original: str,
    previous: Any,
    error: str,
    schema: dict[str, Any],
    attempt: int,
    max_attempts: int,
) -> str:
    if not isinstance(previous, str):
        previous = json.dumps(previous, default=str)
    return CORRECTION_PROMPT.format(
        original=original,
        attempt=attempt,
        max_attempts=max_attempts,
        error=error,
        previous=previous[:2000],
        schema=json.dumps(schema, indent=2),
    )
