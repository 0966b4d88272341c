"""Stop condition evaluation shared by the strategies."""

import inspect

import structlog

from agentrun.core.domain.models import StopConditions, StopState

logger = structlog.get_logger().bind(component="stop_conditions")

RESOURCE_EXHAUSTED = "resource_exhausted"


async def evaluate_stop_conditions(
    conditions: StopConditions,
    state: StopState,
) -> str | None:
    """
    Return the name of the first budget that is used up, or None.

    Built-in limits are checked first (turns, plan steps, tool calls, time),
    then custom predicates in registration order. A custom predicate that
    raises is logged and treated as not firing.
    """
    if conditions.max_turns is not None and state.turns >= conditions.max_turns:
        return "max_turns"
    if conditions.max_plan_steps is not None and state.plan_steps >= conditions.max_plan_steps:
        return "max_plan_steps"
    if conditions.max_tool_calls is not None and state.tool_calls >= conditions.max_tool_calls:
        return "max_tool_calls"
    if conditions.max_time_ms is not None and state.elapsed_ms >= conditions.max_time_ms:
        return "max_time_ms"

    for index, predicate in enumerate(conditions.custom_conditions):
        try:
            fired = predicate(state)
            if inspect.isawaitable(fired):
                fired = await fired
        except Exception as e:
            logger.warning("custom_condition_failed", index=index, error=str(e))
            continue
        if fired:
            return getattr(predicate, "__name__", f"custom_condition_{index}")
    return None
