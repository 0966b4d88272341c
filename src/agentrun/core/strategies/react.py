"""
ReAct Strategy - Think → Act → Observe

Iterative strategy driven by a small state machine:

    THINK   ask the reasoning backend for the next action
    ACT     call the chosen tool, or finish with the final answer
    OBSERVE record the tool result, check error budget and stop conditions
    DONE    terminal

Exactly one Step is recorded per iteration. Tool failures are fed back to the
next THINK as error observations until the error budget is exceeded.
"""

from enum import Enum

from agentrun.core.domain.events import ActionType, Observation, Thought
from agentrun.core.domain.models import (
    ExecutionContext,
    ExecutionResult,
    Step,
    StepType,
    StopState,
    StrategyKind,
)
from agentrun.core.errors import AgentRuntimeError, ToolExecutionError
from agentrun.core.strategies.base import BaseStrategy
from agentrun.core.strategies.parsing import ThoughtResponse, invoke_structured
from agentrun.core.strategies.prompts import build_react_prompt
from agentrun.core.strategies.stop_conditions import (
    RESOURCE_EXHAUSTED,
    evaluate_stop_conditions,
)


class ReactPhase(str, Enum):
    THINK = "think"
    ACT = "act"
    OBSERVE = "observe"
    DONE = "done"


class ReactStrategy(BaseStrategy):
    """Adaptive single-tool-per-turn strategy."""

    kind = StrategyKind.REACT

    async def _run(self, context: ExecutionContext, steps: list[Step]) -> ExecutionResult:
        config = context.config
        turns = 0
        tool_calls = 0
        tool_errors = 0
        thought: Thought | None = None
        observation: Observation | None = None
        result: ExecutionResult | None = None
        phase = ReactPhase.THINK

        try:
            while phase is not ReactPhase.DONE:
                if phase is ReactPhase.THINK:
                    turns += 1
                    self.logger.info(
                        "react_iteration", correlation_id=context.correlation_id, turn=turns
                    )
                    thought = await self._think(context, steps)
                    phase = ReactPhase.ACT

                elif phase is ReactPhase.ACT:
                    action = thought.action
                    if action.type == ActionType.FINAL_ANSWER:
                        self._record(
                            Step(
                                type=StepType.ACT,
                                thought=thought,
                                action=action,
                                result=Observation(success=True, output=action.content),
                            ),
                            steps,
                            context,
                        )
                        thought = None
                        result = ExecutionResult(
                            success=True,
                            output=action.content,
                            steps=steps,
                            metadata={"turns": turns, "tool_calls": tool_calls},
                        )
                        phase = ReactPhase.DONE
                    else:
                        observation = await self._invoke_tool(
                            action.tool_name, action.input, context
                        )
                        tool_calls += 1
                        phase = ReactPhase.OBSERVE

                elif phase is ReactPhase.OBSERVE:
                    self._record(
                        Step(
                            type=StepType.OBSERVE,
                            thought=thought,
                            action=thought.action,
                            result=observation,
                        ),
                        steps,
                        context,
                    )
                    failed_tool = thought.action.tool_name
                    thought = None

                    if not observation.success:
                        tool_errors += 1
                        budget = config.error_budget
                        if budget is not None and tool_errors > budget:
                            raise ToolExecutionError(
                                f"Error budget of {budget} exceeded; last error: {observation.error}",
                                failed_tool,
                                details={"tool_errors": tool_errors},
                            )

                    reason = await evaluate_stop_conditions(
                        config.stop_conditions,
                        StopState(
                            turns=turns,
                            tool_calls=tool_calls,
                            elapsed_ms=context.run.elapsed_ms(),
                            steps=steps,
                        ),
                    )
                    if reason:
                        self.logger.warning(
                            "react_stopped",
                            correlation_id=context.correlation_id,
                            stop_reason=reason,
                            turns=turns,
                        )
                        result = ExecutionResult(
                            success=False,
                            output=None,
                            error=RESOURCE_EXHAUSTED,
                            steps=steps,
                            metadata={
                                "turns": turns,
                                "tool_calls": tool_calls,
                                "stop_reason": reason,
                            },
                        )
                        phase = ReactPhase.DONE
                    else:
                        phase = ReactPhase.THINK

        except AgentRuntimeError:
            # Iteration cut short after reasoning: keep the thought
            if thought is not None:
                steps.append(Step(type=StepType.THINK, thought=thought, action=thought.action))
            raise

        return result

    async def _think(self, context: ExecutionContext, steps: list[Step]) -> Thought:
        response = await invoke_structured(
            lambda prompt: self._reason(prompt, context),
            build_react_prompt(context, steps),
            ThoughtResponse,
            max_correction_attempts=context.config.max_correction_attempts,
            purpose="thought",
        )
        return response.to_thought()
