"""
ReWoo Strategy - Plan → Execute → Organize

Three sequential phases:

1. Planner: one reasoning call produces a dependency graph of tool calls.
   The plan is validated (unknown tools, duplicate or unknown ids, cycles)
   inside the correction loop.
2. Executor: steps run in topological order. Independent steps run
   concurrently under an asyncio.Semaphore; a step waits on its
   dependencies' completion events. Each step yields Evidence ``E1..En``.
3. Organizer: one reasoning call turns the evidence into an answer whose
   citations must all refer to supplied evidence ids.

Budgets are enforced before each step starts. A step that cannot start
because a budget is used up is truncated; the organizer then runs on the
partial evidence and the result reports ``resource_exhausted``.
"""

import asyncio
import re
import time
from dataclasses import dataclass, field

from agentrun.core.domain.events import Action, ActionType, EventType, Observation
from agentrun.core.domain.models import (
    Evidence,
    ExecutionContext,
    ExecutionResult,
    Step,
    StepType,
    StopState,
    StrategyKind,
)
from agentrun.core.domain.planning import (
    ExecutionPlan,
    PlanStep,
    resolve_templates,
    topological_order,
    validate_plan,
)
from agentrun.core.strategies.base import BaseStrategy
from agentrun.core.strategies.parsing import (
    OrganizerResponse,
    PlanResponse,
    invoke_structured,
)
from agentrun.core.strategies.prompts import build_organizer_prompt, build_planner_prompt
from agentrun.core.strategies.stop_conditions import (
    RESOURCE_EXHAUSTED,
    evaluate_stop_conditions,
)

CITATION_MARKER = re.compile(r"\[(E\d+)\]")


@dataclass
class _ExecutorState:
    evidence_ids: dict[str, str]
    started: int = 0
    tool_calls: int = 0
    stop_reason: str | None = None
    evidence: dict[str, Evidence] = field(default_factory=dict)
    truncated: list[str] = field(default_factory=list)


class RewooStrategy(BaseStrategy):
    """Plan-first strategy with parallel tool execution."""

    kind = StrategyKind.REWOO

    async def _run(self, context: ExecutionContext, steps: list[Step]) -> ExecutionResult:
        plan = await self._plan(context)
        self._record(
            Step(
                type=StepType.PLAN,
                metadata={"plan": plan.to_dict(), "reasoning": plan.reasoning},
            ),
            steps,
            context,
        )
        self._emit(
            EventType.PLAN_CREATED,
            {"plan_id": plan.id, "steps": [s.id for s in plan.steps]},
            context,
        )

        executor_started = time.monotonic()
        state = await self._execute_plan(plan, context, steps)
        executor_ms = int((time.monotonic() - executor_started) * 1000)
        evidence = sorted(state.evidence.values(), key=lambda e: int(e.id[1:]))

        organized = await self._organize(context, plan, evidence, state.stop_reason)
        self._record(
            Step(
                type=StepType.SYNTHESIZE,
                result=Observation(success=True, output=organized.answer),
                metadata={"citations": organized.citations},
            ),
            steps,
            context,
        )

        metadata = {
            "plan_id": plan.id,
            "evidence": [e.to_dict() for e in evidence],
            "citations": organized.citations,
            "tool_calls": state.tool_calls,
            "executor_time_ms": executor_ms,
        }
        if state.stop_reason:
            metadata["stop_reason"] = state.stop_reason
            metadata["truncated_steps"] = state.truncated
            return ExecutionResult(
                success=False,
                output=organized.answer,
                error=RESOURCE_EXHAUSTED,
                steps=steps,
                metadata=metadata,
            )
        return ExecutionResult(
            success=True, output=organized.answer, steps=steps, metadata=metadata
        )

    async def _plan(self, context: ExecutionContext) -> ExecutionPlan:
        tool_names = {tool.name for tool in context.tools}

        def check(response: PlanResponse) -> list[str]:
            return validate_plan(response.to_plan(context.input), tool_names)

        response = await invoke_structured(
            lambda prompt: self._reason(prompt, context),
            build_planner_prompt(context),
            PlanResponse,
            max_correction_attempts=context.config.max_correction_attempts,
            validate=check,
            purpose="plan",
        )
        plan = response.to_plan(context.input)
        self.logger.info(
            "plan_created",
            correlation_id=context.correlation_id,
            plan_id=plan.id,
            steps=len(plan.steps),
        )
        return plan

    async def _execute_plan(
        self,
        plan: ExecutionPlan,
        context: ExecutionContext,
        steps: list[Step],
    ) -> _ExecutorState:
        ordered = topological_order(plan.steps)
        state = _ExecutorState(
            evidence_ids={step.id: f"E{index}" for index, step in enumerate(ordered, start=1)}
        )
        finished = {step.id: asyncio.Event() for step in ordered}
        semaphore = asyncio.Semaphore(max(1, context.config.concurrency_limit))

        async def run(plan_step: PlanStep) -> None:
            try:
                await self._execute_step(plan_step, context, steps, state, finished, semaphore)
            finally:
                finished[plan_step.id].set()

        tasks = [asyncio.create_task(run(step)) for step in ordered]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        self.logger.info(
            "plan_executed",
            correlation_id=context.correlation_id,
            evidence=len(state.evidence),
            truncated=len(state.truncated),
            stop_reason=state.stop_reason,
        )
        return state

    async def _execute_step(
        self,
        plan_step: PlanStep,
        context: ExecutionContext,
        steps: list[Step],
        state: _ExecutorState,
        finished: dict[str, asyncio.Event],
        semaphore: asyncio.Semaphore,
    ) -> None:
        for dep in plan_step.depends_on:
            await finished[dep].wait()

        evidence_id = state.evidence_ids[plan_step.id]
        missing_deps = [d for d in plan_step.depends_on if d not in state.evidence]
        if missing_deps:
            state.truncated.append(plan_step.id)
            return

        failed_deps = [d for d in plan_step.depends_on if not state.evidence[d].success]
        if failed_deps:
            error = f"dependency failed: {', '.join(failed_deps)}"
            self._add_evidence(
                Evidence(
                    id=evidence_id,
                    sketch_id=plan_step.id,
                    tool_name=plan_step.tool,
                    input=plan_step.input,
                    success=False,
                    error=error,
                ),
                Observation(success=False, error=error),
                context,
                steps,
                state,
            )
            return

        async with semaphore:
            reason = state.stop_reason or await evaluate_stop_conditions(
                context.config.stop_conditions,
                StopState(
                    turns=0,
                    tool_calls=state.tool_calls,
                    elapsed_ms=context.run.elapsed_ms(),
                    steps=steps,
                    plan_steps=state.started,
                ),
            )
            if reason:
                if state.stop_reason is None:
                    self.logger.warning(
                        "rewoo_truncated",
                        correlation_id=context.correlation_id,
                        stop_reason=reason,
                        step_id=plan_step.id,
                    )
                state.stop_reason = reason
                state.truncated.append(plan_step.id)
                return

            state.started += 1
            outputs = {
                sketch_id: ev.output for sketch_id, ev in state.evidence.items() if ev.success
            }
            resolved, missing = resolve_templates(plan_step.input, outputs)
            if missing:
                observation = Observation(
                    success=False,
                    error=f"unresolved references: {', '.join(missing)}",
                )
            else:
                state.tool_calls += 1
                observation = await self._invoke_tool(plan_step.tool, resolved, context)

        self._add_evidence(
            Evidence(
                id=evidence_id,
                sketch_id=plan_step.id,
                tool_name=plan_step.tool,
                input=resolved,
                output=observation.output,
                latency_ms=observation.latency_ms,
                success=observation.success,
                error=observation.error,
            ),
            observation,
            context,
            steps,
            state,
        )

    def _add_evidence(
        self,
        evidence: Evidence,
        observation: Observation,
        context: ExecutionContext,
        steps: list[Step],
        state: _ExecutorState,
    ) -> None:
        state.evidence[evidence.sketch_id] = evidence
        self._record(
            Step(
                type=StepType.EXECUTE,
                action=Action(
                    type=ActionType.TOOL_CALL,
                    tool_name=evidence.tool_name,
                    input=evidence.input,
                ),
                result=observation,
                metadata={"evidence_id": evidence.id, "sketch_id": evidence.sketch_id},
            ),
            steps,
            context,
        )

    async def _organize(
        self,
        context: ExecutionContext,
        plan: ExecutionPlan,
        evidence: list[Evidence],
        stop_reason: str | None,
    ) -> OrganizerResponse:
        known = {e.id for e in evidence}

        def check(response: OrganizerResponse) -> list[str]:
            cited = set(response.citations)
            if isinstance(response.answer, str):
                cited.update(CITATION_MARKER.findall(response.answer))
            unknown = sorted(cited - known)
            if unknown:
                return [f"citations refer to unknown evidence: {', '.join(unknown)}"]
            return []

        return await invoke_structured(
            lambda prompt: self._reason(prompt, context),
            build_organizer_prompt(context, plan, evidence, stop_reason),
            OrganizerResponse,
            max_correction_attempts=context.config.max_correction_attempts,
            validate=check,
            purpose="organizer answer",
        )
