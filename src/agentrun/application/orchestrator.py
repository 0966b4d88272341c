"""
Application Layer - Orchestrator

Entry point for running agents. The Orchestrator owns no business logic of
its own; it wires independently testable services together:

- AgentRegistry / ToolRegistry: validated registration
- ContextManager: sessions, snapshots, memory
- StrategyFactory: ReAct / ReWoo selection and construction
- RuntimeBus + EventStore: lifecycle events

``call_agent`` workflow:
1. Resolve the agent (unknown name raises ConfigurationError immediately)
2. Open a RunContext and load or create the session (critical)
3. Merge session history, memory and the last snapshot into the context
4. Select and execute a strategy
5. Persist history (critical), snapshot and memory (best effort)
6. Emit agent.completed / agent.failed and return the result
"""

import time
from dataclasses import asdict
from pathlib import Path
from typing import Any

import structlog

from agentrun.application.config import OrchestratorConfig, load_profile
from agentrun.application.context_manager import ContextManager
from agentrun.application.registry import AgentRegistry, ToolRegistry
from agentrun.core.domain.events import EventType
from agentrun.core.domain.models import (
    AgentExecutionResult,
    AgentSpec,
    ExecutionContext,
    Session,
    Step,
    StopConditions,
    StrategyConfig,
    ToolDefinition,
)
from agentrun.core.domain.run_context import RunContext
from agentrun.core.errors import AgentRuntimeError, StorageError
from agentrun.core.interfaces.llm import ReasoningAdapterProtocol
from agentrun.core.strategies.factory import StrategyFactory
from agentrun.infrastructure.observability.logging import setup_logging
from agentrun.infrastructure.persistence.factory import create_record_store
from agentrun.runtime.bus import RuntimeBus
from agentrun.runtime.event_store import EventStore

logger = structlog.get_logger()

MEMORY_WINDOW = 20


class Orchestrator:
    """
    Runs registered agents against a reasoning backend.

    Example:
        >>> orchestrator = Orchestrator(adapter, OrchestratorConfig(tenant_id="acme"))
        >>> orchestrator.create_tool(search_tool)
        >>> orchestrator.create_agent(AgentSpec(name="researcher", identity=identity))
        >>> result = await orchestrator.call_agent("researcher", "Find the release date")
    """

    def __init__(
        self,
        reasoning_adapter: ReasoningAdapterProtocol,
        config: OrchestratorConfig | None = None,
        tools: ToolRegistry | None = None,
        agents: AgentRegistry | None = None,
        context_manager: ContextManager | None = None,
        event_store: EventStore | None = None,
        bus: RuntimeBus | None = None,
        strategy_factory: StrategyFactory | None = None,
    ):
        self.config = config or OrchestratorConfig()
        if self.config.log_level:
            setup_logging(self.config.log_level, self.config.log_format)

        self.tools = tools or ToolRegistry()
        self.agents = agents or AgentRegistry(self.tools)
        self.event_store = event_store or EventStore(config=self.config.event_store)
        self.bus = bus or RuntimeBus(self.event_store, **self.config.bus.model_dump())
        self.context_manager = context_manager or self._create_context_manager()
        self.strategies = strategy_factory or StrategyFactory(
            reasoning_adapter,
            bus=self.bus if self.config.enable_observability else None,
            complexity_threshold=self.config.strategy.complexity_threshold,
            history_weight_threshold=self.config.strategy.history_weight_threshold,
        )
        self.logger = logger.bind(component="orchestrator", tenant_id=self.config.tenant_id)

    @classmethod
    def from_profile(
        cls,
        profile: str,
        reasoning_adapter: ReasoningAdapterProtocol,
        config_dir: str | Path = "configs",
    ) -> "Orchestrator":
        """Build an orchestrator from ``<config_dir>/<profile>.yaml``."""
        return cls(reasoning_adapter, load_profile(profile, config_dir))

    def _create_context_manager(self) -> ContextManager:
        base = self.config.context_store_config()
        names = base.collections
        return ContextManager(
            base,
            tenant_id=self.config.tenant_id,
            sessions=create_record_store(
                self.config.context_store_config("session"), names.sessions
            ),
            snapshots=create_record_store(
                self.config.context_store_config("snapshot"), names.snapshots
            ),
            memory=create_record_store(self.config.context_store_config("memory"), names.memory),
        )

    # Registration

    def create_agent(self, spec: AgentSpec) -> AgentSpec:
        """Register an agent; raises ConfigurationError when invalid or duplicate."""
        return self.agents.register(spec)

    def create_tool(self, tool: ToolDefinition) -> ToolDefinition:
        """Register a tool; raises ConfigurationError when invalid or duplicate."""
        return self.tools.register(tool)

    def list_agents(self) -> list[dict[str, Any]]:
        return self.agents.list()

    def list_tools(self) -> list[dict[str, Any]]:
        return self.tools.list()

    # Execution

    async def call_agent(
        self,
        name: str,
        input: str,
        session_id: str | None = None,
        timeout_ms: int | None = None,
        parent_run: RunContext | None = None,
        tenant_id: str | None = None,
    ) -> AgentExecutionResult:
        """
        Run one agent call.

        Args:
            name: Registered agent name
            input: Task in natural language
            session_id: Session to continue; created (with this id) when absent
            timeout_ms: Wall-clock budget; defaults to ``default_timeout_ms``
            parent_run: Run that spawned this call; the child shares its
                tenant and remaining deadline
            tenant_id: Tenant override; defaults to the configured tenant

        Returns:
            AgentExecutionResult. Planning, timeout, tool-budget and critical
            storage failures come back with ``success=False`` and the error as
            ``"<ErrorClass>: <message>"``.

        Raises:
            ConfigurationError: If the agent is not registered
        """
        spec = self.agents.get(name)
        started = time.monotonic()
        run = self._open_run(name, timeout_ms, parent_run, tenant_id)
        steps: list[Step] = []

        with structlog.contextvars.bound_contextvars(
            correlation_id=run.correlation_id, agent_name=name
        ):
            self.logger.info(
                "agent_call_started",
                agent_name=name,
                correlation_id=run.correlation_id,
                session_id=session_id,
                input=input[:100],
            )
            try:
                session = await self._open_session(run, session_id)
                run.session_id = session.id
                await self.bus.emit_async(
                    EventType.AGENT_STARTED,
                    {"agent_name": name, "session_id": session.id, "input": input[:500]},
                    correlation_id=run.correlation_id,
                )

                context = await self._build_context(spec, input, run, session)
                strategy = self.strategies.resolve(
                    spec.planner or self.config.default_planner, context
                )
                result = await strategy.execute(context)
                steps = result.steps

                session.metadata["last_correlation_id"] = run.correlation_id
                await self.context_manager.append_history(session, result.steps)
                await self._persist_best_effort(
                    spec, input, run, result.success, result.output, result.error
                )

                outcome = AgentExecutionResult(
                    success=result.success,
                    result=result.output,
                    duration_ms=self._elapsed_ms(started),
                    error=result.error,
                    steps=result.steps,
                    metadata={
                        **result.metadata,
                        **context.metadata,
                        "correlation_id": run.correlation_id,
                        "session_id": session.id,
                        "agent_name": name,
                    },
                )
            except AgentRuntimeError as e:
                self.logger.error(
                    "agent_call_aborted",
                    agent_name=name,
                    correlation_id=run.correlation_id,
                    error_type=type(e).__name__,
                    error=e.message,
                )
                outcome = AgentExecutionResult(
                    success=False,
                    result=None,
                    duration_ms=self._elapsed_ms(started),
                    error=e.describe(),
                    steps=steps,
                    metadata={
                        "correlation_id": run.correlation_id,
                        "session_id": run.session_id,
                        "agent_name": name,
                    },
                )
            finally:
                run.close()

            await self.bus.emit_async(
                EventType.AGENT_COMPLETED if outcome.success else EventType.AGENT_FAILED,
                {
                    "agent_name": name,
                    "session_id": run.session_id,
                    "success": outcome.success,
                    "error": outcome.error,
                    "duration_ms": outcome.duration_ms,
                    "steps": len(outcome.steps),
                },
                correlation_id=run.correlation_id,
            )
            self.logger.info(
                "agent_call_finished",
                agent_name=name,
                correlation_id=run.correlation_id,
                success=outcome.success,
                duration_ms=outcome.duration_ms,
                steps=len(outcome.steps),
            )
        return outcome

    def _open_run(
        self,
        name: str,
        timeout_ms: int | None,
        parent_run: RunContext | None,
        tenant_id: str | None,
    ) -> RunContext:
        timeout = timeout_ms or self.config.default_timeout_ms
        if parent_run is not None:
            run = parent_run.spawn_child(name)
            if run.timeout_ms is None or (timeout is not None and timeout < run.timeout_ms):
                run.timeout_ms = timeout
            return run
        return RunContext(
            tenant_id=tenant_id or self.config.tenant_id,
            agent_name=name,
            timeout_ms=timeout,
        )

    async def _open_session(self, run: RunContext, session_id: str | None) -> Session:
        if session_id is None and run.session_id is not None:
            session_id = run.session_id
        if session_id is not None:
            session = await self.context_manager.get_session_state(session_id, run.tenant_id)
            if session is not None:
                return session

        session = await self.context_manager.create_session(
            tenant_id=run.tenant_id,
            metadata={"agent_name": run.agent_name},
            session_id=session_id,
        )
        self.bus.emit(
            EventType.SESSION_CREATED,
            {"session_id": session.id, "tenant_id": session.tenant_id},
            correlation_id=run.correlation_id,
        )
        return session

    async def _build_context(
        self,
        spec: AgentSpec,
        input: str,
        run: RunContext,
        session: Session,
    ) -> ExecutionContext:
        settings = self.config.strategy
        max_iterations = spec.max_iterations or self.config.default_max_iterations
        strategy_config = StrategyConfig(
            stop_conditions=StopConditions(
                max_turns=max_iterations,
                max_plan_steps=settings.max_plan_steps,
                max_tool_calls=settings.max_tool_calls,
                max_time_ms=settings.max_time_ms,
            ),
            max_execution_time_ms=run.timeout_ms,
            concurrency_limit=settings.concurrency_limit,
            error_budget=settings.error_budget,
            max_correction_attempts=settings.max_correction_attempts,
            tool_timeout_ms=settings.tool_timeout_ms,
        )

        agent_context: dict[str, Any] = {
            "agent_name": spec.name,
            "identity": asdict(spec.identity),
            "session_id": session.id,
            "tenant_id": run.tenant_id,
        }
        try:
            agent_context["memories"] = await self.context_manager.list_memories(
                MEMORY_WINDOW, tenant_id=run.tenant_id
            )
            last_run = session.metadata.get("last_correlation_id")
            if last_run:
                agent_context["last_snapshot"] = await self.context_manager.load_snapshot(
                    last_run, tenant_id=run.tenant_id
                )
        except StorageError as e:
            self.logger.warning("context_enrichment_failed", error=e.message)

        return ExecutionContext(
            input=input,
            tools=self.tools.resolve(spec.tools),
            agent_context=agent_context,
            config=strategy_config,
            run=run,
            history=list(session.history),
            metadata={"max_iterations": max_iterations},
        )

    async def _persist_best_effort(
        self,
        spec: AgentSpec,
        input: str,
        run: RunContext,
        success: bool,
        output: Any,
        error: str | None,
    ) -> None:
        try:
            await self.context_manager.store_snapshot(
                run.correlation_id,
                {
                    "agent_name": spec.name,
                    "session_id": run.session_id,
                    "input": input,
                    "success": success,
                    "output": output,
                    "error": error,
                    "parent_correlation_id": run.parent_correlation_id,
                },
                tenant_id=run.tenant_id,
            )
            if success:
                await self.context_manager.remember(
                    f"{spec.name}:last_result",
                    {"input": input, "output": output},
                    tenant_id=run.tenant_id,
                )
        except StorageError as e:
            self.logger.warning(
                "best_effort_persistence_failed",
                correlation_id=run.correlation_id,
                operation=e.operation,
                error=e.message,
            )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    # Lifecycle

    async def start(self, recover_events: bool = True) -> None:
        """Start background cleanup and redeliver events left unprocessed."""
        self.context_manager.start()
        if recover_events:
            await self.bus.recover()
        self.logger.info("orchestrator_started")

    async def shutdown(self) -> None:
        """Drain the bus, stop cleanup and close every backend."""
        await self.bus.cleanup()
        await self.context_manager.close()
        await self.event_store.close()
        self.logger.info("orchestrator_shutdown")

    async def get_stats(self) -> dict[str, Any]:
        store_stats = await self.event_store.get_stats()
        return {
            "tenant_id": self.config.tenant_id,
            "agents": len(self.agents),
            "tools": len(self.tools),
            "event_store": asdict(store_stats),
            "bus": {
                "pending": self.bus.pending,
                "dead_letters": len(self.bus.dead_letters),
            },
            "cleanup_running": self.context_manager.running,
        }
