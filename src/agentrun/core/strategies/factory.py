"""
Strategy Factory

Turns a planner tag into a strategy instance. Tags are validated here, once:
an unknown tag raises ConfigurationError at this boundary instead of failing
deep inside a run. The ``auto`` tag selects by task complexity.
"""

import re

import structlog

from agentrun.core.domain.models import ExecutionContext, StrategyKind
from agentrun.core.errors import ConfigurationError
from agentrun.core.interfaces.llm import ReasoningAdapterProtocol
from agentrun.core.strategies.base import BaseStrategy
from agentrun.core.strategies.react import ReactStrategy
from agentrun.core.strategies.rewoo import RewooStrategy
from agentrun.runtime.bus import RuntimeBus

AUTO = "auto"

COMPLEX_KEYWORDS = re.compile(
    r"analyze|create|generate|build|integrate|workflow|plan", re.IGNORECASE
)
MULTI_ACTION_KEYWORDS = re.compile(r"and|then|after|before|while|until", re.IGNORECASE)

STRATEGIES: dict[StrategyKind, type[BaseStrategy]] = {
    StrategyKind.REACT: ReactStrategy,
    StrategyKind.REWOO: RewooStrategy,
}


def parse_planner(tag: str | StrategyKind) -> StrategyKind | None:
    """
    Validate a planner tag.

    Returns the StrategyKind, or None for ``auto``.

    Raises:
        ConfigurationError: If the tag is not react, rewoo or auto
    """
    if isinstance(tag, StrategyKind):
        return tag
    normalized = str(tag).strip().lower()
    if normalized == AUTO:
        return None
    try:
        return StrategyKind(normalized)
    except ValueError as e:
        valid = ", ".join([k.value for k in StrategyKind] + [AUTO])
        raise ConfigurationError(
            f"Unknown planner '{tag}'. Valid planners: {valid}"
        ) from e


def complexity_score(
    text: str,
    tool_count: int,
    history_length: int = 0,
    history_weight_threshold: int = 10,
) -> int:
    """
    Heuristic task complexity.

    tool count, +1 for input over 100 chars, +2 more over 500 chars,
    +2 for complex-task keywords, +1 for multi-action keywords and +1 when
    prior history is longer than ``history_weight_threshold`` steps.
    """
    score = tool_count
    if len(text) > 100:
        score += 1
    if len(text) > 500:
        score += 2
    if COMPLEX_KEYWORDS.search(text):
        score += 2
    if MULTI_ACTION_KEYWORDS.search(text):
        score += 1
    if history_length > history_weight_threshold:
        score += 1
    return score


class StrategyFactory:
    """Creates strategies bound to one reasoning adapter and bus."""

    def __init__(
        self,
        reasoning_adapter: ReasoningAdapterProtocol,
        bus: RuntimeBus | None = None,
        complexity_threshold: int = 5,
        history_weight_threshold: int = 10,
    ):
        self.reasoning_adapter = reasoning_adapter
        self.bus = bus
        self.complexity_threshold = complexity_threshold
        self.history_weight_threshold = history_weight_threshold
        self.logger = structlog.get_logger().bind(component="strategy_factory")

    def create(self, kind: StrategyKind | str) -> BaseStrategy:
        """Instantiate an explicit strategy; ``auto`` is rejected here."""
        resolved = parse_planner(kind)
        if resolved is None:
            raise ConfigurationError("Planner 'auto' needs an execution context; use select()")
        return STRATEGIES[resolved](self.reasoning_adapter, bus=self.bus)

    def select(self, context: ExecutionContext) -> StrategyKind:
        """Pick ReWoo for complex tasks and ReAct otherwise."""
        score = complexity_score(
            context.input,
            len(context.tools),
            len(context.history),
            self.history_weight_threshold,
        )
        kind = StrategyKind.REWOO if score >= self.complexity_threshold else StrategyKind.REACT
        self.logger.info(
            "strategy_selected",
            correlation_id=context.correlation_id,
            strategy=kind.value,
            complexity=score,
            threshold=self.complexity_threshold,
        )
        context.metadata["complexity"] = score
        return kind

    def resolve(self, planner: str | StrategyKind, context: ExecutionContext) -> BaseStrategy:
        """Create the strategy for ``planner``, selecting by complexity for ``auto``."""
        kind = parse_planner(planner)
        if kind is None:
            kind = self.select(context)
        return self.create(kind)
