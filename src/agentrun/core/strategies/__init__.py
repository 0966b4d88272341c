from agentrun.core.strategies.base import BaseStrategy
from agentrun.core.strategies.factory import StrategyFactory, complexity_score, parse_planner
from agentrun.core.strategies.react import ReactStrategy
from agentrun.core.strategies.rewoo import RewooStrategy

__all__ = [
    "BaseStrategy",
    "ReactStrategy",
    "RewooStrategy",
    "StrategyFactory",
    "complexity_score",
    "parse_planner",
]
