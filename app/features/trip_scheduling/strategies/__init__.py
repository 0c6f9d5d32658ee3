"""
Per-mode scheduling strategies, selected by ``trip.scheduling_mode``.
"""

from app.features.trip_scheduling.domain.errors import ScheduleValidationError
from app.features.trip_scheduling.domain.models import MODE_CONSENSUS, MODE_FUNNEL, MODE_HEATMAP

from .base import SchedulingStrategy, VoteLockRule, find_option
from .consensus import ConsensusStrategy
from .funnel import (
    FunnelStrategy,
    ScoredWindow,
    count_approvals,
    date_state,
    required_approvals,
    score_windows,
)
from .heatmap import HeatmapStrategy


def build_strategies() -> dict[str, SchedulingStrategy]:
    return {
        MODE_CONSENSUS: ConsensusStrategy(),
        MODE_HEATMAP: HeatmapStrategy(),
        MODE_FUNNEL: FunnelStrategy(),
    }


def get_strategy(mode: str, strategies: dict[str, SchedulingStrategy] | None = None) -> SchedulingStrategy:
    registry = strategies if strategies is not None else build_strategies()
    try:
        return registry[mode]
    except KeyError as e:
        raise ScheduleValidationError(f"Unknown scheduling mode: {mode}") from e


__all__ = [
    "ConsensusStrategy",
    "FunnelStrategy",
    "HeatmapStrategy",
    "ScoredWindow",
    "SchedulingStrategy",
    "VoteLockRule",
    "build_strategies",
    "count_approvals",
    "date_state",
    "find_option",
    "get_strategy",
    "required_approvals",
    "score_windows",
]
