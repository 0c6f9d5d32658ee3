"""
Service layer for trip scheduling.

Only the pure scoring components are re-exported here; import the
orchestrating services from their modules.
"""

from .consensus_calculator import ConsensusWindowCalculator, normalize_to_per_day
from .heatmap_aggregator import HeatmapAggregator, HeatmapCandidate
from .refinement_selector import RefinementState, WindowRefinementSelector
from .voting_aggregator import OptionTally, VotingAggregator, VotingStatus

__all__ = [
    "ConsensusWindowCalculator",
    "HeatmapAggregator",
    "HeatmapCandidate",
    "OptionTally",
    "RefinementState",
    "VotingAggregator",
    "VotingStatus",
    "WindowRefinementSelector",
    "normalize_to_per_day",
]
