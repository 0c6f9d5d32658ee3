"""
Window refinement selector.

Once enough of the group has answered, focus further collection on a handful
of promising windows instead of the whole range.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from app.config import settings
from app.features.trip_scheduling.domain.models import ConsensusOption

PHASE_COLLECTING = "collecting"
PHASE_REFINING = "refining"


@dataclass(slots=True)
class RefinementState:
    phase: str
    responder_count: int
    participant_count: int
    promising_windows: list[ConsensusOption] = field(default_factory=list)
    skip_refinement: bool = False
    dominant_option: ConsensusOption | None = None

    @property
    def triggered(self) -> bool:
        return self.phase == PHASE_REFINING


class WindowRefinementSelector:
    def __init__(
        self,
        min_response_ratio: float | None = None,
        min_responders: int | None = None,
        high_score: float | None = None,
        window_limit: int | None = None,
    ):
        self.min_response_ratio = (
            settings.REFINEMENT_MIN_RESPONSE_RATIO if min_response_ratio is None else min_response_ratio
        )
        self.min_responders = (
            settings.REFINEMENT_MIN_RESPONDERS if min_responders is None else min_responders
        )
        self.high_score = settings.REFINEMENT_HIGH_SCORE if high_score is None else high_score
        self.window_limit = window_limit or settings.PROMISING_WINDOW_LIMIT

    def is_triggered(self, responder_count: int, participant_count: int) -> bool:
        if participant_count <= 0 or responder_count <= 0:
            return False
        required = min(self.min_responders, participant_count)
        ratio = responder_count / participant_count
        return responder_count >= required and ratio >= self.min_response_ratio

    def promising_windows(self, ranked_options: list[ConsensusOption]) -> list[ConsensusOption]:
        """Top windows for refinement: up to the limit when 2+ exist, else whatever exists."""
        if len(ranked_options) >= 2:
            return ranked_options[: min(self.window_limit, len(ranked_options))]
        return list(ranked_options)

    def select(
        self,
        ranked_options: list[ConsensusOption],
        responder_count: int,
        participant_count: int,
    ) -> RefinementState:
        state = RefinementState(
            phase=PHASE_COLLECTING,
            responder_count=responder_count,
            participant_count=participant_count,
        )
        if not self.is_triggered(responder_count, participant_count):
            return state

        state.phase = PHASE_REFINING
        state.promising_windows = self.promising_windows(ranked_options)

        strong = {
            option.option_key for option in ranked_options if option.score >= self.high_score
        }
        if len(strong) < 2 and ranked_options:
            state.skip_refinement = True
            state.dominant_option = ranked_options[0]

        return state
