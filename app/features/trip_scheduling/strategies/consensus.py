"""
Consensus mode: availability -> ranked windows -> ballot -> votes -> lock.
"""

from __future__ import annotations

from datetime import date

from app.features.trip_scheduling.domain.errors import ScheduleValidationError
from app.features.trip_scheduling.domain.models import (
    ACTION_OPEN_VOTING,
    ACTION_SUBMIT_AVAILABILITY,
    ACTION_VOTE,
    MODE_CONSENSUS,
    ConsensusOption,
    SchedulingSnapshot,
)
from app.features.trip_scheduling.services.consensus_calculator import ConsensusWindowCalculator

from .base import COMMON_ACTIONS, SchedulingStrategy, VoteLockRule, find_option


class ConsensusStrategy(SchedulingStrategy):
    mode = MODE_CONSENSUS
    actions = COMMON_ACTIONS | {ACTION_SUBMIT_AVAILABILITY, ACTION_OPEN_VOTING, ACTION_VOTE}

    def __init__(
        self,
        calculator: ConsensusWindowCalculator | None = None,
        vote_rule: VoteLockRule | None = None,
    ):
        self.calculator = calculator or ConsensusWindowCalculator()
        self.vote_rule = vote_rule or VoteLockRule()

    def options(self, snapshot: SchedulingSnapshot) -> list[ConsensusOption]:
        trip = snapshot.trip
        return self.calculator.calculate(
            snapshot.availability,
            trip.start_bound,
            trip.end_bound,
            trip.trip_length_days,
            snapshot.active_participant_ids,
        )

    def ballot(self, snapshot: SchedulingSnapshot) -> list[ConsensusOption]:
        return self.options(snapshot)

    def resolve_lock(
        self, snapshot: SchedulingSnapshot, chosen: str | None, caller_is_leader: bool
    ) -> tuple[date, date]:
        option = None
        if chosen is not None:
            option = find_option(snapshot.trip.voting_options, chosen)
            if option is None:
                raise ScheduleValidationError(
                    f"Option {chosen!r} is not on the voting ballot", trip_id=snapshot.trip.id
                )

        winner = self.vote_rule.resolve(snapshot, option, caller_is_leader)
        return winner.start_date, winner.end_date

    def lock_ready(self, snapshot: SchedulingSnapshot) -> bool:
        return self.vote_rule.is_ready(snapshot)
