"""
Scheduling strategy interface.

A trip's ``scheduling_mode`` selects one strategy. The strategy decides which
actions the mode supports, what the voting ballot is, from which statuses the
trip may lock and which window a lock commits. Status transitions and write
guards stay in the state machine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import date

from app.config import settings
from app.features.trip_scheduling.domain.errors import InvalidState, QuorumNotMet
from app.features.trip_scheduling.domain.models import (
    ACTION_CANCEL,
    ACTION_LOCK,
    ACTION_SET_PARTICIPANT,
    STATUS_VOTING,
    ConsensusOption,
    SchedulingSnapshot,
)
from app.features.trip_scheduling.services.voting_aggregator import VotingAggregator, VotingStatus

STRICTNESS_LEADING = "leading"
STRICTNESS_ANY_VOTED = "any_voted"

COMMON_ACTIONS = frozenset({ACTION_LOCK, ACTION_CANCEL, ACTION_SET_PARTICIPANT})


def find_option(
    options: Sequence[ConsensusOption], chosen: str, match_start_date: bool = False
) -> ConsensusOption | None:
    """Match a ballot option by key, or by bare ISO start date when allowed."""
    for option in options:
        if option.option_key == chosen:
            return option

    if not match_start_date:
        return None
    try:
        start = date.fromisoformat(chosen)
    except ValueError:
        return None
    return next((option for option in options if option.start_date == start), None)


class VoteLockRule:
    """
    Which ballot option a vote-based trip may lock.

    ``leading``: the unique leading option; on a tie at the top the trip
    leader may pick any of the tied options.
    ``any_voted``: any option holding at least one vote.
    """

    def __init__(self, strictness: str | None = None, aggregator: VotingAggregator | None = None):
        self.strictness = strictness or settings.VOTE_LOCK_STRICTNESS
        self.aggregator = aggregator or VotingAggregator()

    def tally(self, snapshot: SchedulingSnapshot) -> VotingStatus:
        return self.aggregator.tally(
            snapshot.trip.voting_options, snapshot.votes, snapshot.active_participant_ids
        )

    def resolve(
        self,
        snapshot: SchedulingSnapshot,
        option: ConsensusOption | None,
        caller_is_leader: bool,
    ) -> ConsensusOption:
        status = self.tally(snapshot)

        if option is None:
            if status.leading_option is None:
                raise QuorumNotMet("No votes have been cast yet", trip_id=snapshot.trip.id)
            if status.is_tie:
                raise QuorumNotMet(
                    "Votes are tied; choose one of the leading options", trip_id=snapshot.trip.id
                )
            return find_option(snapshot.trip.voting_options, status.leading_option.option_key)

        tally = status.get(option.option_key)
        votes = tally.votes if tally else 0

        if self.strictness == STRICTNESS_ANY_VOTED:
            if votes > 0:
                return option
            raise QuorumNotMet("The chosen option has no votes", trip_id=snapshot.trip.id)

        if status.leading_option is None:
            raise QuorumNotMet("No votes have been cast yet", trip_id=snapshot.trip.id)

        tied_keys = {t.option_key for t in status.tied_leaders()}
        if option.option_key not in tied_keys:
            raise QuorumNotMet(
                f"The chosen option is not leading ({votes} of {status.leading_votes} votes)",
                trip_id=snapshot.trip.id,
            )
        if status.is_tie and not caller_is_leader:
            raise QuorumNotMet(
                "Votes are tied; only the trip leader can break the tie", trip_id=snapshot.trip.id
            )
        return option

    def is_ready(self, snapshot: SchedulingSnapshot) -> bool:
        status = self.tally(snapshot)
        if self.strictness == STRICTNESS_ANY_VOTED:
            return status.voted_count > 0
        return status.leading_option is not None


class SchedulingStrategy(ABC):
    mode: str = ""
    actions: frozenset[str] = COMMON_ACTIONS
    lock_statuses: frozenset[str] = frozenset({STATUS_VOTING})
    vote_based: bool = True

    def supports(self, action: str) -> bool:
        return action in self.actions

    def ballot(self, snapshot: SchedulingSnapshot) -> list[ConsensusOption]:
        """Options frozen onto the trip when voting opens."""
        raise InvalidState(
            f"Voting is not available for {self.mode} trips", trip_id=snapshot.trip.id
        )

    @abstractmethod
    def resolve_lock(
        self, snapshot: SchedulingSnapshot, chosen: str | None, caller_is_leader: bool
    ) -> tuple[date, date]:
        """
        The window a lock would commit right now.

        Raises:
            QuorumNotMet: threshold not satisfied
            ScheduleValidationError: chosen option malformed or unknown
            InvalidState: nothing to lock in the current state
        """

    @abstractmethod
    def lock_ready(self, snapshot: SchedulingSnapshot) -> bool:
        """Whether the leader could lock without further input from members."""
