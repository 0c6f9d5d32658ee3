"""
Date proposal funnel.

The leader proposes exactly one window; members react WORKS / CAVEAT / CANT.
A new proposal replaces the old one and clears every reaction in the same
write. Reactions carry the id of the proposal they answer, so a reaction
racing a replacement is rejected instead of attaching to the new dates.
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime

from app.features.trip_scheduling.domain.errors import (
    Forbidden,
    InvalidState,
    ScheduleValidationError,
    TripNotFound,
)
from app.features.trip_scheduling.domain.models import (
    ACTION_PROPOSE_DATES,
    ACTION_REACT,
    MAX_REACTION_NOTE_LENGTH,
    REACTION_TYPES,
    DateProposal,
    DateReaction,
    SchedulingSnapshot,
    Trip,
)
from app.features.trip_scheduling.repository.base import GuardRejected, TripSchedulingRepository
from app.features.trip_scheduling.strategies import SchedulingStrategy, get_strategy
from app.features.trip_scheduling.strategies.funnel import (
    count_approvals,
    date_state,
    required_approvals,
)
from app.infrastructure.observability.logging import get_logger

from .state_machine import TripScheduleStateMachine

logger = get_logger(__name__)


class DateProposalFunnel:
    def __init__(
        self,
        repository: TripSchedulingRepository,
        state_machine: TripScheduleStateMachine | None = None,
        strategies: dict[str, SchedulingStrategy] | None = None,
    ):
        self.repository = repository
        self.state_machine = state_machine or TripScheduleStateMachine()
        self.strategies = strategies

    # Quorum helpers, shared with the funnel lock strategy
    required_approvals = staticmethod(required_approvals)
    count_approvals = staticmethod(count_approvals)
    date_state = staticmethod(date_state)

    async def _load_trip(self, trip_id: str) -> Trip:
        trip = await self.repository.get_trip(trip_id)
        if trip is None:
            raise TripNotFound("Trip not found", trip_id=trip_id)
        return trip

    async def propose(
        self, trip_id: str, leader_id: str, start_date: date, end_date: date
    ) -> Trip:
        """
        Replace the active proposal and clear all reactions.

        Raises:
            Forbidden: caller is not the trip leader
            InvalidState: trip locked, canceled, hosted, or not in funnel mode
            ScheduleValidationError: start after end, or outside the trip's range
        """
        trip = await self._load_trip(trip_id)
        if not trip.is_leader(leader_id):
            raise Forbidden("Only the trip leader can propose dates", trip_id=trip_id)

        strategy = get_strategy(trip.scheduling_mode, self.strategies)
        guard = self.state_machine.guard(trip, ACTION_PROPOSE_DATES, strategy)

        if start_date > end_date:
            raise ScheduleValidationError("Start date must be on or before end date", trip_id=trip_id)
        if trip.start_bound and trip.end_bound and (
            start_date < trip.start_bound or end_date > trip.end_bound
        ):
            raise ScheduleValidationError(
                "Proposed dates are outside the trip's date range", trip_id=trip_id
            )

        proposal = DateProposal(
            proposal_id=str(uuid.uuid4()),
            start_date=start_date,
            end_date=end_date,
            proposed_by=leader_id,
            proposed_at=datetime.now(UTC),
        )
        try:
            updated = await self.repository.replace_proposal(trip_id, proposal, guard)
        except GuardRejected as e:
            raise self.state_machine.rejection(e.guard, e.current) from e

        logger.info(
            "Dates proposed",
            trip_id=trip_id,
            proposal_id=proposal.proposal_id,
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            replaced=trip.date_proposal is not None,
        )
        return updated

    async def react(
        self,
        trip_id: str,
        user_id: str,
        reaction_type: str,
        note: str | None = None,
        proposal_id: str | None = None,
    ) -> Trip:
        """
        Upsert the caller's reaction to the active proposal.

        ``proposal_id`` pins the proposal the caller saw; it defaults to the
        proposal active when the request is read.
        """
        if reaction_type not in REACTION_TYPES:
            raise ScheduleValidationError(
                f"Reaction must be one of {', '.join(REACTION_TYPES)}", trip_id=trip_id
            )
        if note is not None and len(note) > MAX_REACTION_NOTE_LENGTH:
            raise ScheduleValidationError(
                f"Note must be at most {MAX_REACTION_NOTE_LENGTH} characters", trip_id=trip_id
            )

        trip = await self._load_trip(trip_id)
        strategy = get_strategy(trip.scheduling_mode, self.strategies)

        if trip.date_proposal is None:
            # Status errors (locked, canceled, wrong mode) win over the missing proposal
            self.state_machine.guard(trip, ACTION_REACT, strategy)
            raise InvalidState("No active date proposal to react to", trip_id=trip_id)

        expected = proposal_id or trip.date_proposal.proposal_id
        guard = self.state_machine.guard(
            trip, ACTION_REACT, strategy, expected_proposal_id=expected
        )

        reaction = DateReaction(
            trip_id=trip_id,
            user_id=user_id,
            proposal_id=expected,
            reaction_type=reaction_type,
            note=note,
            created_at=datetime.now(UTC),
            updated_at=datetime.now(UTC),
        )
        try:
            updated = await self.repository.upsert_reaction(reaction, guard)
        except GuardRejected as e:
            raise self.state_machine.rejection(e.guard, e.current) from e

        logger.info(
            "Reaction recorded",
            trip_id=trip_id,
            user_id=user_id,
            proposal_id=expected,
            reaction=reaction_type,
        )
        return updated

    def summary(self, snapshot: SchedulingSnapshot) -> dict:
        """Approval progress for the active proposal."""
        required = required_approvals(snapshot.active_participant_count)
        return {
            "proposal": snapshot.trip.date_proposal,
            "reactions": sorted(snapshot.reactions, key=lambda r: r.user_id),
            "approvals": count_approvals(snapshot),
            "required_approvals": required,
            "date_state": date_state(snapshot),
        }
