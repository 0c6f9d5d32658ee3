"""
Trip scheduling service.

Caller boundary for the scheduling engine: resolves the trip, applies the
permission policy (leader-only actions, active participants for member
actions) and delegates to the store, funnel, lock gate and strategies.
Service methods return domain objects; the API layer converts them.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from app.config import settings
from app.features.trip_scheduling.domain.errors import (
    Forbidden,
    InvalidState,
    ScheduleValidationError,
    TripNotFound,
)
from app.features.trip_scheduling.domain.models import (
    ACTION_CANCEL,
    ACTION_OPEN_VOTING,
    ACTION_SET_PARTICIPANT,
    ACTION_VOTE,
    MODE_CONSENSUS,
    MODE_FUNNEL,
    MODE_HEATMAP,
    SCHEDULING_MODES,
    STATUS_LOCKED,
    STATUS_PROPOSED,
    AvailabilityRecord,
    ConsensusOption,
    DatePick,
    DatePicks,
    DateReaction,
    SchedulingSnapshot,
    Trip,
    TripParticipant,
    Vote,
    WindowPreference,
)
from app.features.trip_scheduling.repository import (
    GuardRejected,
    TripSchedulingRepository,
    build_repository,
)
from app.features.trip_scheduling.strategies import (
    ConsensusStrategy,
    HeatmapStrategy,
    SchedulingStrategy,
    ScoredWindow,
    build_strategies,
    get_strategy,
)
from app.infrastructure.observability.logging import get_logger

from .availability_store import AvailabilityStore
from .consensus_cache import ConsensusCache
from .date_picks_store import DatePicksStore
from .heatmap_aggregator import HeatmapCandidate
from .lock_gate import LockGate
from .proposal_funnel import DateProposalFunnel
from .refinement_selector import RefinementState, WindowRefinementSelector
from .state_machine import TripScheduleStateMachine
from .voting_aggregator import VotingAggregator, VotingStatus
from .window_suggestions import WindowSuggestionBoard

logger = get_logger(__name__)

TRIP_TYPES = ("collaborative", "hosted")
PARTICIPANT_STATUSES = ("active", "left")


@dataclass(slots=True)
class FunnelView:
    proposal_id: str | None
    approvals: int
    required_approvals: int
    date_state: str
    reactions: list[DateReaction] = field(default_factory=list)
    windows: list[ScoredWindow] = field(default_factory=list)


@dataclass(slots=True)
class HeatmapView:
    scores: dict[date, int]
    top_candidates: list[HeatmapCandidate] = field(default_factory=list)


@dataclass(slots=True)
class ViewerState:
    user_id: str
    is_leader: bool
    is_participant: bool
    can_lock: bool = False
    availability: AvailabilityRecord | None = None
    vote: Vote | None = None
    date_picks: DatePicks | None = None
    reaction: DateReaction | None = None
    window_preferences: list[WindowPreference] = field(default_factory=list)


@dataclass(slots=True)
class ScheduleView:
    """Everything a client needs to render one trip's scheduling state."""

    trip: Trip
    participant_ids: list[str]
    viewer: ViewerState
    consensus_options: list[ConsensusOption] = field(default_factory=list)
    refinement: RefinementState | None = None
    voting: VotingStatus | None = None
    heatmap: HeatmapView | None = None
    funnel: FunnelView | None = None


class TripSchedulingService:
    def __init__(
        self,
        repository: TripSchedulingRepository | None = None,
        cache: ConsensusCache | None = None,
        strategies: dict[str, SchedulingStrategy] | None = None,
        allow_member_lock: bool | None = None,
    ):
        self.repository = repository or build_repository()
        self.cache = cache or ConsensusCache()
        self.strategies = strategies or build_strategies()
        self.state_machine = TripScheduleStateMachine()
        self.availability = AvailabilityStore(self.repository, self.state_machine, self.strategies)
        self.date_picks = DatePicksStore(self.repository, self.state_machine, self.strategies)
        self.funnel = DateProposalFunnel(self.repository, self.state_machine, self.strategies)
        self.windows = WindowSuggestionBoard(self.repository, self.state_machine, self.strategies)
        self.lock_gate = LockGate(
            self.repository, self.state_machine, self.strategies, allow_member_lock
        )
        self.refinement = WindowRefinementSelector()
        self.voting = VotingAggregator()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _strategy(self, trip: Trip) -> SchedulingStrategy:
        return get_strategy(trip.scheduling_mode, self.strategies)

    async def _snapshot(self, trip_id: str) -> SchedulingSnapshot:
        snapshot = await self.repository.load_snapshot(trip_id)
        if snapshot is None:
            raise TripNotFound("Trip not found", trip_id=trip_id)
        return snapshot

    @staticmethod
    def _require_leader(trip: Trip, user_id: str, action: str) -> None:
        if not trip.is_leader(user_id):
            raise Forbidden(f"Only the trip leader can {action}", trip_id=trip.id)

    @staticmethod
    def _require_member(snapshot: SchedulingSnapshot, user_id: str) -> None:
        if snapshot.trip.is_leader(user_id) or snapshot.is_active_participant(user_id):
            return
        raise Forbidden("You are not an active participant of this trip", trip_id=snapshot.trip.id)

    # ------------------------------------------------------------------
    # Creation and queries
    # ------------------------------------------------------------------

    async def create_trip(
        self,
        creator_id: str,
        circle_id: str,
        name: str,
        trip_type: str = "collaborative",
        scheduling_mode: str = MODE_CONSENSUS,
        start_date: date | None = None,
        end_date: date | None = None,
        trip_length_days: int | None = None,
        circle_owner_id: str | None = None,
        participant_ids: list[str] | None = None,
    ) -> Trip:
        """
        Create a trip.

        Collaborative trips start ``proposed`` with the dates as their
        candidate range. Hosted trips need dates and are locked to them at
        creation.
        """
        if trip_type not in TRIP_TYPES:
            raise ScheduleValidationError(f"Unknown trip type: {trip_type}")
        if scheduling_mode not in SCHEDULING_MODES:
            raise ScheduleValidationError(f"Unknown scheduling mode: {scheduling_mode}")
        if (start_date is None) != (end_date is None):
            raise ScheduleValidationError("Provide both start and end dates, or neither")
        if start_date and end_date and start_date > end_date:
            raise ScheduleValidationError("Start date must be on or before end date")
        if trip_type == "hosted" and start_date is None:
            raise ScheduleValidationError("Hosted trips require start and end dates")
        if scheduling_mode == MODE_HEATMAP and trip_type != "hosted" and start_date is None:
            raise ScheduleValidationError("Heatmap trips require a start and end date to pick from")

        length = trip_length_days or settings.DEFAULT_TRIP_LENGTH_DAYS
        if length < 1:
            raise ScheduleValidationError("Trip length must be at least one day")

        now = datetime.now(UTC)
        trip = Trip(
            id=str(uuid.uuid4()),
            circle_id=circle_id,
            name=name,
            created_by=creator_id,
            type=trip_type,
            scheduling_mode=scheduling_mode,
            status=STATUS_PROPOSED,
            start_bound=start_date,
            end_bound=end_date,
            trip_length_days=length,
            created_at=now,
            updated_at=now,
            circle_owner_id=circle_owner_id,
        )

        if trip_type == "hosted":
            trip.status = STATUS_LOCKED
            trip.locked_start_date = start_date
            trip.locked_end_date = end_date
            trip.trip_length_days = (end_date - start_date).days + 1
        elif start_date and (end_date - start_date).days + 1 < length:
            raise ScheduleValidationError(
                f"Date range is shorter than the {length}-day trip length"
            )

        member_ids = [creator_id] + sorted(set(participant_ids or []) - {creator_id})
        participants = [
            TripParticipant(trip_id=trip.id, user_id=user_id, status="active", joined_at=now)
            for user_id in member_ids
        ]

        created = await self.repository.create_trip(trip, participants)
        logger.info(
            "Trip created",
            trip_id=created.id,
            circle_id=circle_id,
            type=trip_type,
            mode=scheduling_mode,
            status=created.status,
            participants=len(participants),
        )
        return created

    async def get_trip(self, trip_id: str) -> Trip:
        trip = await self.repository.get_trip(trip_id)
        if trip is None:
            raise TripNotFound("Trip not found", trip_id=trip_id)
        return trip

    async def consensus_options(self, snapshot: SchedulingSnapshot) -> list[ConsensusOption]:
        strategy = self._strategy(snapshot.trip)
        if not isinstance(strategy, ConsensusStrategy):
            return []
        return await self.cache.get_or_compute(
            snapshot.trip.id, snapshot.trip.version, lambda: strategy.options(snapshot)
        )

    async def get_schedule(self, trip_id: str, viewer_id: str) -> ScheduleView:
        snapshot = await self._snapshot(trip_id)
        self._require_member(snapshot, viewer_id)
        trip = snapshot.trip
        strategy = self._strategy(trip)

        viewer = ViewerState(
            user_id=viewer_id,
            is_leader=trip.is_leader(viewer_id),
            is_participant=snapshot.is_active_participant(viewer_id),
            can_lock=self.lock_gate.can_lock(snapshot, viewer_id),
            availability=next((a for a in snapshot.availability if a.user_id == viewer_id), None),
            vote=next((v for v in snapshot.votes if v.user_id == viewer_id), None),
            date_picks=next((p for p in snapshot.date_picks if p.user_id == viewer_id), None),
            reaction=next((r for r in snapshot.reactions if r.user_id == viewer_id), None),
            window_preferences=[
                p for p in snapshot.window_preferences if p.user_id == viewer_id
            ],
        )
        view = ScheduleView(
            trip=trip, participant_ids=snapshot.active_participant_ids, viewer=viewer
        )

        if trip.scheduling_mode == MODE_CONSENSUS:
            view.consensus_options = await self.consensus_options(snapshot)
            active = set(snapshot.active_participant_ids)
            responders = {
                a.user_id for a in snapshot.availability if not a.is_empty() and a.user_id in active
            }
            view.refinement = self.refinement.select(
                view.consensus_options, len(responders), len(active)
            )

        if trip.scheduling_mode == MODE_HEATMAP and isinstance(strategy, HeatmapStrategy):
            view.heatmap = HeatmapView(
                scores=strategy.aggregator.scores(snapshot.date_picks),
                top_candidates=strategy.top_candidates(snapshot),
            )

        if trip.voting_options:
            view.voting = self.voting.tally(
                trip.voting_options, snapshot.votes, snapshot.active_participant_ids
            )

        if trip.scheduling_mode == MODE_FUNNEL:
            summary = self.funnel.summary(snapshot)
            proposal = summary["proposal"]
            view.funnel = FunnelView(
                proposal_id=proposal.proposal_id if proposal else None,
                approvals=summary["approvals"],
                required_approvals=summary["required_approvals"],
                date_state=summary["date_state"],
                reactions=summary["reactions"],
                windows=self.windows.ranking(snapshot),
            )

        return view

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    async def set_participant(
        self, trip_id: str, caller_id: str, user_id: str, status: str = "active"
    ) -> Trip:
        if status not in PARTICIPANT_STATUSES:
            raise ScheduleValidationError(f"Unknown participant status: {status}", trip_id=trip_id)

        trip = await self.get_trip(trip_id)
        self._require_leader(trip, caller_id, "manage participants")
        guard = self.state_machine.guard(trip, ACTION_SET_PARTICIPANT, self._strategy(trip))

        participant = TripParticipant(
            trip_id=trip_id, user_id=user_id, status=status, joined_at=datetime.now(UTC)
        )
        try:
            updated = await self.repository.set_participant(participant, guard)
        except GuardRejected as e:
            raise self.state_machine.rejection(e.guard, e.current) from e

        logger.info("Participant updated", trip_id=trip_id, user_id=user_id, status=status)
        return updated

    # ------------------------------------------------------------------
    # Member submissions
    # ------------------------------------------------------------------

    async def submit_availability(
        self, trip_id: str, user_id: str, availability: AvailabilityRecord
    ) -> Trip:
        snapshot = await self._snapshot(trip_id)
        self._require_member(snapshot, user_id)
        return await self.availability.submit(trip_id, user_id, availability)

    async def submit_date_picks(self, trip_id: str, user_id: str, picks: list[DatePick]) -> Trip:
        snapshot = await self._snapshot(trip_id)
        self._require_member(snapshot, user_id)
        return await self.date_picks.submit(trip_id, user_id, picks)

    async def cast_vote(self, trip_id: str, user_id: str, option_key: str) -> Trip:
        snapshot = await self._snapshot(trip_id)
        self._require_member(snapshot, user_id)
        trip = snapshot.trip

        guard = self.state_machine.guard(trip, ACTION_VOTE, self._strategy(trip))
        if not any(option.option_key == option_key for option in trip.voting_options):
            raise ScheduleValidationError(
                f"Option {option_key!r} is not on the voting ballot", trip_id=trip_id
            )

        now = datetime.now(UTC)
        vote = Vote(
            trip_id=trip_id, user_id=user_id, option_key=option_key, created_at=now, updated_at=now
        )
        try:
            updated = await self.repository.upsert_vote(vote, guard)
        except GuardRejected as e:
            raise self.state_machine.rejection(e.guard, e.current) from e

        logger.info("Vote cast", trip_id=trip_id, user_id=user_id, option_key=option_key)
        return updated

    async def react(
        self,
        trip_id: str,
        user_id: str,
        reaction_type: str,
        note: str | None = None,
        proposal_id: str | None = None,
    ) -> Trip:
        snapshot = await self._snapshot(trip_id)
        self._require_member(snapshot, user_id)
        return await self.funnel.react(trip_id, user_id, reaction_type, note, proposal_id)

    async def propose_window(
        self,
        trip_id: str,
        user_id: str,
        description: str,
        start_hint: date | None = None,
        end_hint: date | None = None,
    ) -> Trip:
        snapshot = await self._snapshot(trip_id)
        self._require_member(snapshot, user_id)
        return await self.windows.propose(trip_id, user_id, description, start_hint, end_hint)

    async def set_window_preference(
        self,
        trip_id: str,
        user_id: str,
        window_id: str,
        preference: str,
        note: str | None = None,
    ) -> Trip:
        snapshot = await self._snapshot(trip_id)
        self._require_member(snapshot, user_id)
        return await self.windows.set_preference(trip_id, user_id, window_id, preference, note)

    # ------------------------------------------------------------------
    # Leader actions
    # ------------------------------------------------------------------

    async def open_voting(self, trip_id: str, caller_id: str) -> Trip:
        """
        Freeze availability and snapshot the current top options as the ballot.

        The ballot is computed from the snapshot at version N and written with
        a guard on version N, so it always matches the records it came from.
        """
        snapshot = await self._snapshot(trip_id)
        trip = snapshot.trip
        self._require_leader(trip, caller_id, "open voting")

        strategy = self._strategy(trip)
        guard = self.state_machine.guard(
            trip, ACTION_OPEN_VOTING, strategy, expected_version=trip.version
        )
        ballot = strategy.ballot(snapshot)
        if not ballot:
            raise InvalidState("No candidate dates to vote on yet", trip_id=trip_id)

        try:
            updated = await self.repository.open_voting(trip_id, ballot, guard)
        except GuardRejected as e:
            raise self.state_machine.rejection(e.guard, e.current) from e

        logger.info(
            "Voting opened",
            trip_id=trip_id,
            opened_by=caller_id,
            options=[option.option_key for option in ballot],
        )
        return updated

    async def propose_dates(
        self, trip_id: str, caller_id: str, start_date: date, end_date: date
    ) -> Trip:
        return await self.funnel.propose(trip_id, caller_id, start_date, end_date)

    async def compress_windows(
        self, trip_id: str, caller_id: str, keep_window_ids: list[str] | None = None
    ) -> tuple[Trip, list[str]]:
        return await self.windows.compress(trip_id, caller_id, keep_window_ids)

    async def lock(self, trip_id: str, caller_id: str, chosen: str | None = None) -> Trip:
        return await self.lock_gate.lock(trip_id, caller_id, chosen)

    async def cancel(self, trip_id: str, caller_id: str) -> Trip:
        trip = await self.get_trip(trip_id)
        self._require_leader(trip, caller_id, "cancel the trip")
        guard = self.state_machine.guard(trip, ACTION_CANCEL, self._strategy(trip))

        try:
            updated = await self.repository.cancel(trip_id, guard)
        except GuardRejected as e:
            raise self.state_machine.rejection(e.guard, e.current) from e

        logger.info("Trip canceled", trip_id=trip_id, canceled_by=caller_id)
        return updated


# Global instance
scheduling_service = TripSchedulingService()


def get_scheduling_service() -> TripSchedulingService:
    """FastAPI dependency; tests override it with an in-memory service."""
    return scheduling_service
