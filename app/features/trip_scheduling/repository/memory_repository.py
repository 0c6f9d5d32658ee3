"""
In-process scheduling repository.

Used for local development (SCHEDULING_BACKEND=memory) and tests. A per-trip
asyncio.Lock serialises guarded writes, which gives the same exactly-once
and freeze-boundary guarantees as the Postgres row lock within one process.
Reads hand out deep copies so callers never alias stored state.
"""

import asyncio
import copy
from collections import defaultdict
from datetime import UTC, date, datetime

from app.features.trip_scheduling.domain.errors import TripNotFound
from app.features.trip_scheduling.domain.guards import WriteGuard
from app.features.trip_scheduling.domain.models import (
    AvailabilityRecord,
    ConsensusOption,
    DatePicks,
    DateProposal,
    DateReaction,
    SchedulingSnapshot,
    Trip,
    TripParticipant,
    Vote,
    WindowPreference,
    WindowProposal,
)
from app.infrastructure.observability.logging import get_logger

from .base import GuardRejected, TripSchedulingRepository

logger = get_logger(__name__)


class InMemoryTripRepository(TripSchedulingRepository):
    def __init__(self):
        self._trips: dict[str, Trip] = {}
        self._participants: dict[str, dict[str, TripParticipant]] = defaultdict(dict)
        self._availability: dict[str, dict[str, AvailabilityRecord]] = defaultdict(dict)
        self._picks: dict[str, dict[str, DatePicks]] = defaultdict(dict)
        self._votes: dict[str, dict[str, Vote]] = defaultdict(dict)
        self._reactions: dict[str, dict[str, DateReaction]] = defaultdict(dict)
        self._windows: dict[str, dict[str, WindowProposal]] = defaultdict(dict)
        self._window_prefs: dict[str, dict[tuple[str, str], WindowPreference]] = defaultdict(dict)
        self._locks: dict[str, asyncio.Lock] = {}

    async def create_trip(self, trip: Trip, participants: list[TripParticipant]) -> Trip:
        async with self._locks.setdefault(trip.id, asyncio.Lock()):
            self._trips[trip.id] = copy.deepcopy(trip)
            for participant in participants:
                self._participants[trip.id][participant.user_id] = copy.deepcopy(participant)
        logger.debug("Trip stored in memory", trip_id=trip.id)
        return copy.deepcopy(trip)

    async def get_trip(self, trip_id: str) -> Trip | None:
        trip = self._trips.get(trip_id)
        return copy.deepcopy(trip) if trip else None

    async def load_snapshot(self, trip_id: str) -> SchedulingSnapshot | None:
        lock = self._locks.get(trip_id)
        if lock is None:
            return None
        async with lock:
            trip = self._trips[trip_id]
            return copy.deepcopy(
                SchedulingSnapshot(
                    trip=trip,
                    participants=list(self._participants[trip_id].values()),
                    availability=list(self._availability[trip_id].values()),
                    date_picks=list(self._picks[trip_id].values()),
                    votes=list(self._votes[trip_id].values()),
                    reactions=list(self._reactions[trip_id].values()),
                    window_proposals=list(self._windows[trip_id].values()),
                    window_preferences=list(self._window_prefs[trip_id].values()),
                )
            )

    async def _guarded(self, trip_id: str, guard: WriteGuard, apply) -> Trip:
        lock = self._locks.get(trip_id)
        if lock is None:
            raise TripNotFound("Trip not found", trip_id=trip_id)
        async with lock:
            trip = self._trips[trip_id]
            if not guard.holds(trip):
                raise GuardRejected(guard, copy.deepcopy(trip))

            apply(trip)
            trip.status = guard.next_status(trip.status)
            trip.version += 1
            trip.updated_at = datetime.now(UTC)
            return copy.deepcopy(trip)

    async def set_participant(self, participant: TripParticipant, guard: WriteGuard) -> Trip:
        def apply(_trip: Trip) -> None:
            self._participants[participant.trip_id][participant.user_id] = copy.deepcopy(participant)

        return await self._guarded(participant.trip_id, guard, apply)

    async def replace_availability(self, record: AvailabilityRecord, guard: WriteGuard) -> Trip:
        def apply(_trip: Trip) -> None:
            self._availability[record.trip_id][record.user_id] = copy.deepcopy(record)

        return await self._guarded(record.trip_id, guard, apply)

    async def replace_date_picks(self, picks: DatePicks, guard: WriteGuard) -> Trip:
        def apply(_trip: Trip) -> None:
            self._picks[picks.trip_id][picks.user_id] = copy.deepcopy(picks)

        return await self._guarded(picks.trip_id, guard, apply)

    async def open_voting(
        self, trip_id: str, ballot: list[ConsensusOption], guard: WriteGuard
    ) -> Trip:
        def apply(trip: Trip) -> None:
            trip.voting_options = copy.deepcopy(ballot)
            self._votes[trip_id].clear()

        return await self._guarded(trip_id, guard, apply)

    async def upsert_vote(self, vote: Vote, guard: WriteGuard) -> Trip:
        def apply(_trip: Trip) -> None:
            existing = self._votes[vote.trip_id].get(vote.user_id)
            stored = copy.deepcopy(vote)
            if existing and existing.created_at:
                stored.created_at = existing.created_at
            self._votes[vote.trip_id][vote.user_id] = stored

        return await self._guarded(vote.trip_id, guard, apply)

    async def replace_proposal(
        self, trip_id: str, proposal: DateProposal, guard: WriteGuard
    ) -> Trip:
        def apply(trip: Trip) -> None:
            trip.date_proposal = copy.deepcopy(proposal)
            self._reactions[trip_id].clear()

        return await self._guarded(trip_id, guard, apply)

    async def upsert_reaction(self, reaction: DateReaction, guard: WriteGuard) -> Trip:
        def apply(_trip: Trip) -> None:
            existing = self._reactions[reaction.trip_id].get(reaction.user_id)
            stored = copy.deepcopy(reaction)
            if existing and existing.created_at:
                stored.created_at = existing.created_at
            self._reactions[reaction.trip_id][reaction.user_id] = stored

        return await self._guarded(reaction.trip_id, guard, apply)

    async def commit_lock(
        self, trip_id: str, start_date: date, end_date: date, guard: WriteGuard
    ) -> Trip:
        def apply(trip: Trip) -> None:
            trip.locked_start_date = start_date
            trip.locked_end_date = end_date

        return await self._guarded(trip_id, guard, apply)

    async def cancel(self, trip_id: str, guard: WriteGuard) -> Trip:
        def apply(trip: Trip) -> None:
            trip.canceled_at = datetime.now(UTC)

        return await self._guarded(trip_id, guard, apply)

    async def add_window_proposal(self, window: WindowProposal, guard: WriteGuard) -> Trip:
        def apply(_trip: Trip) -> None:
            self._windows[window.trip_id][window.window_id] = copy.deepcopy(window)

        return await self._guarded(window.trip_id, guard, apply)

    async def upsert_window_preference(
        self, preference: WindowPreference, guard: WriteGuard
    ) -> Trip:
        def apply(_trip: Trip) -> None:
            key = (preference.window_id, preference.user_id)
            existing = self._window_prefs[preference.trip_id].get(key)
            stored = copy.deepcopy(preference)
            if existing and existing.created_at:
                stored.created_at = existing.created_at
            self._window_prefs[preference.trip_id][key] = stored

        return await self._guarded(preference.trip_id, guard, apply)

    async def archive_windows(
        self, trip_id: str, window_ids: list[str], guard: WriteGuard
    ) -> Trip:
        def apply(_trip: Trip) -> None:
            for window_id in window_ids:
                window = self._windows[trip_id].get(window_id)
                if window is not None:
                    window.archived = True

        return await self._guarded(trip_id, guard, apply)
