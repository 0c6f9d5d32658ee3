"""
Repository contract for trip scheduling.

Sub-entities (participants, availability, picks, votes, reactions) are
addressed by ``(trip_id, user_id)``; funnel window suggestions by
``(trip_id, window_id)`` and preferences on them by
``(trip_id, window_id, user_id)``. Every mutating call takes a WriteGuard
and must apply the guard check, the sub-record write, the status transition
and the version bump as one atomic unit. When the guard no longer holds the
call raises GuardRejected and writes nothing.
"""

from abc import ABC, abstractmethod
from datetime import date

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


class GuardRejected(Exception):
    """The trip changed between evaluation and write."""

    def __init__(self, guard: WriteGuard, current: Trip):
        super().__init__(f"Write guard for {guard.action} rejected on trip {current.id}")
        self.guard = guard
        self.current = current


class TripSchedulingRepository(ABC):
    @abstractmethod
    async def create_trip(self, trip: Trip, participants: list[TripParticipant]) -> Trip: ...

    @abstractmethod
    async def get_trip(self, trip_id: str) -> Trip | None: ...

    @abstractmethod
    async def load_snapshot(self, trip_id: str) -> SchedulingSnapshot | None: ...

    @abstractmethod
    async def set_participant(self, participant: TripParticipant, guard: WriteGuard) -> Trip: ...

    @abstractmethod
    async def replace_availability(self, record: AvailabilityRecord, guard: WriteGuard) -> Trip: ...

    @abstractmethod
    async def replace_date_picks(self, picks: DatePicks, guard: WriteGuard) -> Trip: ...

    @abstractmethod
    async def open_voting(
        self, trip_id: str, ballot: list[ConsensusOption], guard: WriteGuard
    ) -> Trip: ...

    @abstractmethod
    async def upsert_vote(self, vote: Vote, guard: WriteGuard) -> Trip: ...

    @abstractmethod
    async def replace_proposal(
        self, trip_id: str, proposal: DateProposal, guard: WriteGuard
    ) -> Trip:
        """Store the proposal and delete every reaction in the same write."""

    @abstractmethod
    async def upsert_reaction(self, reaction: DateReaction, guard: WriteGuard) -> Trip: ...

    @abstractmethod
    async def commit_lock(
        self, trip_id: str, start_date: date, end_date: date, guard: WriteGuard
    ) -> Trip: ...

    @abstractmethod
    async def cancel(self, trip_id: str, guard: WriteGuard) -> Trip: ...

    @abstractmethod
    async def add_window_proposal(self, window: WindowProposal, guard: WriteGuard) -> Trip: ...

    @abstractmethod
    async def upsert_window_preference(
        self, preference: WindowPreference, guard: WriteGuard
    ) -> Trip: ...

    @abstractmethod
    async def archive_windows(
        self, trip_id: str, window_ids: list[str], guard: WriteGuard
    ) -> Trip:
        """Mark the windows archived; their preferences are kept but no longer scored."""
