"""
Funnel window suggestions.

Before the leader proposes dates, members suggest rough windows ("first
week of October") and mark each one WORKS / MAYBE / NO. The leader reads
the ranking, may archive the weak suggestions, and then proposes concrete
dates. Proposing moves the trip to voting, which freezes suggestions.
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime

from app.config import settings
from app.features.trip_scheduling.domain.errors import (
    Forbidden,
    InvalidState,
    ScheduleValidationError,
    TripNotFound,
)
from app.features.trip_scheduling.domain.models import (
    ACTION_ARCHIVE_WINDOWS,
    ACTION_PROPOSE_WINDOW,
    ACTION_SET_WINDOW_PREFERENCE,
    MAX_REACTION_NOTE_LENGTH,
    MAX_WINDOW_DESCRIPTION_LENGTH,
    WINDOW_PREFERENCES,
    SchedulingSnapshot,
    Trip,
    WindowPreference,
    WindowProposal,
)
from app.features.trip_scheduling.repository.base import GuardRejected, TripSchedulingRepository
from app.features.trip_scheduling.strategies import SchedulingStrategy, get_strategy
from app.features.trip_scheduling.strategies.funnel import (
    ScoredWindow,
    active_windows,
    score_windows,
)
from app.infrastructure.observability.logging import get_logger

from .state_machine import TripScheduleStateMachine

logger = get_logger(__name__)


class WindowSuggestionBoard:
    def __init__(
        self,
        repository: TripSchedulingRepository,
        state_machine: TripScheduleStateMachine | None = None,
        strategies: dict[str, SchedulingStrategy] | None = None,
        keep_on_compress: int | None = None,
    ):
        self.repository = repository
        self.state_machine = state_machine or TripScheduleStateMachine()
        self.strategies = strategies
        self.keep_on_compress = (
            settings.WINDOW_COMPRESS_KEEP if keep_on_compress is None else keep_on_compress
        )

    async def _snapshot(self, trip_id: str) -> SchedulingSnapshot:
        snapshot = await self.repository.load_snapshot(trip_id)
        if snapshot is None:
            raise TripNotFound("Trip not found", trip_id=trip_id)
        return snapshot

    def ranking(self, snapshot: SchedulingSnapshot) -> list[ScoredWindow]:
        return score_windows(snapshot.window_proposals, snapshot.window_preferences)

    async def propose(
        self,
        trip_id: str,
        user_id: str,
        description: str,
        start_hint: date | None = None,
        end_hint: date | None = None,
    ) -> Trip:
        """
        Add a window suggestion.

        Raises:
            InvalidState: dates already proposed, trip closed, hosted, or not funnel
            ScheduleValidationError: empty or overlong description, bad hints
        """
        snapshot = await self._snapshot(trip_id)
        trip = snapshot.trip
        guard = self.state_machine.guard(
            trip, ACTION_PROPOSE_WINDOW, get_strategy(trip.scheduling_mode, self.strategies)
        )

        description = (description or "").strip()
        if not description:
            raise ScheduleValidationError("Describe the window you are suggesting", trip_id=trip_id)
        if len(description) > MAX_WINDOW_DESCRIPTION_LENGTH:
            raise ScheduleValidationError(
                f"Description must be at most {MAX_WINDOW_DESCRIPTION_LENGTH} characters",
                trip_id=trip_id,
            )
        if start_hint and end_hint and start_hint > end_hint:
            raise ScheduleValidationError("Start date must be on or before end date", trip_id=trip_id)
        if trip.start_bound and trip.end_bound:
            for hint in (start_hint, end_hint):
                if hint and not trip.start_bound <= hint <= trip.end_bound:
                    raise ScheduleValidationError(
                        "Suggested dates are outside the trip's date range", trip_id=trip_id
                    )

        window = WindowProposal(
            trip_id=trip_id,
            window_id=str(uuid.uuid4()),
            user_id=user_id,
            description=description,
            start_hint=start_hint,
            end_hint=end_hint,
            created_at=datetime.now(UTC),
        )
        try:
            updated = await self.repository.add_window_proposal(window, guard)
        except GuardRejected as e:
            raise self.state_machine.rejection(e.guard, e.current) from e

        logger.info(
            "Window suggested", trip_id=trip_id, user_id=user_id, window_id=window.window_id
        )
        return updated

    async def set_preference(
        self,
        trip_id: str,
        user_id: str,
        window_id: str,
        preference: str,
        note: str | None = None,
    ) -> Trip:
        """Upsert the caller's preference on one active window."""
        if preference not in WINDOW_PREFERENCES:
            raise ScheduleValidationError(
                f"Preference must be one of {', '.join(WINDOW_PREFERENCES)}", trip_id=trip_id
            )
        if note is not None and len(note) > MAX_REACTION_NOTE_LENGTH:
            raise ScheduleValidationError(
                f"Note must be at most {MAX_REACTION_NOTE_LENGTH} characters", trip_id=trip_id
            )

        snapshot = await self._snapshot(trip_id)
        trip = snapshot.trip
        guard = self.state_machine.guard(
            trip,
            ACTION_SET_WINDOW_PREFERENCE,
            get_strategy(trip.scheduling_mode, self.strategies),
        )
        if not any(w.window_id == window_id for w in active_windows(snapshot)):
            raise ScheduleValidationError(
                f"Window {window_id!r} is not an open suggestion", trip_id=trip_id
            )

        now = datetime.now(UTC)
        pref = WindowPreference(
            trip_id=trip_id,
            window_id=window_id,
            user_id=user_id,
            preference=preference,
            note=note,
            created_at=now,
            updated_at=now,
        )
        try:
            updated = await self.repository.upsert_window_preference(pref, guard)
        except GuardRejected as e:
            raise self.state_machine.rejection(e.guard, e.current) from e

        logger.info(
            "Window preference recorded",
            trip_id=trip_id,
            user_id=user_id,
            window_id=window_id,
            preference=preference,
        )
        return updated

    async def compress(
        self, trip_id: str, leader_id: str, keep_window_ids: list[str] | None = None
    ) -> tuple[Trip, list[str]]:
        """
        Archive every active window except the kept ones.

        Without ``keep_window_ids`` the top ``keep_on_compress`` windows by
        score are kept. Returns the updated trip and the archived window ids.
        """
        snapshot = await self._snapshot(trip_id)
        trip = snapshot.trip
        if not trip.is_leader(leader_id):
            raise Forbidden("Only the trip leader can archive window suggestions", trip_id=trip_id)

        guard = self.state_machine.guard(
            trip,
            ACTION_ARCHIVE_WINDOWS,
            get_strategy(trip.scheduling_mode, self.strategies),
            expected_version=trip.version,
        )

        ranked = self.ranking(snapshot)
        if keep_window_ids is None:
            keep = {s.window.window_id for s in ranked[: self.keep_on_compress]}
        else:
            keep = set(keep_window_ids)
            unknown = keep - {s.window.window_id for s in ranked}
            if unknown:
                raise ScheduleValidationError(
                    f"Not open suggestions: {', '.join(sorted(unknown))}", trip_id=trip_id
                )

        to_archive = [s.window.window_id for s in ranked if s.window.window_id not in keep]
        if not to_archive:
            raise InvalidState("No window suggestions left to archive", trip_id=trip_id)

        try:
            updated = await self.repository.archive_windows(trip_id, to_archive, guard)
        except GuardRejected as e:
            raise self.state_machine.rejection(e.guard, e.current) from e

        logger.info(
            "Window suggestions archived",
            trip_id=trip_id,
            archived=len(to_archive),
            kept=len(keep),
        )
        return updated, to_archive
