"""
Ranked start-date picks for top3_heatmap trips, one set per (trip, user).
"""

from __future__ import annotations

from datetime import UTC, datetime

from app.features.trip_scheduling.domain.errors import ScheduleValidationError, TripNotFound
from app.features.trip_scheduling.domain.models import (
    ACTION_SUBMIT_DATE_PICKS,
    MAX_DATE_PICKS,
    PICK_WEIGHTS,
    DatePick,
    DatePicks,
    Trip,
    window_end,
)
from app.features.trip_scheduling.repository.base import GuardRejected, TripSchedulingRepository
from app.features.trip_scheduling.strategies import SchedulingStrategy, get_strategy
from app.infrastructure.observability.logging import get_logger

from .state_machine import TripScheduleStateMachine

logger = get_logger(__name__)


class DatePicksStore:
    def __init__(
        self,
        repository: TripSchedulingRepository,
        state_machine: TripScheduleStateMachine | None = None,
        strategies: dict[str, SchedulingStrategy] | None = None,
    ):
        self.repository = repository
        self.state_machine = state_machine or TripScheduleStateMachine()
        self.strategies = strategies

    def validate(self, trip: Trip, picks: list[DatePick]) -> None:
        if len(picks) > MAX_DATE_PICKS:
            raise ScheduleValidationError(
                f"Maximum {MAX_DATE_PICKS} picks allowed", trip_id=trip.id
            )
        if picks and (trip.start_bound is None or trip.end_bound is None):
            raise ScheduleValidationError("Trip has no date range to pick from", trip_id=trip.id)

        seen_ranks: set[int] = set()
        seen_dates = set()
        for pick in picks:
            if pick.rank not in PICK_WEIGHTS:
                raise ScheduleValidationError("Rank must be 1, 2, or 3", trip_id=trip.id)
            if pick.rank in seen_ranks:
                raise ScheduleValidationError(f"Duplicate rank {pick.rank}", trip_id=trip.id)
            if pick.start_date in seen_dates:
                raise ScheduleValidationError(
                    f"Duplicate start date {pick.start_date}", trip_id=trip.id
                )
            if not trip.start_bound <= pick.start_date <= trip.end_bound:
                raise ScheduleValidationError(
                    f"Start date {pick.start_date} is outside trip bounds "
                    f"({trip.start_bound} to {trip.end_bound})",
                    trip_id=trip.id,
                )
            if window_end(pick.start_date, trip.trip_length_days) > trip.end_bound:
                raise ScheduleValidationError(
                    f"Window starting {pick.start_date} ({trip.trip_length_days} days) "
                    f"extends beyond end bound {trip.end_bound}",
                    trip_id=trip.id,
                )
            seen_ranks.add(pick.rank)
            seen_dates.add(pick.start_date)

    async def submit(self, trip_id: str, user_id: str, picks: list[DatePick]) -> Trip:
        trip = await self.repository.get_trip(trip_id)
        if trip is None:
            raise TripNotFound("Trip not found", trip_id=trip_id)

        strategy = get_strategy(trip.scheduling_mode, self.strategies)
        guard = self.state_machine.guard(trip, ACTION_SUBMIT_DATE_PICKS, strategy)
        self.validate(trip, picks)

        record = DatePicks(
            trip_id=trip_id,
            user_id=user_id,
            picks=sorted(picks, key=lambda p: p.rank),
            updated_at=datetime.now(UTC),
        )
        try:
            updated = await self.repository.replace_date_picks(record, guard)
        except GuardRejected as e:
            raise self.state_machine.rejection(e.guard, e.current) from e

        logger.info("Date picks saved", trip_id=trip_id, user_id=user_id, picks=len(picks))
        return updated
