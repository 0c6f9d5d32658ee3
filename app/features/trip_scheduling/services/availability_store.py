"""
Availability store.

Holds one availability record per (trip, user). A resubmission replaces the
user's record. Writes are accepted while the trip is collecting
(proposed/scheduling); the first accepted one moves the trip to scheduling.
Authorization is enforced by the caller.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime

from app.features.trip_scheduling.domain.errors import ScheduleValidationError, TripNotFound
from app.features.trip_scheduling.domain.models import (
    ACTION_SUBMIT_AVAILABILITY,
    AVAILABILITY_STATUSES,
    AvailabilityRecord,
    Trip,
)
from app.features.trip_scheduling.repository.base import GuardRejected, TripSchedulingRepository
from app.features.trip_scheduling.strategies import SchedulingStrategy, get_strategy
from app.infrastructure.observability.logging import get_logger

from .state_machine import TripScheduleStateMachine

logger = get_logger(__name__)


class AvailabilityStore:
    def __init__(
        self,
        repository: TripSchedulingRepository,
        state_machine: TripScheduleStateMachine | None = None,
        strategies: dict[str, SchedulingStrategy] | None = None,
    ):
        self.repository = repository
        self.state_machine = state_machine or TripScheduleStateMachine()
        self.strategies = strategies

    def validate(self, trip: Trip, record: AvailabilityRecord) -> None:
        if record.is_empty():
            raise ScheduleValidationError(
                "Provide a broad status, weekly blocks or per-day availability", trip_id=trip.id
            )

        statuses = [record.broad_status] if record.broad_status else []
        statuses += [block.status for block in record.weekly_blocks]
        statuses += list(record.days.values())
        for status in statuses:
            if status not in AVAILABILITY_STATUSES:
                raise ScheduleValidationError(
                    f"Invalid availability status: {status!r}", trip_id=trip.id
                )

        for block in record.weekly_blocks:
            if block.start_date > block.end_date:
                raise ScheduleValidationError(
                    f"Block {block.start_date} - {block.end_date} ends before it starts",
                    trip_id=trip.id,
                )

        if trip.start_bound is None or trip.end_bound is None:
            return

        for day in record.days:
            if not trip.start_bound <= day <= trip.end_bound:
                raise ScheduleValidationError(
                    f"Date {day} is outside the trip's date range", trip_id=trip.id
                )
        for block in record.weekly_blocks:
            if block.start_date < trip.start_bound or block.end_date > trip.end_bound:
                raise ScheduleValidationError(
                    f"Block {block.start_date} - {block.end_date} is outside the trip's date range",
                    trip_id=trip.id,
                )

    async def submit(self, trip_id: str, user_id: str, availability: AvailabilityRecord) -> Trip:
        """
        Replace the user's availability record.

        Raises:
            TripNotFound: unknown trip
            InvalidState: trip frozen (voting, locked, canceled), hosted, or not consensus mode
            ScheduleValidationError: malformed availability
        """
        trip = await self.repository.get_trip(trip_id)
        if trip is None:
            raise TripNotFound("Trip not found", trip_id=trip_id)

        strategy = get_strategy(trip.scheduling_mode, self.strategies)
        guard = self.state_machine.guard(trip, ACTION_SUBMIT_AVAILABILITY, strategy)
        self.validate(trip, availability)

        record = replace(
            availability, trip_id=trip_id, user_id=user_id, updated_at=datetime.now(UTC)
        )
        try:
            updated = await self.repository.replace_availability(record, guard)
        except GuardRejected as e:
            raise self.state_machine.rejection(e.guard, e.current) from e

        logger.info(
            "Availability submitted",
            trip_id=trip_id,
            user_id=user_id,
            days=len(record.days),
            blocks=len(record.weekly_blocks),
            broad=record.broad_status is not None,
            status=updated.status,
        )
        return updated

    async def get(self, trip_id: str) -> list[AvailabilityRecord]:
        snapshot = await self.repository.load_snapshot(trip_id)
        if snapshot is None:
            raise TripNotFound("Trip not found", trip_id=trip_id)
        return snapshot.availability
