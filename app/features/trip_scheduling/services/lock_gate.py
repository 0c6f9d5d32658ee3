"""
Lock gate - the one irreversible commit of a trip's dates.

The lock is evaluated against a snapshot taken at version N and committed
with a guard requiring the trip to still be at version N and in a lockable
status. Of any number of concurrent lock calls exactly one commits; the
others observe the bumped version (or the locked status) and get
InvalidState.
"""

from __future__ import annotations

from app.config import settings
from app.features.trip_scheduling.domain.errors import Forbidden, SchedulingError, TripNotFound
from app.features.trip_scheduling.domain.models import ACTION_LOCK, SchedulingSnapshot, Trip
from app.features.trip_scheduling.repository.base import GuardRejected, TripSchedulingRepository
from app.features.trip_scheduling.strategies import SchedulingStrategy, get_strategy
from app.infrastructure.observability.logging import get_logger

from .state_machine import TripScheduleStateMachine

logger = get_logger(__name__)


class LockGate:
    def __init__(
        self,
        repository: TripSchedulingRepository,
        state_machine: TripScheduleStateMachine | None = None,
        strategies: dict[str, SchedulingStrategy] | None = None,
        allow_member_lock: bool | None = None,
    ):
        self.repository = repository
        self.state_machine = state_machine or TripScheduleStateMachine()
        self.strategies = strategies
        self.allow_member_lock = (
            settings.ALLOW_MEMBER_LOCK if allow_member_lock is None else allow_member_lock
        )

    def check_permission(
        self,
        snapshot: SchedulingSnapshot,
        caller_id: str,
        chosen: str | None,
        strategy: SchedulingStrategy,
    ) -> None:
        if snapshot.trip.is_leader(caller_id):
            return
        if (
            self.allow_member_lock
            and strategy.vote_based
            and chosen is not None
            and snapshot.is_active_participant(caller_id)
        ):
            return
        raise Forbidden("Only the trip leader can lock dates", trip_id=snapshot.trip.id)

    async def lock(self, trip_id: str, caller_id: str, chosen: str | None = None) -> Trip:
        """
        Lock the trip's dates.

        Raises:
            Forbidden: caller may not lock
            InvalidState: already locked, canceled, wrong status, or lost a race
            QuorumNotMet: votes or approvals do not support the window
            ScheduleValidationError: chosen option unknown or malformed
        """
        snapshot = await self.repository.load_snapshot(trip_id)
        if snapshot is None:
            raise TripNotFound("Trip not found", trip_id=trip_id)

        trip = snapshot.trip
        strategy = get_strategy(trip.scheduling_mode, self.strategies)
        self.check_permission(snapshot, caller_id, chosen, strategy)

        guard = self.state_machine.guard(
            trip, ACTION_LOCK, strategy, expected_version=trip.version
        )
        start_date, end_date = strategy.resolve_lock(snapshot, chosen, trip.is_leader(caller_id))

        try:
            locked = await self.repository.commit_lock(trip_id, start_date, end_date, guard)
        except GuardRejected as e:
            raise self.state_machine.rejection(e.guard, e.current) from e

        logger.info(
            "Trip dates locked",
            trip_id=trip_id,
            locked_by=caller_id,
            mode=trip.scheduling_mode,
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            version=locked.version,
        )
        return locked

    def can_lock(self, snapshot: SchedulingSnapshot, viewer_id: str) -> bool:
        """
        Whether ``viewer_id`` could lock right now without further input from members.

        On a tied vote this is still True: the leader breaks the tie by
        passing one of the tied options, and ``lock`` without a choice raises
        QuorumNotMet.
        """
        trip = snapshot.trip
        if not trip.is_leader(viewer_id) or trip.type == "hosted":
            return False

        strategy = get_strategy(trip.scheduling_mode, self.strategies)
        if trip.status not in strategy.lock_statuses:
            return False
        try:
            return strategy.lock_ready(snapshot)
        except SchedulingError:
            return False
