"""
Trip schedule state machine.

    proposed --first submission--> scheduling --open voting / propose--> voting
    voting --lock--> locked            (top3_heatmap may also lock from scheduling)
    any open status --cancel--> canceled

``locked`` and ``canceled`` are terminal. Every mutation gets its WriteGuard
from here, so the status rules live in one place; the repository re-checks
the guard atomically with the write. Funnel window suggestions are only
accepted while collecting: proposing dates moves the trip to voting and
freezes them.
"""

from __future__ import annotations

from app.features.trip_scheduling.domain.errors import InvalidState
from app.features.trip_scheduling.domain.guards import WriteGuard
from app.features.trip_scheduling.domain.models import (
    ACTION_ARCHIVE_WINDOWS,
    ACTION_CANCEL,
    ACTION_LOCK,
    ACTION_OPEN_VOTING,
    ACTION_PROPOSE_DATES,
    ACTION_PROPOSE_WINDOW,
    ACTION_REACT,
    ACTION_SET_PARTICIPANT,
    ACTION_SET_WINDOW_PREFERENCE,
    ACTION_SUBMIT_AVAILABILITY,
    ACTION_SUBMIT_DATE_PICKS,
    ACTION_VOTE,
    OPEN_STATUSES,
    STATUS_CANCELED,
    STATUS_LOCKED,
    STATUS_PROPOSED,
    STATUS_SCHEDULING,
    STATUS_VOTING,
    Trip,
)
from app.features.trip_scheduling.strategies.base import SchedulingStrategy
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

COLLECTING = frozenset({STATUS_PROPOSED, STATUS_SCHEDULING})

# action -> (allowed statuses, transitions)
TRANSITIONS: dict[str, tuple[frozenset[str], dict[str, str]]] = {
    ACTION_SUBMIT_AVAILABILITY: (COLLECTING, {STATUS_PROPOSED: STATUS_SCHEDULING}),
    ACTION_SUBMIT_DATE_PICKS: (COLLECTING, {STATUS_PROPOSED: STATUS_SCHEDULING}),
    ACTION_OPEN_VOTING: (
        COLLECTING,
        {STATUS_PROPOSED: STATUS_VOTING, STATUS_SCHEDULING: STATUS_VOTING},
    ),
    ACTION_VOTE: (frozenset({STATUS_VOTING}), {}),
    ACTION_PROPOSE_DATES: (
        OPEN_STATUSES,
        {STATUS_PROPOSED: STATUS_VOTING, STATUS_SCHEDULING: STATUS_VOTING},
    ),
    ACTION_REACT: (frozenset({STATUS_VOTING}), {}),
    # Funnel windows stay open until the leader proposes dates (-> voting)
    ACTION_PROPOSE_WINDOW: (COLLECTING, {STATUS_PROPOSED: STATUS_SCHEDULING}),
    ACTION_SET_WINDOW_PREFERENCE: (COLLECTING, {STATUS_PROPOSED: STATUS_SCHEDULING}),
    ACTION_ARCHIVE_WINDOWS: (COLLECTING, {}),
    ACTION_CANCEL: (
        OPEN_STATUSES,
        {status: STATUS_CANCELED for status in OPEN_STATUSES},
    ),
    ACTION_SET_PARTICIPANT: (OPEN_STATUSES, {}),
}

# Actions that change the trip's dates or the inputs to them
SCHEDULING_ACTIONS = frozenset(
    {
        ACTION_SUBMIT_AVAILABILITY,
        ACTION_SUBMIT_DATE_PICKS,
        ACTION_OPEN_VOTING,
        ACTION_VOTE,
        ACTION_PROPOSE_DATES,
        ACTION_REACT,
        ACTION_PROPOSE_WINDOW,
        ACTION_SET_WINDOW_PREFERENCE,
        ACTION_ARCHIVE_WINDOWS,
        ACTION_LOCK,
    }
)

ACTION_LABELS = {
    ACTION_SUBMIT_AVAILABILITY: "Availability",
    ACTION_SUBMIT_DATE_PICKS: "Date picks",
    ACTION_OPEN_VOTING: "Opening voting",
    ACTION_VOTE: "Voting",
    ACTION_PROPOSE_DATES: "Proposing dates",
    ACTION_REACT: "Reacting to a proposal",
    ACTION_PROPOSE_WINDOW: "Suggesting a window",
    ACTION_SET_WINDOW_PREFERENCE: "Window preferences",
    ACTION_ARCHIVE_WINDOWS: "Archiving windows",
    ACTION_LOCK: "Locking dates",
}


class TripScheduleStateMachine:
    def allowed_statuses(self, action: str, strategy: SchedulingStrategy) -> frozenset[str]:
        if action == ACTION_LOCK:
            return strategy.lock_statuses
        return TRANSITIONS[action][0]

    def transitions(self, action: str, strategy: SchedulingStrategy) -> dict[str, str]:
        if action == ACTION_LOCK:
            return {status: STATUS_LOCKED for status in strategy.lock_statuses}
        return TRANSITIONS[action][1]

    def guard(
        self,
        trip: Trip,
        action: str,
        strategy: SchedulingStrategy,
        *,
        expected_version: int | None = None,
        expected_proposal_id: str | None = None,
    ) -> WriteGuard:
        """
        Validate ``action`` against the trip as read and build its write guard.

        Raises:
            InvalidState: hosted trip, unsupported mode, or wrong status
        """
        if action in SCHEDULING_ACTIONS and trip.type == "hosted":
            raise InvalidState(
                "Hosted trips have fixed dates; scheduling is disabled", trip_id=trip.id
            )
        if not strategy.supports(action):
            label = ACTION_LABELS.get(action, action)
            raise InvalidState(
                f"{label} is not available for {strategy.mode} trips", trip_id=trip.id
            )

        guard = WriteGuard(
            action=action,
            allowed_statuses=self.allowed_statuses(action, strategy),
            transitions=self.transitions(action, strategy),
            expected_version=expected_version,
            expected_proposal_id=expected_proposal_id,
        )
        if not guard.holds(trip):
            raise self.rejection(guard, trip)
        return guard

    def rejection(self, guard: WriteGuard, current: Trip) -> InvalidState:
        """Explain why ``guard`` does not hold against ``current``."""
        message = self._rejection_message(guard, current)
        logger.info(
            "Scheduling action rejected",
            trip_id=current.id,
            action=guard.action,
            status=current.status,
            reason=message,
        )
        return InvalidState(message, trip_id=current.id)

    def _rejection_message(self, guard: WriteGuard, trip: Trip) -> str:
        action = guard.action
        status = trip.status

        if status == STATUS_CANCELED:
            return "Trip has been canceled; scheduling is closed"

        if status == STATUS_LOCKED:
            if action == ACTION_LOCK:
                return "Trip is already locked"
            return "Dates are locked; scheduling is closed"

        if status not in guard.allowed_statuses:
            if action == ACTION_SUBMIT_AVAILABILITY:
                return "Availability is frozen while voting is open"
            if action == ACTION_SUBMIT_DATE_PICKS:
                return "Date picks are frozen while voting is open"
            if action == ACTION_OPEN_VOTING:
                return "Voting is already open for this trip"
            if action == ACTION_VOTE:
                return "Voting is not open for this trip"
            if action == ACTION_REACT:
                return "No active date proposal to react to"
            if action in (
                ACTION_PROPOSE_WINDOW,
                ACTION_SET_WINDOW_PREFERENCE,
                ACTION_ARCHIVE_WINDOWS,
            ):
                return "Window suggestions are frozen once dates are proposed"
            if action == ACTION_LOCK:
                allowed = " or ".join(sorted(guard.allowed_statuses))
                return f"Dates can only be locked while the trip is {allowed}"
            return f"Action {action} is not allowed while the trip is {status}"

        if guard.expected_proposal_id is not None:
            proposal = trip.date_proposal
            if proposal is None:
                return "No active date proposal to react to"
            if proposal.proposal_id != guard.expected_proposal_id:
                return "The date proposal changed; review the new dates and react again"

        if guard.expected_version is not None and trip.version != guard.expected_version:
            return "Trip changed while the request was in flight; reload and try again"

        return f"Action {action} is not allowed while the trip is {status}"
