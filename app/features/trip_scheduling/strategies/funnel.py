"""
Funnel mode: members suggest windows, the leader proposes one window,
members react, and ceil(n/2) WORKS reactions make it lockable.

Window suggestions score WORKS +3, MAYBE +1, NO -2 per preference; archived
windows are left out of the ranking.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, date, datetime

from app.features.trip_scheduling.domain.errors import (
    InvalidState,
    QuorumNotMet,
    ScheduleValidationError,
)
from app.features.trip_scheduling.domain.models import (
    ACTION_ARCHIVE_WINDOWS,
    ACTION_PROPOSE_DATES,
    ACTION_PROPOSE_WINDOW,
    ACTION_REACT,
    ACTION_SET_WINDOW_PREFERENCE,
    APPROVAL_REACTION,
    MODE_FUNNEL,
    WINDOW_PREFERENCE_WEIGHTS,
    SchedulingSnapshot,
    WindowPreference,
    WindowProposal,
    make_option_key,
)

from .base import COMMON_ACTIONS, SchedulingStrategy

DATE_STATE_NO_DATES = "NO_DATES"
DATE_STATE_WINDOWS_OPEN = "WINDOWS_OPEN"
DATE_STATE_PROPOSED = "DATE_PROPOSED"
DATE_STATE_READY_TO_LOCK = "READY_TO_LOCK"
DATE_STATE_LOCKED = "DATES_LOCKED"

_EARLIEST = datetime.min.replace(tzinfo=UTC)


@dataclass(slots=True)
class ScoredWindow:
    window: WindowProposal
    score: int = 0
    works: int = 0
    maybe: int = 0
    no: int = 0


def active_windows(snapshot: SchedulingSnapshot) -> list[WindowProposal]:
    return [w for w in snapshot.window_proposals if not w.archived]


def score_windows(
    windows: list[WindowProposal], preferences: list[WindowPreference]
) -> list[ScoredWindow]:
    """Rank active windows by preference score, oldest first on ties."""
    scored = {w.window_id: ScoredWindow(window=w) for w in windows if not w.archived}
    for pref in preferences:
        entry = scored.get(pref.window_id)
        if entry is None:
            continue
        entry.score += WINDOW_PREFERENCE_WEIGHTS[pref.preference]
        if pref.preference == "WORKS":
            entry.works += 1
        elif pref.preference == "MAYBE":
            entry.maybe += 1
        else:
            entry.no += 1

    return sorted(
        scored.values(),
        key=lambda s: (-s.score, s.window.created_at or _EARLIEST, s.window.window_id),
    )


def required_approvals(active_participant_count: int) -> int:
    return math.ceil(max(active_participant_count, 1) / 2)


def count_approvals(snapshot: SchedulingSnapshot) -> int:
    """Distinct active participants approving the current proposal."""
    proposal = snapshot.trip.date_proposal
    if proposal is None:
        return 0
    active = set(snapshot.active_participant_ids)
    return len(
        {
            r.user_id
            for r in snapshot.reactions
            if r.reaction_type == APPROVAL_REACTION
            and r.proposal_id == proposal.proposal_id
            and r.user_id in active
        }
    )


def date_state(snapshot: SchedulingSnapshot) -> str:
    trip = snapshot.trip
    if trip.is_locked:
        return DATE_STATE_LOCKED
    if trip.date_proposal is None:
        if active_windows(snapshot):
            return DATE_STATE_WINDOWS_OPEN
        return DATE_STATE_NO_DATES
    if count_approvals(snapshot) >= required_approvals(snapshot.active_participant_count):
        return DATE_STATE_READY_TO_LOCK
    return DATE_STATE_PROPOSED


class FunnelStrategy(SchedulingStrategy):
    mode = MODE_FUNNEL
    actions = COMMON_ACTIONS | {
        ACTION_PROPOSE_WINDOW,
        ACTION_SET_WINDOW_PREFERENCE,
        ACTION_ARCHIVE_WINDOWS,
        ACTION_PROPOSE_DATES,
        ACTION_REACT,
    }
    vote_based = False

    def resolve_lock(
        self, snapshot: SchedulingSnapshot, chosen: str | None, caller_is_leader: bool
    ) -> tuple[date, date]:
        trip = snapshot.trip
        proposal = trip.date_proposal
        if proposal is None:
            raise InvalidState("No active date proposal to lock", trip_id=trip.id)

        if chosen is not None and chosen not in (
            make_option_key(proposal.start_date, proposal.end_date),
            proposal.start_date.isoformat(),
        ):
            raise ScheduleValidationError(
                "Funnel trips can only lock the active proposal", trip_id=trip.id
            )

        approvals = count_approvals(snapshot)
        required = required_approvals(snapshot.active_participant_count)
        if approvals < required:
            raise QuorumNotMet(
                f"Needs {required} approvals to lock, has {approvals}", trip_id=trip.id
            )
        return proposal.start_date, proposal.end_date

    def lock_ready(self, snapshot: SchedulingSnapshot) -> bool:
        return date_state(snapshot) == DATE_STATE_READY_TO_LOCK
