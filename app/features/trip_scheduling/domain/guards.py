"""
Write guards.

A guard is the condition a persisted write re-checks atomically against the
current trip row, plus the status transition applied by the same write. The
state machine builds guards; repositories enforce them.
"""

from dataclasses import dataclass, field

from .models import Trip


@dataclass(slots=True, frozen=True)
class WriteGuard:
    action: str
    allowed_statuses: frozenset[str]
    transitions: dict[str, str] = field(default_factory=dict)
    expected_version: int | None = None
    expected_proposal_id: str | None = None

    def holds(self, trip: Trip) -> bool:
        if trip.status not in self.allowed_statuses:
            return False
        if self.expected_version is not None and trip.version != self.expected_version:
            return False
        if self.expected_proposal_id is not None:
            proposal = trip.date_proposal
            if proposal is None or proposal.proposal_id != self.expected_proposal_id:
                return False
        return True

    def next_status(self, current_status: str) -> str:
        return self.transitions.get(current_status, current_status)
