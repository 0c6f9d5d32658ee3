"""
Domain subpackage for trip scheduling.
"""

from .errors import (
    Forbidden,
    InvalidState,
    QuorumNotMet,
    ScheduleValidationError,
    SchedulingError,
    TripNotFound,
)
from .models import (
    AvailabilityRecord,
    ConsensusOption,
    DatePick,
    DatePicks,
    DateProposal,
    DateReaction,
    SchedulingSnapshot,
    Trip,
    TripParticipant,
    Vote,
    WeeklyBlock,
)

__all__ = [
    "AvailabilityRecord",
    "ConsensusOption",
    "DatePick",
    "DatePicks",
    "DateProposal",
    "DateReaction",
    "Forbidden",
    "InvalidState",
    "QuorumNotMet",
    "ScheduleValidationError",
    "SchedulingError",
    "SchedulingSnapshot",
    "Trip",
    "TripNotFound",
    "TripParticipant",
    "Vote",
    "WeeklyBlock",
]
