"""
Domain models for trip date scheduling.

Plain dataclasses shared by the repositories, the scheduling components and
the API layer. Status, mode and availability values are kept as strings so
rows map to them without conversion.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Literal

TripType = Literal["collaborative", "hosted"]
SchedulingMode = Literal["consensus", "funnel", "top3_heatmap"]
TripStatus = Literal["proposed", "scheduling", "voting", "locked", "canceled"]
AvailabilityStatus = Literal["available", "maybe", "unavailable"]
ReactionType = Literal["WORKS", "CAVEAT", "CANT"]
WindowPreferenceType = Literal["WORKS", "MAYBE", "NO"]
ParticipantStatus = Literal["active", "left"]

STATUS_PROPOSED = "proposed"
STATUS_SCHEDULING = "scheduling"
STATUS_VOTING = "voting"
STATUS_LOCKED = "locked"
STATUS_CANCELED = "canceled"

TERMINAL_STATUSES = frozenset({STATUS_LOCKED, STATUS_CANCELED})
OPEN_STATUSES = frozenset({STATUS_PROPOSED, STATUS_SCHEDULING, STATUS_VOTING})

MODE_CONSENSUS = "consensus"
MODE_FUNNEL = "funnel"
MODE_HEATMAP = "top3_heatmap"
SCHEDULING_MODES = (MODE_CONSENSUS, MODE_FUNNEL, MODE_HEATMAP)

AVAILABILITY_STATUSES = ("available", "maybe", "unavailable")
REACTION_TYPES = ("WORKS", "CAVEAT", "CANT")
APPROVAL_REACTION = "WORKS"

# Heatmap pick weights: "love to go", "can go", "might go"
PICK_WEIGHTS = {1: 3, 2: 2, 3: 1}
MAX_DATE_PICKS = 3
MAX_REACTION_NOTE_LENGTH = 500

# Funnel window suggestions, scored before the leader proposes dates
WINDOW_PREFERENCES = ("WORKS", "MAYBE", "NO")
WINDOW_PREFERENCE_WEIGHTS = {"WORKS": 3, "MAYBE": 1, "NO": -2}
MAX_WINDOW_DESCRIPTION_LENGTH = 200

# Mutating actions, as named in write guards and rejection messages
ACTION_SUBMIT_AVAILABILITY = "submit_availability"
ACTION_SUBMIT_DATE_PICKS = "submit_date_picks"
ACTION_OPEN_VOTING = "open_voting"
ACTION_VOTE = "vote"
ACTION_PROPOSE_DATES = "propose_dates"
ACTION_REACT = "react"
ACTION_PROPOSE_WINDOW = "propose_window"
ACTION_SET_WINDOW_PREFERENCE = "set_window_preference"
ACTION_ARCHIVE_WINDOWS = "archive_windows"
ACTION_LOCK = "lock"
ACTION_CANCEL = "cancel"
ACTION_SET_PARTICIPANT = "set_participant"


def make_option_key(start_date: date, end_date: date) -> str:
    """Deterministic key for a date window, e.g. ``2025-08-01_2025-08-03``."""
    return f"{start_date.isoformat()}_{end_date.isoformat()}"


def parse_option_key(option_key: str) -> tuple[date, date]:
    """Inverse of make_option_key. Raises ValueError on malformed keys."""
    start_raw, sep, end_raw = option_key.partition("_")
    if not sep:
        raise ValueError(f"Malformed option key: {option_key!r}")
    return date.fromisoformat(start_raw), date.fromisoformat(end_raw)


def window_end(start_date: date, length_days: int) -> date:
    return start_date + timedelta(days=length_days - 1)


def iter_days(start_date: date, end_date: date):
    """Yield every date in the inclusive range."""
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


@dataclass(slots=True)
class DateProposal:
    """The single active funnel proposal for a trip."""

    proposal_id: str
    start_date: date
    end_date: date
    proposed_by: str
    proposed_at: datetime


@dataclass(slots=True)
class ConsensusOption:
    """A candidate window with its aggregate compatibility score."""

    option_key: str
    start_date: date
    end_date: date
    score: float
    total_score: float = 0.0
    coverage: float = 0.0


@dataclass(slots=True)
class Trip:
    """Aggregate root for scheduling."""

    id: str
    circle_id: str
    name: str
    created_by: str
    type: TripType
    scheduling_mode: SchedulingMode
    status: TripStatus
    start_bound: date | None
    end_bound: date | None
    trip_length_days: int
    created_at: datetime
    updated_at: datetime
    circle_owner_id: str | None = None
    locked_start_date: date | None = None
    locked_end_date: date | None = None
    voting_options: list[ConsensusOption] = field(default_factory=list)
    date_proposal: DateProposal | None = None
    canceled_at: datetime | None = None
    version: int = 1

    @property
    def is_locked(self) -> bool:
        return self.status == STATUS_LOCKED

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_leader(self, user_id: str) -> bool:
        return user_id == self.created_by or (
            self.circle_owner_id is not None and user_id == self.circle_owner_id
        )


@dataclass(slots=True)
class TripParticipant:
    trip_id: str
    user_id: str
    status: ParticipantStatus = "active"
    joined_at: datetime | None = None


@dataclass(slots=True)
class WeeklyBlock:
    """A contiguous span sharing one tri-state value."""

    start_date: date
    end_date: date
    status: AvailabilityStatus


@dataclass(slots=True)
class AvailabilityRecord:
    """
    One participant's availability for a trip.

    Any mix of the three representations may be present; they reduce to a
    per-day view with precedence per-day > weekly block > broad.
    """

    trip_id: str
    user_id: str
    broad_status: AvailabilityStatus | None = None
    weekly_blocks: list[WeeklyBlock] = field(default_factory=list)
    days: dict[date, AvailabilityStatus] = field(default_factory=dict)
    updated_at: datetime | None = None

    def is_empty(self) -> bool:
        return self.broad_status is None and not self.weekly_blocks and not self.days


@dataclass(slots=True)
class DatePick:
    rank: int
    start_date: date


@dataclass(slots=True)
class DatePicks:
    """Up to three ranked window start dates (top3_heatmap mode)."""

    trip_id: str
    user_id: str
    picks: list[DatePick] = field(default_factory=list)
    updated_at: datetime | None = None


@dataclass(slots=True)
class Vote:
    trip_id: str
    user_id: str
    option_key: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class DateReaction:
    trip_id: str
    user_id: str
    proposal_id: str
    reaction_type: ReactionType
    note: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class WindowProposal:
    """A member's free-text suggestion of when the funnel trip could happen."""

    trip_id: str
    window_id: str
    user_id: str
    description: str
    start_hint: date | None = None
    end_hint: date | None = None
    archived: bool = False
    created_at: datetime | None = None


@dataclass(slots=True)
class WindowPreference:
    trip_id: str
    window_id: str
    user_id: str
    preference: WindowPreferenceType
    note: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class SchedulingSnapshot:
    """Everything the strategies need to evaluate a trip at one version."""

    trip: Trip
    participants: list[TripParticipant] = field(default_factory=list)
    availability: list[AvailabilityRecord] = field(default_factory=list)
    date_picks: list[DatePicks] = field(default_factory=list)
    votes: list[Vote] = field(default_factory=list)
    reactions: list[DateReaction] = field(default_factory=list)
    window_proposals: list[WindowProposal] = field(default_factory=list)
    window_preferences: list[WindowPreference] = field(default_factory=list)

    @property
    def active_participant_ids(self) -> list[str]:
        return sorted(p.user_id for p in self.participants if p.status == "active")

    @property
    def active_participant_count(self) -> int:
        return max(len(self.active_participant_ids), 1)

    def is_active_participant(self, user_id: str) -> bool:
        return user_id in self.active_participant_ids
