"""
top3_heatmap mode.

Members rank up to three start dates. The leader can lock straight from the
heatmap while scheduling, or open voting over the top candidates and lock by
votes.
"""

from __future__ import annotations

from datetime import date

from app.features.trip_scheduling.domain.errors import QuorumNotMet, ScheduleValidationError
from app.features.trip_scheduling.domain.models import (
    ACTION_OPEN_VOTING,
    ACTION_SUBMIT_DATE_PICKS,
    ACTION_VOTE,
    MODE_HEATMAP,
    STATUS_SCHEDULING,
    STATUS_VOTING,
    ConsensusOption,
    SchedulingSnapshot,
    parse_option_key,
    window_end,
)
from app.features.trip_scheduling.services.heatmap_aggregator import (
    HeatmapAggregator,
    HeatmapCandidate,
)

from .base import COMMON_ACTIONS, SchedulingStrategy, VoteLockRule, find_option


def parse_chosen_start(chosen: str) -> tuple[date, date | None]:
    """Accept an option key or a bare ISO start date."""
    try:
        if "_" in chosen:
            return parse_option_key(chosen)
        return date.fromisoformat(chosen), None
    except ValueError as e:
        raise ScheduleValidationError(f"Invalid date choice {chosen!r}") from e


class HeatmapStrategy(SchedulingStrategy):
    mode = MODE_HEATMAP
    actions = COMMON_ACTIONS | {ACTION_SUBMIT_DATE_PICKS, ACTION_OPEN_VOTING, ACTION_VOTE}
    lock_statuses = frozenset({STATUS_SCHEDULING, STATUS_VOTING})

    def __init__(
        self,
        aggregator: HeatmapAggregator | None = None,
        vote_rule: VoteLockRule | None = None,
    ):
        self.aggregator = aggregator or HeatmapAggregator()
        self.vote_rule = vote_rule or VoteLockRule()

    def top_candidates(self, snapshot: SchedulingSnapshot) -> list[HeatmapCandidate]:
        trip = snapshot.trip
        return self.aggregator.top(
            snapshot.date_picks, trip.start_bound, trip.end_bound, trip.trip_length_days
        )

    def ballot(self, snapshot: SchedulingSnapshot) -> list[ConsensusOption]:
        trip = snapshot.trip
        return self.aggregator.ballot(
            snapshot.date_picks, trip.start_bound, trip.end_bound, trip.trip_length_days
        )

    def resolve_lock(
        self, snapshot: SchedulingSnapshot, chosen: str | None, caller_is_leader: bool
    ) -> tuple[date, date]:
        trip = snapshot.trip

        if trip.status == STATUS_VOTING:
            option = None
            if chosen is not None:
                option = find_option(trip.voting_options, chosen, match_start_date=True)
                if option is None:
                    raise ScheduleValidationError(
                        f"Option {chosen!r} is not on the voting ballot", trip_id=trip.id
                    )
            winner = self.vote_rule.resolve(snapshot, option, caller_is_leader)
            return winner.start_date, winner.end_date

        candidates = [c for c in self.top_candidates(snapshot) if c.score > 0]
        if not candidates:
            raise QuorumNotMet("No date picks have been submitted yet", trip_id=trip.id)

        if chosen is None:
            if len(candidates) > 1 and candidates[1].score == candidates[0].score:
                raise QuorumNotMet(
                    "Top candidates are tied; choose a start date to lock", trip_id=trip.id
                )
            return candidates[0].start_date, candidates[0].end_date

        start, end = parse_chosen_start(chosen)
        expected_end = window_end(start, trip.trip_length_days)
        if end is not None and end != expected_end:
            raise ScheduleValidationError(
                f"Window must span {trip.trip_length_days} days", trip_id=trip.id
            )
        if (
            trip.start_bound is None
            or trip.end_bound is None
            or start < trip.start_bound
            or expected_end > trip.end_bound
        ):
            raise ScheduleValidationError(
                "Chosen window is outside the trip's date range", trip_id=trip.id
            )

        match = next((c for c in candidates if c.start_date == start), None)
        if match is None:
            raise QuorumNotMet(
                "Chosen window is not among the top heatmap candidates", trip_id=trip.id
            )
        return match.start_date, match.end_date

    def lock_ready(self, snapshot: SchedulingSnapshot) -> bool:
        if snapshot.trip.status == STATUS_VOTING:
            return self.vote_rule.is_ready(snapshot)
        return any(c.score > 0 for c in self.top_candidates(snapshot))
