"""
Consensus window calculator.

Turns every participant's availability into ranked candidate windows:

* each record is reduced to a per-day tri-state view
  (per-day beats weekly block beats broad),
* every contiguous window of the trip length inside the candidate range is
  scored as available=1, maybe=0.5, unavailable=0, missing=0,
* the total is averaged over days and participants, so silence counts as
  "unavailable".

Output order is score descending, then start date ascending. Nothing depends
on dict iteration order.

Trips created without dates have no candidate range of their own; it spans
the earliest to the latest day named by any per-day entry or weekly block.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date

from app.config import settings
from app.features.trip_scheduling.domain.models import (
    AvailabilityRecord,
    ConsensusOption,
    iter_days,
    make_option_key,
    window_end,
)

STATUS_WEIGHTS = {"available": 1.0, "maybe": 0.5, "unavailable": 0.0}


def normalize_to_per_day(
    record: AvailabilityRecord, range_start: date, range_end: date
) -> dict[date, str]:
    """Reduce one record to ``{day: status}`` within the inclusive range."""
    day_map: dict[date, str] = {}

    if record.broad_status:
        for day in iter_days(range_start, range_end):
            day_map[day] = record.broad_status

    for block in record.weekly_blocks:
        for day in iter_days(max(block.start_date, range_start), min(block.end_date, range_end)):
            day_map[day] = block.status

    for day, status in record.days.items():
        if range_start <= day <= range_end:
            day_map[day] = status

    return day_map


def submitted_range(records: Iterable[AvailabilityRecord]) -> tuple[date, date] | None:
    """Earliest and latest explicitly named day across records, or None."""
    named: list[date] = []
    for record in records:
        named.extend(record.days)
        for block in record.weekly_blocks:
            named.extend((block.start_date, block.end_date))
    if not named:
        return None
    return min(named), max(named)


class ConsensusWindowCalculator:
    """Scores contiguous windows of a fixed length across a date range."""

    def __init__(self, top_n: int | None = None):
        self.top_n = top_n or settings.CONSENSUS_TOP_N

    def all_windows(
        self,
        records: Sequence[AvailabilityRecord],
        range_start: date,
        range_end: date,
        length_days: int,
        participant_ids: Iterable[str] = (),
    ) -> list[ConsensusOption]:
        """Score every window and return them fully sorted."""
        if length_days < 1 or range_end < range_start:
            return []

        submitters = {record.user_id for record in records if not record.is_empty()}
        if not submitters:
            return []
        population = len(set(participant_ids) | submitters)

        per_day_scores: dict[date, float] = {}
        per_day_responses: dict[date, int] = {}
        for record in sorted(records, key=lambda r: r.user_id):
            for day, status in normalize_to_per_day(record, range_start, range_end).items():
                per_day_scores[day] = per_day_scores.get(day, 0.0) + STATUS_WEIGHTS.get(status, 0.0)
                per_day_responses[day] = per_day_responses.get(day, 0) + 1

        options: list[ConsensusOption] = []
        for start in iter_days(range_start, range_end):
            end = window_end(start, length_days)
            if end > range_end:
                break

            total = 0.0
            covered_days = 0
            for day in iter_days(start, end):
                total += per_day_scores.get(day, 0.0)
                if per_day_responses.get(day):
                    covered_days += 1

            options.append(
                ConsensusOption(
                    option_key=make_option_key(start, end),
                    start_date=start,
                    end_date=end,
                    score=round(total / (length_days * population), 6),
                    total_score=total,
                    coverage=round(covered_days / length_days, 6),
                )
            )

        options.sort(key=lambda option: (-option.score, option.start_date))
        return options

    def calculate(
        self,
        records: Sequence[AvailabilityRecord],
        range_start: date | None,
        range_end: date | None,
        length_days: int,
        participant_ids: Iterable[str] = (),
    ) -> list[ConsensusOption]:
        """
        Top-N windows; empty when there is no input.

        Without trip bounds the range comes from the submitted dates; broad
        statuses alone name no dates and produce nothing.
        """
        if range_start is None or range_end is None:
            derived = submitted_range(records)
            if derived is None:
                return []
            range_start, range_end = derived
        ranked = self.all_windows(records, range_start, range_end, length_days, participant_ids)
        return ranked[: self.top_n]
