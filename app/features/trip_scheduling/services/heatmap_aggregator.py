"""
Heatmap aggregator for top3_heatmap trips.

Each participant ranks up to three window start dates. Ranks weigh 3/2/1
("love to go", "can go", "might go"); weights are summed per start date and
every valid start date inside the bounds becomes a candidate.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from app.config import settings
from app.features.trip_scheduling.domain.models import (
    PICK_WEIGHTS,
    ConsensusOption,
    DatePicks,
    iter_days,
    make_option_key,
    window_end,
)


@dataclass(slots=True)
class HeatmapCandidate:
    start_date: date
    end_date: date
    score: int
    love_count: int = 0
    can_count: int = 0
    might_count: int = 0

    @property
    def option_key(self) -> str:
        return make_option_key(self.start_date, self.end_date)

    def as_option(self, max_score: int) -> ConsensusOption:
        return ConsensusOption(
            option_key=self.option_key,
            start_date=self.start_date,
            end_date=self.end_date,
            score=round(self.score / max_score, 6) if max_score else 0.0,
            total_score=float(self.score),
            coverage=1.0 if self.score else 0.0,
        )


class HeatmapAggregator:
    def __init__(self, top_candidates: int | None = None):
        self.top_candidates = top_candidates or settings.HEATMAP_TOP_CANDIDATES

    def scores(self, all_picks: Iterable[DatePicks]) -> dict[date, int]:
        heat: dict[date, int] = {}
        for picks in all_picks:
            for pick in picks.picks:
                heat[pick.start_date] = heat.get(pick.start_date, 0) + PICK_WEIGHTS.get(pick.rank, 0)
        return heat

    def candidates(
        self,
        all_picks: Iterable[DatePicks],
        start_bound: date | None,
        end_bound: date | None,
        length_days: int,
    ) -> list[HeatmapCandidate]:
        """All valid windows, best first (score desc, start date asc)."""
        if start_bound is None or end_bound is None:
            return []

        breakdown: dict[date, HeatmapCandidate] = {}
        for start in iter_days(start_bound, end_bound):
            end = window_end(start, length_days)
            if end > end_bound:
                break
            breakdown[start] = HeatmapCandidate(start_date=start, end_date=end, score=0)

        for picks in all_picks:
            for pick in picks.picks:
                candidate = breakdown.get(pick.start_date)
                if candidate is None:
                    continue
                candidate.score += PICK_WEIGHTS.get(pick.rank, 0)
                if pick.rank == 1:
                    candidate.love_count += 1
                elif pick.rank == 2:
                    candidate.can_count += 1
                elif pick.rank == 3:
                    candidate.might_count += 1

        return sorted(breakdown.values(), key=lambda c: (-c.score, c.start_date))

    def top(
        self,
        all_picks: Iterable[DatePicks],
        start_bound: date | None,
        end_bound: date | None,
        length_days: int,
    ) -> list[HeatmapCandidate]:
        ranked = self.candidates(all_picks, start_bound, end_bound, length_days)
        return ranked[: self.top_candidates]

    def ballot(
        self,
        all_picks: Iterable[DatePicks],
        start_bound: date | None,
        end_bound: date | None,
        length_days: int,
    ) -> list[ConsensusOption]:
        """Top candidates that received any pick, as ballot options."""
        top = [c for c in self.top(all_picks, start_bound, end_bound, length_days) if c.score > 0]
        max_score = top[0].score if top else 0
        return [candidate.as_option(max_score) for candidate in top]
