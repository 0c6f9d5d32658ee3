from datetime import date

import pytest

from app.features.trip_scheduling.domain.models import DatePick, DatePicks
from app.features.trip_scheduling.services.heatmap_aggregator import HeatmapAggregator

START = date(2025, 8, 1)
END = date(2025, 8, 7)


@pytest.fixture
def picks():
    return [
        DatePicks(
            trip_id="trip-1",
            user_id="u1",
            picks=[DatePick(1, date(2025, 8, 3)), DatePick(2, date(2025, 8, 1))],
        ),
        DatePicks(
            trip_id="trip-1",
            user_id="u2",
            picks=[
                DatePick(1, date(2025, 8, 3)),
                DatePick(2, date(2025, 8, 6)),
                DatePick(3, date(2025, 8, 5)),
            ],
        ),
    ]


def test_scores_weigh_ranks_three_two_one(picks):
    heat = HeatmapAggregator().scores(picks)

    assert heat == {
        date(2025, 8, 3): 6,
        date(2025, 8, 1): 2,
        date(2025, 8, 6): 2,
        date(2025, 8, 5): 1,
    }


def test_candidates_cover_every_valid_start(picks):
    candidates = HeatmapAggregator().candidates(picks, START, END, 3)

    assert [c.start_date for c in candidates] == [
        date(2025, 8, 3),
        date(2025, 8, 1),
        date(2025, 8, 5),
        date(2025, 8, 2),
        date(2025, 8, 4),
    ]
    top = candidates[0]
    assert top.score == 6
    assert top.love_count == 2
    assert top.end_date == date(2025, 8, 5)
    assert top.option_key == "2025-08-03_2025-08-05"
    assert candidates[1].can_count == 1
    assert candidates[2].might_count == 1


def test_top_is_limited(picks):
    top = HeatmapAggregator(top_candidates=2).top(picks, START, END, 3)

    assert [c.start_date for c in top] == [date(2025, 8, 3), date(2025, 8, 1)]


def test_ballot_keeps_only_picked_windows(picks):
    ballot = HeatmapAggregator().ballot(picks, START, END, 3)

    assert [o.option_key for o in ballot] == [
        "2025-08-03_2025-08-05",
        "2025-08-01_2025-08-03",
        "2025-08-05_2025-08-07",
    ]
    assert ballot[0].score == 1.0
    assert ballot[1].score == round(2 / 6, 6)


def test_no_bounds_no_candidates(picks):
    aggregator = HeatmapAggregator()

    assert aggregator.candidates(picks, None, None, 3) == []
    assert aggregator.ballot([], START, END, 3) == []
