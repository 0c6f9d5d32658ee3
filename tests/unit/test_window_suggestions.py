from datetime import UTC, date, datetime

import pytest

from app.features.trip_scheduling.domain.errors import (
    Forbidden,
    InvalidState,
    ScheduleValidationError,
)
from app.features.trip_scheduling.domain.models import WindowPreference, WindowProposal
from app.features.trip_scheduling.services.window_suggestions import WindowSuggestionBoard
from app.features.trip_scheduling.strategies.funnel import (
    DATE_STATE_NO_DATES,
    DATE_STATE_PROPOSED,
    DATE_STATE_WINDOWS_OPEN,
    date_state,
    score_windows,
)


def _window(window_id, minute=0, archived=False):
    return WindowProposal(
        trip_id="trip-1",
        window_id=window_id,
        user_id="member-2",
        description=f"Window {window_id}",
        archived=archived,
        created_at=datetime(2025, 7, 1, 12, minute, tzinfo=UTC),
    )


def _pref(window_id, user_id, preference):
    return WindowPreference(
        trip_id="trip-1", window_id=window_id, user_id=user_id, preference=preference
    )


@pytest.fixture
def funnel_trip(create_trip):
    async def _create(members=("member-2", "member-3")):
        return await create_trip(
            mode="funnel", members=members, start=date(2025, 8, 1), end=date(2025, 8, 31)
        )

    return _create


async def _suggest(service, trip_id, user_id, description):
    await service.propose_window(trip_id, user_id, description)
    snapshot = await service.repository.load_snapshot(trip_id)
    return next(w for w in snapshot.window_proposals if w.description == description)


# ----------------------------------------------------------------------
# Scoring
# ----------------------------------------------------------------------


def test_score_weights_and_counts():
    windows = [_window("a"), _window("b", 1)]
    prefs = [
        _pref("a", "leader-1", "WORKS"),
        _pref("a", "member-2", "MAYBE"),
        _pref("a", "member-3", "NO"),
        _pref("b", "leader-1", "WORKS"),
        _pref("b", "member-2", "WORKS"),
    ]

    ranked = score_windows(windows, prefs)

    assert [s.window.window_id for s in ranked] == ["b", "a"]
    assert ranked[0].score == 6
    assert (ranked[1].score, ranked[1].works, ranked[1].maybe, ranked[1].no) == (2, 1, 1, 1)


def test_score_ties_keep_oldest_first_and_skip_archived():
    windows = [_window("late", 5), _window("early", 1), _window("gone", 0, archived=True)]
    prefs = [_pref("gone", "leader-1", "WORKS"), _pref("late", "leader-1", "NO")]

    ranked = score_windows(windows, prefs)

    assert [s.window.window_id for s in ranked] == ["early", "late"]
    assert ranked[1].score == -2


def test_windows_open_date_state(build_trip, build_snapshot):
    trip = build_trip(scheduling_mode="funnel", status="scheduling")
    assert date_state(build_snapshot(trip=trip)) == DATE_STATE_NO_DATES

    archived_only = build_snapshot(trip=trip, window_proposals=[_window("a", archived=True)])
    assert date_state(archived_only) == DATE_STATE_NO_DATES

    assert date_state(build_snapshot(trip=trip, window_proposals=[_window("a")])) == (
        DATE_STATE_WINDOWS_OPEN
    )


# ----------------------------------------------------------------------
# Suggestions and preferences
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_member_suggests_window(service, repository, funnel_trip):
    trip = await funnel_trip()

    updated = await service.propose_window(
        trip.id, "member-2", "  Mid August  ", date(2025, 8, 14), date(2025, 8, 17)
    )

    assert updated.status == "scheduling"
    assert updated.version == trip.version + 1
    snapshot = await repository.load_snapshot(trip.id)
    window = snapshot.window_proposals[0]
    assert (window.user_id, window.description) == ("member-2", "Mid August")
    assert (window.start_hint, window.end_hint) == (date(2025, 8, 14), date(2025, 8, 17))
    assert service.funnel.summary(snapshot)["date_state"] == DATE_STATE_WINDOWS_OPEN


@pytest.mark.asyncio
async def test_suggestion_validation(service, funnel_trip):
    trip = await funnel_trip()

    with pytest.raises(ScheduleValidationError, match="Describe"):
        await service.propose_window(trip.id, "member-2", "   ")
    with pytest.raises(ScheduleValidationError, match="at most 200"):
        await service.propose_window(trip.id, "member-2", "x" * 201)
    with pytest.raises(ScheduleValidationError, match="on or before"):
        await service.propose_window(
            trip.id, "member-2", "Backwards", date(2025, 8, 10), date(2025, 8, 5)
        )
    with pytest.raises(ScheduleValidationError, match="outside the trip's date range"):
        await service.propose_window(trip.id, "member-2", "September", date(2025, 9, 1))
    with pytest.raises(Forbidden):
        await service.propose_window(trip.id, "outsider-7", "Any time")


@pytest.mark.asyncio
async def test_suggestions_are_funnel_only(service, create_trip):
    trip = await create_trip()

    with pytest.raises(InvalidState, match="not available for consensus trips"):
        await service.propose_window(trip.id, "member-2", "Mid August")


@pytest.mark.asyncio
async def test_preference_upserts_per_member(service, repository, funnel_trip):
    trip = await funnel_trip()
    window = await _suggest(service, trip.id, "member-2", "Mid August")

    await service.set_window_preference(trip.id, "member-3", window.window_id, "NO")
    await service.set_window_preference(
        trip.id, "member-3", window.window_id, "MAYBE", note="If I can swap shifts"
    )
    await service.set_window_preference(trip.id, "leader-1", window.window_id, "WORKS")

    snapshot = await repository.load_snapshot(trip.id)
    mine = [p for p in snapshot.window_preferences if p.user_id == "member-3"]
    assert [(p.preference, p.note) for p in mine] == [("MAYBE", "If I can swap shifts")]
    assert service.windows.ranking(snapshot)[0].score == 4


@pytest.mark.asyncio
async def test_preference_validation(service, funnel_trip):
    trip = await funnel_trip()
    window = await _suggest(service, trip.id, "member-2", "Mid August")

    with pytest.raises(ScheduleValidationError, match="WORKS, MAYBE, NO"):
        await service.set_window_preference(trip.id, "member-3", window.window_id, "CANT")
    with pytest.raises(ScheduleValidationError, match="not an open suggestion"):
        await service.set_window_preference(trip.id, "member-3", "missing", "WORKS")
    with pytest.raises(Forbidden):
        await service.set_window_preference(trip.id, "outsider-7", window.window_id, "WORKS")


# ----------------------------------------------------------------------
# Freeze on propose
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_proposing_dates_freezes_suggestions(service, repository, funnel_trip):
    trip = await funnel_trip()
    window = await _suggest(service, trip.id, "member-2", "Mid August")
    await service.set_window_preference(trip.id, "member-3", window.window_id, "WORKS")

    proposed = await service.propose_dates(trip.id, "leader-1", date(2025, 8, 14), date(2025, 8, 16))

    with pytest.raises(InvalidState, match="frozen once dates are proposed"):
        await service.propose_window(trip.id, "member-3", "Late August")
    with pytest.raises(InvalidState, match="frozen once dates are proposed"):
        await service.set_window_preference(trip.id, "member-3", window.window_id, "NO")
    with pytest.raises(InvalidState, match="frozen once dates are proposed"):
        await service.compress_windows(trip.id, "leader-1")

    snapshot = await repository.load_snapshot(trip.id)
    assert snapshot.trip.version == proposed.version
    assert [p.preference for p in snapshot.window_preferences] == ["WORKS"]
    assert service.funnel.summary(snapshot)["date_state"] == DATE_STATE_PROPOSED


# ----------------------------------------------------------------------
# Compress
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_compress_keeps_top_scored(repository, service, funnel_trip):
    trip = await funnel_trip()
    strong = await _suggest(service, trip.id, "member-2", "Mid August")
    middle = await _suggest(service, trip.id, "member-3", "Late August")
    weak = await _suggest(service, trip.id, "leader-1", "Early August")
    await service.set_window_preference(trip.id, "member-2", strong.window_id, "WORKS")
    await service.set_window_preference(trip.id, "member-3", strong.window_id, "WORKS")
    await service.set_window_preference(trip.id, "member-2", middle.window_id, "MAYBE")
    await service.set_window_preference(trip.id, "member-3", weak.window_id, "NO")
    board = WindowSuggestionBoard(
        repository, service.state_machine, service.strategies, keep_on_compress=2
    )

    updated, archived = await board.compress(trip.id, "leader-1")

    assert archived == [weak.window_id]
    snapshot = await repository.load_snapshot(trip.id)
    assert snapshot.trip.version == updated.version
    assert [s.window.window_id for s in board.ranking(snapshot)] == [
        strong.window_id,
        middle.window_id,
    ]
    with pytest.raises(ScheduleValidationError, match="not an open suggestion"):
        await service.set_window_preference(trip.id, "member-2", weak.window_id, "WORKS")


@pytest.mark.asyncio
async def test_compress_with_explicit_keep(service, repository, funnel_trip):
    trip = await funnel_trip()
    first = await _suggest(service, trip.id, "member-2", "Mid August")
    second = await _suggest(service, trip.id, "member-3", "Late August")

    with pytest.raises(Forbidden):
        await service.compress_windows(trip.id, "member-2", [second.window_id])
    with pytest.raises(ScheduleValidationError, match="Not open suggestions: missing"):
        await service.compress_windows(trip.id, "leader-1", ["missing"])

    _, archived = await service.compress_windows(trip.id, "leader-1", [second.window_id])

    assert archived == [first.window_id]
    snapshot = await repository.load_snapshot(trip.id)
    assert {w.window_id: w.archived for w in snapshot.window_proposals} == {
        first.window_id: True,
        second.window_id: False,
    }
    with pytest.raises(InvalidState, match="No window suggestions left"):
        await service.compress_windows(trip.id, "leader-1")


# ----------------------------------------------------------------------
# Schedule view
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_schedule_view_ranks_windows(service, funnel_trip):
    trip = await funnel_trip()
    first = await _suggest(service, trip.id, "member-2", "Mid August")
    second = await _suggest(service, trip.id, "member-3", "Late August")
    await service.set_window_preference(trip.id, "member-2", second.window_id, "WORKS")
    await service.set_window_preference(trip.id, "member-3", first.window_id, "NO")

    view = await service.get_schedule(trip.id, "member-2")

    assert view.funnel.date_state == DATE_STATE_WINDOWS_OPEN
    assert [(s.window.window_id, s.score) for s in view.funnel.windows] == [
        (second.window_id, 3),
        (first.window_id, -2),
    ]
    assert [(p.window_id, p.preference) for p in view.viewer.window_preferences] == [
        (second.window_id, "WORKS")
    ]
