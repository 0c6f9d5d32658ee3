from datetime import UTC, date, datetime

import pytest

from app.features.trip_scheduling.domain.errors import InvalidState
from app.features.trip_scheduling.domain.guards import WriteGuard
from app.features.trip_scheduling.domain.models import DateProposal
from app.features.trip_scheduling.services.state_machine import TripScheduleStateMachine
from app.features.trip_scheduling.strategies import (
    ConsensusStrategy,
    FunnelStrategy,
    HeatmapStrategy,
)


@pytest.fixture
def machine():
    return TripScheduleStateMachine()


def test_first_submission_moves_proposed_to_scheduling(machine, build_trip):
    trip = build_trip(status="proposed")

    guard = machine.guard(trip, "submit_availability", ConsensusStrategy())

    assert guard.next_status("proposed") == "scheduling"
    assert guard.next_status("scheduling") == "scheduling"
    assert guard.allowed_statuses == frozenset({"proposed", "scheduling"})


@pytest.mark.parametrize(
    ("status", "action", "message"),
    [
        ("voting", "submit_availability", "Availability is frozen while voting is open"),
        ("locked", "submit_availability", "Dates are locked; scheduling is closed"),
        ("canceled", "submit_availability", "Trip has been canceled; scheduling is closed"),
        ("voting", "open_voting", "Voting is already open for this trip"),
        ("scheduling", "vote", "Voting is not open for this trip"),
        ("locked", "vote", "Dates are locked; scheduling is closed"),
        ("locked", "lock", "Trip is already locked"),
        ("scheduling", "lock", "Dates can only be locked while the trip is voting"),
        ("locked", "cancel", "Dates are locked; scheduling is closed"),
    ],
)
def test_consensus_rejections(machine, build_trip, status, action, message):
    trip = build_trip(status=status)

    with pytest.raises(InvalidState) as exc_info:
        machine.guard(trip, action, ConsensusStrategy())

    assert exc_info.value.message == message
    assert exc_info.value.status_code == 409


def test_picks_frozen_while_voting(machine, build_trip):
    trip = build_trip(scheduling_mode="top3_heatmap", status="voting")

    with pytest.raises(InvalidState, match="Date picks are frozen"):
        machine.guard(trip, "submit_date_picks", HeatmapStrategy())


def test_heatmap_may_lock_from_scheduling(machine, build_trip):
    trip = build_trip(scheduling_mode="top3_heatmap", status="scheduling", version=4)

    guard = machine.guard(trip, "lock", HeatmapStrategy(), expected_version=4)

    assert guard.next_status("scheduling") == "locked"
    assert guard.expected_version == 4


def test_mode_rejects_foreign_actions(machine, build_trip):
    trip = build_trip(status="scheduling")

    with pytest.raises(InvalidState, match="not available for consensus trips"):
        machine.guard(trip, "submit_date_picks", ConsensusStrategy())
    with pytest.raises(InvalidState, match="not available for funnel trips"):
        machine.guard(trip, "open_voting", FunnelStrategy())


def test_hosted_trips_reject_scheduling_actions(machine, build_trip):
    trip = build_trip(type="hosted", status="proposed")

    with pytest.raises(InvalidState, match="Hosted trips"):
        machine.guard(trip, "submit_availability", ConsensusStrategy())

    # Roster changes are not scheduling actions
    guard = machine.guard(trip, "set_participant", ConsensusStrategy())
    assert guard.transitions == {}


def test_propose_moves_to_voting_and_cancel_from_any_open_status(machine, build_trip):
    funnel = FunnelStrategy()

    propose = machine.guard(build_trip(scheduling_mode="funnel"), "propose_dates", funnel)
    assert propose.next_status("scheduling") == "voting"
    assert propose.next_status("voting") == "voting"

    for status in ("proposed", "scheduling", "voting"):
        cancel = machine.guard(build_trip(status=status), "cancel", ConsensusStrategy())
        assert cancel.next_status(status) == "canceled"


def test_stale_version_is_explained(machine, build_trip):
    guard = WriteGuard(
        action="lock", allowed_statuses=frozenset({"voting"}), expected_version=3
    )
    current = build_trip(status="voting", version=4)

    error = machine.rejection(guard, current)

    assert error.message == "Trip changed while the request was in flight; reload and try again"


def test_replaced_proposal_is_explained(machine, build_trip):
    current = build_trip(
        scheduling_mode="funnel",
        status="voting",
        date_proposal=DateProposal(
            proposal_id="p-2",
            start_date=date(2025, 8, 2),
            end_date=date(2025, 8, 4),
            proposed_by="leader-1",
            proposed_at=datetime(2025, 7, 2, tzinfo=UTC),
        ),
    )

    with pytest.raises(InvalidState, match="proposal changed"):
        machine.guard(current, "react", FunnelStrategy(), expected_proposal_id="p-1")


def test_react_without_proposal_is_explained(machine, build_trip):
    current = build_trip(scheduling_mode="funnel", status="voting")

    with pytest.raises(InvalidState, match="No active date proposal"):
        machine.guard(current, "react", FunnelStrategy(), expected_proposal_id="p-1")


def test_window_suggestions_open_only_while_collecting(machine, build_trip):
    funnel = FunnelStrategy()

    guard = machine.guard(build_trip(scheduling_mode="funnel"), "propose_window", funnel)
    assert guard.next_status("proposed") == "scheduling"
    archive = machine.guard(
        build_trip(scheduling_mode="funnel", status="scheduling"), "archive_windows", funnel
    )
    assert archive.next_status("scheduling") == "scheduling"

    voting = build_trip(scheduling_mode="funnel", status="voting")
    for action in ("propose_window", "set_window_preference", "archive_windows"):
        with pytest.raises(InvalidState, match="frozen once dates are proposed"):
            machine.guard(voting, action, funnel)
