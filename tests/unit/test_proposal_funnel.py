from datetime import date

import pytest

from app.features.trip_scheduling.domain.errors import (
    Forbidden,
    InvalidState,
    ScheduleValidationError,
)
from app.features.trip_scheduling.strategies.funnel import (
    DATE_STATE_LOCKED,
    DATE_STATE_NO_DATES,
    DATE_STATE_PROPOSED,
    DATE_STATE_READY_TO_LOCK,
)


@pytest.fixture
def funnel_trip(create_trip):
    async def _create(members=("member-2",)):
        return await create_trip(
            mode="funnel", members=members, start=date(2025, 8, 1), end=date(2025, 8, 10)
        )

    return _create


@pytest.mark.asyncio
async def test_propose_moves_trip_to_voting(service, funnel_trip):
    trip = await funnel_trip()

    updated = await service.funnel.propose(trip.id, "leader-1", date(2025, 8, 1), date(2025, 8, 3))

    assert updated.status == "voting"
    assert updated.date_proposal.start_date == date(2025, 8, 1)
    assert updated.date_proposal.end_date == date(2025, 8, 3)
    assert updated.date_proposal.proposed_by == "leader-1"


@pytest.mark.asyncio
async def test_new_proposal_clears_reactions(service, repository, funnel_trip):
    trip = await funnel_trip(members=("member-2", "member-3"))
    first = await service.funnel.propose(trip.id, "leader-1", date(2025, 8, 1), date(2025, 8, 3))
    await service.funnel.react(trip.id, "member-2", "WORKS")
    await service.funnel.react(trip.id, "member-3", "CANT", note="Wedding that weekend")

    second = await service.funnel.propose(
        trip.id, "leader-1", date(2025, 8, 5), date(2025, 8, 7)
    )

    snapshot = await repository.load_snapshot(trip.id)
    assert snapshot.reactions == []
    assert second.date_proposal.proposal_id != first.date_proposal.proposal_id
    assert (second.date_proposal.start_date, second.date_proposal.end_date) == (
        date(2025, 8, 5),
        date(2025, 8, 7),
    )


@pytest.mark.asyncio
async def test_reacting_twice_keeps_latest(service, repository, funnel_trip):
    trip = await funnel_trip()
    await service.funnel.propose(trip.id, "leader-1", date(2025, 8, 1), date(2025, 8, 3))

    await service.funnel.react(trip.id, "member-2", "CAVEAT")
    await service.funnel.react(trip.id, "member-2", "WORKS", note="Can drive")

    snapshot = await repository.load_snapshot(trip.id)
    assert len(snapshot.reactions) == 1
    assert snapshot.reactions[0].reaction_type == "WORKS"
    assert snapshot.reactions[0].note == "Can drive"


@pytest.mark.asyncio
async def test_reaction_pinned_to_replaced_proposal_is_rejected(service, repository, funnel_trip):
    trip = await funnel_trip()
    first = await service.funnel.propose(trip.id, "leader-1", date(2025, 8, 1), date(2025, 8, 3))
    await service.funnel.propose(trip.id, "leader-1", date(2025, 8, 4), date(2025, 8, 6))

    with pytest.raises(InvalidState, match="proposal changed"):
        await service.funnel.react(
            trip.id, "member-2", "WORKS", proposal_id=first.date_proposal.proposal_id
        )

    snapshot = await repository.load_snapshot(trip.id)
    assert snapshot.reactions == []


@pytest.mark.asyncio
async def test_only_leader_proposes(service, funnel_trip):
    trip = await funnel_trip()

    with pytest.raises(Forbidden):
        await service.funnel.propose(trip.id, "member-2", date(2025, 8, 1), date(2025, 8, 3))


@pytest.mark.asyncio
async def test_circle_owner_counts_as_leader(service, create_trip):
    trip = await create_trip(mode="funnel", circle_owner_id="owner-9")

    updated = await service.funnel.propose(trip.id, "owner-9", date(2025, 8, 1), date(2025, 8, 3))

    assert updated.date_proposal.proposed_by == "owner-9"


@pytest.mark.parametrize(
    ("start", "end"),
    [
        (date(2025, 8, 3), date(2025, 8, 1)),
        (date(2025, 7, 30), date(2025, 8, 1)),
        (date(2025, 8, 9), date(2025, 8, 12)),
    ],
)
@pytest.mark.asyncio
async def test_invalid_proposal_dates(service, funnel_trip, start, end):
    trip = await funnel_trip()

    with pytest.raises(ScheduleValidationError):
        await service.funnel.propose(trip.id, "leader-1", start, end)


@pytest.mark.asyncio
async def test_react_validation(service, funnel_trip):
    trip = await funnel_trip()
    await service.funnel.propose(trip.id, "leader-1", date(2025, 8, 1), date(2025, 8, 3))

    with pytest.raises(ScheduleValidationError):
        await service.funnel.react(trip.id, "member-2", "LOVE_IT")
    with pytest.raises(ScheduleValidationError, match="WORKS, CAVEAT, CANT"):
        await service.funnel.react(trip.id, "member-2", "MAYBE")
    with pytest.raises(ScheduleValidationError):
        await service.funnel.react(trip.id, "member-2", "WORKS", note="x" * 501)


@pytest.mark.asyncio
async def test_caveat_is_recorded_but_not_an_approval(service, repository, funnel_trip):
    trip = await funnel_trip()
    await service.funnel.propose(trip.id, "leader-1", date(2025, 8, 1), date(2025, 8, 3))

    await service.funnel.react(trip.id, "member-2", "CAVEAT", note="Only after work")

    snapshot = await repository.load_snapshot(trip.id)
    assert snapshot.reactions[0].reaction_type == "CAVEAT"
    assert service.funnel.summary(snapshot)["approvals"] == 0


@pytest.mark.asyncio
async def test_react_without_proposal(service, funnel_trip):
    trip = await funnel_trip()

    with pytest.raises(InvalidState, match="No active date proposal"):
        await service.funnel.react(trip.id, "member-2", "WORKS")


@pytest.mark.asyncio
async def test_locked_trip_rejects_react_and_propose(service, repository, funnel_trip):
    trip = await funnel_trip()
    await service.funnel.propose(trip.id, "leader-1", date(2025, 8, 1), date(2025, 8, 3))
    await service.funnel.react(trip.id, "leader-1", "WORKS")
    await service.lock(trip.id, "leader-1")
    before = await repository.load_snapshot(trip.id)

    with pytest.raises(InvalidState, match="Dates are locked"):
        await service.funnel.react(trip.id, "member-2", "CANT")
    with pytest.raises(InvalidState, match="Dates are locked"):
        await service.funnel.propose(trip.id, "leader-1", date(2025, 8, 4), date(2025, 8, 6))

    after = await repository.load_snapshot(trip.id)
    assert after == before


@pytest.mark.asyncio
async def test_summary_tracks_date_state(service, repository, funnel_trip):
    trip = await funnel_trip(members=("member-2", "member-3"))

    snapshot = await repository.load_snapshot(trip.id)
    assert service.funnel.summary(snapshot)["date_state"] == DATE_STATE_NO_DATES

    await service.funnel.propose(trip.id, "leader-1", date(2025, 8, 1), date(2025, 8, 3))
    await service.funnel.react(trip.id, "member-2", "WORKS")
    summary = service.funnel.summary(await repository.load_snapshot(trip.id))
    assert summary["date_state"] == DATE_STATE_PROPOSED
    assert (summary["approvals"], summary["required_approvals"]) == (1, 2)

    await service.funnel.react(trip.id, "member-3", "WORKS")
    summary = service.funnel.summary(await repository.load_snapshot(trip.id))
    assert summary["date_state"] == DATE_STATE_READY_TO_LOCK

    await service.lock(trip.id, "leader-1")
    summary = service.funnel.summary(await repository.load_snapshot(trip.id))
    assert summary["date_state"] == DATE_STATE_LOCKED
