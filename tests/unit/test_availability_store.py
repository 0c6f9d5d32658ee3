from datetime import date

import pytest

from app.features.trip_scheduling.domain.errors import (
    InvalidState,
    ScheduleValidationError,
    TripNotFound,
)
from app.features.trip_scheduling.domain.models import AvailabilityRecord, WeeklyBlock


def _availability(**kwargs) -> AvailabilityRecord:
    return AvailabilityRecord(trip_id="", user_id="", **kwargs)


@pytest.mark.asyncio
async def test_first_submission_moves_trip_to_scheduling(service, create_trip):
    trip = await create_trip()
    assert trip.status == "proposed"

    updated = await service.availability.submit(
        trip.id, "member-2", _availability(broad_status="available")
    )

    assert updated.status == "scheduling"
    assert updated.version == trip.version + 1
    records = await service.availability.get(trip.id)
    assert [(r.user_id, r.broad_status) for r in records] == [("member-2", "available")]


@pytest.mark.asyncio
async def test_resubmission_replaces_record(service, create_trip):
    trip = await create_trip()
    await service.availability.submit(trip.id, "member-2", _availability(broad_status="available"))

    await service.availability.submit(
        trip.id, "member-2", _availability(days={date(2025, 8, 2): "maybe"})
    )

    records = await service.availability.get(trip.id)
    assert len(records) == 1
    assert records[0].broad_status is None
    assert records[0].days == {date(2025, 8, 2): "maybe"}


@pytest.mark.parametrize(
    "availability",
    [
        _availability(),
        _availability(broad_status="sometimes"),
        _availability(days={date(2025, 8, 9): "available"}),
        _availability(weekly_blocks=[WeeklyBlock(date(2025, 8, 4), date(2025, 8, 2), "maybe")]),
        _availability(weekly_blocks=[WeeklyBlock(date(2025, 7, 30), date(2025, 8, 2), "maybe")]),
    ],
)
@pytest.mark.asyncio
async def test_invalid_availability_is_rejected_without_writing(
    service, create_trip, availability
):
    trip = await create_trip()

    with pytest.raises(ScheduleValidationError):
        await service.availability.submit(trip.id, "member-2", availability)

    unchanged = await service.get_trip(trip.id)
    assert unchanged.version == trip.version
    assert unchanged.status == "proposed"
    assert await service.availability.get(trip.id) == []


@pytest.mark.asyncio
async def test_availability_frozen_once_voting_opens(service, create_trip):
    trip = await create_trip()
    await service.availability.submit(trip.id, "member-2", _availability(broad_status="available"))
    await service.open_voting(trip.id, "leader-1")

    with pytest.raises(InvalidState, match="frozen while voting"):
        await service.availability.submit(
            trip.id, "member-3", _availability(broad_status="available")
        )

    records = await service.availability.get(trip.id)
    assert [r.user_id for r in records] == ["member-2"]


@pytest.mark.asyncio
async def test_trip_without_bounds_accepts_any_dates(service, create_trip):
    trip = await create_trip(start=None, end=None)

    updated = await service.availability.submit(
        trip.id, "member-2", _availability(days={date(2026, 1, 10): "available"})
    )

    assert updated.status == "scheduling"


@pytest.mark.asyncio
async def test_other_modes_reject_availability(service, create_trip):
    trip = await create_trip(mode="funnel")

    with pytest.raises(InvalidState, match="not available for funnel trips"):
        await service.availability.submit(
            trip.id, "member-2", _availability(broad_status="available")
        )


@pytest.mark.asyncio
async def test_unknown_trip(service):
    with pytest.raises(TripNotFound):
        await service.availability.submit(
            "missing", "member-2", _availability(broad_status="available")
        )
