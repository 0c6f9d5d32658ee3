from datetime import UTC, date, datetime

import pytest

from app.auth.verify import auth_dependency
from app.features.trip_scheduling.domain.models import (
    ConsensusOption,
    SchedulingSnapshot,
    Trip,
    TripParticipant,
    make_option_key,
)
from app.features.trip_scheduling.repository import InMemoryTripRepository
from app.features.trip_scheduling.services.consensus_cache import ConsensusCache
from app.features.trip_scheduling.services.scheduling_service import TripSchedulingService
from app.features.trip_scheduling.strategies import build_strategies

LEADER_ID = "leader-1"


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": LEADER_ID}

    return _override


class FakeRedis:
    def __init__(self, enabled: bool = True):
        self.store: dict[str, str] = {}
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def disabled_redis():
    return FakeRedis(enabled=False)


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


@pytest.fixture
def repository():
    return InMemoryTripRepository()


@pytest.fixture
def service(repository, fake_redis):
    return TripSchedulingService(
        repository=repository,
        cache=ConsensusCache(client=fake_redis, ttl_s=60),
        strategies=build_strategies(),
        allow_member_lock=False,
    )


@pytest.fixture
def create_trip(service):
    """Create a collaborative trip owned by LEADER_ID through the service."""

    async def _create(
        mode: str = "consensus",
        members: tuple[str, ...] = ("member-2", "member-3"),
        start: date | None = date(2025, 8, 1),
        end: date | None = date(2025, 8, 5),
        length: int = 3,
        **kwargs,
    ) -> Trip:
        return await service.create_trip(
            creator_id=LEADER_ID,
            circle_id="circle-1",
            name="Lake weekend",
            scheduling_mode=mode,
            start_date=start,
            end_date=end,
            trip_length_days=length,
            participant_ids=list(members),
            **kwargs,
        )

    return _create


@pytest.fixture
def build_trip():
    """Plain Trip object for components that take a trip or snapshot directly."""

    def _build(**overrides) -> Trip:
        now = datetime(2025, 7, 1, tzinfo=UTC)
        fields = {
            "id": "trip-1",
            "circle_id": "circle-1",
            "name": "Lake weekend",
            "created_by": LEADER_ID,
            "type": "collaborative",
            "scheduling_mode": "consensus",
            "status": "proposed",
            "start_bound": date(2025, 8, 1),
            "end_bound": date(2025, 8, 5),
            "trip_length_days": 3,
            "created_at": now,
            "updated_at": now,
        }
        fields.update(overrides)
        return Trip(**fields)

    return _build


@pytest.fixture
def build_snapshot(build_trip):
    def _build(
        members: tuple[str, ...] = (LEADER_ID, "member-2", "member-3"),
        **kwargs,
    ) -> SchedulingSnapshot:
        trip = kwargs.pop("trip", None) or build_trip()
        participants = [TripParticipant(trip_id=trip.id, user_id=user_id) for user_id in members]
        return SchedulingSnapshot(trip=trip, participants=participants, **kwargs)

    return _build


@pytest.fixture
def option():
    def _option(start: date, end: date, score: float = 1.0) -> ConsensusOption:
        return ConsensusOption(
            option_key=make_option_key(start, end), start_date=start, end_date=end, score=score
        )

    return _option
