"""
Trip scheduling routes.

Usage:
    1. POST /trips - Create a trip (hosted trips lock immediately)
    2. GET /trips/{trip_id}/schedule - Scheduling view for the caller
    3. PUT /trips/{trip_id}/participants/{user_id} - Roster sync (leader)
    4. POST /trips/{trip_id}/availability - Submit availability (consensus)
    5. POST /trips/{trip_id}/date-picks - Submit ranked picks (top3_heatmap)
    6. POST /trips/{trip_id}/open-voting - Freeze availability, open the ballot (leader)
    7. POST /trips/{trip_id}/vote - Cast or change a vote
    8. POST /trips/{trip_id}/windows/propose - Suggest a rough window (funnel)
    9. POST /trips/{trip_id}/windows/preference - WORKS / MAYBE / NO on a suggestion (funnel)
    10. POST /trips/{trip_id}/windows/compress - Archive weak suggestions (funnel, leader)
    11. POST /trips/{trip_id}/dates/propose - Propose dates (funnel, leader)
    12. POST /trips/{trip_id}/dates/react - React to the active proposal (funnel)
    13. POST /trips/{trip_id}/lock - Lock the trip's dates
    14. POST /trips/{trip_id}/cancel - Cancel the trip (leader)

Engine errors map to HTTP as Forbidden 403, InvalidState 409,
QuorumNotMet 409, validation 400, not found 404, with
``{"detail": {"code": ..., "message": ...}}`` bodies.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.auth.verify import auth_dependency
from app.db.helpers import DatabaseError
from app.features.trip_scheduling.domain.errors import SchedulingError
from app.features.trip_scheduling.domain.models import AvailabilityRecord, DatePick, WeeklyBlock
from app.features.trip_scheduling.services.scheduling_service import (
    TripSchedulingService,
    get_scheduling_service,
)
from app.infrastructure.audit import audit_logger
from app.infrastructure.observability.logging import get_logger

from .schemas import (
    AvailabilityRequest,
    CompressWindowsRequest,
    CompressWindowsResponse,
    CreateTripRequest,
    DatePicksRequest,
    LockRequest,
    ProposeDatesRequest,
    ProposeWindowRequest,
    ReactRequest,
    ScheduleResponse,
    SetParticipantRequest,
    TripResponse,
    VoteRequest,
    WindowPreferenceRequest,
)

router = APIRouter(prefix="/trips", tags=["trip-scheduling"])
logger = get_logger(__name__)


def _user_id(claims: dict) -> str:
    user_id = claims.get("sub")
    if not user_id:
        logger.error("No user ID in JWT claims")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: missing user ID"
        )
    return user_id


def _http_error(e: Exception, action: str, user_id: str, trip_id: str | None = None) -> HTTPException:
    if isinstance(e, SchedulingError):
        logger.info(
            "Scheduling request rejected",
            action=action,
            user_id=user_id,
            trip_id=trip_id,
            code=e.code,
            reason=e.message,
        )
        return HTTPException(status_code=e.status_code, detail=e.to_dict())

    logger.error(
        "Scheduling request failed",
        action=action,
        user_id=user_id,
        trip_id=trip_id,
        error=str(e),
        error_type=type(e).__name__,
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "DATABASE_ERROR", "message": "Scheduling storage is unavailable"},
    )


async def _audit(request: Request, user_id: str, action: str, trip_id: str, **metadata) -> None:
    await audit_logger.log_trip_event(
        user_id=user_id,
        action=action,
        trip_id=trip_id,
        metadata=metadata,
        ip_address=getattr(request.state, "ip_address", None),
        request_id=getattr(request.state, "request_id", None),
    )


@router.post("", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
async def create_trip(
    body: CreateTripRequest,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    try:
        trip = await service.create_trip(
            creator_id=user_id,
            circle_id=body.circle_id,
            name=body.name,
            trip_type=body.type,
            scheduling_mode=body.scheduling_mode,
            start_date=body.start_date,
            end_date=body.end_date,
            trip_length_days=body.trip_length_days,
            circle_owner_id=body.circle_owner_id,
            participant_ids=body.participant_ids,
        )
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "create_trip", user_id) from e

    return TripResponse.from_domain(trip)


@router.get("/{trip_id}/schedule", response_model=ScheduleResponse)
async def get_schedule(
    trip_id: str,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    try:
        view = await service.get_schedule(trip_id, user_id)
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "get_schedule", user_id, trip_id) from e

    return ScheduleResponse.from_view(view)


@router.put("/{trip_id}/participants/{participant_id}", response_model=TripResponse)
async def set_participant(
    trip_id: str,
    participant_id: str,
    body: SetParticipantRequest,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    try:
        trip = await service.set_participant(trip_id, user_id, participant_id, body.status)
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "set_participant", user_id, trip_id) from e

    return TripResponse.from_domain(trip)


@router.post("/{trip_id}/availability", response_model=TripResponse)
async def submit_availability(
    trip_id: str,
    body: AvailabilityRequest,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    availability = AvailabilityRecord(
        trip_id=trip_id,
        user_id=user_id,
        broad_status=body.broad_status,
        weekly_blocks=[
            WeeklyBlock(start_date=b.start_date, end_date=b.end_date, status=b.status)
            for b in body.weekly_blocks
        ],
        days=dict(body.days),
    )
    try:
        trip = await service.submit_availability(trip_id, user_id, availability)
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "submit_availability", user_id, trip_id) from e

    return TripResponse.from_domain(trip)


@router.post("/{trip_id}/date-picks", response_model=TripResponse)
async def submit_date_picks(
    trip_id: str,
    body: DatePicksRequest,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    picks = [DatePick(rank=p.rank, start_date=p.start_date) for p in body.picks]
    try:
        trip = await service.submit_date_picks(trip_id, user_id, picks)
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "submit_date_picks", user_id, trip_id) from e

    return TripResponse.from_domain(trip)


@router.post("/{trip_id}/open-voting", response_model=TripResponse)
async def open_voting(
    trip_id: str,
    request: Request,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    try:
        trip = await service.open_voting(trip_id, user_id)
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "open_voting", user_id, trip_id) from e

    await _audit(
        request,
        user_id,
        "trip_voting_opened",
        trip_id,
        options=[option.option_key for option in trip.voting_options],
    )
    return TripResponse.from_domain(trip)


@router.post("/{trip_id}/vote", response_model=TripResponse)
async def cast_vote(
    trip_id: str,
    body: VoteRequest,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    try:
        trip = await service.cast_vote(trip_id, user_id, body.option_key)
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "vote", user_id, trip_id) from e

    return TripResponse.from_domain(trip)


@router.post("/{trip_id}/windows/propose", response_model=TripResponse)
async def propose_window(
    trip_id: str,
    body: ProposeWindowRequest,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    try:
        trip = await service.propose_window(
            trip_id, user_id, body.description, body.start_hint, body.end_hint
        )
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "propose_window", user_id, trip_id) from e

    return TripResponse.from_domain(trip)


@router.post("/{trip_id}/windows/preference", response_model=TripResponse)
async def set_window_preference(
    trip_id: str,
    body: WindowPreferenceRequest,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    try:
        trip = await service.set_window_preference(
            trip_id, user_id, body.window_id, body.preference, body.note
        )
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "set_window_preference", user_id, trip_id) from e

    return TripResponse.from_domain(trip)


@router.post("/{trip_id}/windows/compress", response_model=CompressWindowsResponse)
async def compress_windows(
    trip_id: str,
    request: Request,
    body: CompressWindowsRequest | None = None,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    keep = body.keep_window_ids if body else None
    try:
        trip, archived = await service.compress_windows(trip_id, user_id, keep)
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "compress_windows", user_id, trip_id) from e

    await _audit(request, user_id, "trip_windows_archived", trip_id, window_ids=archived)
    return CompressWindowsResponse(trip=TripResponse.from_domain(trip), archived_window_ids=archived)


@router.post("/{trip_id}/dates/propose", response_model=TripResponse)
async def propose_dates(
    trip_id: str,
    body: ProposeDatesRequest,
    request: Request,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    try:
        trip = await service.propose_dates(trip_id, user_id, body.start_date, body.end_date)
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "propose_dates", user_id, trip_id) from e

    await _audit(
        request,
        user_id,
        "trip_dates_proposed",
        trip_id,
        proposal_id=trip.date_proposal.proposal_id if trip.date_proposal else None,
        start_date=body.start_date.isoformat(),
        end_date=body.end_date.isoformat(),
    )
    return TripResponse.from_domain(trip)


@router.post("/{trip_id}/dates/react", response_model=TripResponse)
async def react_to_proposal(
    trip_id: str,
    body: ReactRequest,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    try:
        trip = await service.react(
            trip_id, user_id, body.reaction_type, body.note, body.proposal_id
        )
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "react", user_id, trip_id) from e

    return TripResponse.from_domain(trip)


@router.post("/{trip_id}/lock", response_model=TripResponse)
async def lock_dates(
    trip_id: str,
    request: Request,
    body: LockRequest | None = None,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    chosen = body.option_key if body else None
    try:
        trip = await service.lock(trip_id, user_id, chosen)
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "lock", user_id, trip_id) from e

    await _audit(
        request,
        user_id,
        "trip_dates_locked",
        trip_id,
        start_date=trip.locked_start_date.isoformat(),
        end_date=trip.locked_end_date.isoformat(),
    )
    return TripResponse.from_domain(trip)


@router.post("/{trip_id}/cancel", response_model=TripResponse)
async def cancel_trip(
    trip_id: str,
    request: Request,
    claims: dict = Depends(auth_dependency),
    service: TripSchedulingService = Depends(get_scheduling_service),
):
    user_id = _user_id(claims)
    try:
        trip = await service.cancel(trip_id, user_id)
    except (SchedulingError, DatabaseError) as e:
        raise _http_error(e, "cancel", user_id, trip_id) from e

    await _audit(request, user_id, "trip_canceled", trip_id, previous_version=trip.version - 1)
    return TripResponse.from_domain(trip)
