"""
Request and response models for the trip scheduling API.

Picks, reaction types and date ranges are validated by the engine, which
answers 400 with a coded error body.
"""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.features.trip_scheduling.domain.models import (
    ConsensusOption,
    DateReaction,
    Trip,
)
from app.features.trip_scheduling.services.heatmap_aggregator import HeatmapCandidate
from app.features.trip_scheduling.services.scheduling_service import ScheduleView
from app.features.trip_scheduling.services.voting_aggregator import VotingStatus
from app.features.trip_scheduling.strategies import ScoredWindow

AvailabilityValue = Literal["available", "maybe", "unavailable"]


# ----------------------------------------------------------------------
# Requests
# ----------------------------------------------------------------------


class CreateTripRequest(BaseModel):
    circle_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    type: Literal["collaborative", "hosted"] = "collaborative"
    scheduling_mode: Literal["consensus", "funnel", "top3_heatmap"] = "consensus"
    start_date: date | None = None
    end_date: date | None = None
    trip_length_days: int | None = Field(default=None, ge=1, le=60)
    circle_owner_id: str | None = None
    participant_ids: list[str] = Field(default_factory=list)


class SetParticipantRequest(BaseModel):
    status: Literal["active", "left"] = "active"


class WeeklyBlockIn(BaseModel):
    start_date: date
    end_date: date
    status: AvailabilityValue


class AvailabilityRequest(BaseModel):
    """Any mix of the three shapes; per-day beats weekly blocks beats broad."""

    broad_status: AvailabilityValue | None = None
    weekly_blocks: list[WeeklyBlockIn] = Field(default_factory=list)
    days: dict[date, AvailabilityValue] = Field(default_factory=dict)


class DatePickIn(BaseModel):
    rank: int
    start_date: date


class DatePicksRequest(BaseModel):
    picks: list[DatePickIn]


class VoteRequest(BaseModel):
    option_key: str = Field(..., min_length=1)


class ProposeDatesRequest(BaseModel):
    start_date: date
    end_date: date


class ReactRequest(BaseModel):
    reaction_type: str
    note: str | None = None
    proposal_id: str | None = Field(
        default=None, description="Proposal the caller is reacting to; defaults to the active one"
    )


class ProposeWindowRequest(BaseModel):
    description: str
    start_hint: date | None = None
    end_hint: date | None = None


class WindowPreferenceRequest(BaseModel):
    window_id: str = Field(..., min_length=1)
    preference: str
    note: str | None = None


class CompressWindowsRequest(BaseModel):
    keep_window_ids: list[str] | None = Field(
        default=None, description="Windows to keep; defaults to the top-scored few"
    )


class LockRequest(BaseModel):
    option_key: str | None = Field(
        default=None, description="Option key, or a start date for top3_heatmap trips"
    )


# ----------------------------------------------------------------------
# Responses
# ----------------------------------------------------------------------


class OptionResponse(BaseModel):
    option_key: str
    start_date: date
    end_date: date
    score: float
    total_score: float = 0.0
    coverage: float = 0.0

    @classmethod
    def from_domain(cls, option: ConsensusOption) -> "OptionResponse":
        return cls(
            option_key=option.option_key,
            start_date=option.start_date,
            end_date=option.end_date,
            score=option.score,
            total_score=option.total_score,
            coverage=option.coverage,
        )


class DateProposalResponse(BaseModel):
    proposal_id: str
    start_date: date
    end_date: date
    proposed_by: str
    proposed_at: datetime


class TripResponse(BaseModel):
    id: str
    circle_id: str
    name: str
    created_by: str
    type: str
    scheduling_mode: str
    status: str
    start_bound: date | None = None
    end_bound: date | None = None
    trip_length_days: int
    locked_start_date: date | None = None
    locked_end_date: date | None = None
    voting_options: list[OptionResponse] = Field(default_factory=list)
    date_proposal: DateProposalResponse | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    canceled_at: datetime | None = None

    @classmethod
    def from_domain(cls, trip: Trip) -> "TripResponse":
        proposal = trip.date_proposal
        return cls(
            id=trip.id,
            circle_id=trip.circle_id,
            name=trip.name,
            created_by=trip.created_by,
            type=trip.type,
            scheduling_mode=trip.scheduling_mode,
            status=trip.status,
            start_bound=trip.start_bound,
            end_bound=trip.end_bound,
            trip_length_days=trip.trip_length_days,
            locked_start_date=trip.locked_start_date,
            locked_end_date=trip.locked_end_date,
            voting_options=[OptionResponse.from_domain(o) for o in trip.voting_options],
            date_proposal=(
                DateProposalResponse(
                    proposal_id=proposal.proposal_id,
                    start_date=proposal.start_date,
                    end_date=proposal.end_date,
                    proposed_by=proposal.proposed_by,
                    proposed_at=proposal.proposed_at,
                )
                if proposal
                else None
            ),
            version=trip.version,
            created_at=trip.created_at,
            updated_at=trip.updated_at,
            canceled_at=trip.canceled_at,
        )


class RefinementResponse(BaseModel):
    phase: str
    responder_count: int
    participant_count: int
    promising_windows: list[OptionResponse] = Field(default_factory=list)
    skip_refinement: bool = False
    dominant_option: OptionResponse | None = None


class OptionTallyResponse(BaseModel):
    option_key: str
    start_date: date
    end_date: date
    votes: int
    voter_ids: list[str] = Field(default_factory=list)


class VotingResponse(BaseModel):
    total_voters: int
    voted_count: int
    remaining_count: int
    options: list[OptionTallyResponse] = Field(default_factory=list)
    leading_option_key: str | None = None
    is_tie: bool = False
    ready_to_lock: bool = False
    ready_to_lock_reason: str | None = None

    @classmethod
    def from_domain(cls, status: VotingStatus) -> "VotingResponse":
        return cls(
            total_voters=status.total_voters,
            voted_count=status.voted_count,
            remaining_count=status.remaining_count,
            options=[
                OptionTallyResponse(
                    option_key=t.option_key,
                    start_date=t.start_date,
                    end_date=t.end_date,
                    votes=t.votes,
                    voter_ids=t.voter_ids,
                )
                for t in status.options
            ],
            leading_option_key=status.leading_option.option_key if status.leading_option else None,
            is_tie=status.is_tie,
            ready_to_lock=status.ready_to_lock,
            ready_to_lock_reason=status.ready_to_lock_reason,
        )


class HeatmapCandidateResponse(BaseModel):
    option_key: str
    start_date: date
    end_date: date
    score: int
    love_count: int
    can_count: int
    might_count: int

    @classmethod
    def from_domain(cls, candidate: HeatmapCandidate) -> "HeatmapCandidateResponse":
        return cls(
            option_key=candidate.option_key,
            start_date=candidate.start_date,
            end_date=candidate.end_date,
            score=candidate.score,
            love_count=candidate.love_count,
            can_count=candidate.can_count,
            might_count=candidate.might_count,
        )


class HeatmapResponse(BaseModel):
    scores: dict[date, int] = Field(default_factory=dict)
    top_candidates: list[HeatmapCandidateResponse] = Field(default_factory=list)


class ReactionResponse(BaseModel):
    user_id: str
    proposal_id: str
    reaction_type: str
    note: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_domain(cls, reaction: DateReaction) -> "ReactionResponse":
        return cls(
            user_id=reaction.user_id,
            proposal_id=reaction.proposal_id,
            reaction_type=reaction.reaction_type,
            note=reaction.note,
            created_at=reaction.created_at,
            updated_at=reaction.updated_at,
        )


class ScoredWindowResponse(BaseModel):
    window_id: str
    user_id: str
    description: str
    start_hint: date | None = None
    end_hint: date | None = None
    score: int
    works: int
    maybe: int
    no: int
    created_at: datetime | None = None

    @classmethod
    def from_domain(cls, scored: ScoredWindow) -> "ScoredWindowResponse":
        window = scored.window
        return cls(
            window_id=window.window_id,
            user_id=window.user_id,
            description=window.description,
            start_hint=window.start_hint,
            end_hint=window.end_hint,
            score=scored.score,
            works=scored.works,
            maybe=scored.maybe,
            no=scored.no,
            created_at=window.created_at,
        )


class FunnelResponse(BaseModel):
    proposal_id: str | None = None
    approvals: int
    required_approvals: int
    date_state: str
    reactions: list[ReactionResponse] = Field(default_factory=list)
    windows: list[ScoredWindowResponse] = Field(default_factory=list)


class CompressWindowsResponse(BaseModel):
    trip: TripResponse
    archived_window_ids: list[str]


class ViewerResponse(BaseModel):
    user_id: str
    is_leader: bool
    is_participant: bool
    can_lock: bool
    broad_status: str | None = None
    weekly_blocks: list[WeeklyBlockIn] = Field(default_factory=list)
    days: dict[date, str] = Field(default_factory=dict)
    vote_option_key: str | None = None
    date_picks: list[DatePickIn] = Field(default_factory=list)
    reaction: ReactionResponse | None = None
    window_preferences: dict[str, str] = Field(
        default_factory=dict, description="Window id to the caller's preference"
    )


class ScheduleResponse(BaseModel):
    trip: TripResponse
    participant_ids: list[str]
    viewer: ViewerResponse
    consensus_options: list[OptionResponse] = Field(default_factory=list)
    refinement: RefinementResponse | None = None
    voting: VotingResponse | None = None
    heatmap: HeatmapResponse | None = None
    funnel: FunnelResponse | None = None

    @classmethod
    def from_view(cls, view: ScheduleView) -> "ScheduleResponse":
        viewer = view.viewer
        availability = viewer.availability

        response = cls(
            trip=TripResponse.from_domain(view.trip),
            participant_ids=view.participant_ids,
            viewer=ViewerResponse(
                user_id=viewer.user_id,
                is_leader=viewer.is_leader,
                is_participant=viewer.is_participant,
                can_lock=viewer.can_lock,
                broad_status=availability.broad_status if availability else None,
                weekly_blocks=[
                    WeeklyBlockIn(start_date=b.start_date, end_date=b.end_date, status=b.status)
                    for b in (availability.weekly_blocks if availability else [])
                ],
                days=dict(availability.days) if availability else {},
                vote_option_key=viewer.vote.option_key if viewer.vote else None,
                date_picks=[
                    DatePickIn(rank=p.rank, start_date=p.start_date)
                    for p in (viewer.date_picks.picks if viewer.date_picks else [])
                ],
                reaction=ReactionResponse.from_domain(viewer.reaction) if viewer.reaction else None,
                window_preferences={
                    p.window_id: p.preference for p in viewer.window_preferences
                },
            ),
            consensus_options=[OptionResponse.from_domain(o) for o in view.consensus_options],
        )

        if view.refinement:
            refinement = view.refinement
            response.refinement = RefinementResponse(
                phase=refinement.phase,
                responder_count=refinement.responder_count,
                participant_count=refinement.participant_count,
                promising_windows=[
                    OptionResponse.from_domain(o) for o in refinement.promising_windows
                ],
                skip_refinement=refinement.skip_refinement,
                dominant_option=(
                    OptionResponse.from_domain(refinement.dominant_option)
                    if refinement.dominant_option
                    else None
                ),
            )
        if view.voting:
            response.voting = VotingResponse.from_domain(view.voting)
        if view.heatmap:
            response.heatmap = HeatmapResponse(
                scores=view.heatmap.scores,
                top_candidates=[
                    HeatmapCandidateResponse.from_domain(c) for c in view.heatmap.top_candidates
                ],
            )
        if view.funnel:
            response.funnel = FunnelResponse(
                proposal_id=view.funnel.proposal_id,
                approvals=view.funnel.approvals,
                required_approvals=view.funnel.required_approvals,
                date_state=view.funnel.date_state,
                reactions=[ReactionResponse.from_domain(r) for r in view.funnel.reactions],
                windows=[ScoredWindowResponse.from_domain(w) for w in view.funnel.windows],
            )
        return response
