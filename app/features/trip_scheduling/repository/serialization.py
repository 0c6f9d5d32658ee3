"""
JSON shapes for the jsonb columns and the consensus cache.

Dates travel as ISO strings (``YYYY-MM-DD``); timestamps as ISO datetimes.
"""

from datetime import date, datetime
from typing import Any

from app.features.trip_scheduling.domain.models import (
    ConsensusOption,
    DatePick,
    DateProposal,
    WeeklyBlock,
)


def _as_date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(value)


def _as_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def option_to_json(option: ConsensusOption) -> dict[str, Any]:
    return {
        "optionKey": option.option_key,
        "startDate": option.start_date.isoformat(),
        "endDate": option.end_date.isoformat(),
        "score": option.score,
        "totalScore": option.total_score,
        "coverage": option.coverage,
    }


def option_from_json(data: dict[str, Any]) -> ConsensusOption:
    return ConsensusOption(
        option_key=data["optionKey"],
        start_date=_as_date(data["startDate"]),
        end_date=_as_date(data["endDate"]),
        score=float(data.get("score", 0.0)),
        total_score=float(data.get("totalScore", 0.0)),
        coverage=float(data.get("coverage", 0.0)),
    )


def options_to_json(options: list[ConsensusOption]) -> list[dict[str, Any]]:
    return [option_to_json(option) for option in options]


def options_from_json(data: list[dict[str, Any]] | None) -> list[ConsensusOption]:
    return [option_from_json(item) for item in data or []]


def proposal_to_json(proposal: DateProposal | None) -> dict[str, Any] | None:
    if proposal is None:
        return None
    return {
        "proposalId": proposal.proposal_id,
        "startDate": proposal.start_date.isoformat(),
        "endDate": proposal.end_date.isoformat(),
        "proposedBy": proposal.proposed_by,
        "proposedAt": proposal.proposed_at.isoformat(),
    }


def proposal_from_json(data: dict[str, Any] | None) -> DateProposal | None:
    if not data:
        return None
    return DateProposal(
        proposal_id=data["proposalId"],
        start_date=_as_date(data["startDate"]),
        end_date=_as_date(data["endDate"]),
        proposed_by=data["proposedBy"],
        proposed_at=_as_datetime(data["proposedAt"]),
    )


def weekly_blocks_to_json(blocks: list[WeeklyBlock]) -> list[dict[str, Any]]:
    return [
        {"startDate": b.start_date.isoformat(), "endDate": b.end_date.isoformat(), "status": b.status}
        for b in blocks
    ]


def weekly_blocks_from_json(data: list[dict[str, Any]] | None) -> list[WeeklyBlock]:
    return [
        WeeklyBlock(
            start_date=_as_date(item["startDate"]),
            end_date=_as_date(item["endDate"]),
            status=item["status"],
        )
        for item in data or []
    ]


def days_to_json(days: dict[date, str]) -> dict[str, str]:
    return {day.isoformat(): status for day, status in sorted(days.items())}


def days_from_json(data: dict[str, str] | None) -> dict[date, str]:
    return {date.fromisoformat(day): status for day, status in (data or {}).items()}


def picks_to_json(picks: list[DatePick]) -> list[dict[str, Any]]:
    return [{"rank": p.rank, "startDate": p.start_date.isoformat()} for p in picks]


def picks_from_json(data: list[dict[str, Any]] | None) -> list[DatePick]:
    return [DatePick(rank=int(item["rank"]), start_date=_as_date(item["startDate"])) for item in data or []]
