"""
Voting aggregator - tallies one vote per participant over the ballot.

The ballot is the option snapshot taken when voting opened. Options are
ordered by vote count, ballot position breaking ties, so the result is stable
across reads.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date

from app.features.trip_scheduling.domain.models import ConsensusOption, Vote


@dataclass(slots=True)
class OptionTally:
    option_key: str
    start_date: date
    end_date: date
    votes: int = 0
    voter_ids: list[str] = field(default_factory=list)
    ballot_index: int = 0


@dataclass(slots=True)
class VotingStatus:
    total_voters: int
    voted_count: int = 0
    options: list[OptionTally] = field(default_factory=list)
    leading_option: OptionTally | None = None
    is_tie: bool = False
    ready_to_lock: bool = False
    ready_to_lock_reason: str | None = None

    @property
    def remaining_count(self) -> int:
        return max(self.total_voters - self.voted_count, 0)

    @property
    def leading_votes(self) -> int:
        return self.leading_option.votes if self.leading_option else 0

    def tied_leaders(self) -> list[OptionTally]:
        if not self.leading_option:
            return []
        return [tally for tally in self.options if tally.votes == self.leading_option.votes]

    def get(self, option_key: str) -> OptionTally | None:
        return next((tally for tally in self.options if tally.option_key == option_key), None)


class VotingAggregator:
    def tally(
        self,
        ballot: Sequence[ConsensusOption],
        votes: Iterable[Vote],
        eligible_voter_ids: Iterable[str],
    ) -> VotingStatus:
        eligible = set(eligible_voter_ids)
        status = VotingStatus(total_voters=len(eligible))

        by_key: dict[str, OptionTally] = {}
        for index, option in enumerate(ballot):
            by_key[option.option_key] = OptionTally(
                option_key=option.option_key,
                start_date=option.start_date,
                end_date=option.end_date,
                ballot_index=index,
            )

        voters: set[str] = set()
        for vote in sorted(votes, key=lambda v: v.user_id):
            if eligible and vote.user_id not in eligible:
                continue
            tally = by_key.get(vote.option_key)
            if tally is None:
                continue
            tally.votes += 1
            tally.voter_ids.append(vote.user_id)
            voters.add(vote.user_id)

        status.voted_count = len(voters)
        if not eligible:
            status.total_voters = len(voters)

        status.options = sorted(by_key.values(), key=lambda t: (-t.votes, t.ballot_index))

        if status.options and status.options[0].votes > 0:
            status.leading_option = status.options[0]
            status.is_tie = len(status.options) > 1 and status.options[1].votes == status.options[0].votes

        self._apply_readiness(status)
        return status

    def _apply_readiness(self, status: VotingStatus) -> None:
        has_leader = status.leading_option is not None
        all_in = status.total_voters > 0 and status.voted_count == status.total_voters
        majority_voted = status.voted_count > status.total_voters / 2

        if majority_voted and has_leader and not status.is_tie:
            status.ready_to_lock = True
            status.ready_to_lock_reason = (
                f"{status.voted_count}/{status.total_voters} voted, clear leader"
            )
        elif all_in and has_leader and status.is_tie:
            # Leader breaks the tie
            status.ready_to_lock = True
            status.ready_to_lock_reason = "All votes in (tie - leader decides)"
