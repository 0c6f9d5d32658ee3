"""
Postgres persistence for trip scheduling.

Every mutating call runs in one ``db_pool.transaction()``: a guarded
``UPDATE trips`` first (row lock, guard re-check, status transition and
version bump), then the sub-record write. A guarded update that matches no
row means the guard no longer holds; the trip is re-read to tell a missing
trip from a rejected guard and the transaction rolls back.
"""

from datetime import date
from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from app.db.helpers import DatabaseError, execute_many, execute_query, fetch_all, fetch_one
from app.db.pool import db_pool
from app.features.trip_scheduling.domain.errors import TripNotFound
from app.features.trip_scheduling.domain.guards import WriteGuard
from app.features.trip_scheduling.domain.models import (
    AvailabilityRecord,
    ConsensusOption,
    DatePicks,
    DateProposal,
    DateReaction,
    SchedulingSnapshot,
    Trip,
    TripParticipant,
    Vote,
    WindowPreference,
    WindowProposal,
)
from app.infrastructure.observability.logging import get_logger

from .base import GuardRejected, TripSchedulingRepository
from .serialization import (
    days_from_json,
    days_to_json,
    options_from_json,
    options_to_json,
    picks_from_json,
    picks_to_json,
    proposal_from_json,
    proposal_to_json,
    weekly_blocks_from_json,
    weekly_blocks_to_json,
)

logger = get_logger(__name__)


class TripRepositoryError(DatabaseError):
    """More specific exception for scheduling persistence failures."""


class PostgresTripRepository(TripSchedulingRepository):
    TRIP_COLUMNS = """
        id, circle_id, name, created_by, type, scheduling_mode, status,
        start_bound, end_bound, trip_length_days, circle_owner_id,
        locked_start_date, locked_end_date, voting_options, date_proposal,
        canceled_at, version, created_at, updated_at
    """

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @classmethod
    def _row_to_trip(cls, row: dict | None) -> Trip | None:
        if not row:
            return None

        return Trip(
            id=str(row["id"]),
            circle_id=str(row["circle_id"]),
            name=row["name"],
            created_by=str(row["created_by"]),
            type=row["type"],
            scheduling_mode=row["scheduling_mode"],
            status=row["status"],
            start_bound=row.get("start_bound"),
            end_bound=row.get("end_bound"),
            trip_length_days=row["trip_length_days"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            circle_owner_id=str(row["circle_owner_id"]) if row.get("circle_owner_id") else None,
            locked_start_date=row.get("locked_start_date"),
            locked_end_date=row.get("locked_end_date"),
            voting_options=options_from_json(row.get("voting_options")),
            date_proposal=proposal_from_json(row.get("date_proposal")),
            canceled_at=row.get("canceled_at"),
            version=row["version"],
        )

    @staticmethod
    def _row_to_participant(row: dict) -> TripParticipant:
        return TripParticipant(
            trip_id=str(row["trip_id"]),
            user_id=str(row["user_id"]),
            status=row["status"],
            joined_at=row.get("joined_at"),
        )

    @staticmethod
    def _row_to_availability(row: dict) -> AvailabilityRecord:
        return AvailabilityRecord(
            trip_id=str(row["trip_id"]),
            user_id=str(row["user_id"]),
            broad_status=row.get("broad_status"),
            weekly_blocks=weekly_blocks_from_json(row.get("weekly_blocks")),
            days=days_from_json(row.get("days")),
            updated_at=row.get("updated_at"),
        )

    @staticmethod
    def _row_to_picks(row: dict) -> DatePicks:
        return DatePicks(
            trip_id=str(row["trip_id"]),
            user_id=str(row["user_id"]),
            picks=picks_from_json(row.get("picks")),
            updated_at=row.get("updated_at"),
        )

    @staticmethod
    def _row_to_vote(row: dict) -> Vote:
        return Vote(
            trip_id=str(row["trip_id"]),
            user_id=str(row["user_id"]),
            option_key=row["option_key"],
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @staticmethod
    def _row_to_reaction(row: dict) -> DateReaction:
        return DateReaction(
            trip_id=str(row["trip_id"]),
            user_id=str(row["user_id"]),
            proposal_id=row["proposal_id"],
            reaction_type=row["reaction_type"],
            note=row.get("note"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @staticmethod
    def _row_to_window(row: dict) -> WindowProposal:
        return WindowProposal(
            trip_id=str(row["trip_id"]),
            window_id=str(row["window_id"]),
            user_id=str(row["user_id"]),
            description=row["description"],
            start_hint=row.get("start_hint"),
            end_hint=row.get("end_hint"),
            archived=bool(row.get("archived")),
            created_at=row.get("created_at"),
        )

    @staticmethod
    def _row_to_window_preference(row: dict) -> WindowPreference:
        return WindowPreference(
            trip_id=str(row["trip_id"]),
            window_id=str(row["window_id"]),
            user_id=str(row["user_id"]),
            preference=row["preference"],
            note=row.get("note"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    async def create_trip(self, trip: Trip, participants: list[TripParticipant]) -> Trip:
        insert_trip = f"""
            INSERT INTO trips (
                id, circle_id, name, created_by, type, scheduling_mode, status,
                start_bound, end_bound, trip_length_days, circle_owner_id,
                locked_start_date, locked_end_date, voting_options, date_proposal,
                version, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {self.TRIP_COLUMNS}
        """
        insert_participant = """
            INSERT INTO trip_participants (trip_id, user_id, status, joined_at)
            VALUES (%s, %s, %s, COALESCE(%s, NOW()))
            ON CONFLICT (trip_id, user_id) DO NOTHING
        """

        try:
            async with db_pool.transaction() as conn:
                row = await fetch_one(
                    insert_trip,
                    (
                        trip.id,
                        trip.circle_id,
                        trip.name,
                        trip.created_by,
                        trip.type,
                        trip.scheduling_mode,
                        trip.status,
                        trip.start_bound,
                        trip.end_bound,
                        trip.trip_length_days,
                        trip.circle_owner_id,
                        trip.locked_start_date,
                        trip.locked_end_date,
                        Jsonb(options_to_json(trip.voting_options)),
                        Jsonb(proposal_to_json(trip.date_proposal)) if trip.date_proposal else None,
                        trip.version,
                        trip.created_at,
                        trip.updated_at,
                    ),
                    connection=conn,
                )
                await execute_many(
                    insert_participant,
                    [(p.trip_id, p.user_id, p.status, p.joined_at) for p in participants],
                    connection=conn,
                )
        except psycopg.Error as e:
            logger.error("Trip insert failed", trip_id=trip.id, error=str(e))
            raise TripRepositoryError(f"Failed to create trip: {e}", operation="create_trip") from e

        if not row:
            raise TripRepositoryError("Failed to create trip", operation="create_trip")

        logger.info("Trip created", trip_id=trip.id, mode=trip.scheduling_mode, status=trip.status)
        return self._row_to_trip(row)

    async def get_trip(self, trip_id: str) -> Trip | None:
        query = f"SELECT {self.TRIP_COLUMNS} FROM trips WHERE id = %s"
        row = await fetch_one(query, (trip_id,))
        return self._row_to_trip(row)

    async def load_snapshot(self, trip_id: str) -> SchedulingSnapshot | None:
        """Read the trip and all of its sub-records from one database snapshot."""
        async with db_pool.transaction() as conn:
            await execute_query(
                "SET TRANSACTION ISOLATION LEVEL REPEATABLE READ READ ONLY", connection=conn
            )

            trip = self._row_to_trip(
                await fetch_one(
                    f"SELECT {self.TRIP_COLUMNS} FROM trips WHERE id = %s",
                    (trip_id,),
                    connection=conn,
                )
            )
            if trip is None:
                return None

            participants = await fetch_all(
                """
                SELECT trip_id, user_id, status, joined_at
                FROM trip_participants WHERE trip_id = %s ORDER BY user_id
                """,
                (trip_id,),
                connection=conn,
            )
            availability = await fetch_all(
                """
                SELECT trip_id, user_id, broad_status, weekly_blocks, days, updated_at
                FROM trip_availability WHERE trip_id = %s ORDER BY user_id
                """,
                (trip_id,),
                connection=conn,
            )
            picks = await fetch_all(
                """
                SELECT trip_id, user_id, picks, updated_at
                FROM trip_date_picks WHERE trip_id = %s ORDER BY user_id
                """,
                (trip_id,),
                connection=conn,
            )
            votes = await fetch_all(
                """
                SELECT trip_id, user_id, option_key, created_at, updated_at
                FROM trip_votes WHERE trip_id = %s ORDER BY user_id
                """,
                (trip_id,),
                connection=conn,
            )
            reactions = await fetch_all(
                """
                SELECT trip_id, user_id, proposal_id, reaction_type, note, created_at, updated_at
                FROM trip_date_reactions WHERE trip_id = %s ORDER BY user_id
                """,
                (trip_id,),
                connection=conn,
            )
            windows = await fetch_all(
                """
                SELECT trip_id, window_id, user_id, description, start_hint, end_hint,
                       archived, created_at
                FROM trip_window_proposals WHERE trip_id = %s ORDER BY created_at, window_id
                """,
                (trip_id,),
                connection=conn,
            )
            window_preferences = await fetch_all(
                """
                SELECT trip_id, window_id, user_id, preference, note, created_at, updated_at
                FROM trip_window_preferences WHERE trip_id = %s ORDER BY window_id, user_id
                """,
                (trip_id,),
                connection=conn,
            )

        return SchedulingSnapshot(
            trip=trip,
            participants=[self._row_to_participant(r) for r in participants],
            availability=[self._row_to_availability(r) for r in availability],
            date_picks=[self._row_to_picks(r) for r in picks],
            votes=[self._row_to_vote(r) for r in votes],
            reactions=[self._row_to_reaction(r) for r in reactions],
            window_proposals=[self._row_to_window(r) for r in windows],
            window_preferences=[self._row_to_window_preference(r) for r in window_preferences],
        )

    # ------------------------------------------------------------------
    # Guarded writes
    # ------------------------------------------------------------------

    @classmethod
    def _build_guarded_update(
        cls, guard: WriteGuard, assignments: list[str]
    ) -> tuple[str, list[Any], list[Any]]:
        """
        Returns (query, set_params, where_params). The caller places its own
        assignment params between the two lists.
        """
        set_parts: list[str] = []
        set_params: list[Any] = []

        if guard.transitions:
            cases = " ".join("WHEN %s THEN %s" for _ in guard.transitions)
            set_parts.append(f"status = CASE status {cases} ELSE status END")
            for source, target in sorted(guard.transitions.items()):
                set_params.extend([source, target])

        set_parts.extend(assignments)
        set_parts.extend(["version = version + 1", "updated_at = NOW()"])

        conditions = ["id = %s", "status = ANY(%s)"]
        where_params: list[Any] = [sorted(guard.allowed_statuses)]
        if guard.expected_version is not None:
            conditions.append("version = %s")
            where_params.append(guard.expected_version)
        if guard.expected_proposal_id is not None:
            conditions.append("date_proposal->>'proposalId' = %s")
            where_params.append(guard.expected_proposal_id)

        query = f"""
            UPDATE trips
            SET {", ".join(set_parts)}
            WHERE {" AND ".join(conditions)}
            RETURNING {cls.TRIP_COLUMNS}
        """
        return query, set_params, where_params

    async def _guarded_update(
        self,
        conn: psycopg.AsyncConnection,
        trip_id: str,
        guard: WriteGuard,
        assignments: list[str] | None = None,
        assignment_params: list[Any] | None = None,
    ) -> Trip:
        query, set_params, where_params = self._build_guarded_update(guard, assignments or [])
        params = (*set_params, *(assignment_params or []), trip_id, *where_params)

        row = await fetch_one(query, params, connection=conn)
        if row:
            return self._row_to_trip(row)

        current = self._row_to_trip(
            await fetch_one(
                f"SELECT {self.TRIP_COLUMNS} FROM trips WHERE id = %s", (trip_id,), connection=conn
            )
        )
        if current is None:
            raise TripNotFound("Trip not found", trip_id=trip_id)

        logger.info(
            "Guarded write rejected",
            trip_id=trip_id,
            action=guard.action,
            status=current.status,
            version=current.version,
        )
        raise GuardRejected(guard, current)

    async def set_participant(self, participant: TripParticipant, guard: WriteGuard) -> Trip:
        upsert = """
            INSERT INTO trip_participants (trip_id, user_id, status, joined_at)
            VALUES (%s, %s, %s, COALESCE(%s, NOW()))
            ON CONFLICT (trip_id, user_id) DO UPDATE SET status = EXCLUDED.status
        """
        async with db_pool.transaction() as conn:
            trip = await self._guarded_update(conn, participant.trip_id, guard)
            await execute_query(
                upsert,
                (participant.trip_id, participant.user_id, participant.status, participant.joined_at),
                connection=conn,
            )
        return trip

    async def replace_availability(self, record: AvailabilityRecord, guard: WriteGuard) -> Trip:
        upsert = """
            INSERT INTO trip_availability (
                trip_id, user_id, broad_status, weekly_blocks, days, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, NOW())
            ON CONFLICT (trip_id, user_id) DO UPDATE SET
                broad_status = EXCLUDED.broad_status,
                weekly_blocks = EXCLUDED.weekly_blocks,
                days = EXCLUDED.days,
                updated_at = NOW()
        """
        async with db_pool.transaction() as conn:
            trip = await self._guarded_update(conn, record.trip_id, guard)
            await execute_query(
                upsert,
                (
                    record.trip_id,
                    record.user_id,
                    record.broad_status,
                    Jsonb(weekly_blocks_to_json(record.weekly_blocks)),
                    Jsonb(days_to_json(record.days)),
                ),
                connection=conn,
            )
        return trip

    async def replace_date_picks(self, picks: DatePicks, guard: WriteGuard) -> Trip:
        upsert = """
            INSERT INTO trip_date_picks (trip_id, user_id, picks, updated_at)
            VALUES (%s, %s, %s, NOW())
            ON CONFLICT (trip_id, user_id) DO UPDATE SET
                picks = EXCLUDED.picks,
                updated_at = NOW()
        """
        async with db_pool.transaction() as conn:
            trip = await self._guarded_update(conn, picks.trip_id, guard)
            await execute_query(
                upsert,
                (picks.trip_id, picks.user_id, Jsonb(picks_to_json(picks.picks))),
                connection=conn,
            )
        return trip

    async def open_voting(
        self, trip_id: str, ballot: list[ConsensusOption], guard: WriteGuard
    ) -> Trip:
        async with db_pool.transaction() as conn:
            trip = await self._guarded_update(
                conn,
                trip_id,
                guard,
                ["voting_options = %s"],
                [Jsonb(options_to_json(ballot))],
            )
            deleted = await execute_query(
                "DELETE FROM trip_votes WHERE trip_id = %s", (trip_id,), connection=conn
            )
        logger.debug("Voting ballot stored", trip_id=trip_id, options=len(ballot), stale_votes=deleted)
        return trip

    async def upsert_vote(self, vote: Vote, guard: WriteGuard) -> Trip:
        upsert = """
            INSERT INTO trip_votes (trip_id, user_id, option_key, created_at, updated_at)
            VALUES (%s, %s, %s, NOW(), NOW())
            ON CONFLICT (trip_id, user_id) DO UPDATE SET
                option_key = EXCLUDED.option_key,
                updated_at = NOW()
        """
        async with db_pool.transaction() as conn:
            trip = await self._guarded_update(conn, vote.trip_id, guard)
            await execute_query(
                upsert, (vote.trip_id, vote.user_id, vote.option_key), connection=conn
            )
        return trip

    async def replace_proposal(
        self, trip_id: str, proposal: DateProposal, guard: WriteGuard
    ) -> Trip:
        async with db_pool.transaction() as conn:
            trip = await self._guarded_update(
                conn,
                trip_id,
                guard,
                ["date_proposal = %s"],
                [Jsonb(proposal_to_json(proposal))],
            )
            cleared = await execute_query(
                "DELETE FROM trip_date_reactions WHERE trip_id = %s", (trip_id,), connection=conn
            )
        logger.debug(
            "Date proposal stored",
            trip_id=trip_id,
            proposal_id=proposal.proposal_id,
            cleared_reactions=cleared,
        )
        return trip

    async def upsert_reaction(self, reaction: DateReaction, guard: WriteGuard) -> Trip:
        upsert = """
            INSERT INTO trip_date_reactions (
                trip_id, user_id, proposal_id, reaction_type, note, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, NOW(), NOW())
            ON CONFLICT (trip_id, user_id) DO UPDATE SET
                proposal_id = EXCLUDED.proposal_id,
                reaction_type = EXCLUDED.reaction_type,
                note = EXCLUDED.note,
                updated_at = NOW()
        """
        async with db_pool.transaction() as conn:
            trip = await self._guarded_update(conn, reaction.trip_id, guard)
            await execute_query(
                upsert,
                (
                    reaction.trip_id,
                    reaction.user_id,
                    reaction.proposal_id,
                    reaction.reaction_type,
                    reaction.note,
                ),
                connection=conn,
            )
        return trip

    async def commit_lock(
        self, trip_id: str, start_date: date, end_date: date, guard: WriteGuard
    ) -> Trip:
        async with db_pool.transaction() as conn:
            return await self._guarded_update(
                conn,
                trip_id,
                guard,
                ["locked_start_date = %s", "locked_end_date = %s"],
                [start_date, end_date],
            )

    async def cancel(self, trip_id: str, guard: WriteGuard) -> Trip:
        async with db_pool.transaction() as conn:
            return await self._guarded_update(conn, trip_id, guard, ["canceled_at = NOW()"])

    async def add_window_proposal(self, window: WindowProposal, guard: WriteGuard) -> Trip:
        insert = """
            INSERT INTO trip_window_proposals (
                trip_id, window_id, user_id, description, start_hint, end_hint, archived, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, FALSE, NOW())
        """
        async with db_pool.transaction() as conn:
            trip = await self._guarded_update(conn, window.trip_id, guard)
            await execute_query(
                insert,
                (
                    window.trip_id,
                    window.window_id,
                    window.user_id,
                    window.description,
                    window.start_hint,
                    window.end_hint,
                ),
                connection=conn,
            )
        return trip

    async def upsert_window_preference(
        self, preference: WindowPreference, guard: WriteGuard
    ) -> Trip:
        upsert = """
            INSERT INTO trip_window_preferences (
                trip_id, window_id, user_id, preference, note, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, NOW(), NOW())
            ON CONFLICT (trip_id, window_id, user_id) DO UPDATE SET
                preference = EXCLUDED.preference,
                note = EXCLUDED.note,
                updated_at = NOW()
        """
        async with db_pool.transaction() as conn:
            trip = await self._guarded_update(conn, preference.trip_id, guard)
            await execute_query(
                upsert,
                (
                    preference.trip_id,
                    preference.window_id,
                    preference.user_id,
                    preference.preference,
                    preference.note,
                ),
                connection=conn,
            )
        return trip

    async def archive_windows(
        self, trip_id: str, window_ids: list[str], guard: WriteGuard
    ) -> Trip:
        async with db_pool.transaction() as conn:
            trip = await self._guarded_update(conn, trip_id, guard)
            archived = await execute_query(
                """
                UPDATE trip_window_proposals SET archived = TRUE
                WHERE trip_id = %s AND window_id = ANY(%s) AND NOT archived
                """,
                (trip_id, list(window_ids)),
                connection=conn,
            )
        logger.debug("Windows archived", trip_id=trip_id, archived=archived)
        return trip
