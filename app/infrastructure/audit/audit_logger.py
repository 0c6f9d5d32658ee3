"""
AuditLogger - trail of leader and irreversible scheduling actions.

Recorded actions:
- trip_voting_opened
- trip_windows_archived
- trip_dates_proposed
- trip_dates_locked
- trip_canceled

Usage:
    from app.infrastructure.audit import audit_logger

    await audit_logger.log_trip_event(
        user_id=caller_id,
        action="trip_dates_locked",
        trip_id=trip.id,
        metadata={"start_date": "2025-08-01", "end_date": "2025-08-03"},
        request_id=request.state.request_id,
    )

Every event goes to the structured log. When the Postgres pool is up the
event is also inserted into ``trip_audit_log``. Audit failures are logged and
reported as False; they never fail the request.
"""

from datetime import UTC, datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AuditLogger:
    @staticmethod
    async def log_trip_event(
        user_id: str,
        action: str,
        trip_id: str,
        metadata: dict[str, Any] | None = None,
        ip_address: str | None = None,
        request_id: str | None = None,
    ) -> bool:
        """
        Log a scheduling audit event.

        Returns:
            True if persisted (or persistence is not configured), False on failure
        """
        logger.info(
            "Audit event",
            audit_action=action,
            user_id=user_id,
            trip_id=trip_id,
            ip_address=ip_address,
            request_id=request_id,
            **(metadata or {}),
        )

        if not db_pool.initialized:
            return True

        try:
            async with db_pool.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO trip_audit_log (
                        trip_id, user_id, action, metadata,
                        ip_address, request_id, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        trip_id,
                        user_id,
                        action,
                        Jsonb(metadata or {}),
                        ip_address,
                        request_id,
                        datetime.now(UTC),
                    ),
                )
            return True

        except Exception as e:
            logger.error(
                "CRITICAL: Failed to write audit log to database",
                error=str(e),
                error_type=type(e).__name__,
                audit_action=action,
                user_id=user_id,
                trip_id=trip_id,
            )
            return False


# Global singleton instance
audit_logger = AuditLogger()
