"""
Scheduling error taxonomy.

Every rejection is synchronous and leaves the trip untouched. The API layer
maps ``status_code`` onto the HTTP response.
"""


class SchedulingError(Exception):
    """Base exception for scheduling operations."""

    code = "SCHEDULING_ERROR"
    status_code = 400

    def __init__(self, message: str, trip_id: str | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.trip_id = trip_id
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class Forbidden(SchedulingError):
    """Caller lacks the role required for the action."""

    code = "FORBIDDEN"
    status_code = 403


class InvalidState(SchedulingError):
    """Action illegal for the trip's current status (includes already locked / frozen)."""

    code = "INVALID_STATE"
    status_code = 409


class QuorumNotMet(SchedulingError):
    """Lock attempted before the approval or vote threshold was satisfied."""

    code = "QUORUM_NOT_MET"
    status_code = 409


class ScheduleValidationError(SchedulingError):
    """Malformed input: bad date range, missing fields, unknown option."""

    code = "VALIDATION_ERROR"
    status_code = 400


class TripNotFound(SchedulingError):
    code = "TRIP_NOT_FOUND"
    status_code = 404
