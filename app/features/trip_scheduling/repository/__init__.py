"""
Repository subpackage for trip scheduling.
"""

from app.config import settings

from .base import GuardRejected, TripSchedulingRepository
from .memory_repository import InMemoryTripRepository
from .postgres_repository import PostgresTripRepository, TripRepositoryError


def build_repository() -> TripSchedulingRepository:
    """Select the persistence backend from SCHEDULING_BACKEND."""
    if settings.uses_postgres():
        return PostgresTripRepository()
    return InMemoryTripRepository()


__all__ = [
    "GuardRejected",
    "InMemoryTripRepository",
    "PostgresTripRepository",
    "TripRepositoryError",
    "TripSchedulingRepository",
    "build_repository",
]
