"""
Trip scheduling feature package.

This vertical slice keeps every layer of the date-scheduling engine
co-located: domain models and errors, per-mode strategies, the scoring and
state components, repositories, and the HTTP router.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as trip_scheduling_router  # noqa: F401
from .services.scheduling_service import (  # noqa: F401
    TripSchedulingService,
    get_scheduling_service,
    scheduling_service,
)
