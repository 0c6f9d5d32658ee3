# app/main.py
"""
Trip scheduling API with database pool and Redis lifecycle management.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import settings
from app.db.pool import db_pool
from app.features.trip_scheduling.api.router import router as trip_scheduling_router
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.middleware import RequestContextMiddleware
from app.routes import health
from app.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        backend=settings.SCHEDULING_BACKEND,
    )

    startup_tasks = []

    try:
        if settings.uses_postgres():
            logger.info("Initializing database pool")
            await db_pool.initialize()
            startup_tasks.append("database_pool")

        if fast_redis.enabled:
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
            startup_tasks.append("redis")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if "redis" in startup_tasks:
            await fast_redis.close()
        if "database_pool" in startup_tasks:
            await db_pool.close()

        raise

    yield

    logger.info("Application shutting down")

    if "redis" in startup_tasks:
        logger.info("Closing Redis connection")
        await fast_redis.close()

    # Close database pool last (may have active connections)
    if "database_pool" in startup_tasks:
        logger.info("Closing database pool")
        await db_pool.close()

    logger.info("All services closed", services=startup_tasks)


app = FastAPI(
    title="Trip Scheduling",
    description="Date-scheduling consensus engine for group trips",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(trip_scheduling_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
