# app/routes/health.py
"""
Liveness and readiness endpoints.

/readyz checks the Postgres pool when SCHEDULING_BACKEND=postgres and Redis
when REDIS_URL is set; a disabled dependency reports ok.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.config import settings
from app.db.pool import db_health_check
from app.infrastructure.observability.logging import log_health_check
from app.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "trip-scheduling"}


@router.get("/readyz")
async def readyz():
    """Readiness check across the configured dependencies."""
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    if settings.uses_postgres():
        try:
            db_health = await db_health_check()
            is_healthy = db_health.get("healthy", False)
            checks["database"] = {
                "ok": is_healthy,
                "latency_ms": round((time.time() - t0) * 1000, 1),
            }
            if "pool_stats" in db_health:
                checks["database"]["pool_stats"] = db_health["pool_stats"]
            if not is_healthy:
                checks["database"]["error"] = db_health.get("error", "Database unhealthy")
            overall_ok = overall_ok and is_healthy
        except Exception as e:
            checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
            overall_ok = False
        log_health_check("database", checks["database"])
    else:
        checks["database"] = {"ok": True, "backend": settings.SCHEDULING_BACKEND}

    # 2) Redis consensus cache
    t0 = time.time()
    redis_health = await fast_redis.health_check()
    checks["redis"] = {
        "ok": redis_health["healthy"],
        "enabled": redis_health["enabled"],
        "latency_ms": round((time.time() - t0) * 1000, 1),
    }
    if redis_health["enabled"]:
        log_health_check("redis", checks["redis"])
    overall_ok = overall_ok and redis_health["healthy"]

    body = {
        "overall_ok": overall_ok,
        "checks": checks,
        "environment": settings.environment,
        "timestamp": time.time(),
    }
    return JSONResponse(status_code=200 if overall_ok else 503, content=body)
