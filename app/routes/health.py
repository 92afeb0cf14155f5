# app/routes/health.py
"""
Health check endpoints for the API and its activity sources.
"""

import time

from fastapi import APIRouter

from app.config import settings
from app.db.pool import db_health_check
from app.infrastructure.observability.logging import log_health_check
from app.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "engagement-analytics"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check covering Redis (chart cache) and the database pool.

    Redis being down degrades chart caching only, so it is reported but does
    not fail readiness.
    """
    checks = {}
    overall_ok = True

    # 1) Redis
    t0 = time.time()
    redis_ok = await fast_redis.ping()
    redis_latency = round((time.time() - t0) * 1000, 1)
    checks["redis"] = {
        "ok": redis_ok,
        "latency_ms": redis_latency,
        "required": False,
    }
    log_health_check("redis", redis_ok, redis_latency)

    # 2) Database pool
    t0 = time.time()
    db_health = await db_health_check()
    is_healthy = bool(db_health.get("healthy", False))
    db_latency = round((time.time() - t0) * 1000, 1)

    checks["database"] = {
        "ok": is_healthy,
        "latency_ms": db_latency,
    }

    if "pool_stats" in db_health:
        pool_stats = db_health["pool_stats"]
        checks["database"].update(
            {
                "pool_size": pool_stats.get("pool_size", 0),
                "pool_available": pool_stats.get("pool_available", 0),
                "pool_utilization_percent": pool_stats.get("pool_utilization_percent", 0),
                "connection_time_ms": db_health.get("connection_time_ms", 0),
            }
        )

    if "warnings" in db_health:
        checks["database"]["warnings"] = db_health["warnings"]

    if not is_healthy:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")

    log_health_check("database", is_healthy, db_latency, error=checks["database"].get("error"))
    overall_ok = overall_ok and is_healthy

    checks["configuration"] = {
        "ok": True,
        "environment": settings.environment,
        "cache_ttl_s": settings.ANALYTICS_CACHE_TTL_S,
        "max_concurrency": settings.ANALYTICS_MAX_CONCURRENCY,
    }

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
