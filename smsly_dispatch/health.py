"""
Health Checks
=============
Component status for the dispatch service: database, Redis bucket store and
the webhook retry backlog.
"""

import time
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

import structlog
from fastapi import APIRouter, Response
from pydantic import BaseModel
from sqlalchemy import text
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

logger = structlog.get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    status: str
    latency_ms: Optional[float] = None
    error: Optional[str] = None
    detail: Optional[Dict[str, int]] = None


class HealthResponse(BaseModel):
    status: HealthStatus
    service: str
    version: str
    components: Dict[str, ComponentHealth]
    timestamp: float


HealthCheck = Callable[[], Awaitable[ComponentHealth]]


async def check_database(engine) -> ComponentHealth:
    """Check database connectivity and latency."""
    try:
        start = time.time()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        latency = (time.time() - start) * 1000
        return ComponentHealth(status="connected", latency_ms=round(latency, 2))
    except (SQLAlchemyError, OSError) as e:
        logger.error("database_health_check_failed", error=str(e))
        return ComponentHealth(status="error", error=str(e))


async def check_redis(redis_client) -> ComponentHealth:
    """Check Redis connectivity and latency."""
    try:
        start = time.time()
        await redis_client.ping()
        latency = (time.time() - start) * 1000
        return ComponentHealth(status="connected", latency_ms=round(latency, 2))
    except (RedisError, OSError) as e:
        logger.error("redis_health_check_failed", error=str(e))
        return ComponentHealth(status="error", error=str(e))


def create_health_router(
    service_name: str,
    version: str = "0.1.0",
    engine=None,
    redis_client=None,
    custom_checks: Optional[Dict[str, HealthCheck]] = None,
) -> APIRouter:
    """
    Create a health check router.

    Args:
        service_name: Name of the service (e.g., "smsly-dispatch")
        version: Service version
        engine: SQLAlchemy async engine (optional)
        redis_client: Redis client backing the bucket store (optional)
        custom_checks: Dict of extra check coroutines (optional)

    Returns:
        FastAPI router with /health, /health/live and /health/ready endpoints
    """
    router = APIRouter(tags=["Health"])

    @router.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        components: Dict[str, ComponentHealth] = {}
        overall_status = HealthStatus.HEALTHY

        if engine is not None:
            components["database"] = await check_database(engine)
            if components["database"].status == "error":
                overall_status = HealthStatus.UNHEALTHY

        # Token buckets live in Redis; admissions stall without it
        if redis_client is not None:
            components["redis"] = await check_redis(redis_client)
            if components["redis"].status == "error":
                overall_status = HealthStatus.UNHEALTHY

        for name, check_fn in (custom_checks or {}).items():
            components[name] = await check_fn()
            if components[name].status == "error" and overall_status == HealthStatus.HEALTHY:
                overall_status = HealthStatus.DEGRADED

        return HealthResponse(
            status=overall_status,
            service=service_name,
            version=version,
            components=components,
            timestamp=time.time(),
        )

    @router.get("/health/live")
    async def liveness_probe():
        return {"status": "alive"}

    @router.get("/health/ready")
    async def readiness_probe():
        if engine is not None:
            db_health = await check_database(engine)
            if db_health.status == "error":
                return Response(
                    content='{"status": "not_ready", "reason": "database_unavailable"}',
                    status_code=503,
                    media_type="application/json",
                )
        return {"status": "ready"}

    return router
