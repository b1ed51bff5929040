"""Health check endpoints for load balancers and monitoring."""

from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from factoryledger.config import settings
from factoryledger.database import engine
from factoryledger.utils.cache import get_redis

router = APIRouter(tags=["health"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health_check():
    """Liveness only; touches neither the database nor Redis."""
    return {
        "status": "ok",
        "service": "FactoryLedger",
        "timestamp": _now(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check():
    """200 only when the database (and Redis, if caching is on) answer."""
    checks = {"service": "ok", "database": "unknown", "redis": "disabled"}
    healthy = True

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {str(e)[:100]}"
        healthy = False

    if settings.cache_enabled:
        try:
            client = await get_redis()
            await client.ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {str(e)[:100]}"
            healthy = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "service": "FactoryLedger",
            "checks": checks,
            "timestamp": _now(),
        },
    )
