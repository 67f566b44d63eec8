"""Liveness and readiness checks.

/health answers as long as the process serves requests. /health/ready
checks the two hard dependencies of a pipeline run (PostgreSQL and Redis)
and reports the configuration of the external services without failing on
it: a run with a missing key or storage URL fails with its own error code.
"""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.insights.config import get_settings
from src.insights.core.database import get_engine
from src.insights.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    settings = get_settings()
    return {
        "status": "ok",
        "service": "meeting-insights",
        "environment": settings.ENVIRONMENT.value,
    }


async def _check_database() -> str | None:
    """Returns an error string, or None when the database answers."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        return str(e)
    return None


async def _check_redis() -> str | None:
    """Returns an error string, or None when Redis answers PING."""
    try:
        if not await get_redis_pool().ping():
            return "PING did not return PONG"
    except Exception as e:
        return str(e)
    return None


def _configuration_checks() -> dict[str, str]:
    settings = get_settings()
    return {
        "openai": "ok" if settings.OPENAI_API_KEY else "no_key",
        "storage": "ok" if settings.STORAGE_URL else "not_configured",
    }


@router.get("/health/ready")
async def readiness_check():
    """200 when the database and Redis are reachable, 503 otherwise."""
    checks: dict[str, str] = {}
    for name, check in (("database", _check_database), ("redis", _check_redis)):
        error = await check()
        checks[name] = "ok" if error is None else "error"
        if error is not None:
            checks[f"{name}_error"] = error
    checks.update(_configuration_checks())

    ready = checks["database"] == "ok" and checks["redis"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )
