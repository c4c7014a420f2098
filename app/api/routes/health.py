"""
Health Check Endpoints

Liveness and readiness probes for load balancers and orchestrators.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.infra.database import check_db_health
from app.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"

_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Record application start. Called once from the lifespan."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadyResponse(BaseModel):
    """
    Readiness with per-dependency results.

    Redis is optional: without it conversation locks are process-local, so
    a Redis failure degrades the service but does not make it unready.
    """
    status: str
    timestamp: datetime
    checks: dict[str, str]


class LiveResponse(BaseModel):
    status: str
    timestamp: datetime
    uptime_seconds: Optional[float] = None


async def _run_check(name: str, check: Callable[[], Awaitable[bool]]) -> str:
    try:
        healthy = await check()
    except Exception as e:
        logger.error(f"Readiness check: {name} error - {e}")
        return "error"
    if not healthy:
        logger.warning(f"Readiness check: {name} unhealthy")
        return "failed"
    return "ok"


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
async def health() -> HealthResponse:
    """Always 200 while the process serves requests."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
        environment=settings.app_env,
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness probe",
    responses={
        200: {"description": "Database reachable (Redis may be degraded)"},
        503: {"description": "Database unavailable"},
    },
)
async def ready():
    checks = {
        "database": await _run_check("database", check_db_health),
        "redis": await _run_check("redis", check_redis_health),
    }

    if checks["database"] != "ok":
        state = "not_ready"
    elif checks["redis"] != "ok":
        state = "degraded"
    else:
        state = "ready"

    response = ReadyResponse(
        status=state,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )

    if state == "not_ready":
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response


@router.get(
    "/live",
    response_model=LiveResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
)
async def live() -> LiveResponse:
    return LiveResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=get_uptime_seconds(),
    )
