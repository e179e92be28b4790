"""
AgentX Engine - Health Check Router

Key endpoints:
- GET /api/health       - Liveness probe: returns 200 if process is up
- GET /api/health/ready - Readiness probe: returns 200 only if DB is reachable
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import __version__
from ..config import get_settings
from ..db import check_db_ready, get_pool_health

# Stricter timeout for the readiness probe (seconds)
READINESS_DB_TIMEOUT = 2.0

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


class LivenessResponse(BaseModel):
    """Liveness probe response - indicates process is alive."""

    status: str
    timestamp: str
    environment: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness probe response - indicates service is ready to accept traffic."""

    ready: bool
    status: str
    timestamp: str
    database: str
    error: str | None = None
    pool_initialized: bool
    pool_init_attempts: int


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("", response_model=LivenessResponse, summary="Liveness probe")
async def health_check() -> LivenessResponse:
    """Returns OK if the process is running. Never touches the database."""
    return LivenessResponse(
        status="ok",
        timestamp=_now(),
        environment=get_settings().ENVIRONMENT,
        version=__version__,
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    responses={503: {"description": "Service is not ready - DB unreachable or unhealthy"}},
    summary="Readiness probe (DB-focused)",
)
async def readiness_check() -> JSONResponse:
    """
    Returns 200 only if the pool is initialized and SELECT 1 succeeds within
    the readiness timeout; 503 otherwise.
    """
    pool_health = get_pool_health()
    is_ready, db_status = await check_db_ready(timeout=READINESS_DB_TIMEOUT)

    body = ReadinessResponse(
        ready=is_ready,
        status="ready" if is_ready else "not_ready",
        timestamp=_now(),
        database=db_status,
        error=None if is_ready else pool_health.last_error,
        pool_initialized=pool_health.initialized,
        pool_init_attempts=pool_health.init_attempts,
    )

    if not is_ready:
        logger.warning(
            f"Readiness check failed: db={db_status}, "
            f"initialized={pool_health.initialized}, error={pool_health.last_error}"
        )
    return JSONResponse(status_code=200 if is_ready else 503, content=body.model_dump())
