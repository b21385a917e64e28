"""Health check endpoints for liveness and readiness checks."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Request
from fastapi.responses import ORJSONResponse
from sqlalchemy import text

from captiongate import __version__
from captiongate.api.deps import AppComponents
from captiongate.schemas.health import ComponentStatus, LivenessResponse, ReadinessResponse

router = APIRouter()


@router.get(
    "/live",
    response_model=LivenessResponse,
    summary="Liveness check",
)
async def liveness() -> LivenessResponse:
    return LivenessResponse(version=__version__)


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="503 while the database is unreachable or any component runs on its memory fallback.",
)
async def readiness(request: Request, components: AppComponents) -> ORJSONResponse:
    db_status = "disconnected"
    redis_status = "unused"

    # Check database
    try:
        async with request.app.state.session_factory() as session:
            await session.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception:
        pass

    # Check Redis (only when it backs the quota windows)
    if components.redis is not None:
        try:
            await components.redis.ping()
            redis_status = "connected"
        except Exception:
            redis_status = "disconnected"

    degraded = components.health.degraded_components()
    healthy = db_status == "connected" and redis_status != "disconnected" and not degraded
    overall = "ok" if healthy else "degraded"

    return ORJSONResponse(
        status_code=200 if healthy else 503,
        content=ReadinessResponse(
            status=overall,
            database=db_status,
            redis=redis_status,
            degraded=degraded,
            components=[ComponentStatus(**asdict(c)) for c in components.health.snapshot()],
        ).model_dump(mode="json"),
    )
