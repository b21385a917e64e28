"""GET /v1/quota: read-only quota status for the caller."""

from __future__ import annotations

from fastapi import APIRouter

from captiongate.api.deps import CurrentCaller, Generation
from captiongate.schemas.quota import QuotaStatusResponse

router = APIRouter()


@router.get("/quota", response_model=QuotaStatusResponse, summary="Caller quota status")
async def get_quota(caller: CurrentCaller, service: Generation) -> QuotaStatusResponse:
    status = await service.quota_status(caller)
    return QuotaStatusResponse(
        key=status.key,
        authenticated=caller.authenticated,
        current_usage=status.current_usage,
        limit=status.limit,
        remaining=status.remaining,
        reset_at=status.reset_at,
        window_hours=status.window_hours,
    )
