"""
POST /v1/captions: core generation endpoint.

Full pipeline: Block check -> Quota -> Fingerprint -> Cache -> Backend -> Cache store
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import ORJSONResponse

from captiongate.api.deps import CurrentCaller, Generation
from captiongate.schemas.captions import CaptionRequest, CaptionResponse, QuotaInfo

logger = structlog.stdlib.get_logger()

router = APIRouter()


@router.post(
    "/captions",
    response_model=CaptionResponse,
    summary="Generate captions",
    description=(
        "Generate captions for an image in the requested mood. Identical "
        "requests are served from the result cache; every call consumes quota."
    ),
)
async def create_captions(
    body: CaptionRequest,
    request: Request,
    caller: CurrentCaller,
    service: Generation,
) -> ORJSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")

    await logger.ainfo(
        "captions.request",
        mood=body.mood,
        has_prompt=bool(body.prompt),
        authenticated=caller.authenticated,
    )

    result = await service.generate(caller, body.image, body.mood, body.prompt)

    content = CaptionResponse(
        captions=result.captions,
        cached=result.cached,
        fingerprint=result.fingerprint,
        quota=QuotaInfo(
            limit=result.quota.limit,
            remaining=result.quota.remaining,
            reset_at=result.quota.reset_at,
        ),
    )
    response = ORJSONResponse(content=content.model_dump(mode="json"))
    response.headers["x-captiongate-cache"] = "HIT" if result.cached else "MISS"
    response.headers["x-captiongate-request-id"] = request_id

    # Quota headers
    for key, value in result.quota.to_headers().items():
        response.headers[key] = value

    return response
