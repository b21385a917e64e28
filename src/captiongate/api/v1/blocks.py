"""POST /v1/blocks/check: block status for a credential."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter

from captiongate.api.deps import AppComponents
from captiongate.schemas.abuse import BlockCheckRequest, BlockStatusResponse

router = APIRouter()


@router.post("/blocks/check", response_model=BlockStatusResponse, summary="Check block status")
async def check_block(body: BlockCheckRequest, components: AppComponents) -> BlockStatusResponse:
    status = await components.blocklist.is_blocked(body.credential)
    return BlockStatusResponse(**asdict(status))
