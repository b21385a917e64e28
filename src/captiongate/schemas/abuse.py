"""Block list schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from captiongate.models.block_record import BlockReason


class BlockCheckRequest(BaseModel):
    credential: str = Field(..., min_length=1, max_length=320)


class BlockStatusResponse(BaseModel):
    blocked: bool
    blocked_until: datetime | None = None
    attempts: int = 0
    hours_remaining: int = 0
    reason: str | None = None


class BlockRequest(BaseModel):
    credential: str = Field(..., min_length=1, max_length=320)
    reason: str = Field(
        BlockReason.MANUAL_BLOCK.value,
        description=f"One of: {', '.join(r.value for r in BlockReason)}",
    )
    ip_address: str | None = Field(None, max_length=64)
    user_agent: str | None = Field(None, max_length=512)
