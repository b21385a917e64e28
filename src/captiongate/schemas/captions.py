"""Public caption generation schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class CaptionRequest(BaseModel):
    image: str = Field(
        ...,
        min_length=1,
        description="Data URL, bare base64 payload, remote URL or content-store id",
    )
    mood: str = Field(..., min_length=1, max_length=64)
    prompt: str | None = Field(None, max_length=1000, description="Optional extra context")


class QuotaInfo(BaseModel):
    limit: int
    remaining: int
    reset_at: datetime


class CaptionResponse(BaseModel):
    captions: list[str]
    cached: bool
    fingerprint: str
    quota: QuotaInfo
