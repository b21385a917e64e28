"""Health check schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class LivenessResponse(BaseModel):
    status: str = "ok"
    version: str


class ComponentStatus(BaseModel):
    component: str
    degraded: bool
    since: datetime | None = None
    last_error: str | None = None
    fallback_calls: int = 0
    cooldown_until: datetime | None = None


class ReadinessResponse(BaseModel):
    status: str    # "ok" | "degraded"
    database: str  # "connected" | "disconnected"
    redis: str     # "connected" | "disconnected" | "unused"
    degraded: list[str] = []
    components: list[ComponentStatus] = []
