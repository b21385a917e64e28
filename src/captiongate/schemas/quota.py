"""Quota schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class QuotaStatusResponse(BaseModel):
    key: str
    authenticated: bool
    current_usage: int
    limit: int
    remaining: int
    reset_at: datetime
    window_hours: int
