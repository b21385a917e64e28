"""Cache management schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

CLEAR_CONFIRMATION = "YES_DELETE_ALL_CACHE"


class CacheSearchRequest(BaseModel):
    owner_id: str | None = None
    mood: str | None = None
    prompt_contains: str | None = Field(None, description="Case-insensitive substring")
    created_from: datetime | None = None
    created_to: datetime | None = None
    min_usage: int | None = Field(None, ge=1)


class CacheCleanRequest(BaseModel):
    days: int | None = Field(None, ge=0, description="Defaults to cache.default_clean_days")


class CacheClearRequest(BaseModel):
    confirm: str = Field("", description=f'Must be "{CLEAR_CONFIRMATION}"')
