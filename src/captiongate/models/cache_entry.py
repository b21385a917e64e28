"""Cached caption set for one (fingerprint, prompt, mood) triple."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from captiongate.models.base import Base, UTCDateTime, UUIDPrimaryKeyMixin, utcnow


class CacheEntry(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "cache_entries"

    # Lookup key
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    prompt: Mapped[str] = mapped_column(String, nullable=False)
    mood: Mapped[str] = mapped_column(String(255), nullable=False)

    # Cached data
    captions: Mapped[list[str]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False
    )
    owner_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Metrics
    usage_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Lifecycle
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    last_used_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)

    __table_args__ = (
        UniqueConstraint("fingerprint", "prompt", "mood", name="uq_cache_entry_key"),
        Index("ix_cache_last_used", "last_used_at"),
        Index("ix_cache_created", "created_at"),
    )
