"""Fixed-window generation counter for one identity key."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from captiongate.models.base import Base, TimestampMixin, UTCDateTime


class QuotaWindow(Base, TimestampMixin):
    __tablename__ = "quota_windows"

    # "user:<id>" or "ip:<address>"
    key: Mapped[str] = mapped_column(String(320), primary_key=True)
    request_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    window_reset_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
