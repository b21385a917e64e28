"""Escalating temporary block for an abusive credential."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from captiongate.models.base import Base, TimestampMixin, UTCDateTime


class BlockReason(str, enum.Enum):
    ABUSE_PREVENTION = "abuse_prevention"
    ACCOUNT_DELETION_ABUSE = "account_deletion_abuse"
    RATE_LIMIT_VIOLATION = "rate_limit_violation"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    MANUAL_BLOCK = "manual_block"


class BlockRecord(Base, TimestampMixin):
    __tablename__ = "block_records"

    # Lower-cased, stripped email
    credential: Mapped[str] = mapped_column(String(320), primary_key=True)
    blocked_until: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    reason: Mapped[str] = mapped_column(
        String(64), default=BlockReason.ABUSE_PREVENTION.value, nullable=False
    )

    # Audit
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
