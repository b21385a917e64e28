"""
Escalating temporary blocks for abusive credentials.

Typical abuse: an account deletes and re-creates itself to get a fresh
generation quota. Each new block signal within an active block extends the
next block (24h, 48h, ... up to 168h). Once a block has run out the record is
dropped on the next lookup and the escalation starts over.

``is_blocked`` fails open: a storage failure is logged and the credential is
reported as not blocked.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog

from captiongate.common.errors import CredentialBlockedError, ValidationError
from captiongate.common.logging import mask_credential
from captiongate.core.abuse.backends import BlockBackend, block_duration_hours
from captiongate.models.base import utcnow
from captiongate.models.block_record import BlockReason

logger = structlog.stdlib.get_logger()

__all__ = ["AbuseBlockList", "BlockStatus", "block_duration_hours", "normalize_credential"]


def normalize_credential(credential: str | None) -> str:
    if credential is None or not credential.strip():
        raise ValidationError("Credential is required")
    return credential.strip().lower()


@dataclass
class BlockStatus:
    blocked: bool
    blocked_until: datetime | None = None
    attempts: int = 0
    hours_remaining: int = 0
    reason: str | None = None


class AbuseBlockList:
    def __init__(
        self, backend: BlockBackend, *, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self._backend = backend
        self._clock = clock

    def _hours_remaining(self, blocked_until: datetime, now: datetime) -> int:
        return max(0, math.ceil((blocked_until - now).total_seconds() / 3600))

    async def block(
        self,
        credential: str,
        reason: str = BlockReason.ABUSE_PREVENTION.value,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> BlockStatus:
        """Record a block signal and return the resulting (escalated) block."""
        credential = normalize_credential(credential)
        try:
            reason = BlockReason(reason).value
        except ValueError as e:
            raise ValidationError(
                f"Unknown block reason: {reason}",
                details={"allowed": [r.value for r in BlockReason]},
            ) from e

        now = self._clock()
        state = await self._backend.record_block(credential, reason, ip_address, user_agent, now)

        await logger.awarning(
            "abuse.blocked",
            credential=mask_credential(credential),
            reason=reason,
            attempts=state.attempts,
            hours=block_duration_hours(state.attempts),
        )
        return BlockStatus(
            blocked=True,
            blocked_until=state.blocked_until,
            attempts=state.attempts,
            hours_remaining=self._hours_remaining(state.blocked_until, now),
            reason=state.reason,
        )

    async def is_blocked(self, credential: str) -> BlockStatus:
        credential = normalize_credential(credential)
        now = self._clock()
        try:
            state = await self._backend.get(credential)
            if state is None:
                return BlockStatus(blocked=False)

            if now > state.blocked_until:
                # Lazy expiry
                await self._backend.delete_if_expired(credential, now)
                await logger.ainfo("abuse.expired", credential=mask_credential(credential))
                return BlockStatus(blocked=False)
        except Exception as e:
            await logger.aerror(
                "abuse.check.error", credential=mask_credential(credential), error=str(e)
            )
            return BlockStatus(blocked=False)

        return BlockStatus(
            blocked=True,
            blocked_until=state.blocked_until,
            attempts=state.attempts,
            hours_remaining=self._hours_remaining(state.blocked_until, now),
            reason=state.reason,
        )

    async def ensure_not_blocked(self, credential: str) -> None:
        """Raise CredentialBlockedError while a block is active."""
        status = await self.is_blocked(credential)
        if status.blocked:
            raise CredentialBlockedError(
                "This account is temporarily blocked",
                details={
                    "blocked_until": status.blocked_until.isoformat() if status.blocked_until else None,
                    "hours_remaining": status.hours_remaining,
                    "reason": status.reason,
                },
            )

    async def unblock(self, credential: str) -> bool:
        credential = normalize_credential(credential)
        removed = await self._backend.delete(credential)
        if removed:
            await logger.ainfo("abuse.unblocked", credential=mask_credential(credential))
        return removed

    async def reactivate_all(self) -> int:
        removed = await self._backend.delete_all()
        await logger.awarning("abuse.reactivated_all", removed=removed)
        return removed

    async def purge_expired(self) -> int:
        return await self._backend.purge_expired(self._clock())
