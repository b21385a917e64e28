"""
Fixed window generation quota per identity key.

Returns rate limit headers in the same shape as request rate limits:
  X-RateLimit-Limit-Generations
  X-RateLimit-Remaining-Generations
  X-RateLimit-Reset-Generations

The limiter knows nothing about who is anonymous or authenticated; callers
pass the ceiling and window from ``QuotaSettings.policy_for(...)``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from captiongate.common.errors import QuotaExceededError, ValidationError
from captiongate.core.quota.backends import QuotaBackend
from captiongate.models.base import utcnow

logger = structlog.stdlib.get_logger()


@dataclass
class QuotaResult:
    """Result of a quota check, including header values."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    reset_seconds: float = 0.0

    def to_headers(self, kind: str = "generations") -> dict[str, str]:
        return {
            f"x-ratelimit-limit-{kind}": str(self.limit),
            f"x-ratelimit-remaining-{kind}": str(max(0, self.remaining)),
            f"x-ratelimit-reset-{kind}": f"{self.reset_seconds:.1f}",
        }


@dataclass
class QuotaStatus:
    key: str
    current_usage: int
    limit: int
    remaining: int
    reset_at: datetime
    window_hours: int


def _validate(key: str, max_generations: int, window_hours: int) -> None:
    if not key:
        raise ValidationError("Quota key is required")
    if max_generations < 1:
        raise ValidationError("max_generations must be >= 1")
    if window_hours < 1:
        raise ValidationError("window_hours must be >= 1")


class QuotaLimiter:
    """Counts generations per identity key within a fixed window."""

    def __init__(
        self, backend: QuotaBackend, *, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self._backend = backend
        self._clock = clock

    def _result(self, allowed: bool, limit: int, remaining: int, reset_at: datetime) -> QuotaResult:
        reset_seconds = max(0.0, (reset_at - self._clock()).total_seconds())
        return QuotaResult(
            allowed=allowed,
            limit=limit,
            remaining=remaining,
            reset_at=reset_at,
            reset_seconds=reset_seconds,
        )

    async def check(self, key: str, max_generations: int, window_hours: int) -> QuotaResult:
        """
        Check and consume one generation.

        Args:
            key: Identity key (``user:<id>`` or ``ip:<address>``)
            max_generations: Ceiling for the window
            window_hours: Window length

        Returns:
            QuotaResult; ``allowed=False`` leaves the counter untouched
        """
        _validate(key, max_generations, window_hours)
        now = self._clock()
        window = timedelta(hours=window_hours)

        try:
            hit = await self._backend.hit(key, max_generations, window, now)
        except Exception as e:
            await logger.aerror("quota.check.error", key=key, error=str(e))
            # Fail-open: a broken store must not stop generation
            return self._result(True, max_generations, max_generations, now + window)

        if not hit.allowed:
            await logger.ainfo(
                "quota.exceeded",
                key=key,
                limit=max_generations,
                reset_at=hit.reset_at.isoformat(),
            )
            return self._result(False, max_generations, 0, hit.reset_at)

        return self._result(True, max_generations, max_generations - hit.count, hit.reset_at)

    async def check_or_raise(
        self, key: str, max_generations: int, window_hours: int
    ) -> QuotaResult:
        """Check quota; raises QuotaExceededError if exhausted."""
        result = await self.check(key, max_generations, window_hours)
        if not result.allowed:
            raise QuotaExceededError(
                f"Generation quota exceeded: {max_generations} per {window_hours}h",
                details={
                    "limit": max_generations,
                    "window_hours": window_hours,
                    "reset_at": result.reset_at.isoformat(),
                    "retry_after": round(result.reset_seconds, 1),
                },
            )
        return result

    async def status(self, key: str, max_generations: int, window_hours: int) -> QuotaStatus:
        """Read-only view of a key's window. Does not consume."""
        _validate(key, max_generations, window_hours)
        now = self._clock()
        state = await self._backend.get(key)

        if state is None or now >= state.reset_at:
            return QuotaStatus(
                key=key,
                current_usage=0,
                limit=max_generations,
                remaining=max_generations,
                reset_at=now + timedelta(hours=window_hours),
                window_hours=window_hours,
            )

        return QuotaStatus(
            key=key,
            current_usage=state.count,
            limit=max_generations,
            remaining=max(0, max_generations - state.count),
            reset_at=state.reset_at,
            window_hours=window_hours,
        )

    async def reset(self, key: str) -> bool:
        if not key:
            raise ValidationError("Quota key is required")
        deleted = await self._backend.delete(key)
        if deleted:
            await logger.ainfo("quota.reset", key=key)
        return deleted

    async def reset_all(self) -> int:
        removed = await self._backend.delete_all()
        await logger.awarning("quota.reset_all", removed=removed)
        return removed

    async def purge_expired(self) -> int:
        return await self._backend.purge_expired(self._clock())
