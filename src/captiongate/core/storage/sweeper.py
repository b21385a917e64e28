"""Periodic clean-up of the in-process memory fallbacks."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

import structlog

from captiongate.models.base import utcnow

logger = structlog.stdlib.get_logger()


class FallbackSweeper:
    """
    Drops expired cache entries, quota windows past reset and block records
    past ``blocked_until`` from the memory backends.

    Each backend must provide ``async purge_expired(now) -> int``. Expired
    state is already ignored on read, so the sweeper only bounds memory use.
    """

    def __init__(
        self,
        backends: Sequence[Any],
        *,
        interval_seconds: float = 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._backends = list(backends)
        self._interval = interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> int:
        now = self._clock()
        removed = 0
        for backend in self._backends:
            try:
                removed += await backend.purge_expired(now)
            except Exception as e:
                await logger.awarning(
                    "storage.sweep.error", backend=type(backend).__name__, error=str(e)
                )
        if removed:
            await logger.ainfo("storage.swept", removed=removed)
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.sweep_once()

    def start(self) -> None:
        if self.running or not self._backends:
            return
        self._task = asyncio.create_task(self._loop(), name="captiongate-fallback-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
