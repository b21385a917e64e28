"""
Primary/fallback backend selection.

Every stateful component talks to a ``FailoverBackend``: calls go to the
durable primary under a timeout. When the primary reports
``StoreUnavailableError`` (or times out) the call is served by the memory
fallback and the component is marked degraded in ``StoreHealth``. While the
circuit is open, calls skip the primary and go straight to the fallback; once
the cooldown elapses a single trial call reaches the primary, and its success
marks the component recovered.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

import structlog

from captiongate.common.errors import StoreUnavailableError
from captiongate.core.storage.health import StoreHealth

logger = structlog.stdlib.get_logger()

B = TypeVar("B")
T = TypeVar("T")


class FailoverBackend(Generic[B]):
    """Routes operations to ``primary`` and falls back to ``fallback`` on outage."""

    def __init__(
        self,
        primary: B,
        fallback: B | None,
        health: StoreHealth,
        *,
        component: str,
        timeout_seconds: float = 5.0,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self._health = health
        self._component = component
        self._timeout = timeout_seconds

    @property
    def component(self) -> str:
        return self._component

    async def _run(self, op: str, call: Callable[[B], Awaitable[T]]) -> T:
        if not self._health.allows_primary(self._component):
            return await self._call_fallback(op, call, None)

        try:
            async with asyncio.timeout(self._timeout):
                result = await call(self.primary)
        except (StoreUnavailableError, TimeoutError) as e:
            error = e.message if isinstance(e, StoreUnavailableError) else "timeout"
            await self._health.mark_degraded(self._component, error)
            return await self._call_fallback(op, call, e)

        await self._health.mark_recovered(self._component)
        return result

    async def _call_fallback(
        self, op: str, call: Callable[[B], Awaitable[T]], cause: Exception | None
    ) -> T:
        if self.fallback is None:
            raise StoreUnavailableError(
                f"{self._component} store unavailable",
                details={"operation": op},
            ) from cause

        self._health.record_fallback_call(self._component)
        await logger.adebug(
            "storage.fallback_call", component=self._component, operation=op
        )
        return await call(self.fallback)
