"""
Degraded-mode signal and circuit breaker for the storage layer.

A component is *degraded* while its calls are being served by the
per-process memory fallback instead of the shared durable store. Memory
fallbacks are not shared between instances, so quota, cache and block state
diverge across the fleet until the durable store recovers.

Circuit states per component:
  CLOSED    -> Healthy, calls go to the durable store
  OPEN      -> Degraded, calls skip the durable store (cooldown active)
  HALF_OPEN -> Cooldown expired, the next call is a trial on the durable store

Transitions:
  CLOSED -> OPEN:      first outage (error or timeout)
  OPEN -> HALF_OPEN:   after `cooldown_seconds` elapse
  HALF_OPEN -> CLOSED: if the trial call succeeds
  HALF_OPEN -> OPEN:   if the trial call fails (cooldown doubled)
"""

from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from captiongate.models.base import utcnow

logger = structlog.stdlib.get_logger()


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class ComponentHealth:
    component: str
    degraded: bool = False
    since: datetime | None = None
    last_error: str | None = None
    fallback_calls: int = 0
    cooldown_until: datetime | None = None
    trial_started: bool = False


@dataclass
class StoreHealth:
    """Tracks which components are currently running on their fallback."""

    cooldown_seconds: float = 30.0
    clock: Callable[[], datetime] = utcnow
    _components: dict[str, ComponentHealth] = field(default_factory=dict)

    def _get(self, component: str) -> ComponentHealth:
        if component not in self._components:
            self._components[component] = ComponentHealth(component=component)
        return self._components[component]

    def state(self, component: str) -> CircuitState:
        health = self._get(component)
        if not health.degraded:
            return CircuitState.CLOSED
        if health.cooldown_until and health.cooldown_until > self.clock():
            return CircuitState.OPEN
        return CircuitState.HALF_OPEN

    def allows_primary(self, component: str) -> bool:
        """Whether the next call should try the durable store.

        Claiming the half-open trial pushes the cooldown out again, so
        concurrent callers keep using the fallback while the trial runs.
        """
        state = self.state(component)
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.OPEN:
            return False

        health = self._get(component)
        health.trial_started = True
        health.cooldown_until = self.clock() + timedelta(seconds=self.cooldown_seconds)
        return True

    async def mark_degraded(self, component: str, error: str) -> None:
        state = self._get(component)
        state.last_error = error
        now = self.clock()

        if state.trial_started:
            # Trial failed, re-open with a longer cooldown
            state.trial_started = False
            state.cooldown_until = now + timedelta(seconds=self.cooldown_seconds * 2)
            await logger.awarning(
                "storage.reopened",
                component=component,
                error=error,
                cooldown_until=state.cooldown_until.isoformat(),
            )
        elif not state.degraded:
            state.degraded = True
            state.since = now
            state.cooldown_until = now + timedelta(seconds=self.cooldown_seconds)
            await logger.awarning(
                "storage.degraded",
                component=component,
                error=error,
                cooldown_until=state.cooldown_until.isoformat(),
                note="serving from per-process memory fallback; state is not shared across instances",
            )

    async def mark_recovered(self, component: str) -> None:
        state = self._get(component)
        if state.degraded:
            await logger.ainfo(
                "storage.recovered",
                component=component,
                degraded_since=state.since.isoformat() if state.since else None,
                fallback_calls=state.fallback_calls,
            )
            state.degraded = False
            state.since = None
            state.fallback_calls = 0
            state.cooldown_until = None
            state.trial_started = False

    def record_fallback_call(self, component: str) -> None:
        self._get(component).fallback_calls += 1

    def is_degraded(self, component: str | None = None) -> bool:
        if component is not None:
            return self._get(component).degraded
        return any(c.degraded for c in self._components.values())

    def degraded_components(self) -> list[str]:
        return sorted(name for name, c in self._components.items() if c.degraded)

    def snapshot(self) -> list[ComponentHealth]:
        return [self._components[name] for name in sorted(self._components)]
