"""
Caption generation pipeline.

Block check -> Quota -> Fingerprint -> Cache lookup -> Backend -> Cache store
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import structlog

from captiongate.config import QuotaSettings
from captiongate.core.abuse.blocklist import AbuseBlockList
from captiongate.core.cache.fingerprint import FingerprintService, ImagePayload
from captiongate.core.cache.store import ResultCacheStore
from captiongate.core.quota.identity import Caller
from captiongate.core.quota.limiter import QuotaLimiter, QuotaResult, QuotaStatus
from captiongate.providers.base import CaptionBackend

logger = structlog.stdlib.get_logger()


@dataclass
class GenerationResult:
    captions: list[str]
    cached: bool
    fingerprint: str
    quota: QuotaResult
    latency_ms: int = 0


class GenerationService:
    def __init__(
        self,
        *,
        fingerprints: FingerprintService,
        cache: ResultCacheStore,
        limiter: QuotaLimiter,
        blocklist: AbuseBlockList,
        backend: CaptionBackend,
        quota: QuotaSettings,
        cache_enabled: bool = True,
    ) -> None:
        self.fingerprints = fingerprints
        self.cache = cache
        self.limiter = limiter
        self.blocklist = blocklist
        self.backend = backend
        self.quota = quota
        self.cache_enabled = cache_enabled

    async def generate(
        self,
        caller: Caller,
        image: ImagePayload,
        mood: str,
        prompt: str | None = None,
    ) -> GenerationResult:
        start = time.perf_counter()

        # Block check (only signed-in callers carry a credential)
        if caller.email:
            await self.blocklist.ensure_not_blocked(caller.email)

        # Quota (a later cache hit keeps this slot consumed)
        policy = self.quota.policy_for(caller.authenticated)
        quota = await self.limiter.check_or_raise(
            caller.key, policy.max_generations, policy.window_hours
        )

        fingerprint = self.fingerprints.fingerprint(image)

        if self.cache_enabled:
            lookup = await self.cache.lookup(fingerprint, prompt, mood)
            if lookup.hit:
                return GenerationResult(
                    captions=lookup.captions,
                    cached=True,
                    fingerprint=fingerprint,
                    quota=quota,
                    latency_ms=int((time.perf_counter() - start) * 1000),
                )

        # Backend errors propagate; nothing is cached for a failed generation
        captions = await self.backend.generate(image, prompt, mood)

        if self.cache_enabled:
            await self.cache.store(
                fingerprint, prompt, mood, captions, owner_id=caller.user_id
            )

        latency_ms = int((time.perf_counter() - start) * 1000)
        await logger.ainfo(
            "generation.completed",
            key=caller.key,
            hash=fingerprint[:12],
            mood=mood,
            captions=len(captions),
            remaining=quota.remaining,
            latency_ms=latency_ms,
        )
        return GenerationResult(
            captions=captions,
            cached=False,
            fingerprint=fingerprint,
            quota=quota,
            latency_ms=latency_ms,
        )

    async def quota_status(self, caller: Caller) -> QuotaStatus:
        policy = self.quota.policy_for(caller.authenticated)
        return await self.limiter.status(
            caller.key, policy.max_generations, policy.window_hours
        )
