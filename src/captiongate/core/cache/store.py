"""
Result cache for generated captions.

Keyed by (fingerprint, prompt, mood). A request without a prompt is
normalised to the ``"default"`` prompt, so two callers who both omit the
prompt intentionally share an entry.

Usage:
    store = ResultCacheStore(backend)
    result = await store.lookup(fingerprint, prompt, mood)
    if result.hit:
        return result.captions
    captions = await backend.generate(...)
    await store.store(fingerprint, prompt, mood, captions, owner_id=user_id)

``lookup`` and ``store`` fail open: any storage failure is logged and
reported as a miss / not stored, never raised to the request.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from captiongate.common.errors import ValidationError
from captiongate.core.cache.backends import (
    CacheBackend,
    CacheEntryInfo,
    CacheKey,
    SearchCriteria,
)
from captiongate.models.base import utcnow

logger = structlog.stdlib.get_logger()

DEFAULT_PROMPT = "default"
DEFAULT_PAGE_SIZE = 100


def normalize_prompt(prompt: str | None) -> str:
    if prompt is None or not prompt.strip():
        return DEFAULT_PROMPT
    return prompt.strip()


@dataclass
class CacheLookup:
    """Result of a cache lookup."""

    hit: bool
    captions: list[str] = field(default_factory=list)
    entry_id: uuid.UUID | None = None
    usage_count: int = 0


@dataclass
class CacheStats:
    entries: int
    total_usage: int
    average_usage: float
    oldest: datetime | None
    newest: datetime | None

    @property
    def quota_saved(self) -> int:
        """Generation calls avoided: every use beyond an entry's creation."""
        return self.total_usage - self.entries

    @property
    def hit_rate(self) -> float:
        if self.total_usage == 0:
            return 0.0
        return round(self.quota_saved / self.total_usage * 100, 2)


class ResultCacheStore:
    """Dedup cache in front of the caption generation backend."""

    def __init__(
        self,
        backend: CacheBackend,
        *,
        entry_ttl_days: int | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._backend = backend
        self._ttl = timedelta(days=entry_ttl_days) if entry_ttl_days else None
        self._page_size = page_size
        self._clock = clock

    @staticmethod
    def make_key(fingerprint: str, prompt: str | None, mood: str) -> CacheKey:
        if not fingerprint:
            raise ValidationError("Fingerprint is required")
        if not mood or not mood.strip():
            raise ValidationError("Mood is required")
        return CacheKey(fingerprint=fingerprint, prompt=normalize_prompt(prompt), mood=mood.strip())

    async def lookup(self, fingerprint: str, prompt: str | None, mood: str) -> CacheLookup:
        key = self.make_key(fingerprint, prompt, mood)
        try:
            entry = await self._backend.lookup(key, self._clock())
        except Exception as e:
            await logger.awarning("cache.lookup.error", error=str(e), hash=fingerprint[:12])
            return CacheLookup(hit=False)

        if entry is None:
            await logger.adebug("cache.miss", hash=fingerprint[:12], mood=key.mood)
            return CacheLookup(hit=False)

        await logger.ainfo(
            "cache.hit",
            hash=fingerprint[:12],
            mood=key.mood,
            usage_count=entry.usage_count,
        )
        return CacheLookup(
            hit=True,
            captions=list(entry.captions),
            entry_id=entry.id,
            usage_count=entry.usage_count,
        )

    async def store(
        self,
        fingerprint: str,
        prompt: str | None,
        mood: str,
        captions: list[str],
        owner_id: str | None = None,
    ) -> CacheEntryInfo | None:
        """Upsert the captions for a key. Safe to call unconditionally after a miss."""
        key = self.make_key(fingerprint, prompt, mood)
        if not captions:
            raise ValidationError("Refusing to cache an empty caption set")

        now = self._clock()
        expires_at = now + self._ttl if self._ttl else None
        try:
            entry = await self._backend.upsert(key, list(captions), owner_id, now, expires_at)
        except Exception as e:
            # Cache write failure should never break the request
            await logger.awarning("cache.store.error", error=str(e), hash=fingerprint[:12])
            return None

        await logger.ainfo(
            "cache.updated" if entry.usage_count > 1 else "cache.stored",
            hash=fingerprint[:12],
            mood=key.mood,
            usage_count=entry.usage_count,
        )
        return entry

    async def stats(self) -> CacheStats:
        agg = await self._backend.aggregate()
        return CacheStats(
            entries=agg.entries,
            total_usage=agg.total_usage,
            average_usage=round(agg.average_usage, 2),
            oldest=agg.oldest,
            newest=agg.newest,
        )

    async def hit_rate(self) -> float:
        """Percentage of uses served from cache: (total_usage - entries) / total_usage * 100."""
        return (await self.stats()).hit_rate

    async def search(self, criteria: SearchCriteria) -> list[CacheEntryInfo]:
        return await self._backend.search(criteria, self._page_size)

    async def get_by_id(self, entry_id: uuid.UUID) -> CacheEntryInfo | None:
        return await self._backend.get(entry_id)

    async def delete_by_id(self, entry_id: uuid.UUID) -> bool:
        deleted = await self._backend.delete(entry_id)
        if deleted:
            await logger.ainfo("cache.deleted", entry_id=str(entry_id))
        return deleted

    async def clean_older_than(self, days: int) -> int:
        """Delete entries older than ``days`` that were used fewer than two times."""
        if days < 0:
            raise ValidationError("days must be >= 0")
        cutoff = self._clock() - timedelta(days=days)
        removed = await self._backend.delete_stale(cutoff)
        await logger.ainfo("cache.cleaned", removed=removed, days=days)
        return removed

    async def purge_expired(self) -> int:
        removed = await self._backend.purge_expired(self._clock())
        if removed:
            await logger.ainfo("cache.expired_purged", removed=removed)
        return removed

    async def clear_all(self) -> int:
        removed = await self._backend.clear()
        await logger.awarning("cache.cleared", removed=removed)
        return removed
