"""
Builds the stateful components from settings.

Every component gets the durable primary wrapped in a failover backend. The
memory fallbacks are created here and handed to the sweeper; nothing is kept
at module level.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from captiongate.config import QuotaBackendKind, Settings
from captiongate.core.abuse.backends import (
    FailoverBlockBackend,
    MemoryBlockBackend,
    SQLBlockBackend,
)
from captiongate.core.abuse.blocklist import AbuseBlockList
from captiongate.core.cache.backends import (
    FailoverCacheBackend,
    MemoryCacheBackend,
    SQLCacheBackend,
)
from captiongate.core.cache.fingerprint import FingerprintService
from captiongate.core.cache.store import ResultCacheStore
from captiongate.core.quota.backends import (
    FailoverQuotaBackend,
    MemoryQuotaBackend,
    QuotaBackend,
    RedisQuotaBackend,
    SQLQuotaBackend,
)
from captiongate.core.quota.limiter import QuotaLimiter
from captiongate.core.storage.health import StoreHealth
from captiongate.models.base import utcnow

CACHE = "cache"
QUOTA = "quota"
ABUSE = "abuse"


@dataclass
class Components:
    fingerprints: FingerprintService
    cache: ResultCacheStore
    limiter: QuotaLimiter
    blocklist: AbuseBlockList
    health: StoreHealth
    # Memory fallbacks, swept periodically
    fallbacks: list[Any] = field(default_factory=list)
    redis: aioredis.Redis | None = None


def build_components(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    redis_client: aioredis.Redis | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> Components:
    health = StoreHealth(cooldown_seconds=settings.storage.cooldown_seconds, clock=clock)
    timeout = settings.storage.timeout_seconds
    use_fallback = settings.storage.fallback_enabled

    cache_memory = MemoryCacheBackend() if use_fallback else None
    quota_memory = MemoryQuotaBackend() if use_fallback else None
    block_memory = MemoryBlockBackend() if use_fallback else None

    quota_primary: QuotaBackend
    if settings.quota.backend == QuotaBackendKind.REDIS:
        if redis_client is None:
            redis_client = aioredis.from_url(settings.redis.url, decode_responses=True)
        quota_primary = RedisQuotaBackend(redis_client, settings.redis.key_prefix)
    else:
        quota_primary = SQLQuotaBackend(session_factory)

    cache = ResultCacheStore(
        FailoverCacheBackend(
            SQLCacheBackend(session_factory),
            cache_memory,
            health,
            component=CACHE,
            timeout_seconds=timeout,
        ),
        entry_ttl_days=settings.cache.entry_ttl_days,
        page_size=settings.cache.search_page_size,
        clock=clock,
    )
    limiter = QuotaLimiter(
        FailoverQuotaBackend(
            quota_primary, quota_memory, health, component=QUOTA, timeout_seconds=timeout
        ),
        clock=clock,
    )
    blocklist = AbuseBlockList(
        FailoverBlockBackend(
            SQLBlockBackend(session_factory),
            block_memory,
            health,
            component=ABUSE,
            timeout_seconds=timeout,
        ),
        clock=clock,
    )

    return Components(
        fingerprints=FingerprintService(),
        cache=cache,
        limiter=limiter,
        blocklist=blocklist,
        health=health,
        fallbacks=[b for b in (cache_memory, quota_memory, block_memory) if b is not None],
        redis=redis_client,
    )
