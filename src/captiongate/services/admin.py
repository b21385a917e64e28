"""
Admin operations over the cache, quota and block list.

Every method returns a plain result dict ``{"success": bool, ..., "error"?}``
and never raises. Failures carry ``code`` (the HTTP status the route should
use) next to the error message.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from typing import Any

import structlog

from captiongate.common.errors import CaptionGateError, NotFoundError
from captiongate.config import QuotaSettings
from captiongate.core.abuse.blocklist import AbuseBlockList
from captiongate.core.cache.backends import SearchCriteria
from captiongate.core.cache.store import ResultCacheStore
from captiongate.core.quota.limiter import QuotaLimiter
from captiongate.schemas.cache import CLEAR_CONFIRMATION

logger = structlog.stdlib.get_logger()

AdminResult = dict[str, Any]


def _failure(message: str, code: int = 500, error_type: str = "internal_error") -> AdminResult:
    return {"success": False, "error": message, "error_type": error_type, "code": code}


async def _guard(op: str, call: Callable[[], Awaitable[AdminResult]]) -> AdminResult:
    try:
        result = await call()
    except CaptionGateError as e:
        await logger.awarning("admin.failed", operation=op, error=e.message, error_type=e.error_type)
        return _failure(e.message, e.status_code, e.error_type)
    except Exception as e:
        await logger.aexception("admin.failed", operation=op, error=str(e))
        return _failure(f"Failed to {op.replace('_', ' ')}")
    return {"success": True, **result}


class AdminService:
    def __init__(
        self,
        *,
        cache: ResultCacheStore,
        limiter: QuotaLimiter,
        blocklist: AbuseBlockList,
        quota: QuotaSettings,
        default_clean_days: int = 30,
    ) -> None:
        self.cache = cache
        self.limiter = limiter
        self.blocklist = blocklist
        self.quota = quota
        self.default_clean_days = default_clean_days

    # Cache

    async def cache_stats(self) -> AdminResult:
        async def run() -> AdminResult:
            stats = await self.cache.stats()
            return {
                "stats": {
                    "entries": stats.entries,
                    "total_usage": stats.total_usage,
                    "average_usage": stats.average_usage,
                    "oldest": stats.oldest,
                    "newest": stats.newest,
                    "quota_saved": stats.quota_saved,
                },
                "hit_rate": stats.hit_rate,
            }

        return await _guard("fetch_cache_statistics", run)

    async def cache_hit_rate(self) -> AdminResult:
        async def run() -> AdminResult:
            return {"hit_rate": await self.cache.hit_rate()}

        return await _guard("fetch_hit_rate", run)

    async def search_cache(self, criteria: SearchCriteria) -> AdminResult:
        async def run() -> AdminResult:
            results = await self.cache.search(criteria)
            return {"results": [asdict(r) for r in results], "count": len(results)}

        return await _guard("search_cache", run)

    async def get_cache_entry(self, entry_id: uuid.UUID) -> AdminResult:
        async def run() -> AdminResult:
            entry = await self.cache.get_by_id(entry_id)
            if entry is None:
                raise NotFoundError("Cache entry not found")
            return {"entry": asdict(entry)}

        return await _guard("fetch_cache_entry", run)

    async def delete_cache_entry(self, entry_id: uuid.UUID) -> AdminResult:
        async def run() -> AdminResult:
            if not await self.cache.delete_by_id(entry_id):
                raise NotFoundError("Cache entry not found")
            return {"message": "Cache entry deleted successfully"}

        return await _guard("delete_cache_entry", run)

    async def clean_cache(self, days: int | None = None) -> AdminResult:
        days = self.default_clean_days if days is None else days

        async def run() -> AdminResult:
            removed = await self.cache.clean_older_than(days)
            return {"message": f"Cleaned {removed} old cache entries", "deleted_count": removed}

        return await _guard("clean_cache", run)

    async def purge_expired_cache(self) -> AdminResult:
        async def run() -> AdminResult:
            return {"deleted_count": await self.cache.purge_expired()}

        return await _guard("purge_expired_cache", run)

    async def clear_cache(self, confirm: str) -> AdminResult:
        if confirm != CLEAR_CONFIRMATION:
            return _failure(
                f'Confirmation required. Send confirm: "{CLEAR_CONFIRMATION}" to proceed.',
                400,
                "invalid_request_error",
            )

        async def run() -> AdminResult:
            removed = await self.cache.clear_all()
            return {"message": "All cache entries cleared successfully", "cleared_count": removed}

        return await _guard("clear_cache", run)

    # Quota

    async def quota_status(self, key: str) -> AdminResult:
        # Admin view of a raw key: the user:/ip: prefix selects the policy
        policy = self.quota.policy_for(key.startswith("user:"))

        async def run() -> AdminResult:
            status = await self.limiter.status(key, policy.max_generations, policy.window_hours)
            return {"status": asdict(status)}

        return await _guard("check_quota_status", run)

    async def reset_quota(self, key: str) -> AdminResult:
        async def run() -> AdminResult:
            if not await self.limiter.reset(key):
                raise NotFoundError("No quota window for this key")
            return {"message": f"Quota window reset for {key}"}

        return await _guard("reset_quota", run)

    async def reset_all_quotas(self) -> AdminResult:
        async def run() -> AdminResult:
            removed = await self.limiter.reset_all()
            return {"message": f"Reset {removed} quota windows", "reset_count": removed}

        return await _guard("reset_all_quota_windows", run)

    # Block list

    async def block(
        self,
        credential: str,
        reason: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AdminResult:
        async def run() -> AdminResult:
            status = await self.blocklist.block(credential, reason, ip_address, user_agent)
            return {"block": asdict(status)}

        return await _guard("block_credential", run)

    async def block_status(self, credential: str) -> AdminResult:
        async def run() -> AdminResult:
            return {"block": asdict(await self.blocklist.is_blocked(credential))}

        return await _guard("check_block_status", run)

    async def unblock(self, credential: str) -> AdminResult:
        async def run() -> AdminResult:
            if not await self.blocklist.unblock(credential):
                raise NotFoundError("No block record for this credential")
            return {"message": "Credential unblocked"}

        return await _guard("unblock_credential", run)

    async def reactivate_all(self) -> AdminResult:
        async def run() -> AdminResult:
            removed = await self.blocklist.reactivate_all()
            return {"message": f"Reactivated {removed} credentials", "reactivated_count": removed}

        return await _guard("reactivate_all_credentials", run)
