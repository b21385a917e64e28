"""
Storage backends for quota windows.

Each backend decides the whole check (reset / reject / increment) in one
atomic step, so two concurrent callers near the ceiling can never both be
admitted into the last slot:

  - SQL:    INSERT ... ON CONFLICT DO UPDATE ... WHERE ... RETURNING
  - Redis:  Lua script (EVALSHA) over a hash with PEXPIREAT at window end
  - Memory: the same logic under an asyncio.Lock (per-process fallback only)
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import NoScriptError
from redis.exceptions import TimeoutError as RedisTimeoutError
from sqlalchemy import case, delete, or_, select

from captiongate.common.errors import StoreUnavailableError
from captiongate.core.storage.failover import FailoverBackend
from captiongate.core.storage.sql import SQLBackend
from captiongate.models.quota_window import QuotaWindow


@dataclass
class WindowState:
    count: int
    reset_at: datetime


@dataclass
class QuotaHit:
    """Outcome of one atomic check-and-consume."""

    allowed: bool
    count: int
    reset_at: datetime


class QuotaBackend(ABC):
    """Persistence contract for quota windows."""

    @abstractmethod
    async def hit(
        self, key: str, max_generations: int, window: timedelta, now: datetime
    ) -> QuotaHit:
        """
        Atomically:
          - no window / expired window (now >= reset_at): count=1, reset_at=now+window, allowed
          - count >= max: rejected, nothing written
          - otherwise: count += 1, allowed
        """

    @abstractmethod
    async def get(self, key: str) -> WindowState | None: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    @abstractmethod
    async def delete_all(self) -> int: ...

    @abstractmethod
    async def purge_expired(self, now: datetime) -> int: ...


# SQL


class SQLQuotaBackend(SQLBackend, QuotaBackend):
    _table = QuotaWindow.__table__

    async def hit(
        self, key: str, max_generations: int, window: timedelta, now: datetime
    ) -> QuotaHit:
        t = self._table
        count_col = t.c.request_count
        expired = t.c.window_reset_at <= now

        async with self.transaction() as session:
            ins = self.insert(session, t).values(
                key=key,
                request_count=1,
                window_reset_at=now + window,
                created_at=now,
                updated_at=now,
            )
            stmt = ins.on_conflict_do_update(
                index_elements=[t.c.key],
                set_={
                    "request_count": case((expired, 1), else_=count_col + 1),
                    "window_reset_at": case(
                        (expired, ins.excluded.window_reset_at), else_=t.c.window_reset_at
                    ),
                    "updated_at": ins.excluded.updated_at,
                },
                # No row comes back when the window is live and already full
                where=or_(expired, count_col < max_generations),
            ).returning(count_col, t.c.window_reset_at)

            row = (await session.execute(stmt)).mappings().first()
            if row is not None:
                return QuotaHit(
                    allowed=True, count=row["request_count"], reset_at=row["window_reset_at"]
                )

            current = (
                await session.execute(
                    select(count_col, t.c.window_reset_at).where(t.c.key == key)
                )
            ).mappings().one()
            return QuotaHit(
                allowed=False,
                count=current["request_count"],
                reset_at=current["window_reset_at"],
            )

    async def get(self, key: str) -> WindowState | None:
        t = self._table
        stmt = select(t.c.request_count, t.c.window_reset_at).where(t.c.key == key)
        async with self.transaction() as session:
            row = (await session.execute(stmt)).mappings().first()
        if row is None:
            return None
        return WindowState(count=row["request_count"], reset_at=row["window_reset_at"])

    async def delete(self, key: str) -> bool:
        t = self._table
        async with self.transaction() as session:
            result = await session.execute(delete(t).where(t.c.key == key))
            deleted = result.rowcount or 0
        return deleted > 0

    async def delete_all(self) -> int:
        async with self.transaction() as session:
            result = await session.execute(delete(self._table))
            deleted = result.rowcount or 0
        return deleted

    async def purge_expired(self, now: datetime) -> int:
        t = self._table
        async with self.transaction() as session:
            result = await session.execute(delete(t).where(t.c.window_reset_at <= now))
            deleted = result.rowcount or 0
        return deleted


# Redis

# Lua: fixed window counter returning (allowed, count, reset_at_ms)
QUOTA_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local now_ms = tonumber(ARGV[3])

local count = tonumber(redis.call('HGET', key, 'count'))
local reset = tonumber(redis.call('HGET', key, 'reset_at'))

if (not count) or (not reset) or now_ms >= reset then
    reset = now_ms + window_ms
    redis.call('HSET', key, 'count', 1, 'reset_at', reset)
    redis.call('PEXPIREAT', key, reset)
    return {1, 1, reset}
end

if count >= limit then
    return {0, count, reset}
end

count = redis.call('HINCRBY', key, 'count', 1)
return {1, count, reset}
"""


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_ms(value: int | str) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


class RedisQuotaBackend(QuotaBackend):
    """Quota windows as Redis hashes; Redis expires them at window end."""

    def __init__(self, redis_client: aioredis.Redis, key_prefix: str = "captiongate:") -> None:
        self._redis = redis_client
        self._prefix = f"{key_prefix}quota:"
        self._script_sha: str | None = None

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def _ensure_script(self) -> str:
        if self._script_sha is None:
            self._script_sha = await self._redis.script_load(QUOTA_SCRIPT)
        return self._script_sha

    async def _eval(self, *args: str) -> list:
        sha = await self._ensure_script()
        try:
            return await self._redis.evalsha(sha, 1, *args)
        except NoScriptError:
            # Script cache was flushed; reload and retry once
            self._script_sha = None
            sha = await self._ensure_script()
            return await self._redis.evalsha(sha, 1, *args)

    async def hit(
        self, key: str, max_generations: int, window: timedelta, now: datetime
    ) -> QuotaHit:
        window_ms = int(window.total_seconds() * 1000)
        try:
            result = await self._eval(
                self._key(key), str(max_generations), str(window_ms), str(_to_ms(now))
            )
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError("Redis unavailable", details={"cause": type(e).__name__}) from e

        allowed, count, reset_ms = int(result[0]), int(result[1]), int(result[2])
        return QuotaHit(allowed=bool(allowed), count=count, reset_at=_from_ms(reset_ms))

    async def get(self, key: str) -> WindowState | None:
        try:
            data = await self._redis.hgetall(self._key(key))
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError("Redis unavailable", details={"cause": type(e).__name__}) from e
        if not data or "count" not in data or "reset_at" not in data:
            return None
        return WindowState(count=int(data["count"]), reset_at=_from_ms(data["reset_at"]))

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._redis.delete(self._key(key)))
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError("Redis unavailable", details={"cause": type(e).__name__}) from e

    async def delete_all(self) -> int:
        count = 0
        try:
            async for redis_key in self._redis.scan_iter(match=f"{self._prefix}*", count=100):
                count += await self._redis.delete(redis_key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError("Redis unavailable", details={"cause": type(e).__name__}) from e
        return count

    async def purge_expired(self, now: datetime) -> int:
        # Keys carry PEXPIREAT; Redis drops them itself
        return 0

    async def close(self) -> None:
        await self._redis.aclose()


# Memory


@dataclass
class MemoryQuotaBackend(QuotaBackend):
    """Per-process fallback. Not shared across instances."""

    _windows: dict[str, WindowState] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def hit(
        self, key: str, max_generations: int, window: timedelta, now: datetime
    ) -> QuotaHit:
        async with self._lock:
            state = self._windows.get(key)
            if state is None or now >= state.reset_at:
                state = WindowState(count=1, reset_at=now + window)
                self._windows[key] = state
                return QuotaHit(allowed=True, count=1, reset_at=state.reset_at)

            if state.count >= max_generations:
                return QuotaHit(allowed=False, count=state.count, reset_at=state.reset_at)

            state.count += 1
            return QuotaHit(allowed=True, count=state.count, reset_at=state.reset_at)

    async def get(self, key: str) -> WindowState | None:
        async with self._lock:
            state = self._windows.get(key)
            return WindowState(state.count, state.reset_at) if state else None

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._windows.pop(key, None) is not None

    async def delete_all(self) -> int:
        async with self._lock:
            count = len(self._windows)
            self._windows.clear()
            return count

    async def purge_expired(self, now: datetime) -> int:
        async with self._lock:
            doomed = [k for k, s in self._windows.items() if now >= s.reset_at]
            for k in doomed:
                del self._windows[k]
            return len(doomed)


# Failover


class FailoverQuotaBackend(FailoverBackend[QuotaBackend], QuotaBackend):
    async def hit(
        self, key: str, max_generations: int, window: timedelta, now: datetime
    ) -> QuotaHit:
        return await self._run("hit", lambda b: b.hit(key, max_generations, window, now))

    async def get(self, key: str) -> WindowState | None:
        return await self._run("get", lambda b: b.get(key))

    async def delete(self, key: str) -> bool:
        return await self._run("delete", lambda b: b.delete(key))

    async def delete_all(self) -> int:
        return await self._run("delete_all", lambda b: b.delete_all())

    async def purge_expired(self, now: datetime) -> int:
        return await self._run("purge_expired", lambda b: b.purge_expired(now))
