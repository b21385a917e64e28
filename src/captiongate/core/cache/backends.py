"""
Storage backends for the result cache.

``SQLCacheBackend`` is the durable store shared by every instance.
``MemoryCacheBackend`` implements the same contract in-process and is only
used as the outage fallback. ``FailoverCacheBackend`` routes between them.

Usage counters are always bumped with a single atomic statement
(``usage_count = usage_count + 1``), never read-then-write.
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.engine import RowMapping

from captiongate.core.storage.failover import FailoverBackend
from captiongate.core.storage.sql import SQLBackend
from captiongate.models.cache_entry import CacheEntry

# Entries with at least this many uses survive age-based cleanup
PROTECTED_USAGE = 2


@dataclass(frozen=True)
class CacheKey:
    fingerprint: str
    prompt: str
    mood: str


@dataclass
class CacheEntryInfo:
    id: uuid.UUID
    fingerprint: str
    prompt: str
    mood: str
    captions: list[str]
    owner_id: str | None
    usage_count: int
    created_at: datetime
    last_used_at: datetime
    expires_at: datetime | None = None

    @property
    def key(self) -> CacheKey:
        return CacheKey(self.fingerprint, self.prompt, self.mood)


@dataclass
class CacheAggregate:
    entries: int = 0
    total_usage: int = 0
    average_usage: float = 0.0
    oldest: datetime | None = None
    newest: datetime | None = None


@dataclass
class SearchCriteria:
    owner_id: str | None = None
    mood: str | None = None
    prompt_substring: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    min_usage: int | None = None

    def matches(self, entry: CacheEntryInfo) -> bool:
        if self.owner_id and entry.owner_id != self.owner_id:
            return False
        if self.mood and entry.mood != self.mood:
            return False
        if self.prompt_substring and self.prompt_substring.lower() not in entry.prompt.lower():
            return False
        if self.created_from and entry.created_at < self.created_from:
            return False
        if self.created_to and entry.created_at > self.created_to:
            return False
        if self.min_usage and entry.usage_count < self.min_usage:
            return False
        return True


class CacheBackend(ABC):
    """Persistence contract for cache entries."""

    @abstractmethod
    async def lookup(self, key: CacheKey, now: datetime) -> CacheEntryInfo | None:
        """Return the live entry for ``key`` after bumping its usage, or None (no write)."""

    @abstractmethod
    async def upsert(
        self,
        key: CacheKey,
        captions: list[str],
        owner_id: str | None,
        now: datetime,
        expires_at: datetime | None,
    ) -> CacheEntryInfo:
        """Insert with usage 1, or replace captions and bump usage of the existing entry."""

    @abstractmethod
    async def aggregate(self) -> CacheAggregate: ...

    @abstractmethod
    async def search(self, criteria: SearchCriteria, limit: int) -> list[CacheEntryInfo]:
        """Matching entries, most recently used first."""

    @abstractmethod
    async def get(self, entry_id: uuid.UUID) -> CacheEntryInfo | None: ...

    @abstractmethod
    async def delete(self, entry_id: uuid.UUID) -> bool: ...

    @abstractmethod
    async def delete_stale(self, cutoff: datetime) -> int:
        """Delete entries created before ``cutoff`` with fewer than PROTECTED_USAGE uses."""

    @abstractmethod
    async def purge_expired(self, now: datetime) -> int: ...

    @abstractmethod
    async def clear(self) -> int: ...


# SQL


class SQLCacheBackend(SQLBackend, CacheBackend):
    _table = CacheEntry.__table__

    @staticmethod
    def _to_info(row: RowMapping) -> CacheEntryInfo:
        return CacheEntryInfo(
            id=row["id"],
            fingerprint=row["fingerprint"],
            prompt=row["prompt"],
            mood=row["mood"],
            captions=list(row["captions"]),
            owner_id=row["owner_id"],
            usage_count=row["usage_count"],
            created_at=row["created_at"],
            last_used_at=row["last_used_at"],
            expires_at=row["expires_at"],
        )

    def _key_clause(self, key: CacheKey) -> list:
        t = self._table
        return [t.c.fingerprint == key.fingerprint, t.c.prompt == key.prompt, t.c.mood == key.mood]

    async def lookup(self, key: CacheKey, now: datetime) -> CacheEntryInfo | None:
        t = self._table
        stmt = (
            update(t)
            .where(
                *self._key_clause(key),
                or_(t.c.expires_at.is_(None), t.c.expires_at > now),
            )
            .values(usage_count=t.c.usage_count + 1, last_used_at=now)
            .returning(*t.c)
        )
        async with self.transaction() as session:
            row = (await session.execute(stmt)).mappings().first()
        return self._to_info(row) if row is not None else None

    async def upsert(
        self,
        key: CacheKey,
        captions: list[str],
        owner_id: str | None,
        now: datetime,
        expires_at: datetime | None,
    ) -> CacheEntryInfo:
        t = self._table
        async with self.transaction() as session:
            ins = self.insert(session, t).values(
                id=uuid.uuid4(),
                fingerprint=key.fingerprint,
                prompt=key.prompt,
                mood=key.mood,
                captions=list(captions),
                owner_id=owner_id,
                usage_count=1,
                created_at=now,
                last_used_at=now,
                expires_at=expires_at,
            )
            stmt = ins.on_conflict_do_update(
                index_elements=[t.c.fingerprint, t.c.prompt, t.c.mood],
                set_={
                    "captions": ins.excluded.captions,
                    "owner_id": func.coalesce(ins.excluded.owner_id, t.c.owner_id),
                    "usage_count": t.c.usage_count + 1,
                    "last_used_at": ins.excluded.last_used_at,
                    "expires_at": ins.excluded.expires_at,
                },
            ).returning(*t.c)
            row = (await session.execute(stmt)).mappings().one()
        return self._to_info(row)

    async def aggregate(self) -> CacheAggregate:
        t = self._table
        stmt = select(
            func.count(t.c.id),
            func.coalesce(func.sum(t.c.usage_count), 0),
            func.avg(t.c.usage_count),
            func.min(t.c.created_at),
            func.max(t.c.created_at),
        )
        async with self.transaction() as session:
            entries, total, avg, oldest, newest = (await session.execute(stmt)).one()
        return CacheAggregate(
            entries=int(entries or 0),
            total_usage=int(total or 0),
            average_usage=float(avg or 0.0),
            oldest=oldest,
            newest=newest,
        )

    async def search(self, criteria: SearchCriteria, limit: int) -> list[CacheEntryInfo]:
        t = self._table
        stmt = select(t)
        if criteria.owner_id:
            stmt = stmt.where(t.c.owner_id == criteria.owner_id)
        if criteria.mood:
            stmt = stmt.where(t.c.mood == criteria.mood)
        if criteria.prompt_substring:
            stmt = stmt.where(
                func.lower(t.c.prompt).contains(criteria.prompt_substring.lower(), autoescape=True)
            )
        if criteria.created_from:
            stmt = stmt.where(t.c.created_at >= criteria.created_from)
        if criteria.created_to:
            stmt = stmt.where(t.c.created_at <= criteria.created_to)
        if criteria.min_usage:
            stmt = stmt.where(t.c.usage_count >= criteria.min_usage)
        stmt = stmt.order_by(t.c.last_used_at.desc()).limit(limit)

        async with self.transaction() as session:
            rows = (await session.execute(stmt)).mappings().all()
        return [self._to_info(r) for r in rows]

    async def get(self, entry_id: uuid.UUID) -> CacheEntryInfo | None:
        t = self._table
        async with self.transaction() as session:
            row = (await session.execute(select(t).where(t.c.id == entry_id))).mappings().first()
        return self._to_info(row) if row is not None else None

    async def delete(self, entry_id: uuid.UUID) -> bool:
        t = self._table
        async with self.transaction() as session:
            result = await session.execute(delete(t).where(t.c.id == entry_id))
            deleted = result.rowcount or 0
        return deleted > 0

    async def delete_stale(self, cutoff: datetime) -> int:
        t = self._table
        stmt = delete(t).where(t.c.created_at < cutoff, t.c.usage_count < PROTECTED_USAGE)
        async with self.transaction() as session:
            result = await session.execute(stmt)
            deleted = result.rowcount or 0
        return deleted

    async def purge_expired(self, now: datetime) -> int:
        t = self._table
        stmt = delete(t).where(t.c.expires_at.is_not(None), t.c.expires_at <= now)
        async with self.transaction() as session:
            result = await session.execute(stmt)
            deleted = result.rowcount or 0
        return deleted

    async def clear(self) -> int:
        async with self.transaction() as session:
            result = await session.execute(delete(self._table))
            deleted = result.rowcount or 0
        return deleted


# Memory


@dataclass
class MemoryCacheBackend(CacheBackend):
    """Per-process fallback. Not shared across instances."""

    _entries: dict[CacheKey, CacheEntryInfo] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @staticmethod
    def _copy(entry: CacheEntryInfo) -> CacheEntryInfo:
        return replace(entry, captions=list(entry.captions))

    def _find(self, entry_id: uuid.UUID) -> CacheEntryInfo | None:
        return next((e for e in self._entries.values() if e.id == entry_id), None)

    async def lookup(self, key: CacheKey, now: datetime) -> CacheEntryInfo | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None or (entry.expires_at is not None and entry.expires_at <= now):
                return None
            entry.usage_count += 1
            entry.last_used_at = now
            return self._copy(entry)

    async def upsert(
        self,
        key: CacheKey,
        captions: list[str],
        owner_id: str | None,
        now: datetime,
        expires_at: datetime | None,
    ) -> CacheEntryInfo:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = CacheEntryInfo(
                    id=uuid.uuid4(),
                    fingerprint=key.fingerprint,
                    prompt=key.prompt,
                    mood=key.mood,
                    captions=list(captions),
                    owner_id=owner_id,
                    usage_count=1,
                    created_at=now,
                    last_used_at=now,
                    expires_at=expires_at,
                )
                self._entries[key] = entry
            else:
                entry.captions = list(captions)
                entry.owner_id = owner_id or entry.owner_id
                entry.usage_count += 1
                entry.last_used_at = now
                entry.expires_at = expires_at
            return self._copy(entry)

    async def aggregate(self) -> CacheAggregate:
        async with self._lock:
            entries = list(self._entries.values())
        if not entries:
            return CacheAggregate()
        total = sum(e.usage_count for e in entries)
        return CacheAggregate(
            entries=len(entries),
            total_usage=total,
            average_usage=total / len(entries),
            oldest=min(e.created_at for e in entries),
            newest=max(e.created_at for e in entries),
        )

    async def search(self, criteria: SearchCriteria, limit: int) -> list[CacheEntryInfo]:
        async with self._lock:
            matches = [self._copy(e) for e in self._entries.values() if criteria.matches(e)]
        matches.sort(key=lambda e: e.last_used_at, reverse=True)
        return matches[:limit]

    async def get(self, entry_id: uuid.UUID) -> CacheEntryInfo | None:
        async with self._lock:
            entry = self._find(entry_id)
            return self._copy(entry) if entry is not None else None

    async def delete(self, entry_id: uuid.UUID) -> bool:
        async with self._lock:
            entry = self._find(entry_id)
            if entry is None:
                return False
            del self._entries[entry.key]
            return True

    async def _delete_where(self, predicate) -> int:
        async with self._lock:
            doomed = [k for k, e in self._entries.items() if predicate(e)]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    async def delete_stale(self, cutoff: datetime) -> int:
        return await self._delete_where(
            lambda e: e.created_at < cutoff and e.usage_count < PROTECTED_USAGE
        )

    async def purge_expired(self, now: datetime) -> int:
        return await self._delete_where(lambda e: e.expires_at is not None and e.expires_at <= now)

    async def clear(self) -> int:
        return await self._delete_where(lambda e: True)


# Failover


class FailoverCacheBackend(FailoverBackend[CacheBackend], CacheBackend):
    async def lookup(self, key: CacheKey, now: datetime) -> CacheEntryInfo | None:
        return await self._run("lookup", lambda b: b.lookup(key, now))

    async def upsert(
        self,
        key: CacheKey,
        captions: list[str],
        owner_id: str | None,
        now: datetime,
        expires_at: datetime | None,
    ) -> CacheEntryInfo:
        return await self._run(
            "upsert", lambda b: b.upsert(key, captions, owner_id, now, expires_at)
        )

    async def aggregate(self) -> CacheAggregate:
        return await self._run("aggregate", lambda b: b.aggregate())

    async def search(self, criteria: SearchCriteria, limit: int) -> list[CacheEntryInfo]:
        return await self._run("search", lambda b: b.search(criteria, limit))

    async def get(self, entry_id: uuid.UUID) -> CacheEntryInfo | None:
        return await self._run("get", lambda b: b.get(entry_id))

    async def delete(self, entry_id: uuid.UUID) -> bool:
        return await self._run("delete", lambda b: b.delete(entry_id))

    async def delete_stale(self, cutoff: datetime) -> int:
        return await self._run("delete_stale", lambda b: b.delete_stale(cutoff))

    async def purge_expired(self, now: datetime) -> int:
        return await self._run("purge_expired", lambda b: b.purge_expired(now))

    async def clear(self) -> int:
        return await self._run("clear", lambda b: b.clear())
