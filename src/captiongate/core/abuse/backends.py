"""
Storage backends for credential block records.

A block is escalated with one upsert: the attempt counter restarts at 1 when
the previous block has already run out, otherwise it grows by one. The
duration follows from the resulting attempt count.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from sqlalchemy import case, delete, select, update

from captiongate.core.storage.failover import FailoverBackend
from captiongate.core.storage.sql import SQLBackend
from captiongate.models.block_record import BlockRecord

BASE_BLOCK_HOURS = 24
MAX_BLOCK_HOURS = 168


def block_duration_hours(attempts: int) -> int:
    """24h per attempt, capped at one week."""
    return min(max(attempts, 1) * BASE_BLOCK_HOURS, MAX_BLOCK_HOURS)


@dataclass
class BlockState:
    credential: str
    blocked_until: datetime
    attempts: int
    reason: str
    ip_address: str | None = None
    user_agent: str | None = None


class BlockBackend(ABC):
    """Persistence contract for block records."""

    @abstractmethod
    async def record_block(
        self,
        credential: str,
        reason: str,
        ip_address: str | None,
        user_agent: str | None,
        now: datetime,
    ) -> BlockState: ...

    @abstractmethod
    async def get(self, credential: str) -> BlockState | None: ...

    @abstractmethod
    async def delete_if_expired(self, credential: str, now: datetime) -> bool:
        """Delete the record only if it is still past its ``blocked_until``."""

    @abstractmethod
    async def delete(self, credential: str) -> bool: ...

    @abstractmethod
    async def delete_all(self) -> int: ...

    @abstractmethod
    async def purge_expired(self, now: datetime) -> int: ...


# SQL


class SQLBlockBackend(SQLBackend, BlockBackend):
    _table = BlockRecord.__table__

    async def record_block(
        self,
        credential: str,
        reason: str,
        ip_address: str | None,
        user_agent: str | None,
        now: datetime,
    ) -> BlockState:
        t = self._table
        async with self.transaction() as session:
            ins = self.insert(session, t).values(
                credential=credential,
                attempts=1,
                blocked_until=now + timedelta(hours=block_duration_hours(1)),
                reason=reason,
                ip_address=ip_address,
                user_agent=user_agent,
                created_at=now,
                updated_at=now,
            )
            stmt = ins.on_conflict_do_update(
                index_elements=[t.c.credential],
                set_={
                    "attempts": case((t.c.blocked_until < now, 1), else_=t.c.attempts + 1),
                    "reason": ins.excluded.reason,
                    "ip_address": ins.excluded.ip_address,
                    "user_agent": ins.excluded.user_agent,
                    "updated_at": ins.excluded.updated_at,
                },
            ).returning(t.c.attempts)
            attempts = (await session.execute(stmt)).scalar_one()

            # Row stays locked until commit, so the attempt count cannot move under us
            blocked_until = now + timedelta(hours=block_duration_hours(attempts))
            await session.execute(
                update(t).where(t.c.credential == credential).values(blocked_until=blocked_until)
            )

        return BlockState(
            credential=credential,
            blocked_until=blocked_until,
            attempts=attempts,
            reason=reason,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def get(self, credential: str) -> BlockState | None:
        t = self._table
        stmt = select(
            t.c.credential,
            t.c.blocked_until,
            t.c.attempts,
            t.c.reason,
            t.c.ip_address,
            t.c.user_agent,
        ).where(t.c.credential == credential)
        async with self.transaction() as session:
            row = (await session.execute(stmt)).mappings().first()
        return BlockState(**row) if row is not None else None

    async def delete_if_expired(self, credential: str, now: datetime) -> bool:
        t = self._table
        stmt = delete(t).where(t.c.credential == credential, t.c.blocked_until < now)
        async with self.transaction() as session:
            deleted = (await session.execute(stmt)).rowcount or 0
        return deleted > 0

    async def delete(self, credential: str) -> bool:
        t = self._table
        async with self.transaction() as session:
            deleted = (await session.execute(delete(t).where(t.c.credential == credential))).rowcount or 0
        return deleted > 0

    async def delete_all(self) -> int:
        async with self.transaction() as session:
            deleted = (await session.execute(delete(self._table))).rowcount or 0
        return deleted

    async def purge_expired(self, now: datetime) -> int:
        t = self._table
        async with self.transaction() as session:
            deleted = (await session.execute(delete(t).where(t.c.blocked_until < now))).rowcount or 0
        return deleted


# Memory


@dataclass
class MemoryBlockBackend(BlockBackend):
    """Per-process fallback. Not shared across instances."""

    _records: dict[str, BlockState] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def record_block(
        self,
        credential: str,
        reason: str,
        ip_address: str | None,
        user_agent: str | None,
        now: datetime,
    ) -> BlockState:
        async with self._lock:
            existing = self._records.get(credential)
            if existing is None or existing.blocked_until < now:
                attempts = 1
            else:
                attempts = existing.attempts + 1

            state = BlockState(
                credential=credential,
                blocked_until=now + timedelta(hours=block_duration_hours(attempts)),
                attempts=attempts,
                reason=reason,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            self._records[credential] = state
            return replace(state)

    async def get(self, credential: str) -> BlockState | None:
        async with self._lock:
            state = self._records.get(credential)
            return replace(state) if state else None

    async def delete_if_expired(self, credential: str, now: datetime) -> bool:
        async with self._lock:
            state = self._records.get(credential)
            if state is None or state.blocked_until >= now:
                return False
            del self._records[credential]
            return True

    async def delete(self, credential: str) -> bool:
        async with self._lock:
            return self._records.pop(credential, None) is not None

    async def delete_all(self) -> int:
        async with self._lock:
            count = len(self._records)
            self._records.clear()
            return count

    async def purge_expired(self, now: datetime) -> int:
        async with self._lock:
            doomed = [c for c, s in self._records.items() if s.blocked_until < now]
            for c in doomed:
                del self._records[c]
            return len(doomed)


# Failover


class FailoverBlockBackend(FailoverBackend[BlockBackend], BlockBackend):
    async def record_block(
        self,
        credential: str,
        reason: str,
        ip_address: str | None,
        user_agent: str | None,
        now: datetime,
    ) -> BlockState:
        return await self._run(
            "record_block",
            lambda b: b.record_block(credential, reason, ip_address, user_agent, now),
        )

    async def get(self, credential: str) -> BlockState | None:
        return await self._run("get", lambda b: b.get(credential))

    async def delete_if_expired(self, credential: str, now: datetime) -> bool:
        return await self._run("delete_if_expired", lambda b: b.delete_if_expired(credential, now))

    async def delete(self, credential: str) -> bool:
        return await self._run("delete", lambda b: b.delete(credential))

    async def delete_all(self) -> int:
        return await self._run("delete_all", lambda b: b.delete_all())

    async def purge_expired(self, now: datetime) -> int:
        return await self._run("purge_expired", lambda b: b.purge_expired(now))
