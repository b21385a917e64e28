"""Shared plumbing for the SQLAlchemy-backed durable stores."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from captiongate.common.errors import StoreUnavailableError


def _is_unavailable(error: Exception) -> bool:
    if isinstance(error, (sa_exc.OperationalError, sa_exc.InterfaceError)):
        return True
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return True
    return isinstance(error, (ConnectionError, OSError, sa_exc.TimeoutError))


class SQLBackend:
    """Base for backends that run one short transaction per operation."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction; connection failures become StoreUnavailableError."""
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except Exception as e:
            if _is_unavailable(e):
                raise StoreUnavailableError(
                    "Database unavailable", details={"cause": type(e).__name__}
                ) from e
            raise

    def dialect_name(self, session: AsyncSession) -> str:
        return session.get_bind().dialect.name

    def insert(self, session: AsyncSession, table: Any) -> Any:
        """Dialect-specific INSERT that supports ON CONFLICT ... RETURNING."""
        if self.dialect_name(session) == "postgresql":
            return postgresql.insert(table)
        return sqlite.insert(table)
