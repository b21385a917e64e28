"""Async database engine and session factory."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from captiongate.config import DatabaseSettings
from captiongate.models.base import Base


def build_engine(settings: DatabaseSettings) -> AsyncEngine:
    """Create the async engine. SQLite gets no pool sizing (tests, local dev)."""
    if settings.url.startswith("sqlite"):
        return create_async_engine(settings.url, echo=settings.echo)

    return create_async_engine(
        settings.url,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        echo=settings.echo,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create missing tables (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
