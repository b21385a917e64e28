"""
Shared test fixtures.

Uses an in-memory SQLite database for unit/integration tests.
For full PostgreSQL tests, point CAPTIONGATE_DATABASE__URL at a real server.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from captiongate.app import create_app
from captiongate.config import Settings
from captiongate.models.base import Base
from tests.factories import TEST_MASTER_KEY, FakeClock, StubCaptionBackend, get_test_settings


@pytest.fixture
def settings() -> Settings:
    return get_test_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# Database Fixtures

@pytest.fixture
async def test_engine() -> AsyncIterator[AsyncEngine]:
    # One shared connection so every session sees the same in-memory database
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


# App + Client Fixtures

@pytest.fixture
def caption_backend() -> StubCaptionBackend:
    return StubCaptionBackend()


@pytest.fixture
def app(
    settings: Settings,
    test_engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    caption_backend: StubCaptionBackend,
    clock: FakeClock,
) -> FastAPI:
    return create_app(
        settings,
        engine=test_engine,
        session_factory=session_factory,
        caption_backend=caption_backend,
        clock=clock,
    )


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app, client=("203.0.113.7", 51000))
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def admin_headers() -> dict[str, str]:
    """Headers with admin authentication."""
    return {"Authorization": f"Bearer {TEST_MASTER_KEY}"}


@pytest.fixture
def user_headers() -> dict[str, str]:
    """Identity headers as set by the upstream auth proxy."""
    return {"x-user-id": "u-123", "x-user-email": "Jane@Example.com"}
