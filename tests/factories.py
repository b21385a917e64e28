"""Test doubles and data factories."""

from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from captiongate.common.errors import BackendError
from captiongate.config import Settings
from captiongate.core.cache.fingerprint import ImagePayload
from captiongate.providers.base import CaptionBackend

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")
REMOTE_URL = "https://images.example.com/uploads/beach.jpg"
TEST_MASTER_KEY = "test_admin_key"


def get_test_settings(**overrides) -> Settings:
    values = {
        "env": "test",
        "database": {"url": "sqlite+aiosqlite:///:memory:"},
        "redis": {"url": "redis://localhost:6379/1"},
        "auth": {"master_api_key": TEST_MASTER_KEY},
        "logging": {"level": "DEBUG", "format": "console"},
        "backend": {"api_key": "AIza-test-key"},
        "storage": {"timeout_seconds": 2.0},
    }
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class StubCaptionBackend(CaptionBackend):
    provider_name = "stub"

    def __init__(self, captions: list[str] | None = None, fail: bool = False) -> None:
        self.captions = captions or ["caption one", "caption two", "caption three"]
        self.fail = fail
        self.calls: list[tuple[ImagePayload, str | None, str]] = []

    async def generate(self, image: ImagePayload, prompt: str | None, mood: str) -> list[str]:
        self.calls.append((image, prompt, mood))
        if self.fail:
            raise BackendError("stub backend failure", details={"provider": self.provider_name})
        return list(self.captions)


def unreachable_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory whose every connection attempt fails (OperationalError)."""
    engine = create_async_engine("sqlite+aiosqlite:////nonexistent-dir/captiongate/db.sqlite")
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
