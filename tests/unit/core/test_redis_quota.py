"""Tests for the Redis quota backend (Redis mocked)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import NoScriptError

from captiongate.common.errors import StoreUnavailableError
from captiongate.core.quota.backends import QUOTA_SCRIPT, RedisQuotaBackend

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)
WINDOW = timedelta(hours=24)
RESET_MS = NOW_MS + 24 * 3600 * 1000


def _redis() -> AsyncMock:
    client = AsyncMock()
    client.script_load.return_value = "sha-1"
    return client


@pytest.mark.unit
class TestRedisQuotaBackend:
    async def test_hit_passes_limit_window_and_now(self) -> None:
        client = _redis()
        client.evalsha.return_value = [1, 1, RESET_MS]
        backend = RedisQuotaBackend(client, key_prefix="cg:")

        hit = await backend.hit("user:u1", 5, WINDOW, NOW)

        client.script_load.assert_awaited_once_with(QUOTA_SCRIPT)
        client.evalsha.assert_awaited_once_with(
            "sha-1", 1, "cg:quota:user:u1", "5", str(24 * 3600 * 1000), str(NOW_MS)
        )
        assert hit.allowed is True
        assert hit.count == 1
        assert hit.reset_at == NOW + WINDOW

    async def test_rejected_hit(self) -> None:
        client = _redis()
        client.evalsha.return_value = [0, 5, RESET_MS]
        backend = RedisQuotaBackend(client)

        hit = await backend.hit("user:u1", 5, WINDOW, NOW)
        assert hit.allowed is False
        assert hit.count == 5

    async def test_script_is_loaded_once(self) -> None:
        client = _redis()
        client.evalsha.return_value = [1, 1, RESET_MS]
        backend = RedisQuotaBackend(client)

        await backend.hit("k", 5, WINDOW, NOW)
        await backend.hit("k", 5, WINDOW, NOW)
        assert client.script_load.await_count == 1

    async def test_flushed_script_is_reloaded(self) -> None:
        client = _redis()
        client.evalsha.side_effect = [NoScriptError("NOSCRIPT"), [1, 2, RESET_MS]]
        backend = RedisQuotaBackend(client)

        hit = await backend.hit("k", 5, WINDOW, NOW)
        assert hit.count == 2
        assert client.script_load.await_count == 2

    async def test_connection_error_is_store_unavailable(self) -> None:
        client = _redis()
        client.evalsha.side_effect = RedisConnectionError("refused")
        backend = RedisQuotaBackend(client)

        with pytest.raises(StoreUnavailableError):
            await backend.hit("k", 5, WINDOW, NOW)

    async def test_get_reads_the_hash(self) -> None:
        client = _redis()
        client.hgetall.return_value = {"count": "3", "reset_at": str(RESET_MS)}
        backend = RedisQuotaBackend(client)

        state = await backend.get("k")
        assert state is not None
        assert state.count == 3
        assert state.reset_at == NOW + WINDOW

    async def test_get_missing_key(self) -> None:
        client = _redis()
        client.hgetall.return_value = {}
        assert await RedisQuotaBackend(client).get("k") is None

    async def test_delete_all_scans_prefix(self) -> None:
        client = _redis()

        async def scan_iter(match: str, count: int):
            assert match == "captiongate:quota:*"
            for key in ("captiongate:quota:a", "captiongate:quota:b"):
                yield key

        client.scan_iter = scan_iter
        client.delete.return_value = 1
        assert await RedisQuotaBackend(client).delete_all() == 2

    async def test_purge_is_left_to_redis_expiry(self) -> None:
        client = _redis()
        assert await RedisQuotaBackend(client).purge_expired(NOW) == 0
        client.delete.assert_not_awaited()
