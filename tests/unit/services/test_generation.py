"""Tests for the caption generation pipeline."""

from __future__ import annotations

import pytest

from captiongate.common.errors import (
    BackendError,
    CredentialBlockedError,
    QuotaExceededError,
    ValidationError,
)
from captiongate.config import QuotaPolicy, QuotaSettings
from captiongate.core.abuse.backends import MemoryBlockBackend
from captiongate.core.abuse.blocklist import AbuseBlockList
from captiongate.core.cache.backends import MemoryCacheBackend
from captiongate.core.cache.fingerprint import FingerprintService
from captiongate.core.cache.store import ResultCacheStore
from captiongate.core.quota.backends import MemoryQuotaBackend
from captiongate.core.quota.identity import Caller, client_ip, identity_key
from captiongate.core.quota.limiter import QuotaLimiter
from captiongate.services.generation import GenerationService
from tests.factories import PNG_BYTES, PNG_DATA_URL, REMOTE_URL, FakeClock, StubCaptionBackend

USER = Caller(user_id="u-1", email="jane@example.com", ip="198.51.100.4")
ANON = Caller(ip="198.51.100.9")


def _build(
    clock: FakeClock,
    backend: StubCaptionBackend | None = None,
    *,
    cache_enabled: bool = True,
) -> GenerationService:
    quota = QuotaSettings(
        anonymous=QuotaPolicy(max_generations=2, window_hours=24),
        authenticated=QuotaPolicy(max_generations=4, window_hours=24),
    )
    return GenerationService(
        fingerprints=FingerprintService(),
        cache=ResultCacheStore(MemoryCacheBackend(), clock=clock),
        limiter=QuotaLimiter(MemoryQuotaBackend(), clock=clock),
        blocklist=AbuseBlockList(MemoryBlockBackend(), clock=clock),
        backend=backend or StubCaptionBackend(),
        quota=quota,
        cache_enabled=cache_enabled,
    )


@pytest.mark.unit
class TestGenerate:
    async def test_miss_then_hit(self, clock: FakeClock) -> None:
        backend = StubCaptionBackend()
        service = _build(clock, backend)

        first = await service.generate(USER, PNG_DATA_URL, "happy")
        second = await service.generate(USER, PNG_DATA_URL, "happy")

        assert first.cached is False
        assert second.cached is True
        assert second.captions == first.captions
        assert first.fingerprint == second.fingerprint
        assert len(backend.calls) == 1

    async def test_same_image_in_another_encoding_hits(self, clock: FakeClock) -> None:
        backend = StubCaptionBackend()
        service = _build(clock, backend)

        await service.generate(USER, PNG_BYTES, "happy")
        result = await service.generate(USER, PNG_DATA_URL, "happy")

        assert result.cached is True
        assert len(backend.calls) == 1

    async def test_mood_and_prompt_change_the_key(self, clock: FakeClock) -> None:
        backend = StubCaptionBackend()
        service = _build(clock, backend)

        await service.generate(USER, REMOTE_URL, "happy")
        await service.generate(USER, REMOTE_URL, "moody")
        await service.generate(USER, REMOTE_URL, "happy", prompt="at the pier")

        assert len(backend.calls) == 3

    async def test_cache_hit_still_consumes_quota(self, clock: FakeClock) -> None:
        service = _build(clock)

        first = await service.generate(ANON, REMOTE_URL, "happy")
        second = await service.generate(ANON, REMOTE_URL, "happy")

        assert (first.quota.remaining, second.quota.remaining) == (1, 0)
        with pytest.raises(QuotaExceededError):
            await service.generate(ANON, REMOTE_URL, "happy")

    async def test_authenticated_policy(self, clock: FakeClock) -> None:
        service = _build(clock)
        result = await service.generate(USER, REMOTE_URL, "happy")
        assert result.quota.limit == 4

    async def test_blocked_caller_is_rejected_before_quota(self, clock: FakeClock) -> None:
        backend = StubCaptionBackend()
        service = _build(clock, backend)
        await service.blocklist.block("Jane@Example.com")

        with pytest.raises(CredentialBlockedError):
            await service.generate(USER, REMOTE_URL, "happy")

        assert backend.calls == []
        assert (await service.quota_status(USER)).current_usage == 0

    async def test_backend_failure_caches_nothing(self, clock: FakeClock) -> None:
        service = _build(clock, StubCaptionBackend(fail=True))

        with pytest.raises(BackendError):
            await service.generate(USER, REMOTE_URL, "happy")

        assert (await service.cache.stats()).entries == 0

    async def test_cache_disabled_always_calls_backend(self, clock: FakeClock) -> None:
        backend = StubCaptionBackend()
        service = _build(clock, backend, cache_enabled=False)

        await service.generate(USER, REMOTE_URL, "happy")
        result = await service.generate(USER, REMOTE_URL, "happy")

        assert result.cached is False
        assert len(backend.calls) == 2

    async def test_owner_recorded_on_store(self, clock: FakeClock) -> None:
        service = _build(clock)
        result = await service.generate(USER, REMOTE_URL, "happy")

        stats = await service.cache.stats()
        assert stats.entries == 1
        lookup = await service.cache.lookup(result.fingerprint, None, "happy")
        entry = await service.cache.get_by_id(lookup.entry_id)
        assert entry.owner_id == "u-1"

    async def test_empty_image_is_invalid(self, clock: FakeClock) -> None:
        service = _build(clock)
        with pytest.raises(ValidationError):
            await service.generate(USER, "   ", "happy")


@pytest.mark.unit
class TestIdentity:
    def test_identity_key(self) -> None:
        assert identity_key("u-1", "198.51.100.1") == "user:u-1"
        assert identity_key(None, "198.51.100.1") == "ip:198.51.100.1"
        assert identity_key("  ", "198.51.100.1") == "ip:198.51.100.1"

    def test_identity_key_requires_something(self) -> None:
        with pytest.raises(ValidationError):
            identity_key(None, None)

    def test_client_ip_prefers_first_forwarded_hop(self) -> None:
        headers = {"x-forwarded-for": "203.0.113.5, 10.0.0.1", "x-real-ip": "10.0.0.2"}
        assert client_ip(headers, "10.0.0.3") == "203.0.113.5"

    def test_client_ip_proxy_headers_then_peer(self) -> None:
        assert client_ip({"cf-connecting-ip": "203.0.113.6"}, "10.0.0.3") == "203.0.113.6"
        assert client_ip({"x-real-ip": "203.0.113.7"}, "10.0.0.3") == "203.0.113.7"
        assert client_ip({}, "10.0.0.3") == "10.0.0.3"

    def test_caller(self) -> None:
        assert USER.authenticated is True
        assert USER.key == "user:u-1"
        assert ANON.authenticated is False
        assert ANON.key == "ip:198.51.100.9"
