"""Tests for the escalating credential block list."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from captiongate.common.errors import CredentialBlockedError, StoreUnavailableError, ValidationError
from captiongate.core.abuse.backends import BlockBackend, MemoryBlockBackend, SQLBlockBackend
from captiongate.core.abuse.blocklist import AbuseBlockList, block_duration_hours
from tests.factories import FakeClock

EMAIL = "abuser@example.com"


@pytest.fixture(params=["sql", "memory"])
def backend(request, session_factory) -> BlockBackend:
    if request.param == "sql":
        return SQLBlockBackend(session_factory)
    return MemoryBlockBackend()


@pytest.fixture
def blocklist(backend: BlockBackend, clock: FakeClock) -> AbuseBlockList:
    return AbuseBlockList(backend, clock=clock)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("attempts", "hours"), [(1, 24), (2, 48), (3, 72), (7, 168), (8, 168), (50, 168)]
)
def test_block_duration_hours(attempts: int, hours: int) -> None:
    assert block_duration_hours(attempts) == hours


@pytest.mark.unit
class TestBlock:
    async def test_first_block_is_24h(self, blocklist: AbuseBlockList, clock: FakeClock) -> None:
        status = await blocklist.block(EMAIL)

        assert status.blocked is True
        assert status.attempts == 1
        assert status.blocked_until == clock() + timedelta(hours=24)
        assert status.hours_remaining == 24
        assert status.reason == "abuse_prevention"

    async def test_repeat_block_escalates(self, blocklist: AbuseBlockList, clock: FakeClock) -> None:
        await blocklist.block(EMAIL)
        clock.advance(hours=1)
        second = await blocklist.block(EMAIL, reason="account_deletion_abuse")

        assert second.attempts == 2
        assert second.blocked_until == clock() + timedelta(hours=48)
        assert second.reason == "account_deletion_abuse"

    async def test_escalation_is_capped_at_a_week(
        self, blocklist: AbuseBlockList, clock: FakeClock
    ) -> None:
        for _ in range(9):
            status = await blocklist.block(EMAIL)
            clock.advance(minutes=5)
        assert status.attempts == 9
        assert status.hours_remaining == 168

    async def test_block_after_expiry_starts_over(
        self, blocklist: AbuseBlockList, clock: FakeClock
    ) -> None:
        await blocklist.block(EMAIL)
        await blocklist.block(EMAIL)  # 48h
        clock.advance(hours=49)

        status = await blocklist.block(EMAIL)
        assert status.attempts == 1
        assert status.blocked_until == clock() + timedelta(hours=24)

    async def test_credential_is_normalised(self, blocklist: AbuseBlockList) -> None:
        await blocklist.block("  Abuser@Example.COM ")
        assert (await blocklist.is_blocked(EMAIL)).blocked is True

    async def test_unknown_reason_is_invalid(self, blocklist: AbuseBlockList) -> None:
        with pytest.raises(ValidationError):
            await blocklist.block(EMAIL, reason="felt_like_it")

    async def test_empty_credential_is_invalid(self, blocklist: AbuseBlockList) -> None:
        with pytest.raises(ValidationError):
            await blocklist.block("   ")
        with pytest.raises(ValidationError):
            await blocklist.is_blocked("")


@pytest.mark.unit
class TestIsBlocked:
    async def test_unknown_credential(self, blocklist: AbuseBlockList) -> None:
        status = await blocklist.is_blocked(EMAIL)
        assert status.blocked is False
        assert status.attempts == 0

    async def test_hours_remaining_rounds_up(
        self, blocklist: AbuseBlockList, clock: FakeClock
    ) -> None:
        await blocklist.block(EMAIL)
        clock.advance(hours=2, minutes=30)
        status = await blocklist.is_blocked(EMAIL)
        assert status.blocked is True
        assert status.hours_remaining == 22

    async def test_still_blocked_at_the_boundary(
        self, blocklist: AbuseBlockList, clock: FakeClock
    ) -> None:
        await blocklist.block(EMAIL)
        clock.advance(hours=24)
        assert (await blocklist.is_blocked(EMAIL)).blocked is True

    async def test_expires_without_unblock(
        self, blocklist: AbuseBlockList, backend: BlockBackend, clock: FakeClock
    ) -> None:
        await blocklist.block(EMAIL)
        clock.advance(hours=24, seconds=1)

        assert (await blocklist.is_blocked(EMAIL)).blocked is False
        # Stale record was removed on read
        assert await backend.get(EMAIL) is None

    async def test_ensure_not_blocked(self, blocklist: AbuseBlockList) -> None:
        await blocklist.ensure_not_blocked(EMAIL)
        await blocklist.block(EMAIL)
        with pytest.raises(CredentialBlockedError) as exc_info:
            await blocklist.ensure_not_blocked(EMAIL)
        assert exc_info.value.details["hours_remaining"] == 24

    async def test_store_failure_reports_not_blocked(self, clock: FakeClock) -> None:
        backend = AsyncMock(spec=BlockBackend)
        backend.get.side_effect = StoreUnavailableError("down")
        blocklist = AbuseBlockList(backend, clock=clock)

        assert (await blocklist.is_blocked(EMAIL)).blocked is False


@pytest.mark.unit
class TestUnblock:
    async def test_unblock(self, blocklist: AbuseBlockList) -> None:
        await blocklist.block(EMAIL)
        assert await blocklist.unblock(EMAIL) is True
        assert await blocklist.unblock(EMAIL) is False
        assert (await blocklist.is_blocked(EMAIL)).blocked is False

    async def test_reactivate_all(self, blocklist: AbuseBlockList) -> None:
        await blocklist.block("a@example.com")
        await blocklist.block("b@example.com")
        assert await blocklist.reactivate_all() == 2
        assert (await blocklist.is_blocked("a@example.com")).blocked is False

    async def test_purge_expired(self, blocklist: AbuseBlockList, clock: FakeClock) -> None:
        await blocklist.block("a@example.com")
        await blocklist.block("b@example.com")
        await blocklist.block("b@example.com")  # 48h
        clock.advance(hours=30)
        assert await blocklist.purge_expired() == 1
