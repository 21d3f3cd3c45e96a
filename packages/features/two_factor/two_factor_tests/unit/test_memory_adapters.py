"""Tests for the in-memory stores and delivery providers."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

import pytest

from cqrs_ddd_two_factor import (
    DeliveryChannel,
    DeliveryFailedError,
    DeliveryStatus,
    DeviceSession,
    FrozenClock,
    RecoveryCode,
    TwoFactorAuth,
    TwoFactorMethod,
)
from cqrs_ddd_two_factor.memory import (
    ConsoleDeliveryProvider,
    InMemoryDeliveryProvider,
    InMemoryDeviceSessionStore,
    InMemoryRateLimitStore,
    InMemoryRecoveryCodeStore,
    InMemoryTwoFactorAuthStore,
)


class TestInMemoryDeliveryProvider:
    """Test the fake provider used by the test suite."""

    @pytest.mark.asyncio
    async def test_send_records_message(self, clock: FrozenClock) -> None:
        provider = InMemoryDeliveryProvider(clock=clock)

        record = await provider.send(
            "jane@example.com",
            "Your code is 482913",
            channel=DeliveryChannel.EMAIL,
            subject="Code",
        )

        assert record.succeeded
        assert record.provider_id == "test-id"
        assert record.sent_at == clock.now()
        provider.assert_sent("jane@example.com", DeliveryChannel.EMAIL)
        assert provider.last_code_for("jane@example.com") == "482913"

    def test_assert_sent_count_mismatch(self) -> None:
        provider = InMemoryDeliveryProvider()
        with pytest.raises(AssertionError, match="Expected 1 messages"):
            provider.assert_sent("jane@example.com", DeliveryChannel.EMAIL)

    def test_last_code_without_message(self) -> None:
        with pytest.raises(AssertionError, match="No code was sent"):
            InMemoryDeliveryProvider().last_code_for("jane@example.com")

    @pytest.mark.asyncio
    async def test_failure_modes(self) -> None:
        provider = InMemoryDeliveryProvider()

        provider.fail_with = "mailbox full"
        record = await provider.send(
            "jane@example.com", "code 123456", channel=DeliveryChannel.EMAIL
        )
        assert record.status is DeliveryStatus.FAILED
        assert record.error == "mailbox full"

        provider.fail_with = None
        provider.raise_error = ConnectionError("smtp down")
        with pytest.raises(ConnectionError):
            await provider.send(
                "jane@example.com", "code 123456", channel=DeliveryChannel.EMAIL
            )
        assert provider.sent_messages == []

        provider.clear()
        assert provider.raise_error is None


class TestConsoleDeliveryProvider:
    """Test the development console provider."""

    @pytest.mark.asyncio
    async def test_prints_message_and_masks_log(
        self,
        capsys: pytest.CaptureFixture[str],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        provider = ConsoleDeliveryProvider()

        with caplog.at_level(logging.INFO):
            record = await provider.send(
                "+15551234567", "Your code is 482913", channel=DeliveryChannel.SMS
            )

        out = capsys.readouterr().out
        assert "TWO-FACTOR CODE VIA SMS" in out
        assert "482913" in out
        assert "+15******567" in caplog.text
        assert "482913" not in caplog.text
        assert record.provider_id == "console-debug"

    @pytest.mark.asyncio
    async def test_quiet(
        self, capsys: pytest.CaptureFixture[str], clock: FrozenClock
    ) -> None:
        provider = ConsoleDeliveryProvider(output_to_stdout=False, clock=clock)
        record = await provider.send(
            "jane@example.com", "code", channel=DeliveryChannel.EMAIL
        )
        assert capsys.readouterr().out == ""
        assert record.sent_at == clock.now()

    @pytest.mark.asyncio
    async def test_empty_destination(self) -> None:
        with pytest.raises(DeliveryFailedError):
            await ConsoleDeliveryProvider().send(
                "", "code", channel=DeliveryChannel.EMAIL
            )


class TestInMemoryStores:
    """Test store semantics shared with the SQL adapters."""

    @pytest.mark.asyncio
    async def test_auth_store_returns_copies(self) -> None:
        store = InMemoryTwoFactorAuthStore()
        await store.save(TwoFactorAuth(user_id="user-1", method=TwoFactorMethod.TOTP))

        loaded = await store.get("user-1")
        assert loaded is not None
        loaded.enabled = True

        again = await store.get("user-1")
        assert again is not None
        assert not again.enabled
        assert await store.delete("user-1")
        assert not await store.delete("user-1")

    @pytest.mark.asyncio
    async def test_mark_used_has_one_winner(self, clock: FrozenClock) -> None:
        store = InMemoryRecoveryCodeStore()
        code = RecoveryCode(user_id="user-1", code_hash="hash")
        await store.replace("user-1", [code])

        results = await asyncio.gather(
            *(store.mark_used_if_unused(code.id, used_at=clock.now()) for _ in range(5))
        )

        assert results.count(True) == 1
        assert await store.count_unused("user-1") == 0
        assert len(await store.list_all("user-1")) == 1
        assert not await store.mark_used_if_unused("missing", used_at=clock.now())

    @pytest.mark.asyncio
    async def test_delete_used_before(self, clock: FrozenClock) -> None:
        store = InMemoryRecoveryCodeStore()
        old = RecoveryCode(user_id="user-1", code_hash="a")
        fresh = RecoveryCode(user_id="user-1", code_hash="b")
        unused = RecoveryCode(user_id="user-1", code_hash="c")
        await store.replace("user-1", [old, fresh, unused])
        await store.mark_used_if_unused(old.id, used_at=clock.now())
        await store.mark_used_if_unused(
            fresh.id, used_at=clock.now() + timedelta(days=10)
        )

        removed = await store.delete_used_before(clock.now() + timedelta(days=1))

        assert removed == 1
        assert [c.code_hash for c in await store.list_all("user-1")] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_device_sessions(self, clock: FrozenClock) -> None:
        store = InMemoryDeviceSessionStore()
        now = clock.now()
        live = DeviceSession(
            user_id="user-1", token="live", expires_at=now + timedelta(days=1)
        )
        dead = DeviceSession(
            user_id="user-1", token="dead", expires_at=now - timedelta(seconds=1)
        )
        await store.add(live)
        await store.add(dead)

        await store.touch(live.id, now)
        found = await store.find("user-1", "live")

        assert found is not None
        assert found.last_used_at == now
        assert await store.find("user-2", "live") is None
        assert await store.delete_expired(now) == 1
        assert await store.delete("user-1", "live")
        assert await store.list_for_user("user-1") == []

    @pytest.mark.asyncio
    async def test_rate_limit_hits_since(self, clock: FrozenClock) -> None:
        store = InMemoryRateLimitStore()
        start = clock.now()
        for offset in (0, 60, 120):
            await store.hit("k", start + timedelta(seconds=offset), ttl_seconds=900)

        hits = await store.hits_since("k", start)

        assert hits == [start + timedelta(seconds=60), start + timedelta(seconds=120)]
        await store.clear("k")
        assert await store.hits_since("k", start - timedelta(days=1)) == []
