"""Integration tests for the SQLAlchemy stores on aiosqlite."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cqrs_ddd_two_factor import (
    AesGcmSecretCipher,
    AttemptType,
    AuthAttempt,
    CodeHasher,
    DeviceInfo,
    DeviceSession,
    FailureReason,
    FrozenClock,
    InvalidCodeError,
    RecoveryCode,
    StorageError,
    TwoFactorAuth,
    TwoFactorConfig,
    TwoFactorMethod,
    UserProfile,
    create_two_factor_manager,
)
from cqrs_ddd_two_factor.memory import InMemoryDeliveryProvider
from cqrs_ddd_two_factor.persistence import (
    Base,
    SQLAlchemyAttemptStore,
    SQLAlchemyDeviceSessionStore,
    SQLAlchemyRecoveryCodeStore,
    SQLAlchemyTwoFactorAuthStore,
    TwoFactorAuthModel,
)

pytestmark = pytest.mark.integration


@pytest.fixture()
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


class TestAuthStore:
    """Test two_factor_auth rows."""

    @pytest.mark.asyncio
    async def test_save_get_update_delete(self, session_factory, clock) -> None:
        store = SQLAlchemyTwoFactorAuthStore(session_factory)
        record = TwoFactorAuth(
            user_id="user-1",
            method=TwoFactorMethod.SMS,
            phone_number="+15551234567",
            created_at=clock.now(),
            updated_at=clock.now(),
        )
        await store.save(record)

        loaded = await store.get("user-1")
        assert loaded is not None
        assert loaded.method is TwoFactorMethod.SMS
        assert loaded.created_at == clock.now()
        assert not loaded.enabled

        loaded.confirm(clock.advance(minutes=1))
        await store.save(loaded)

        confirmed = await store.get("user-1")
        assert confirmed is not None
        assert confirmed.enabled
        assert confirmed.confirmed_at == clock.now()

        assert await store.delete("user-1")
        assert await store.get("user-1") is None
        assert not await store.delete("user-1")

    @pytest.mark.asyncio
    async def test_errors_become_storage_errors(self) -> None:
        """Test a missing schema surfaces as StorageError."""
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        store = SQLAlchemyTwoFactorAuthStore(
            async_sessionmaker(engine, expire_on_commit=False)
        )

        with pytest.raises(StorageError, match="get_auth"):
            await store.get("user-1")
        await engine.dispose()


class TestRecoveryCodeStore:
    """Test recovery code rows and the conditional update."""

    @pytest.mark.asyncio
    async def test_replace_and_mark_used(self, session_factory, clock) -> None:
        store = SQLAlchemyRecoveryCodeStore(session_factory)
        first = [
            RecoveryCode(user_id="user-1", code_hash=f"h{i}", created_at=clock.now())
            for i in range(3)
        ]
        await store.replace("user-1", first)

        assert await store.count_unused("user-1") == 3
        assert await store.mark_used_if_unused(
            first[0].id, used_at=clock.now(), used_ip="203.0.113.7"
        )
        assert not await store.mark_used_if_unused(first[0].id, used_at=clock.now())
        assert await store.count_unused("user-1") == 2
        assert len(await store.list_unused("user-1")) == 2

        used = [c for c in await store.list_all("user-1") if c.is_used]
        assert [c.used_ip for c in used] == ["203.0.113.7"]

        second = [RecoveryCode(user_id="user-1", code_hash="fresh")]
        await store.replace("user-1", second)
        assert [c.code_hash for c in await store.list_all("user-1")] == ["fresh"]

    @pytest.mark.asyncio
    async def test_prune_used(self, session_factory, clock) -> None:
        store = SQLAlchemyRecoveryCodeStore(session_factory)
        codes = [RecoveryCode(user_id="user-1", code_hash=f"h{i}") for i in range(2)]
        await store.replace("user-1", codes)
        await store.mark_used_if_unused(codes[0].id, used_at=clock.now())

        removed = await store.delete_used_before(clock.now() + timedelta(days=1))

        assert removed == 1
        assert await store.count_unused("user-1") == 1
        assert await store.delete_all("user-1") == 1


class TestDeviceSessionStore:
    @pytest.mark.asyncio
    async def test_lifecycle(self, session_factory, clock) -> None:
        store = SQLAlchemyDeviceSessionStore(session_factory)
        now = clock.now()
        live = DeviceSession(
            user_id="user-1",
            token="t" * 64,
            expires_at=now + timedelta(days=30),
            device_name="Chrome on Windows",
            created_at=now,
        )
        dead = DeviceSession(
            user_id="user-1",
            token="d" * 64,
            expires_at=now - timedelta(minutes=1),
            created_at=now - timedelta(days=31),
        )
        await store.add(live)
        await store.add(dead)

        await store.touch(live.id, now)
        found = await store.find("user-1", "t" * 64)

        assert found is not None
        assert found.last_used_at == now
        assert found.expires_at == now + timedelta(days=30)
        assert await store.find("user-2", "t" * 64) is None
        assert [s.token[0] for s in await store.list_for_user("user-1")] == ["d", "t"]

        assert await store.delete_expired(now) == 1
        assert await store.delete("user-1", "t" * 64)
        assert await store.delete_all("user-1") == 0


class TestAttemptStore:
    @pytest.mark.asyncio
    async def test_query_filters(self, session_factory, clock) -> None:
        store = SQLAlchemyAttemptStore(session_factory)
        start = clock.now()
        await store.add(
            AuthAttempt(
                user_id="user-1",
                method=TwoFactorMethod.TOTP,
                type=AttemptType.VERIFICATION,
                successful=False,
                failure_reason=FailureReason.INVALID_CODE,
                ip_address="203.0.113.7",
                attempted_at=start,
            )
        )
        await store.add(
            AuthAttempt(
                user_id="user-1",
                method=TwoFactorMethod.EMAIL,
                type=AttemptType.CHALLENGE,
                successful=True,
                attempted_at=start + timedelta(hours=1),
            )
        )

        everything = await store.query()
        by_method = await store.query(method=TwoFactorMethod.TOTP)
        recent = await store.query(user_id="user-1", since=start + timedelta(minutes=1))
        by_ip = await store.query(ip_address="203.0.113.7")

        assert len(everything) == 2
        assert by_method[0].failure_reason is FailureReason.INVALID_CODE
        assert [a.method for a in recent] == [TwoFactorMethod.EMAIL]
        assert len(by_ip) == 1
        assert await store.delete_before(start + timedelta(minutes=1)) == 1


class TestManagerOnSQLAlchemy:
    """Test a manager wired with create_two_factor_manager."""

    @pytest.fixture()
    def manager(self, session_factory, clock: FrozenClock, hasher: CodeHasher):
        return create_two_factor_manager(
            session_factory,
            providers={TwoFactorMethod.EMAIL: InMemoryDeliveryProvider()},
            config=TwoFactorConfig(),
            cipher=AesGcmSecretCipher.from_base64(AesGcmSecretCipher.generate_key()),
            clock=clock,
            hasher=hasher,
        )

    @pytest.mark.asyncio
    async def test_totp_flow(
        self,
        manager,
        session_factory,
        clock: FrozenClock,
        profile: UserProfile,
        device: DeviceInfo,
    ) -> None:
        setup = await manager.enable(profile, TwoFactorMethod.TOTP)
        assert setup.secret is not None
        assert await manager.confirm("user-1", manager.totp.current_code(setup.secret))

        async with session_factory() as session:
            row = await session.get(TwoFactorAuthModel, "user-1")
            assert row is not None
            assert row.secret != setup.secret

        clock.advance(seconds=30)
        result = await manager.verify(
            "user-1",
            manager.totp.current_code(setup.secret),
            remember_device=True,
            device=device,
        )

        assert result.method is TwoFactorMethod.TOTP
        assert await manager.is_device_remembered("user-1", result.remember_token)
        assert len(await manager.list_devices("user-1")) == 1

        recovery = await manager.verify("user-1", setup.recovery_codes[0])
        assert recovery.used_recovery_code
        assert recovery.recovery_codes_remaining == 7
        with pytest.raises(InvalidCodeError):
            await manager.verify("user-1", setup.recovery_codes[0])

        stats = await manager.attempts.user_statistics("user-1")
        assert stats.successful == 3
        assert stats.failed == 1

    @pytest.mark.asyncio
    async def test_memory_fallback_is_logged(
        self, session_factory, caplog: pytest.LogCaptureFixture
    ) -> None:
        create_two_factor_manager(
            session_factory,
            providers={},
            config=TwoFactorConfig(),
            cipher=AesGcmSecretCipher.from_base64(AesGcmSecretCipher.generate_key()),
        )
        assert "No Redis client given" in caplog.text

    @pytest.mark.asyncio
    async def test_disable_removes_rows(self, manager, profile: UserProfile) -> None:
        setup = await manager.enable(profile, TwoFactorMethod.TOTP)
        await manager.confirm("user-1", manager.totp.current_code(setup.secret))

        assert await manager.disable("user-1")

        status = await manager.get_status("user-1")
        assert not status.enabled
        assert status.recovery_codes_remaining == 0
