"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import pytest

from cqrs_ddd_two_factor import (
    CodeHasher,
    DeviceInfo,
    FrozenClock,
    InMemoryNotifier,
    OtpChannelConfig,
    TwoFactorConfig,
    TwoFactorManager,
    TwoFactorMethod,
    UserProfile,
    create_in_memory_manager,
)
from cqrs_ddd_two_factor.codes import compute_totp
from cqrs_ddd_two_factor.memory import InMemoryDeliveryProvider

START = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

# RFC 6238 reference secret: ASCII "12345678901234567890" in base32
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests that exercise real storage adapters",
    )


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at a fixed instant."""
    return FrozenClock(START)


@pytest.fixture
def hasher() -> CodeHasher:
    """Cheap bcrypt cost so tests stay fast."""
    return CodeHasher(rounds=4)


@pytest.fixture
def notifier(clock: FrozenClock) -> InMemoryNotifier:
    return InMemoryNotifier(clock=clock)


@pytest.fixture
def email_provider(clock: FrozenClock) -> InMemoryDeliveryProvider:
    return InMemoryDeliveryProvider(clock=clock)


@pytest.fixture
def sms_provider(clock: FrozenClock) -> InMemoryDeliveryProvider:
    return InMemoryDeliveryProvider(clock=clock)


@pytest.fixture
def config() -> TwoFactorConfig:
    """Defaults with SMS switched on."""
    return TwoFactorConfig(sms=OtpChannelConfig(enabled=True))


@pytest.fixture
def manager(
    config: TwoFactorConfig,
    clock: FrozenClock,
    hasher: CodeHasher,
    notifier: InMemoryNotifier,
    email_provider: InMemoryDeliveryProvider,
    sms_provider: InMemoryDeliveryProvider,
) -> TwoFactorManager:
    """In-memory manager wired with test doubles."""
    return create_in_memory_manager(
        config,
        providers={
            TwoFactorMethod.EMAIL: email_provider,
            TwoFactorMethod.SMS: sms_provider,
        },
        notifier=notifier,
        clock=clock,
        hasher=hasher,
    )


@pytest.fixture
def profile() -> UserProfile:
    return UserProfile(
        user_id="user-1",
        email="jane@example.com",
        phone_number="+15551234567",
        display_name="Jane",
    )


@pytest.fixture
def device() -> DeviceInfo:
    return DeviceInfo(
        ip_address="203.0.113.7",
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
        ),
        accept_language="en-US",
        session_id="sess-1",
    )


@pytest.fixture
def wrong_totp_code() -> Callable[[TwoFactorManager, str], str]:
    """Return a code that matches no step in the manager's TOTP window."""

    def _wrong(manager: TwoFactorManager, secret: str) -> str:
        period = manager.config.totp.period
        now = manager.clock.now().timestamp()
        window = manager.config.totp.window
        valid = {
            compute_totp(secret, now + step * period, period=period)
            for step in range(-window, window + 1)
        }
        candidates = ("000000", "111111", "222222", "333333")
        return next(c for c in candidates if c not in valid)

    return _wrong
