"""Memory adapters for testing and development."""

from __future__ import annotations

from .delivery import ConsoleDeliveryProvider, InMemoryDeliveryProvider, SentCode
from .stores import (
    InMemoryAttemptStore,
    InMemoryDeviceSessionStore,
    InMemoryOtpChallengeStore,
    InMemoryRateLimitStore,
    InMemoryRecoveryCodeStore,
    InMemoryTwoFactorAuthStore,
)

__all__: list[str] = [
    "ConsoleDeliveryProvider",
    "InMemoryDeliveryProvider",
    "SentCode",
    "InMemoryAttemptStore",
    "InMemoryDeviceSessionStore",
    "InMemoryOtpChallengeStore",
    "InMemoryRateLimitStore",
    "InMemoryRecoveryCodeStore",
    "InMemoryTwoFactorAuthStore",
]
