"""Ports (protocols) for two-factor authentication.

The manager depends only on these interfaces. Storage, delivery, time,
randomness, encryption and event consumers are injected by the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from .delivery import DeliveryChannel, DeliveryRecord
    from .models import (
        AuthAttempt,
        DeviceInfo,
        DeviceSession,
        FailureReason,
        OtpChallenge,
        RecoveryCode,
        TwoFactorAuth,
        TwoFactorMethod,
    )


# ═══════════════════════════════════════════════════════════════
# COLLABORATORS
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class IClock(Protocol):
    """Source of the current time (timezone-aware UTC)."""

    def now(self) -> datetime: ...


@runtime_checkable
class IRandomSource(Protocol):
    """Cryptographically secure randomness."""

    def token_bytes(self, nbytes: int) -> bytes: ...

    def randbelow(self, upper: int) -> int: ...

    def choice(self, seq: Sequence[str]) -> str: ...


@runtime_checkable
class IDeliveryProvider(Protocol):
    """Narrow contract to an email transport or SMS gateway.

    Implementations report failures either by returning a failed
    DeliveryRecord or by raising; the caller treats both the same way.
    Transport retries are the provider's responsibility.
    """

    async def send(
        self,
        destination: str,
        message: str,
        *,
        channel: DeliveryChannel,
        subject: str | None = None,
    ) -> DeliveryRecord:
        """Deliver ``message`` to ``destination``."""
        ...


@runtime_checkable
class ISecretCipher(Protocol):
    """Encrypts TOTP secrets at the storage boundary."""

    def encrypt(self, plaintext: str) -> str: ...

    def decrypt(self, ciphertext: str) -> str: ...


@runtime_checkable
class ITwoFactorNotifier(Protocol):
    """Synchronous outlet for two-factor lifecycle events.

    Called by the manager after each state change. Consumers such as audit
    logs and metrics subscribe by implementing this protocol.
    """

    async def on_setup_started(
        self, user_id: str, method: TwoFactorMethod
    ) -> None: ...

    async def on_enabled(self, user_id: str, method: TwoFactorMethod) -> None: ...

    async def on_disabled(self, user_id: str) -> None: ...

    async def on_verified(
        self,
        user_id: str,
        method: TwoFactorMethod,
        *,
        device: DeviceInfo | None = None,
    ) -> None: ...

    async def on_verification_failed(
        self,
        user_id: str,
        method: TwoFactorMethod,
        reason: FailureReason,
        *,
        device: DeviceInfo | None = None,
    ) -> None: ...

    async def on_recovery_code_used(
        self,
        user_id: str,
        remaining: int,
        *,
        device: DeviceInfo | None = None,
    ) -> None: ...

    async def on_recovery_codes_regenerated(self, user_id: str, count: int) -> None: ...

    async def on_code_sent(
        self, user_id: str, channel: TwoFactorMethod, destination: str
    ) -> None: ...

    async def on_device_remembered(
        self, user_id: str, device_name: str | None
    ) -> None: ...

    async def on_rate_limited(
        self,
        user_id: str,
        retry_after: int,
        *,
        device: DeviceInfo | None = None,
    ) -> None: ...


# ═══════════════════════════════════════════════════════════════
# STORAGE
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class ITwoFactorAuthStore(Protocol):
    """One TwoFactorAuth row per user. ``secret`` arrives already encrypted."""

    async def get(self, user_id: str) -> TwoFactorAuth | None: ...

    async def save(self, record: TwoFactorAuth) -> None:
        """Insert or replace the record for ``record.user_id``."""
        ...

    async def delete(self, user_id: str) -> bool:
        """Hard-delete the record. Returns whether one existed."""
        ...


@runtime_checkable
class IRecoveryCodeStore(Protocol):
    """Hashed recovery codes."""

    async def replace(self, user_id: str, codes: list[RecoveryCode]) -> None:
        """Atomically delete every code of the user and insert ``codes``."""
        ...

    async def list_unused(self, user_id: str) -> list[RecoveryCode]: ...

    async def list_all(self, user_id: str) -> list[RecoveryCode]: ...

    async def mark_used_if_unused(
        self,
        code_id: str,
        *,
        used_at: datetime,
        used_ip: str | None = None,
        used_user_agent: str | None = None,
    ) -> bool:
        """Compare-and-set ``used_at`` on an unused code.

        Returns:
            True for exactly one caller per code; False if it was already used.
        """
        ...

    async def count_unused(self, user_id: str) -> int: ...

    async def delete_all(self, user_id: str) -> int: ...

    async def delete_used_before(self, cutoff: datetime) -> int: ...


@runtime_checkable
class IDeviceSessionStore(Protocol):
    """Remembered-device sessions."""

    async def add(self, session: DeviceSession) -> None: ...

    async def find(self, user_id: str, token: str) -> DeviceSession | None: ...

    async def touch(self, session_id: str, last_used_at: datetime) -> None: ...

    async def list_for_user(self, user_id: str) -> list[DeviceSession]: ...

    async def delete(self, user_id: str, token: str) -> bool: ...

    async def delete_all(self, user_id: str) -> int: ...

    async def delete_expired(self, now: datetime) -> int: ...


@runtime_checkable
class IAttemptStore(Protocol):
    """Append-only attempt log."""

    async def add(self, attempt: AuthAttempt) -> None: ...

    async def query(
        self,
        *,
        user_id: str | None = None,
        ip_address: str | None = None,
        method: TwoFactorMethod | None = None,
        since: datetime | None = None,
    ) -> list[AuthAttempt]:
        """Return matching attempts, oldest first."""
        ...

    async def delete_before(self, cutoff: datetime) -> int: ...


@runtime_checkable
class IOtpChallengeStore(Protocol):
    """At most one outstanding email/SMS code per user."""

    async def put(self, challenge: OtpChallenge) -> None: ...

    async def get(self, user_id: str) -> OtpChallenge | None: ...

    async def delete(self, user_id: str) -> None: ...

    async def consume(self, user_id: str, code: str) -> bool:
        """Delete the challenge only if its stored code is exactly ``code``.

        Must be atomic: of several concurrent calls with the same code, at
        most one returns True.
        """
        ...


@runtime_checkable
class IRateLimitStore(Protocol):
    """Timestamped hits per throttling key."""

    async def hit(self, key: str, at: datetime, *, ttl_seconds: int) -> None: ...

    async def hits_since(self, key: str, since: datetime) -> list[datetime]:
        """Return hit timestamps newer than ``since``, oldest first."""
        ...

    async def clear(self, key: str) -> None: ...


__all__: list[str] = [
    "IClock",
    "IRandomSource",
    "IDeliveryProvider",
    "ISecretCipher",
    "ITwoFactorNotifier",
    "ITwoFactorAuthStore",
    "IRecoveryCodeStore",
    "IDeviceSessionStore",
    "IAttemptStore",
    "IOtpChallengeStore",
    "IRateLimitStore",
]
