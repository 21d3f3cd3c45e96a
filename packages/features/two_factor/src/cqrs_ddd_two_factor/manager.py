"""Verification orchestrator.

``TwoFactorManager`` drives a user through the two-factor lifecycle:

    Disabled --enable--> PendingConfirmation --confirm--> Confirmed
    Confirmed --disable--> Disabled (full teardown)

It composes the TOTP, OTP, recovery code, device trust, rate limiting and
attempt log services, encrypts secrets at the storage boundary and reports
every state change to an injected notifier.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .attempts import AttemptLog
from .clock import SystemClock
from .config import TwoFactorConfig
from .crypto import PlaintextSecretCipher
from .devices import DeviceTrustManager, describe_device
from .entropy import SecureRandomSource
from .exceptions import (
    AlreadyEnabledError,
    ConfigurationError,
    InvalidCodeError,
    MethodDisabledError,
    NoPendingSetupError,
    NotEnabledError,
    RateLimitExceededError,
)
from .formatting import mask_destination, normalize_phone_number
from .models import AttemptType, FailureReason, TwoFactorAuth, TwoFactorMethod
from .notifier import LoggingNotifier, NullNotifier
from .observability.metrics import TwoFactorMetrics
from .observability.tracing import TwoFactorTracing
from .otp import OtpCheck, OtpService
from .rate_limit import RateLimiter
from .recovery import RecoveryCodeService, RecoveryCodeStatistics
from .totp import TotpService

if TYPE_CHECKING:
    from .hasher import CodeHasher
    from .models import DeviceInfo, DeviceSession, UserProfile
    from .ports import (
        IAttemptStore,
        IClock,
        IDeliveryProvider,
        IDeviceSessionStore,
        IOtpChallengeStore,
        IRandomSource,
        IRateLimitStore,
        IRecoveryCodeStore,
        ISecretCipher,
        ITwoFactorAuthStore,
        ITwoFactorNotifier,
    )

logger = logging.getLogger(__name__)

_OTP_FAILURES: dict[OtpCheck, FailureReason] = {
    OtpCheck.MISSING: FailureReason.NO_CODE,
    OtpCheck.EXPIRED: FailureReason.EXPIRED_CODE,
    OtpCheck.INVALID: FailureReason.INVALID_CODE,
}


# ═══════════════════════════════════════════════════════════════
# RESULTS
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class SetupResult:
    """What the caller shows the user after ``enable``.

    Attributes:
        method: The method being set up.
        secret: TOTP secret (TOTP only).
        qr_uri: otpauth:// URI for a QR code (TOTP only).
        manual_key: Grouped secret for manual entry (TOTP only).
        destination: Masked address the setup code was sent to (email/SMS).
        recovery_codes: Plaintext recovery codes. Shown once.
    """

    method: TwoFactorMethod
    secret: str | None = None
    qr_uri: str | None = None
    manual_key: str | None = None
    destination: str | None = None
    recovery_codes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method.value,
            "secret": self.secret,
            "qr_uri": self.qr_uri,
            "manual_key": self.manual_key,
            "destination": self.destination,
            "recovery_codes": list(self.recovery_codes),
        }


@dataclass(frozen=True)
class VerificationResult:
    """Successful verification. Always truthy.

    ``method`` is ``RECOVERY`` when a recovery code was consumed, in which
    case ``recovery_codes_remaining`` is set.
    """

    method: TwoFactorMethod
    remember_token: str | None = None
    recovery_codes_remaining: int | None = None

    def __bool__(self) -> bool:
        return True

    @property
    def used_recovery_code(self) -> bool:
        return self.method is TwoFactorMethod.RECOVERY


@dataclass(frozen=True)
class TwoFactorStatus:
    enabled: bool
    method: TwoFactorMethod | None
    confirmed: bool
    recovery_codes_remaining: int
    can_generate_recovery_codes: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "method": self.method.value if self.method else None,
            "confirmed": self.confirmed,
            "recovery_codes_remaining": self.recovery_codes_remaining,
            "can_generate_recovery_codes": self.can_generate_recovery_codes,
        }


@dataclass(frozen=True)
class MaintenanceReport:
    """Row counts removed by :meth:`TwoFactorManager.cleanup`."""

    expired_devices: int
    pruned_attempts: int
    removed_recovery_codes: int

    def to_dict(self) -> dict[str, int]:
        return {
            "expired_devices": self.expired_devices,
            "pruned_attempts": self.pruned_attempts,
            "removed_recovery_codes": self.removed_recovery_codes,
        }


# ═══════════════════════════════════════════════════════════════
# MANAGER
# ═══════════════════════════════════════════════════════════════


class TwoFactorManager:
    """Entry point for enabling, confirming and verifying two-factor auth.

    Example:
        ```python
        manager = create_in_memory_manager()
        profile = UserProfile(user_id="u1", email="jane@acme.test")

        setup = await manager.enable(profile, TwoFactorMethod.TOTP)
        await manager.confirm("u1", code_from_app)

        result = await manager.verify("u1", code, remember_device=True)
        response.set_cookie("two_factor_remember", result.remember_token)
        ```
    """

    def __init__(
        self,
        *,
        auth_store: ITwoFactorAuthStore,
        recovery_store: IRecoveryCodeStore,
        device_store: IDeviceSessionStore,
        attempt_store: IAttemptStore,
        otp_store: IOtpChallengeStore,
        rate_limit_store: IRateLimitStore,
        providers: dict[TwoFactorMethod, IDeliveryProvider] | None = None,
        config: TwoFactorConfig | None = None,
        cipher: ISecretCipher | None = None,
        notifier: ITwoFactorNotifier | None = None,
        hasher: CodeHasher | None = None,
        clock: IClock | None = None,
        random_source: IRandomSource | None = None,
    ) -> None:
        """Wire the manager.

        Args:
            auth_store: Per-user 2FA records.
            recovery_store: Hashed recovery codes.
            device_store: Remembered device sessions.
            attempt_store: Attempt audit log.
            otp_store: Outstanding email/SMS codes.
            rate_limit_store: Hit store for verification and send limits.
            providers: Delivery provider per channel.
            config: Settings; defaults apply when omitted.
            cipher: Secret encryption. Required unless
                ``config.security.encrypt_secrets`` is off.
            notifier: Lifecycle callbacks. Defaults to logging; ignored
                when ``config.events_enabled`` is off. Pass ``clock`` to an
                :class:`EventNotifier` as well so events carry the same time.
            hasher: Recovery code hasher override.
            clock: Time source.
            random_source: Randomness for secrets, codes and tokens.

        Raises:
            ConfigurationError: If encryption is on and no cipher is given.
        """
        self.config = config or TwoFactorConfig()
        self.clock = clock or SystemClock()
        self.random_source = random_source or SecureRandomSource()
        self.auth_store = auth_store

        if not self.config.security.encrypt_secrets:
            self.cipher: ISecretCipher = PlaintextSecretCipher()
        elif cipher is None:
            raise ConfigurationError(
                "A secret cipher is required while encrypt_secrets is enabled"
            )
        else:
            self.cipher = cipher

        if not self.config.events_enabled:
            self.notifier: ITwoFactorNotifier = NullNotifier(clock=self.clock)
        else:
            self.notifier = notifier or LoggingNotifier(clock=self.clock)

        shared: dict[str, Any] = {
            "clock": self.clock,
            "random_source": self.random_source,
        }
        self.totp = TotpService(config=self.config.totp, **shared)
        self.otp = OtpService(
            challenge_store=otp_store,
            send_limit_store=rate_limit_store,
            providers=providers or {},
            channel_configs={
                TwoFactorMethod.EMAIL: self.config.email,
                TwoFactorMethod.SMS: self.config.sms,
            },
            prefix=self.config.key_prefix,
            **shared,
        )
        self.recovery = RecoveryCodeService(
            store=recovery_store,
            config=self.config.recovery_codes,
            hasher=hasher,
            **shared,
        )
        self.devices = DeviceTrustManager(
            store=device_store, config=self.config.remember_device, **shared
        )
        self.rate_limiter = RateLimiter(
            store=rate_limit_store,
            config=self.config.rate_limiting,
            clock=self.clock,
            prefix=self.config.key_prefix,
        )
        self.attempts = AttemptLog(store=attempt_store, clock=self.clock)

    # ── helpers ───────────────────────────────────────────────────

    @contextmanager
    def _observe(
        self,
        operation: str,
        user_id: str,
        method: TwoFactorMethod | None = None,
    ) -> Iterator[None]:
        label = method.value if method else "unknown"
        with TwoFactorTracing.span(operation, user_id=user_id, method=label):
            with TwoFactorMetrics.operation(operation, method=label):
                yield

    @staticmethod
    def _coerce_method(method: TwoFactorMethod | str) -> TwoFactorMethod:
        try:
            return TwoFactorMethod(method)
        except ValueError as e:
            raise MethodDisabledError(context={"method": str(method)}) from e

    def is_method_enabled(self, method: TwoFactorMethod) -> bool:
        if method is TwoFactorMethod.TOTP:
            return self.config.totp.enabled
        if method is TwoFactorMethod.EMAIL:
            return self.config.email.enabled
        if method is TwoFactorMethod.SMS:
            return self.config.sms.enabled
        return False

    async def _load(self, user_id: str) -> TwoFactorAuth | None:
        record = await self.auth_store.get(user_id)
        if record is not None and record.secret:
            record.secret = self.cipher.decrypt(record.secret)
        return record

    async def _save(self, record: TwoFactorAuth) -> None:
        secret = self.cipher.encrypt(record.secret) if record.secret else None
        await self.auth_store.save(dataclasses.replace(record, secret=secret))

    @staticmethod
    def _destination(
        profile: UserProfile,
        method: TwoFactorMethod,
        phone_number: str | None = None,
    ) -> str:
        if method is TwoFactorMethod.EMAIL:
            if not profile.email:
                raise MethodDisabledError(
                    "Email codes require an email address",
                    context={"method": method.value},
                )
            return profile.email
        phone = phone_number or profile.phone_number
        if not phone:
            raise MethodDisabledError(
                "SMS codes require a phone number",
                context={"method": method.value},
            )
        return normalize_phone_number(phone)

    def _looks_like_recovery_code(self, code: str) -> bool:
        return self.config.recovery_codes.enabled and (
            self.recovery.looks_like_recovery_code(code)
        )

    async def _check_primary(
        self, record: TwoFactorAuth, code: str
    ) -> FailureReason | None:
        """Check ``code`` against the record's method; None means valid.

        A valid email/SMS code is consumed.
        """
        if not code or not code.strip():
            return FailureReason.INVALID_FORMAT
        if record.method is TwoFactorMethod.TOTP:
            if not record.secret:
                raise ConfigurationError(
                    "TOTP record has no secret", context={"user_id": record.user_id}
                )
            if self.totp.verify(record.secret, code):
                return None
            return FailureReason.INVALID_CODE

        result = await self.otp.consume(record.user_id, code)
        if result is OtpCheck.VALID:
            return None
        return _OTP_FAILURES[result]

    async def _rate_limit_check(
        self,
        key: str,
        *,
        user_id: str,
        method: TwoFactorMethod,
        attempt_type: AttemptType,
        code: str | None,
        device: DeviceInfo | None,
    ) -> None:
        try:
            await self.rate_limiter.check(key)
        except RateLimitExceededError as e:
            await self.attempts.record(
                user_id=user_id,
                method=method,
                attempt_type=attempt_type,
                successful=False,
                code=code,
                failure_reason=FailureReason.RATE_LIMITED,
                device=device,
            )
            await self.notifier.on_rate_limited(
                user_id, e.retry_after, device=device
            )
            raise

    # ── lifecycle ─────────────────────────────────────────────────

    async def enable(
        self,
        profile: UserProfile,
        method: TwoFactorMethod | str,
        *,
        phone_number: str | None = None,
    ) -> SetupResult:
        """Start setup of ``method``. The user stays unprotected until
        :meth:`confirm` succeeds.

        A pending setup is replaced. For email and SMS the setup code is
        sent right away.

        Raises:
            MethodDisabledError: Method switched off, or no destination.
            AlreadyEnabledError: The user already confirmed a method.
            DeliveryFailedError: The setup code could not be sent; the
                pending record remains and :meth:`send_code` may retry. No
                recovery codes are generated for the failed call.
        """
        method = self._coerce_method(method)
        user_id = profile.user_id
        with self._observe("enable", user_id, method):
            if not self.is_method_enabled(method):
                raise MethodDisabledError(context={"method": method.value})

            existing = await self.auth_store.get(user_id)
            if existing is not None and existing.enabled:
                raise AlreadyEnabledError(context={"user_id": user_id})

            now = self.clock.now()
            record = TwoFactorAuth(
                user_id=user_id,
                method=method,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )

            totp_setup = None
            destination = None
            if method is TwoFactorMethod.TOTP:
                totp_setup = self.totp.setup(profile)
                record.secret = totp_setup.secret
            else:
                destination = self._destination(profile, method, phone_number)
                if method is TwoFactorMethod.SMS:
                    record.phone_number = destination

            await self._save(record)
            await self.notifier.on_setup_started(user_id, method)
            logger.info("Started %s setup for user %s", method.value, user_id)

            if destination is not None:
                await self.otp.issue(user_id, method, destination)

            # Generated only once nothing can fail before they are returned.
            recovery_codes: list[str] = []
            if self.config.recovery_codes.enabled:
                recovery_codes = await self.recovery.generate(user_id)
                record.backup_codes_generated_at = now
                await self._save(record)

            return SetupResult(
                method=method,
                secret=totp_setup.secret if totp_setup else None,
                qr_uri=totp_setup.qr_uri if totp_setup else None,
                manual_key=totp_setup.manual_key if totp_setup else None,
                destination=mask_destination(destination) if destination else None,
                recovery_codes=recovery_codes,
            )

    async def confirm(
        self,
        user_id: str,
        code: str,
        *,
        device: DeviceInfo | None = None,
    ) -> bool:
        """Finish setup by proving possession of the new factor.

        Raises:
            NoPendingSetupError: Nothing to confirm.
            InvalidCodeError: The code did not verify; state is unchanged.
            RateLimitExceededError: Only with ``limit_confirmation`` on.
        """
        record = await self._load(user_id)
        if record is None or record.enabled:
            raise NoPendingSetupError(context={"user_id": user_id})

        with self._observe("confirm", user_id, record.method):
            key = None
            if self.config.rate_limiting.limit_confirmation:
                ip_address = device.ip_address if device else None
                key = self.rate_limiter.key_for(user_id, ip_address, scope="confirm")
                await self._rate_limit_check(
                    key,
                    user_id=user_id,
                    method=record.method,
                    attempt_type=AttemptType.SETUP,
                    code=code,
                    device=device,
                )

            reason = await self._check_primary(record, code)
            if reason is not None:
                if key is not None:
                    await self.rate_limiter.record_attempt(key)
                await self.attempts.record(
                    user_id=user_id,
                    method=record.method,
                    attempt_type=AttemptType.SETUP,
                    successful=False,
                    code=code,
                    failure_reason=reason,
                    device=device,
                )
                logger.debug("Setup confirmation failed for user %s", user_id)
                raise InvalidCodeError()

            if key is not None:
                await self.rate_limiter.clear(key)
            record.confirm(self.clock.now())
            await self._save(record)
            await self.attempts.record(
                user_id=user_id,
                method=record.method,
                attempt_type=AttemptType.SETUP,
                successful=True,
                code=code,
                device=device,
            )
            await self.notifier.on_enabled(user_id, record.method)
            logger.info(
                "Two-factor %s enabled for user %s", record.method.value, user_id
            )
            return True

    async def disable(self, user_id: str) -> bool:
        """Remove 2FA entirely: record, recovery codes, devices and any
        outstanding code. Irreversible."""
        with self._observe("disable", user_id):
            existed = await self.auth_store.delete(user_id)
            await self.recovery.delete_all(user_id)
            await self.devices.forget_all(user_id)
            await self.otp.clear(user_id)
            if existed:
                await self.notifier.on_disabled(user_id)
                logger.info("Two-factor disabled for user %s", user_id)
            return True

    # ── verification ──────────────────────────────────────────────

    async def verify(
        self,
        user_id: str,
        code: str,
        *,
        remember_device: bool = False,
        device: DeviceInfo | None = None,
    ) -> VerificationResult:
        """Verify a login-time code.

        The rate limit is checked first. A submission shaped like a
        recovery code is matched against the user's unused recovery codes;
        when none matches, or the shape differs, the configured method is
        tried.

        Raises:
            NotEnabledError: The user has no confirmed 2FA.
            RateLimitExceededError: Too many failures in the window.
            InvalidCodeError: Nothing matched.
        """
        record = await self._load(user_id)
        if record is None or not record.enabled:
            raise NotEnabledError(context={"user_id": user_id})

        with self._observe("verify", user_id, record.method):
            ip_address = device.ip_address if device else None
            user_agent = device.user_agent if device else None
            key = self.rate_limiter.key_for(user_id, ip_address)
            await self._rate_limit_check(
                key,
                user_id=user_id,
                method=record.method,
                attempt_type=AttemptType.VERIFICATION,
                code=code,
                device=device,
            )

            used = record.method
            remaining = None
            reason: FailureReason | None = FailureReason.INVALID_CODE
            if self._looks_like_recovery_code(code) and await self.recovery.verify(
                user_id, code, ip_address=ip_address, user_agent=user_agent
            ):
                used = TwoFactorMethod.RECOVERY
                reason = None
                remaining = await self.recovery.remaining(user_id)
            else:
                reason = await self._check_primary(record, code)

            if reason is not None:
                await self.rate_limiter.record_attempt(key)
                await self.attempts.record(
                    user_id=user_id,
                    method=record.method,
                    attempt_type=AttemptType.VERIFICATION,
                    successful=False,
                    code=code,
                    failure_reason=reason,
                    device=device,
                )
                await self.notifier.on_verification_failed(
                    user_id, record.method, reason, device=device
                )
                raise InvalidCodeError()

            await self.rate_limiter.clear(key)
            await self.attempts.record(
                user_id=user_id,
                method=used,
                attempt_type=AttemptType.VERIFICATION,
                successful=True,
                code=code,
                device=device,
            )
            if remaining is not None:
                await self.notifier.on_recovery_code_used(
                    user_id, remaining, device=device
                )
                if remaining <= self.config.recovery_codes.regenerate_threshold:
                    logger.info(
                        "User %s has %d recovery codes left", user_id, remaining
                    )
            else:
                await self.notifier.on_verified(user_id, used, device=device)

            token = None
            if remember_device and self.config.remember_device.enabled:
                token = await self.devices.remember(user_id, device)
                await self.notifier.on_device_remembered(
                    user_id, describe_device(user_agent)
                )

            return VerificationResult(
                method=used,
                remember_token=token,
                recovery_codes_remaining=remaining,
            )

    async def send_code(
        self,
        profile: UserProfile,
        method: TwoFactorMethod | str | None = None,
    ) -> bool:
        """(Re)send an email or SMS code for the user's pending or active
        method.

        Raises:
            NotEnabledError: No 2FA record exists.
            MethodDisabledError: The method cannot deliver codes, is off,
                or differs from the user's method.
            RateLimitExceededError: Hourly send limit reached.
            DeliveryFailedError: The provider failed; nothing is left to
                verify against.
        """
        user_id = profile.user_id
        record = await self.auth_store.get(user_id)
        if record is None:
            raise NotEnabledError(context={"user_id": user_id})

        method = self._coerce_method(method) if method else record.method
        with self._observe("send_code", user_id, method):
            if (
                not method.is_deliverable
                or not self.is_method_enabled(method)
                or method is not record.method
            ):
                raise MethodDisabledError(context={"method": method.value})

            destination = self._destination(profile, method, record.phone_number)
            try:
                await self.otp.issue(user_id, method, destination)
            except RateLimitExceededError:
                await self.attempts.record(
                    user_id=user_id,
                    method=method,
                    attempt_type=AttemptType.CHALLENGE,
                    successful=False,
                    failure_reason=FailureReason.RATE_LIMITED,
                )
                raise

            await self.attempts.record(
                user_id=user_id,
                method=method,
                attempt_type=AttemptType.CHALLENGE,
                successful=True,
            )
            await self.notifier.on_code_sent(
                user_id, method, mask_destination(destination)
            )
            return True

    # ── devices ───────────────────────────────────────────────────

    async def is_device_remembered(self, user_id: str, token: str | None) -> bool:
        """False means the caller should discard its stored token."""
        if not self.config.remember_device.enabled:
            return False
        return await self.devices.is_remembered(user_id, token)

    async def forget_device(self, user_id: str, token: str | None = None) -> int:
        """Forget one device, or all of them when ``token`` is omitted."""
        if token is None:
            return await self.devices.forget_all(user_id)
        return int(await self.devices.forget(user_id, token))

    async def forget_all_devices(self, user_id: str) -> int:
        return await self.devices.forget_all(user_id)

    async def list_devices(
        self, user_id: str, *, active_only: bool = True
    ) -> list[DeviceSession]:
        return await self.devices.list_devices(user_id, active_only=active_only)

    # ── status and maintenance ────────────────────────────────────

    async def get_status(self, user_id: str) -> TwoFactorStatus:
        record = await self.auth_store.get(user_id)
        if record is None:
            return TwoFactorStatus(
                enabled=False,
                method=None,
                confirmed=False,
                recovery_codes_remaining=0,
            )
        return TwoFactorStatus(
            enabled=record.enabled,
            method=record.method,
            confirmed=record.is_confirmed,
            recovery_codes_remaining=await self.recovery.remaining(user_id),
            can_generate_recovery_codes=(
                record.enabled and self.config.recovery_codes.enabled
            ),
        )

    async def is_enabled_for_user(self, user_id: str) -> bool:
        record = await self.auth_store.get(user_id)
        return record is not None and record.enabled

    def get_available_methods(self, profile: UserProfile) -> list[TwoFactorMethod]:
        """Methods that are switched on and usable with this profile."""
        methods = []
        if self.config.totp.enabled:
            methods.append(TwoFactorMethod.TOTP)
        if self.config.email.enabled and profile.email:
            methods.append(TwoFactorMethod.EMAIL)
        if self.config.sms.enabled and profile.phone_number:
            methods.append(TwoFactorMethod.SMS)
        return methods

    async def regenerate_recovery_codes(self, user_id: str) -> list[str]:
        """Replace every recovery code with a fresh batch.

        Raises:
            NotEnabledError: The user has no confirmed 2FA.
            MethodDisabledError: Recovery codes are switched off.
        """
        if not self.config.recovery_codes.enabled:
            raise MethodDisabledError(context={"method": "recovery"})
        record = await self._load(user_id)
        if record is None or not record.enabled:
            raise NotEnabledError(context={"user_id": user_id})

        with self._observe("regenerate_recovery_codes", user_id, record.method):
            codes = await self.recovery.regenerate(user_id)
            now = self.clock.now()
            record.backup_codes_generated_at = now
            record.updated_at = now
            await self._save(record)
            await self.notifier.on_recovery_codes_regenerated(user_id, len(codes))
            return codes

    async def recovery_code_statistics(self, user_id: str) -> RecoveryCodeStatistics:
        return await self.recovery.statistics(user_id)

    async def cleanup(self) -> MaintenanceReport:
        """Periodic housekeeping. Not meant for the request path."""
        report = MaintenanceReport(
            expired_devices=await self.devices.cleanup_expired(),
            pruned_attempts=await self.attempts.prune(
                self.config.security.attempt_retention_days
            ),
            removed_recovery_codes=await self.recovery.cleanup_used(
                self.config.security.used_code_retention_days
            ),
        )
        logger.info("Two-factor cleanup finished: %s", report.to_dict())
        return report


__all__: list[str] = [
    "SetupResult",
    "VerificationResult",
    "TwoFactorStatus",
    "MaintenanceReport",
    "TwoFactorManager",
]
