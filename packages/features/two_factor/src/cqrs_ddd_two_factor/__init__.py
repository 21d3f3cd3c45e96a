"""CQRS-DDD Two-Factor Package

Second factor: "Prove it is really you."

Enables, confirms and verifies TOTP, email and SMS codes, single-use
recovery codes and remember-device tokens, with per-user rate limiting and
an attempt audit trail. HTTP handling and mail/SMS transports stay with the
application.

Usage:
    ```python
    from cqrs_ddd_two_factor import (
        TwoFactorMethod,
        UserProfile,
        create_in_memory_manager,
    )

    manager = create_in_memory_manager()
    profile = UserProfile(user_id="u1", email="jane@acme.test")

    setup = await manager.enable(profile, TwoFactorMethod.TOTP)
    await manager.confirm("u1", code_from_authenticator)

    result = await manager.verify("u1", code, remember_device=True)
    ```

Submodules:
    - `memory`: In-memory stores and delivery providers for tests
    - `persistence`: SQLAlchemy stores; Redis stores in `persistence.redis_stores`
    - `observability`: Prometheus metrics and OpenTelemetry spans
"""

from __future__ import annotations

# Services
from .attempts import AttemptLog, AttemptStatistics
from .clock import FrozenClock, SystemClock

# Configuration
from .config import (
    OtpChannelConfig,
    RateLimitConfig,
    RecoveryCodeConfig,
    RememberDeviceConfig,
    SecurityConfig,
    TotpConfig,
    TwoFactorConfig,
)
from .crypto import AesGcmSecretCipher, PlaintextSecretCipher
from .delivery import DeliveryChannel, DeliveryRecord, DeliveryStatus
from .devices import DeviceStatistics, DeviceTrustManager
from .entropy import SecureRandomSource

# Events
from .events import TwoFactorAuditEvent, TwoFactorEventType

# Exceptions
from .exceptions import (
    AlreadyEnabledError,
    ConfigurationError,
    DeliveryFailedError,
    InvalidCodeError,
    MethodDisabledError,
    NoPendingSetupError,
    NotEnabledError,
    RateLimitExceededError,
    StorageError,
    TwoFactorError,
    UserNotFoundError,
)
from .factory import create_in_memory_manager, create_two_factor_manager
from .hasher import CodeHasher

# Orchestrator
from .manager import (
    MaintenanceReport,
    SetupResult,
    TwoFactorManager,
    TwoFactorStatus,
    VerificationResult,
)

# Domain model
from .models import (
    AttemptType,
    AuthAttempt,
    DeviceInfo,
    DeviceSession,
    FailureReason,
    OtpChallenge,
    RecoveryCode,
    TwoFactorAuth,
    TwoFactorMethod,
    UserProfile,
)
from .notifier import (
    CompositeNotifier,
    EventNotifier,
    InMemoryNotifier,
    LoggingNotifier,
    MetricsNotifier,
    NullNotifier,
)
from .otp import OtpCheck, OtpService

# Ports
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
from .rate_limit import RateLimiter
from .recovery import RecoveryCodeService, RecoveryCodeStatistics
from .totp import TotpService, TotpSetup

__version__ = "0.1.0"

__all__: list[str] = [
    # Orchestrator
    "TwoFactorManager",
    "SetupResult",
    "VerificationResult",
    "TwoFactorStatus",
    "MaintenanceReport",
    "create_in_memory_manager",
    "create_two_factor_manager",
    # Services
    "TotpService",
    "TotpSetup",
    "OtpService",
    "OtpCheck",
    "RecoveryCodeService",
    "RecoveryCodeStatistics",
    "DeviceTrustManager",
    "DeviceStatistics",
    "RateLimiter",
    "AttemptLog",
    "AttemptStatistics",
    "CodeHasher",
    # Collaborators
    "SystemClock",
    "FrozenClock",
    "SecureRandomSource",
    "AesGcmSecretCipher",
    "PlaintextSecretCipher",
    "DeliveryChannel",
    "DeliveryRecord",
    "DeliveryStatus",
    # Configuration
    "TwoFactorConfig",
    "TotpConfig",
    "OtpChannelConfig",
    "RecoveryCodeConfig",
    "RememberDeviceConfig",
    "RateLimitConfig",
    "SecurityConfig",
    # Domain model
    "TwoFactorMethod",
    "AttemptType",
    "FailureReason",
    "UserProfile",
    "DeviceInfo",
    "TwoFactorAuth",
    "RecoveryCode",
    "DeviceSession",
    "AuthAttempt",
    "OtpChallenge",
    # Events
    "TwoFactorEventType",
    "TwoFactorAuditEvent",
    "EventNotifier",
    "NullNotifier",
    "LoggingNotifier",
    "MetricsNotifier",
    "InMemoryNotifier",
    "CompositeNotifier",
    # Ports
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
    # Exceptions
    "TwoFactorError",
    "StorageError",
    "InvalidCodeError",
    "RateLimitExceededError",
    "MethodDisabledError",
    "AlreadyEnabledError",
    "NotEnabledError",
    "NoPendingSetupError",
    "UserNotFoundError",
    "DeliveryFailedError",
    "ConfigurationError",
]
