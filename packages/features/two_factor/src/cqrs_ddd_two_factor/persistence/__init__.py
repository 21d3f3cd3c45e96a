"""Persistent storage adapters.

SQLAlchemy stores hold the durable entities (auth records, recovery codes,
device sessions, attempts). Short-lived state (rate-limit hits, outstanding
email/SMS codes) goes to Redis via
:mod:`cqrs_ddd_two_factor.persistence.redis_stores`, which needs the
``redis`` extra.
"""

from __future__ import annotations

from .sql_models import (
    AuthAttemptModel,
    Base,
    DeviceSessionModel,
    RecoveryCodeModel,
    TwoFactorAuthModel,
)
from .sql_stores import (
    SQLAlchemyAttemptStore,
    SQLAlchemyDeviceSessionStore,
    SQLAlchemyRecoveryCodeStore,
    SQLAlchemyTwoFactorAuthStore,
)

__all__: list[str] = [
    "Base",
    "TwoFactorAuthModel",
    "RecoveryCodeModel",
    "DeviceSessionModel",
    "AuthAttemptModel",
    "SQLAlchemyTwoFactorAuthStore",
    "SQLAlchemyRecoveryCodeStore",
    "SQLAlchemyDeviceSessionStore",
    "SQLAlchemyAttemptStore",
]
