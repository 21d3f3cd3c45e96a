"""Domain model for two-factor authentication.

Entities are plain mutable dataclasses owned by a single user. Request
scoped inputs (``UserProfile``, ``DeviceInfo``) are immutable value objects.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (some databases drop tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _new_id() -> str:
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════


class TwoFactorMethod(str, Enum):
    """Second factor kinds.

    ``RECOVERY`` is never a configured method; it only labels attempts
    and verification results that consumed a recovery code.
    """

    TOTP = "totp"
    EMAIL = "email"
    SMS = "sms"
    RECOVERY = "recovery"

    @property
    def is_deliverable(self) -> bool:
        return self in (TwoFactorMethod.EMAIL, TwoFactorMethod.SMS)


class AttemptType(str, Enum):
    VERIFICATION = "verification"
    SETUP = "setup"
    CHALLENGE = "challenge"


class FailureReason(str, Enum):
    INVALID_CODE = "invalid_code"
    EXPIRED_CODE = "expired_code"
    RATE_LIMITED = "rate_limited"
    NO_CODE = "no_code"
    INVALID_FORMAT = "invalid_format"
    ALREADY_USED = "already_used"
    METHOD_DISABLED = "method_disabled"
    USER_NOT_FOUND = "user_not_found"
    SESSION_EXPIRED = "session_expired"


# ═══════════════════════════════════════════════════════════════
# VALUE OBJECTS
# ═══════════════════════════════════════════════════════════════


class UserProfile(BaseModel):
    """What the caller knows about the user being protected.

    ``phone_number`` is the only place a phone number is read from.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str | None = None
    phone_number: str | None = None
    display_name: str | None = None

    @property
    def account_label(self) -> str:
        """Label shown next to the issuer in authenticator apps."""
        return self.email or self.display_name or self.user_id


class DeviceInfo(BaseModel):
    """Request metadata used for device trust and attempt auditing."""

    model_config = ConfigDict(frozen=True)

    ip_address: str | None = None
    user_agent: str | None = None
    accept_language: str | None = None
    accept_encoding: str | None = None
    accept: str | None = None
    session_id: str | None = None


# ═══════════════════════════════════════════════════════════════
# ENTITIES
# ═══════════════════════════════════════════════════════════════


@dataclass
class TwoFactorAuth:
    """Per-user 2FA record.

    Created disabled and unconfirmed by ``enable``; becomes enabled only
    through :meth:`confirm`, so ``enabled`` always implies ``confirmed_at``.
    ``secret`` holds plaintext in memory; encryption happens at the
    storage boundary.
    """

    user_id: str
    method: TwoFactorMethod
    enabled: bool = False
    secret: str | None = None
    phone_number: str | None = None
    confirmed_at: datetime | None = None
    backup_codes_generated_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_confirmed(self) -> bool:
        return self.confirmed_at is not None

    @property
    def is_pending(self) -> bool:
        return not self.enabled

    def confirm(self, now: datetime) -> None:
        self.enabled = True
        self.confirmed_at = now
        self.updated_at = now


@dataclass
class RecoveryCode:
    """A single-use recovery code, stored only as a hash.

    Used codes are kept (``used_at`` set) for the audit trail.
    """

    user_id: str
    code_hash: str
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utcnow)
    used_at: datetime | None = None
    used_ip: str | None = None
    used_user_agent: str | None = None

    @property
    def is_used(self) -> bool:
        return self.used_at is not None


@dataclass
class DeviceSession:
    """A remembered device. Active while ``expires_at`` is in the future."""

    user_id: str
    token: str
    expires_at: datetime
    device_fingerprint: str | None = None
    device_name: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utcnow)
    last_used_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return ensure_utc(self.expires_at) > now


@dataclass(frozen=True)
class AuthAttempt:
    """Append-only record of a single verification, setup or challenge."""

    method: TwoFactorMethod
    type: AttemptType
    successful: bool
    user_id: str | None = None
    session_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    failure_reason: FailureReason | None = None
    code_hash: str | None = None
    code_length: int | None = None
    attempted_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=_new_id)


@dataclass(frozen=True)
class OtpChallenge:
    """The outstanding email or SMS code for a user."""

    user_id: str
    code: str
    channel: TwoFactorMethod
    destination: str
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime) -> bool:
        return now >= ensure_utc(self.expires_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "code": self.code,
            "channel": self.channel.value,
            "destination": self.destination,
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OtpChallenge:
        return cls(
            user_id=data["user_id"],
            code=data["code"],
            channel=TwoFactorMethod(data["channel"]),
            destination=data["destination"],
            expires_at=ensure_utc(datetime.fromisoformat(data["expires_at"])),
            created_at=ensure_utc(datetime.fromisoformat(data["created_at"])),
        )


__all__: list[str] = [
    "utcnow",
    "ensure_utc",
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
]
