"""Configuration models for two-factor authentication.

All settings are explicit, immutable pydantic models passed into
constructors. Nothing is read from global state.

Example:
    ```python
    config = TwoFactorConfig.from_mapping(
        {
            "totp": {"issuer": "Acme", "digits": 6},
            "sms": {"enabled": True},
            "rate_limiting": {"max_attempts": 3},
        }
    )
    ```
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

TotpAlgorithm = Literal["sha1", "sha256", "sha512"]


class _FrozenConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class TotpConfig(_FrozenConfig):
    """Authenticator app settings.

    Attributes:
        enabled: Whether users may choose TOTP.
        issuer: Label shown in the authenticator app.
        algorithm: HMAC digest used for code generation.
        digits: Code length, 6 or 8.
        period: Seconds per time step.
        window: Accepted drift in time steps on either side.
    """

    enabled: bool = True
    issuer: str = "cqrs-ddd"
    algorithm: TotpAlgorithm = "sha1"
    digits: int = 6
    period: int = Field(default=30, gt=0)
    window: int = Field(default=1, ge=0)

    @field_validator("digits")
    @classmethod
    def _check_digits(cls, value: int) -> int:
        if value not in (6, 8):
            raise ValueError("TOTP digits must be 6 or 8")
        return value


class OtpChannelConfig(_FrozenConfig):
    """Email or SMS one-time code settings.

    ``message_template`` must contain a ``{code}`` placeholder.
    """

    enabled: bool = True
    code_length: int = Field(default=6, ge=4, le=10)
    expiry_seconds: int = Field(default=300, gt=0)
    max_sends_per_hour: int = Field(default=5, ge=1)
    subject: str = "Your verification code"
    message_template: str = "Your verification code is: {code}"

    @field_validator("message_template")
    @classmethod
    def _check_template(cls, value: str) -> str:
        if "{code}" not in value:
            raise ValueError("message_template must contain '{code}'")
        return value


class RecoveryCodeConfig(_FrozenConfig):
    """Recovery code batch settings."""

    enabled: bool = True
    count: int = Field(default=8, ge=1, le=50)
    length: int = Field(default=10, ge=6, le=20)
    regenerate_threshold: int = Field(default=3, ge=0)
    hash_algorithm: Literal["bcrypt", "argon2id"] = "bcrypt"
    hash_rounds: int = Field(default=10, ge=4, le=31)


class RememberDeviceConfig(_FrozenConfig):
    """Remember-device settings. Duration is in minutes (default 30 days)."""

    enabled: bool = True
    duration_minutes: int = Field(default=43200, ge=0)


class RateLimitConfig(_FrozenConfig):
    """Verification throttling.

    Attributes:
        enabled: Master switch.
        max_attempts: Failed attempts allowed within the window.
        decay_minutes: Length of the sliding window.
        limit_confirmation: Also throttle setup confirmation.
    """

    enabled: bool = True
    max_attempts: int = Field(default=5, ge=1)
    decay_minutes: int = Field(default=15, ge=1)
    limit_confirmation: bool = False

    @property
    def decay_seconds(self) -> int:
        return self.decay_minutes * 60


class SecurityConfig(_FrozenConfig):
    """Secret storage and retention settings."""

    encrypt_secrets: bool = True
    attempt_retention_days: int = Field(default=90, ge=1)
    used_code_retention_days: int = Field(default=30, ge=1)


class TwoFactorConfig(_FrozenConfig):
    """Top-level two-factor configuration."""

    totp: TotpConfig = Field(default_factory=TotpConfig)
    email: OtpChannelConfig = Field(default_factory=OtpChannelConfig)
    sms: OtpChannelConfig = Field(
        default_factory=lambda: OtpChannelConfig(enabled=False)
    )
    recovery_codes: RecoveryCodeConfig = Field(default_factory=RecoveryCodeConfig)
    remember_device: RememberDeviceConfig = Field(
        default_factory=RememberDeviceConfig
    )
    rate_limiting: RateLimitConfig = Field(default_factory=RateLimitConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    key_prefix: str = "two_factor"
    events_enabled: bool = True

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> TwoFactorConfig:
        """Build a config from plain data, e.g. a parsed settings file.

        Raises:
            ConfigurationError: If any value is missing or malformed.
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid two-factor configuration: {e.error_count()} error(s)",
                context={"errors": [err["msg"] for err in e.errors()]},
            ) from e


__all__: list[str] = [
    "TotpAlgorithm",
    "TotpConfig",
    "OtpChannelConfig",
    "RecoveryCodeConfig",
    "RememberDeviceConfig",
    "RateLimitConfig",
    "SecurityConfig",
    "TwoFactorConfig",
]
