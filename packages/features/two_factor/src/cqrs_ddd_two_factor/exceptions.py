"""Two-factor authentication exceptions.

All verification and setup outcomes that the caller must react to are
raised as subclasses of TwoFactorError. Infrastructure failures raise
StorageError and are never translated into verification outcomes.
"""

from __future__ import annotations

from typing import Any

# ═══════════════════════════════════════════════════════════════
# BASE ERRORS
# ═══════════════════════════════════════════════════════════════


class TwoFactorError(Exception):
    """Base class for all two-factor domain errors.

    Attributes:
        error_code: Stable machine-readable code for API responses.
        context: Extra diagnostic data. Never contains codes or secrets.
    """

    default_message = "Two-factor authentication error"
    error_code = "TWO_FACTOR_ERROR"

    def __init__(
        self,
        message: str | None = None,
        *,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for an API response body."""
        return {
            "error": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class StorageError(Exception):
    """Raised when a storage backend fails.

    Fatal for the current request; it is never swallowed by the manager.
    """


# ═══════════════════════════════════════════════════════════════
# VERIFICATION ERRORS
# ═══════════════════════════════════════════════════════════════


class InvalidCodeError(TwoFactorError):
    """Raised when a submitted code does not verify.

    The message is identical for unknown users, wrong codes and expired
    codes so that responses cannot be used as an oracle.
    """

    default_message = "The provided two-factor code is invalid"
    error_code = "INVALID_CODE"


class RateLimitExceededError(TwoFactorError):
    """Raised when too many attempts were made within the decay window.

    Attributes:
        retry_after: Seconds until another attempt will be accepted.
    """

    default_message = "Too many attempts. Please try again later"
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        message: str | None = None,
        *,
        retry_after: int = 900,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


# ═══════════════════════════════════════════════════════════════
# STATE ERRORS
# ═══════════════════════════════════════════════════════════════


class MethodDisabledError(TwoFactorError):
    """Raised when a method is switched off or unusable for the user."""

    default_message = "This two-factor method is not available"
    error_code = "METHOD_DISABLED"


class AlreadyEnabledError(TwoFactorError):
    """Raised when enabling 2FA for a user who already confirmed a method."""

    default_message = "Two-factor authentication is already enabled"
    error_code = "ALREADY_ENABLED"


class NotEnabledError(TwoFactorError):
    """Raised when an operation requires confirmed 2FA."""

    default_message = "Two-factor authentication is not enabled"
    error_code = "NOT_ENABLED"


class NoPendingSetupError(TwoFactorError):
    """Raised when confirming without an unconfirmed setup."""

    default_message = "No pending two-factor setup to confirm"
    error_code = "NO_PENDING_SETUP"


class UserNotFoundError(TwoFactorError):
    """Raised when the caller references an unknown user."""

    default_message = "User not found"
    error_code = "USER_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════
# DELIVERY AND CONFIGURATION ERRORS
# ═══════════════════════════════════════════════════════════════


class DeliveryFailedError(TwoFactorError):
    """Raised when the delivery provider could not send a code.

    The undelivered code has already been cleared when this is raised,
    so the caller may safely retry sending.
    """

    default_message = "The verification code could not be delivered"
    error_code = "DELIVERY_FAILED"


class ConfigurationError(TwoFactorError):
    """Raised for missing or malformed configuration or secret material.

    Indicates a deployment bug. Not retried.
    """

    default_message = "Two-factor authentication is misconfigured"
    error_code = "CONFIGURATION_ERROR"


__all__: list[str] = [
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
