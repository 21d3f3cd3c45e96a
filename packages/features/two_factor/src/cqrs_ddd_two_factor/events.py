"""Audit events for two-factor operations.

Each notifier callback is turned into one TwoFactorAuditEvent by
:class:`~cqrs_ddd_two_factor.notifier.EventNotifier`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class TwoFactorEventType(Enum):
    """Types of two-factor audit events.

    Event naming follows the pattern: ``two_factor.<resource>.<action>``
    """

    SETUP_STARTED = "two_factor.setup.started"
    ENABLED = "two_factor.enabled"
    DISABLED = "two_factor.disabled"

    VERIFIED = "two_factor.verification.succeeded"
    VERIFICATION_FAILED = "two_factor.verification.failed"
    RATE_LIMITED = "two_factor.verification.rate_limited"

    RECOVERY_CODE_USED = "two_factor.recovery_code.used"
    RECOVERY_CODES_REGENERATED = "two_factor.recovery_code.regenerated"

    CODE_SENT = "two_factor.code.sent"
    DEVICE_REMEMBERED = "two_factor.device.remembered"


@dataclass(frozen=True)
class TwoFactorAuditEvent:
    """Two-factor audit event.

    Attributes:
        event_type: What happened.
        user_id: The user the event concerns.
        timestamp: When the event occurred (UTC).
        method: Method involved, if any.
        ip_address: Client IP address (if available).
        user_agent: Client user agent string (if available).
        success: Whether the operation succeeded.
        error_code: Failure reason if the operation failed.
        metadata: Additional event-specific data. Never holds codes.
    """

    event_type: TwoFactorEventType
    user_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    method: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    success: bool = True
    error_code: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.success and not self.error_code:
            object.__setattr__(self, "error_code", "UNKNOWN_ERROR")

    def to_dict(self) -> dict[str, Any]:
        """Convert event to a JSON-serializable dictionary."""
        return {
            "event_type": self.event_type.value,
            "user_id": self.user_id,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "success": self.success,
            "error_code": self.error_code,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TwoFactorAuditEvent:
        """Create event from dictionary.

        Raises:
            ValueError: If required fields are missing or invalid.
        """
        event_type_str = data.get("event_type")
        if event_type_str is None:
            raise ValueError("Missing required 'event_type'")
        try:
            event_type = TwoFactorEventType(event_type_str)
        except ValueError as e:
            raise ValueError(f"Invalid event_type: {event_type_str}") from e

        user_id = data.get("user_id")
        if not user_id:
            raise ValueError("Missing required 'user_id'")

        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
        elif timestamp is None:
            timestamp = datetime.now(timezone.utc)

        return cls(
            event_type=event_type,
            user_id=user_id,
            timestamp=timestamp,
            method=data.get("method"),
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
            success=data.get("success", True),
            error_code=data.get("error_code"),
            metadata=data.get("metadata", {}),
        )


__all__: list[str] = ["TwoFactorEventType", "TwoFactorAuditEvent"]
