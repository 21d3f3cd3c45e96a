"""Delivery result types for email and SMS code transport."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class DeliveryChannel(Enum):
    """Transports a one-time code can be sent through."""

    EMAIL = "email"
    SMS = "sms"


class DeliveryStatus(Enum):
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class DeliveryRecord:
    """Immutable outcome of one delivery attempt, reported by the provider.

    ``sent_at`` is whatever time the provider reports; None if it reports none.
    """

    destination: str
    channel: DeliveryChannel
    status: DeliveryStatus
    provider_id: str | None = None
    sent_at: datetime | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is DeliveryStatus.SENT

    @classmethod
    def sent(
        cls,
        destination: str,
        channel: DeliveryChannel,
        provider_id: str | None = None,
        sent_at: datetime | None = None,
    ) -> DeliveryRecord:
        """Create a successful delivery record."""
        return cls(
            destination=destination,
            channel=channel,
            status=DeliveryStatus.SENT,
            provider_id=provider_id,
            sent_at=sent_at,
        )

    @classmethod
    def failed(
        cls,
        destination: str,
        channel: DeliveryChannel,
        error: str | None = None,
        sent_at: datetime | None = None,
    ) -> DeliveryRecord:
        """Create a failed delivery record."""
        return cls(
            destination=destination,
            channel=channel,
            status=DeliveryStatus.FAILED,
            error=error,
            sent_at=sent_at,
        )


__all__: list[str] = ["DeliveryChannel", "DeliveryStatus", "DeliveryRecord"]
