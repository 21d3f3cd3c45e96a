"""Notifier implementations for two-factor lifecycle events.

The manager calls an ``ITwoFactorNotifier`` synchronously after each state
change. ``EventNotifier`` turns those calls into
:class:`~cqrs_ddd_two_factor.events.TwoFactorAuditEvent` objects and hands
them to :meth:`EventNotifier.publish`; concrete notifiers only decide what
to do with an event.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from .clock import SystemClock
from .events import TwoFactorAuditEvent, TwoFactorEventType
from .observability.metrics import TwoFactorMetrics
from .ports import ITwoFactorNotifier

if TYPE_CHECKING:
    from .models import DeviceInfo, FailureReason, TwoFactorMethod
    from .ports import IClock

logger = logging.getLogger(__name__)


def _device_fields(device: DeviceInfo | None) -> dict[str, Any]:
    if device is None:
        return {}
    return {"ip_address": device.ip_address, "user_agent": device.user_agent}


class EventNotifier(ITwoFactorNotifier, ABC):
    """Base notifier that builds one audit event per callback.

    Events are stamped with ``clock``, which should be the manager's clock.
    """

    def __init__(self, *, clock: IClock | None = None) -> None:
        self.clock = clock or SystemClock()

    @abstractmethod
    async def publish(self, event: TwoFactorAuditEvent) -> None:
        """Deliver one event."""

    def _event(
        self, event_type: TwoFactorEventType, user_id: str, **fields: Any
    ) -> TwoFactorAuditEvent:
        return TwoFactorAuditEvent(
            event_type=event_type,
            user_id=user_id,
            timestamp=self.clock.now(),
            **fields,
        )

    async def on_setup_started(self, user_id: str, method: TwoFactorMethod) -> None:
        await self.publish(
            self._event(
                TwoFactorEventType.SETUP_STARTED,
                user_id,
                method=method.value,
            )
        )

    async def on_enabled(self, user_id: str, method: TwoFactorMethod) -> None:
        await self.publish(
            self._event(
                TwoFactorEventType.ENABLED,
                user_id,
                method=method.value,
            )
        )

    async def on_disabled(self, user_id: str) -> None:
        await self.publish(self._event(TwoFactorEventType.DISABLED, user_id))

    async def on_verified(
        self,
        user_id: str,
        method: TwoFactorMethod,
        *,
        device: DeviceInfo | None = None,
    ) -> None:
        await self.publish(
            self._event(
                TwoFactorEventType.VERIFIED,
                user_id,
                method=method.value,
                **_device_fields(device),
            )
        )

    async def on_verification_failed(
        self,
        user_id: str,
        method: TwoFactorMethod,
        reason: FailureReason,
        *,
        device: DeviceInfo | None = None,
    ) -> None:
        await self.publish(
            self._event(
                TwoFactorEventType.VERIFICATION_FAILED,
                user_id,
                method=method.value,
                success=False,
                error_code=reason.value,
                **_device_fields(device),
            )
        )

    async def on_recovery_code_used(
        self,
        user_id: str,
        remaining: int,
        *,
        device: DeviceInfo | None = None,
    ) -> None:
        await self.publish(
            self._event(
                TwoFactorEventType.RECOVERY_CODE_USED,
                user_id,
                method="recovery",
                metadata={"remaining": remaining},
                **_device_fields(device),
            )
        )

    async def on_recovery_codes_regenerated(self, user_id: str, count: int) -> None:
        await self.publish(
            self._event(
                TwoFactorEventType.RECOVERY_CODES_REGENERATED,
                user_id,
                method="recovery",
                metadata={"count": count},
            )
        )

    async def on_code_sent(
        self, user_id: str, channel: TwoFactorMethod, destination: str
    ) -> None:
        await self.publish(
            self._event(
                TwoFactorEventType.CODE_SENT,
                user_id,
                method=channel.value,
                metadata={"destination": destination},
            )
        )

    async def on_device_remembered(self, user_id: str, device_name: str | None) -> None:
        await self.publish(
            self._event(
                TwoFactorEventType.DEVICE_REMEMBERED,
                user_id,
                metadata={"device_name": device_name},
            )
        )

    async def on_rate_limited(
        self,
        user_id: str,
        retry_after: int,
        *,
        device: DeviceInfo | None = None,
    ) -> None:
        await self.publish(
            self._event(
                TwoFactorEventType.RATE_LIMITED,
                user_id,
                success=False,
                error_code="rate_limited",
                metadata={"retry_after": retry_after},
                **_device_fields(device),
            )
        )


class NullNotifier(EventNotifier):
    """Discards every event. Used when events are disabled."""

    async def publish(self, event: TwoFactorAuditEvent) -> None:
        return None


class LoggingNotifier(EventNotifier):
    """Writes each event to the ``cqrs_ddd_two_factor.notifier`` logger.

    Failures are logged at warning level, everything else at info.
    """

    def __init__(
        self, log: logging.Logger | None = None, *, clock: IClock | None = None
    ) -> None:
        super().__init__(clock=clock)
        self._log = log or logger

    async def publish(self, event: TwoFactorAuditEvent) -> None:
        level = logging.INFO if event.success else logging.WARNING
        self._log.log(
            level,
            "%s user=%s method=%s",
            event.event_type.value,
            event.user_id,
            event.method,
            extra={"two_factor_event": event.to_dict()},
        )


class MetricsNotifier(EventNotifier):
    """Counts each event in Prometheus."""

    async def publish(self, event: TwoFactorAuditEvent) -> None:
        TwoFactorMetrics.record_event(event)
        if event.event_type is TwoFactorEventType.RATE_LIMITED:
            TwoFactorMetrics.record_rate_limited()


class InMemoryNotifier(EventNotifier):
    """Keeps events in memory for tests and development.

    Example:
        ```python
        notifier = InMemoryNotifier()
        manager = TwoFactorManager(..., notifier=notifier)
        await manager.disable("user-1")
        assert notifier.types_for("user-1") == [TwoFactorEventType.DISABLED]
        ```
    """

    def __init__(self, *, clock: IClock | None = None) -> None:
        super().__init__(clock=clock)
        self.events: list[TwoFactorAuditEvent] = []
        self._by_user: dict[str, list[int]] = defaultdict(list)

    async def publish(self, event: TwoFactorAuditEvent) -> None:
        self._by_user[event.user_id].append(len(self.events))
        self.events.append(event)

    def get_events(
        self,
        user_id: str,
        *,
        event_types: list[TwoFactorEventType] | None = None,
    ) -> list[TwoFactorAuditEvent]:
        """Events for a user, oldest first."""
        events = [self.events[i] for i in self._by_user.get(user_id, [])]
        if event_types:
            events = [e for e in events if e.event_type in event_types]
        return events

    def types_for(self, user_id: str) -> list[TwoFactorEventType]:
        return [e.event_type for e in self.get_events(user_id)]

    def clear(self) -> None:
        self.events.clear()
        self._by_user.clear()


class CompositeNotifier(EventNotifier):
    """Fans every event out to several notifiers in order."""

    def __init__(
        self, notifiers: list[EventNotifier], *, clock: IClock | None = None
    ) -> None:
        if not notifiers:
            raise ValueError("At least one notifier is required")
        super().__init__(clock=clock)
        self._notifiers = notifiers

    @property
    def notifiers(self) -> list[EventNotifier]:
        return self._notifiers

    async def publish(self, event: TwoFactorAuditEvent) -> None:
        for notifier in self._notifiers:
            await notifier.publish(event)


__all__: list[str] = [
    "EventNotifier",
    "NullNotifier",
    "LoggingNotifier",
    "MetricsNotifier",
    "InMemoryNotifier",
    "CompositeNotifier",
]
