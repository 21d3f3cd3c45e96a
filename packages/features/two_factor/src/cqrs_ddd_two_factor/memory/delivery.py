"""Delivery providers for tests and local development."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..clock import SystemClock
from ..delivery import DeliveryChannel, DeliveryRecord
from ..exceptions import DeliveryFailedError
from ..formatting import mask_destination
from ..ports import IDeliveryProvider

if TYPE_CHECKING:
    from ..ports import IClock

logger = logging.getLogger(__name__)

_DIGITS = re.compile(r"\b\d{4,10}\b")


@dataclass
class SentCode:
    """Record of a delivered message for test assertions."""

    destination: str
    message: str
    channel: DeliveryChannel
    subject: str | None = None


class InMemoryDeliveryProvider(IDeliveryProvider):
    """
    Test double (Fake) that stores messages in a list for assertions.

    Set ``fail_with`` to make every send report a failed delivery, or
    ``raise_error`` to make it raise. Records are stamped with ``clock``.
    """

    def __init__(self, *, clock: IClock | None = None) -> None:
        self.clock = clock or SystemClock()
        self.sent_messages: list[SentCode] = []
        self.fail_with: str | None = None
        self.raise_error: Exception | None = None

    async def send(
        self,
        destination: str,
        message: str,
        *,
        channel: DeliveryChannel,
        subject: str | None = None,
    ) -> DeliveryRecord:
        if self.raise_error is not None:
            raise self.raise_error
        if self.fail_with is not None:
            return DeliveryRecord.failed(
                destination,
                channel,
                error=self.fail_with,
                sent_at=self.clock.now(),
            )
        self.sent_messages.append(SentCode(destination, message, channel, subject))
        return DeliveryRecord.sent(
            destination, channel, provider_id="test-id", sent_at=self.clock.now()
        )

    def assert_sent(
        self,
        destination: str,
        channel: DeliveryChannel,
        count: int = 1,
    ) -> None:
        """Helper for test assertions."""
        matches = [
            m
            for m in self.sent_messages
            if m.destination == destination and m.channel == channel
        ]
        if len(matches) != count:
            raise AssertionError(
                f"Expected {count} messages to {destination} via {channel.value}, "
                f"but found {len(matches)}."
            )

    def last_code_for(self, destination: str) -> str:
        """The numeric code in the most recent message to ``destination``."""
        for sent in reversed(self.sent_messages):
            if sent.destination != destination:
                continue
            match = _DIGITS.search(sent.message)
            if match:
                return match.group(0)
        raise AssertionError(f"No code was sent to {destination}")

    def clear(self) -> None:
        self.sent_messages.clear()
        self.fail_with = None
        self.raise_error = None


class ConsoleDeliveryProvider(IDeliveryProvider):
    """
    Development adapter that prints codes to the console.

    The message (and therefore the code) only goes to stdout; the log line
    carries the masked destination.
    """

    def __init__(
        self, output_to_stdout: bool = True, *, clock: IClock | None = None
    ) -> None:
        self.output_to_stdout = output_to_stdout
        self.clock = clock or SystemClock()

    async def send(
        self,
        destination: str,
        message: str,
        *,
        channel: DeliveryChannel,
        subject: str | None = None,
    ) -> DeliveryRecord:
        if not destination:
            raise DeliveryFailedError("No destination given")

        logger.info(
            "Console delivery via %s to %s",
            channel.value,
            mask_destination(destination),
        )
        if self.output_to_stdout:
            output = [
                "═" * 50,
                f"TWO-FACTOR CODE VIA {channel.value.upper()}",
                f"To:      {destination}",
                f"Subject: {subject or '(No Subject)'}",
                f"Body:    {message}",
                "═" * 50,
            ]
            print("\n".join(output))

        return DeliveryRecord.sent(
            destination,
            channel,
            provider_id="console-debug",
            sent_at=self.clock.now(),
        )


__all__: list[str] = [
    "SentCode",
    "InMemoryDeliveryProvider",
    "ConsoleDeliveryProvider",
]
