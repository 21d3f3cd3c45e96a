"""Email/SMS one-time code service.

This service generates, stores and checks numeric codes; the actual sending
is delegated to an ``IDeliveryProvider`` supplied by the application.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from .clock import SystemClock
from .codes import codes_equal, generate_numeric_code
from .config import OtpChannelConfig, RateLimitConfig
from .delivery import DeliveryChannel
from .entropy import SecureRandomSource
from .exceptions import ConfigurationError, DeliveryFailedError
from .formatting import mask_destination
from .models import OtpChallenge, TwoFactorMethod
from .observability.metrics import TwoFactorMetrics
from .rate_limit import RateLimiter

if TYPE_CHECKING:
    from .ports import (
        IClock,
        IDeliveryProvider,
        IOtpChallengeStore,
        IRandomSource,
        IRateLimitStore,
    )

logger = logging.getLogger(__name__)


class OtpCheck(str, Enum):
    """Outcome of comparing a submission with the outstanding code."""

    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"
    MISSING = "missing"


class OtpService:
    """Email and SMS one-time codes.

    One outstanding code per user; issuing a new code replaces the previous
    one. Codes are single-use and expire after ``expiry_seconds``.

    Example:
        ```python
        otp = OtpService(
            challenge_store=InMemoryOtpChallengeStore(),
            send_limit_store=InMemoryRateLimitStore(),
            providers={TwoFactorMethod.EMAIL: InMemoryDeliveryProvider()},
        )

        await otp.issue("user-1", TwoFactorMethod.EMAIL, "jane@acme.test")
        if await otp.verify("user-1", "123456"):
            print("Verified!")
        ```
    """

    def __init__(
        self,
        *,
        challenge_store: IOtpChallengeStore,
        send_limit_store: IRateLimitStore,
        providers: dict[TwoFactorMethod, IDeliveryProvider],
        channel_configs: dict[TwoFactorMethod, OtpChannelConfig] | None = None,
        clock: IClock | None = None,
        random_source: IRandomSource | None = None,
        prefix: str = "two_factor",
    ) -> None:
        """Initialize the OTP service.

        Args:
            challenge_store: Storage for the outstanding code per user.
            send_limit_store: Hit store backing the per-user hourly send limit.
            providers: Delivery provider per channel (EMAIL and/or SMS).
            channel_configs: Per-channel settings; defaults apply when omitted.
            clock: Time source for expiry.
            random_source: Randomness for code generation.
            prefix: Key prefix for send-limit keys.
        """
        self.challenge_store = challenge_store
        self.send_limit_store = send_limit_store
        self.providers = providers
        self.channel_configs = channel_configs or {}
        self.clock = clock or SystemClock()
        self.random_source = random_source or SecureRandomSource()
        self.prefix = prefix

    def config_for(self, channel: TwoFactorMethod) -> OtpChannelConfig:
        if not channel.is_deliverable:
            raise ConfigurationError(f"{channel.value} codes cannot be delivered")
        return self.channel_configs.get(channel) or OtpChannelConfig()

    def _send_limiter(self, channel: TwoFactorMethod) -> RateLimiter:
        config = self.config_for(channel)
        return RateLimiter(
            store=self.send_limit_store,
            config=RateLimitConfig(
                max_attempts=config.max_sends_per_hour, decay_minutes=60
            ),
            clock=self.clock,
            prefix=self.prefix,
        )

    def _provider_for(self, channel: TwoFactorMethod) -> IDeliveryProvider:
        provider = self.providers.get(channel)
        if provider is None:
            raise ConfigurationError(
                f"No delivery provider configured for {channel.value}"
            )
        return provider

    async def issue(
        self,
        user_id: str,
        channel: TwoFactorMethod,
        destination: str,
    ) -> OtpChallenge:
        """Generate, store and deliver a fresh code.

        Returns:
            The stored challenge (useful for testing; never log its code).

        Raises:
            RateLimitExceededError: If the hourly send limit is reached.
            DeliveryFailedError: If the provider failed. The code has been
                cleared so it can never be verified.
            ConfigurationError: If no provider serves the channel.
        """
        config = self.config_for(channel)
        provider = self._provider_for(channel)
        limiter = self._send_limiter(channel)
        send_key = limiter.key_for(user_id, channel.value, scope="send")
        await limiter.check(send_key)

        now = self.clock.now()
        challenge = OtpChallenge(
            user_id=user_id,
            code=generate_numeric_code(
                config.code_length, random_source=self.random_source
            ),
            channel=channel,
            destination=destination,
            expires_at=now + timedelta(seconds=config.expiry_seconds),
            created_at=now,
        )
        await self.challenge_store.put(challenge)
        await limiter.record_attempt(send_key)

        message = config.message_template.format(code=challenge.code)
        masked = mask_destination(destination)
        try:
            record = await provider.send(
                destination,
                message,
                channel=DeliveryChannel(channel.value),
                subject=config.subject if channel is TwoFactorMethod.EMAIL else None,
            )
        except DeliveryFailedError:
            await self.challenge_store.delete(user_id)
            TwoFactorMetrics.record_code_sent(channel.value, succeeded=False)
            raise
        except Exception as e:
            await self.challenge_store.delete(user_id)
            TwoFactorMetrics.record_code_sent(channel.value, succeeded=False)
            logger.warning(
                "Delivery of %s code to %s raised: %s", channel.value, masked, e
            )
            raise DeliveryFailedError(
                context={"channel": channel.value, "destination": masked}
            ) from e

        if not record.succeeded:
            await self.challenge_store.delete(user_id)
            TwoFactorMetrics.record_code_sent(channel.value, succeeded=False)
            logger.warning(
                "Delivery of %s code to %s failed: %s",
                channel.value,
                masked,
                record.error,
            )
            raise DeliveryFailedError(
                context={"channel": channel.value, "destination": masked}
            )

        TwoFactorMetrics.record_code_sent(channel.value, succeeded=True)
        logger.info("Sent %s code to %s", channel.value, masked)
        return challenge

    async def _compare(
        self, user_id: str, code: str
    ) -> tuple[OtpCheck, OtpChallenge | None]:
        challenge = await self.challenge_store.get(user_id)
        if challenge is None:
            return OtpCheck.MISSING, None
        if challenge.is_expired(self.clock.now()):
            await self.challenge_store.delete(user_id)
            return OtpCheck.EXPIRED, challenge
        if codes_equal(challenge.code, code):
            return OtpCheck.VALID, challenge
        return OtpCheck.INVALID, challenge

    async def check(self, user_id: str, code: str) -> OtpCheck:
        """Compare without consuming. Expired codes are removed."""
        result, _ = await self._compare(user_id, code)
        return result

    async def consume(self, user_id: str, code: str) -> OtpCheck:
        """Check ``code`` and, if valid, delete it in one store operation.

        When concurrent submissions race, only one sees ``VALID``; the
        others see ``MISSING``.
        """
        result, challenge = await self._compare(user_id, code)
        if result is not OtpCheck.VALID or challenge is None:
            return result
        if await self.challenge_store.consume(user_id, challenge.code):
            return OtpCheck.VALID
        return OtpCheck.MISSING

    async def verify(self, user_id: str, code: str) -> bool:
        """Check and consume the outstanding code. Fails closed."""
        return await self.consume(user_id, code) is OtpCheck.VALID

    async def clear(self, user_id: str) -> None:
        await self.challenge_store.delete(user_id)

    async def sends_remaining(self, user_id: str, channel: TwoFactorMethod) -> int:
        limiter = self._send_limiter(channel)
        key = limiter.key_for(user_id, channel.value, scope="send")
        return await limiter.remaining(key)


__all__: list[str] = ["OtpCheck", "OtpService"]
