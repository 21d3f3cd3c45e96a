"""Tests for OtpService (email/SMS codes)."""

from __future__ import annotations

import asyncio

import pytest

from cqrs_ddd_two_factor import (
    ConfigurationError,
    DeliveryChannel,
    DeliveryFailedError,
    FrozenClock,
    OtpChallenge,
    OtpChannelConfig,
    OtpCheck,
    OtpService,
    RateLimitExceededError,
    SecureRandomSource,
    TwoFactorMethod,
)
from cqrs_ddd_two_factor.memory import (
    InMemoryDeliveryProvider,
    InMemoryOtpChallengeStore,
    InMemoryRateLimitStore,
)

EMAIL = "jane@example.com"
PHONE = "+15551234567"


class YieldingChallengeStore(InMemoryOtpChallengeStore):
    """Yields to the event loop before each read and consume."""

    async def get(self, user_id: str) -> OtpChallenge | None:
        await asyncio.sleep(0)
        return await super().get(user_id)

    async def consume(self, user_id: str, code: str) -> bool:
        await asyncio.sleep(0)
        return await super().consume(user_id, code)


class CountingRandomSource(SecureRandomSource):
    """Returns 1, 2, 3... so consecutive codes differ predictably."""

    def __init__(self) -> None:
        self.calls = 0

    def randbelow(self, upper: int) -> int:
        self.calls += 1
        return self.calls % upper


@pytest.fixture
def challenge_store() -> InMemoryOtpChallengeStore:
    return InMemoryOtpChallengeStore()


@pytest.fixture
def otp(
    challenge_store: InMemoryOtpChallengeStore,
    clock: FrozenClock,
    email_provider: InMemoryDeliveryProvider,
    sms_provider: InMemoryDeliveryProvider,
) -> OtpService:
    return OtpService(
        challenge_store=challenge_store,
        send_limit_store=InMemoryRateLimitStore(),
        providers={
            TwoFactorMethod.EMAIL: email_provider,
            TwoFactorMethod.SMS: sms_provider,
        },
        channel_configs={
            TwoFactorMethod.EMAIL: OtpChannelConfig(),
            TwoFactorMethod.SMS: OtpChannelConfig(code_length=8),
        },
        clock=clock,
    )


class TestIssue:
    """Test code generation and delivery."""

    @pytest.mark.asyncio
    async def test_issue_email(
        self, otp: OtpService, email_provider: InMemoryDeliveryProvider
    ) -> None:
        """Test an email code is stored and delivered with a subject."""
        challenge = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)

        email_provider.assert_sent(EMAIL, DeliveryChannel.EMAIL)
        sent = email_provider.sent_messages[0]
        assert sent.subject == "Your verification code"
        assert sent.message == f"Your verification code is: {challenge.code}"
        assert len(challenge.code) == 6
        assert challenge.code.isdigit()

    @pytest.mark.asyncio
    async def test_issue_sms_uses_channel_config(
        self, otp: OtpService, sms_provider: InMemoryDeliveryProvider
    ) -> None:
        """Test SMS codes follow the SMS length and carry no subject."""
        challenge = await otp.issue("u1", TwoFactorMethod.SMS, PHONE)

        assert len(challenge.code) == 8
        assert sms_provider.sent_messages[0].subject is None
        assert sms_provider.last_code_for(PHONE) == challenge.code

    @pytest.mark.asyncio
    async def test_expiry_from_config(
        self, otp: OtpService, clock: FrozenClock
    ) -> None:
        """Test the challenge expires after expiry_seconds."""
        challenge = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)
        assert (challenge.expires_at - clock.now()).total_seconds() == 300

    @pytest.mark.asyncio
    async def test_new_code_replaces_previous(
        self,
        challenge_store: InMemoryOtpChallengeStore,
        clock: FrozenClock,
        email_provider: InMemoryDeliveryProvider,
    ) -> None:
        """Test only the most recent code is valid."""
        otp = OtpService(
            challenge_store=challenge_store,
            send_limit_store=InMemoryRateLimitStore(),
            providers={TwoFactorMethod.EMAIL: email_provider},
            clock=clock,
            random_source=CountingRandomSource(),
        )
        first = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)
        second = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)

        assert first.code == "000001"
        assert second.code == "000002"
        assert await otp.check("u1", first.code) is OtpCheck.INVALID
        assert await otp.verify("u1", second.code)

    @pytest.mark.asyncio
    async def test_failed_delivery_clears_code(
        self,
        otp: OtpService,
        challenge_store: InMemoryOtpChallengeStore,
        email_provider: InMemoryDeliveryProvider,
    ) -> None:
        """Test a reported failure leaves no verifiable code behind."""
        email_provider.fail_with = "mailbox unavailable"

        with pytest.raises(DeliveryFailedError) as exc_info:
            await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)

        assert await challenge_store.get("u1") is None
        assert exc_info.value.context["channel"] == "email"
        assert exc_info.value.context["destination"] != EMAIL

    @pytest.mark.asyncio
    async def test_provider_exception_is_wrapped(
        self,
        otp: OtpService,
        challenge_store: InMemoryOtpChallengeStore,
        sms_provider: InMemoryDeliveryProvider,
    ) -> None:
        """Test provider errors surface as DeliveryFailedError."""
        sms_provider.raise_error = ConnectionError("gateway down")

        with pytest.raises(DeliveryFailedError) as exc_info:
            await otp.issue("u1", TwoFactorMethod.SMS, PHONE)

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert await challenge_store.get("u1") is None

    @pytest.mark.asyncio
    async def test_missing_provider(
        self, challenge_store: InMemoryOtpChallengeStore, clock: FrozenClock
    ) -> None:
        """Test issuing on an unserved channel is a configuration error."""
        otp = OtpService(
            challenge_store=challenge_store,
            send_limit_store=InMemoryRateLimitStore(),
            providers={},
            clock=clock,
        )
        with pytest.raises(ConfigurationError, match="No delivery provider"):
            await otp.issue("u1", TwoFactorMethod.SMS, PHONE)

    @pytest.mark.asyncio
    async def test_totp_is_not_deliverable(self, otp: OtpService) -> None:
        """Test TOTP codes cannot be issued through a channel."""
        with pytest.raises(ConfigurationError, match="cannot be delivered"):
            await otp.issue("u1", TwoFactorMethod.TOTP, EMAIL)


class TestSendLimit:
    """Test the hourly send limit."""

    @pytest.fixture
    def limited(
        self,
        challenge_store: InMemoryOtpChallengeStore,
        clock: FrozenClock,
        email_provider: InMemoryDeliveryProvider,
    ) -> OtpService:
        return OtpService(
            challenge_store=challenge_store,
            send_limit_store=InMemoryRateLimitStore(),
            providers={TwoFactorMethod.EMAIL: email_provider},
            channel_configs={
                TwoFactorMethod.EMAIL: OtpChannelConfig(max_sends_per_hour=2)
            },
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_limit_reached(self, limited: OtpService) -> None:
        """Test the third send within an hour is rejected."""
        await limited.issue("u1", TwoFactorMethod.EMAIL, EMAIL)
        await limited.issue("u1", TwoFactorMethod.EMAIL, EMAIL)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await limited.issue("u1", TwoFactorMethod.EMAIL, EMAIL)

        assert exc_info.value.retry_after == 3600
        assert await limited.sends_remaining("u1", TwoFactorMethod.EMAIL) == 0

    @pytest.mark.asyncio
    async def test_limit_lifts_after_an_hour(
        self, limited: OtpService, clock: FrozenClock
    ) -> None:
        """Test sends are allowed again once the hour has passed."""
        await limited.issue("u1", TwoFactorMethod.EMAIL, EMAIL)
        await limited.issue("u1", TwoFactorMethod.EMAIL, EMAIL)

        clock.advance(minutes=61)

        await limited.issue("u1", TwoFactorMethod.EMAIL, EMAIL)
        assert await limited.sends_remaining("u1", TwoFactorMethod.EMAIL) == 1

    @pytest.mark.asyncio
    async def test_limit_is_per_user(self, limited: OtpService) -> None:
        """Test one user's sends do not affect another's."""
        await limited.issue("u1", TwoFactorMethod.EMAIL, EMAIL)
        await limited.issue("u1", TwoFactorMethod.EMAIL, EMAIL)

        await limited.issue("u2", TwoFactorMethod.EMAIL, "other@example.com")


class TestVerify:
    """Test checking and consuming codes."""

    @pytest.mark.asyncio
    async def test_verify_consumes(self, otp: OtpService) -> None:
        """Test a code verifies once."""
        challenge = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)

        assert await otp.verify("u1", challenge.code)
        assert not await otp.verify("u1", challenge.code)
        assert await otp.check("u1", challenge.code) is OtpCheck.MISSING

    @pytest.mark.asyncio
    async def test_wrong_code_keeps_challenge(self, otp: OtpService) -> None:
        """Test a wrong submission does not burn the outstanding code."""
        challenge = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)
        wrong = "999999" if challenge.code != "999999" else "000000"

        assert not await otp.verify("u1", wrong)
        assert await otp.verify("u1", challenge.code)

    @pytest.mark.asyncio
    async def test_check_does_not_consume(self, otp: OtpService) -> None:
        """Test check leaves a valid code in place."""
        challenge = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)

        assert await otp.check("u1", challenge.code) is OtpCheck.VALID
        assert await otp.check("u1", challenge.code) is OtpCheck.VALID

    @pytest.mark.asyncio
    async def test_formatted_submission(self, otp: OtpService) -> None:
        """Test separators in the submission are ignored."""
        challenge = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)
        spaced = f"{challenge.code[:3]} {challenge.code[3:]}"

        assert await otp.verify("u1", spaced)

    @pytest.mark.asyncio
    async def test_expired_code(
        self,
        otp: OtpService,
        clock: FrozenClock,
        challenge_store: InMemoryOtpChallengeStore,
    ) -> None:
        """Test codes expire at expiry_seconds and are then removed."""
        challenge = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)
        clock.advance(seconds=300)

        assert await otp.check("u1", challenge.code) is OtpCheck.EXPIRED
        assert await challenge_store.get("u1") is None

    @pytest.mark.asyncio
    async def test_valid_just_before_expiry(
        self, otp: OtpService, clock: FrozenClock
    ) -> None:
        """Test a code is still valid one second before expiry."""
        challenge = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)
        clock.advance(seconds=299)

        assert await otp.verify("u1", challenge.code)

    @pytest.mark.asyncio
    async def test_no_outstanding_code(self, otp: OtpService) -> None:
        """Test verifying without an issued code fails closed."""
        assert await otp.check("u1", "123456") is OtpCheck.MISSING
        assert not await otp.verify("u1", "123456")

    @pytest.mark.asyncio
    async def test_clear(self, otp: OtpService) -> None:
        """Test clearing drops the outstanding code."""
        challenge = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)
        await otp.clear("u1")

        assert not await otp.verify("u1", challenge.code)


class TestConsume:
    """Test atomic consumption of the outstanding code."""

    @pytest.mark.asyncio
    async def test_consume_outcomes(self, otp: OtpService) -> None:
        challenge = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)
        wrong = "999999" if challenge.code != "999999" else "000000"

        assert await otp.consume("u1", wrong) is OtpCheck.INVALID
        assert await otp.consume("u1", challenge.code) is OtpCheck.VALID
        assert await otp.consume("u1", challenge.code) is OtpCheck.MISSING

    @pytest.mark.asyncio
    async def test_concurrent_verify_has_one_winner(
        self,
        clock: FrozenClock,
        email_provider: InMemoryDeliveryProvider,
    ) -> None:
        """Test two simultaneous submissions of one code succeed once."""
        otp = OtpService(
            challenge_store=YieldingChallengeStore(),
            send_limit_store=InMemoryRateLimitStore(),
            providers={TwoFactorMethod.EMAIL: email_provider},
            clock=clock,
        )
        challenge = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)

        results = await asyncio.gather(
            otp.verify("u1", challenge.code),
            otp.verify("u1", challenge.code),
        )

        assert sorted(results) == [False, True]

    @pytest.mark.asyncio
    async def test_store_consume_requires_matching_code(
        self, challenge_store: InMemoryOtpChallengeStore, otp: OtpService
    ) -> None:
        """Test the store leaves a challenge alone when the code differs."""
        challenge = await otp.issue("u1", TwoFactorMethod.EMAIL, EMAIL)
        other = "999999" if challenge.code != "999999" else "000000"

        assert not await challenge_store.consume("u1", other)
        assert await challenge_store.get("u1") == challenge
        assert await challenge_store.consume("u1", challenge.code)
        assert not await challenge_store.consume("u1", challenge.code)
