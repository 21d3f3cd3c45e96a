"""Factory functions for common manager setups."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .config import TwoFactorConfig
from .crypto import AesGcmSecretCipher
from .manager import TwoFactorManager
from .memory import (
    ConsoleDeliveryProvider,
    InMemoryAttemptStore,
    InMemoryDeviceSessionStore,
    InMemoryOtpChallengeStore,
    InMemoryRateLimitStore,
    InMemoryRecoveryCodeStore,
    InMemoryTwoFactorAuthStore,
)
from .models import TwoFactorMethod

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from .ports import IDeliveryProvider, ISecretCipher

logger = logging.getLogger(__name__)


def create_in_memory_manager(
    config: TwoFactorConfig | None = None,
    *,
    providers: dict[TwoFactorMethod, IDeliveryProvider] | None = None,
    cipher: ISecretCipher | None = None,
    **kwargs: Any,
) -> TwoFactorManager:
    """Create a manager backed entirely by in-memory stores.

    For tests and local development. Codes are printed to the console
    unless ``providers`` is given, and secrets are encrypted with a key
    that only lives as long as the process.

    Args:
        config: Settings; defaults apply when omitted.
        providers: Delivery provider per channel.
        cipher: Secret cipher; an ephemeral AES-GCM key is used by default.
        **kwargs: Passed to :class:`TwoFactorManager` (``notifier``,
            ``clock``, ``random_source``, ``hasher``).

    Example:
        ```python
        manager = create_in_memory_manager(
            TwoFactorConfig(totp=TotpConfig(issuer="Acme")),
            notifier=InMemoryNotifier(),
        )
        ```
    """
    config = config or TwoFactorConfig()
    if providers is None:
        console = ConsoleDeliveryProvider(clock=kwargs.get("clock"))
        providers = {TwoFactorMethod.EMAIL: console, TwoFactorMethod.SMS: console}
    if cipher is None and config.security.encrypt_secrets:
        cipher = AesGcmSecretCipher.from_base64(AesGcmSecretCipher.generate_key())

    return TwoFactorManager(
        auth_store=InMemoryTwoFactorAuthStore(),
        recovery_store=InMemoryRecoveryCodeStore(),
        device_store=InMemoryDeviceSessionStore(),
        attempt_store=InMemoryAttemptStore(),
        otp_store=InMemoryOtpChallengeStore(),
        rate_limit_store=InMemoryRateLimitStore(),
        providers=providers,
        config=config,
        cipher=cipher,
        **kwargs,
    )


def create_two_factor_manager(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    providers: dict[TwoFactorMethod, IDeliveryProvider],
    config: TwoFactorConfig | None = None,
    cipher: ISecretCipher | None = None,
    redis_client: Any = None,
    **kwargs: Any,
) -> TwoFactorManager:
    """Create a production manager on SQLAlchemy, optionally with Redis.

    Durable entities go to the database. Rate-limit hits and outstanding
    email/SMS codes go to Redis when ``redis_client`` is given; otherwise
    they stay in process memory, which only works with a single worker.

    Args:
        session_factory: ``async_sessionmaker`` bound to the database.
        providers: Delivery provider per channel.
        config: Settings; defaults apply when omitted.
        cipher: Secret cipher. Required while ``encrypt_secrets`` is on.
        redis_client: ``redis.asyncio.Redis`` client.
        **kwargs: Passed to :class:`TwoFactorManager`.

    Example:
        ```python
        manager = create_two_factor_manager(
            async_sessionmaker(engine, expire_on_commit=False),
            providers={TwoFactorMethod.EMAIL: ses_provider},
            cipher=AesGcmSecretCipher.from_base64(settings.two_factor_key),
            redis_client=Redis.from_url(settings.redis_url),
        )
        ```
    """
    from .persistence import (
        SQLAlchemyAttemptStore,
        SQLAlchemyDeviceSessionStore,
        SQLAlchemyRecoveryCodeStore,
        SQLAlchemyTwoFactorAuthStore,
    )

    config = config or TwoFactorConfig()
    if redis_client is not None:
        from .persistence.redis_stores import (
            RedisOtpChallengeStore,
            RedisRateLimitStore,
        )

        otp_store: Any = RedisOtpChallengeStore(redis_client, prefix=config.key_prefix)
        rate_limit_store: Any = RedisRateLimitStore(redis_client)
    else:
        logger.warning(
            "No Redis client given; rate limits and one-time codes are kept "
            "in process memory"
        )
        otp_store = InMemoryOtpChallengeStore()
        rate_limit_store = InMemoryRateLimitStore()

    return TwoFactorManager(
        auth_store=SQLAlchemyTwoFactorAuthStore(session_factory),
        recovery_store=SQLAlchemyRecoveryCodeStore(session_factory),
        device_store=SQLAlchemyDeviceSessionStore(session_factory),
        attempt_store=SQLAlchemyAttemptStore(session_factory),
        otp_store=otp_store,
        rate_limit_store=rate_limit_store,
        providers=providers,
        config=config,
        cipher=cipher,
        **kwargs,
    )


__all__: list[str] = ["create_in_memory_manager", "create_two_factor_manager"]
