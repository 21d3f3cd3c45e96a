"""Sliding-window rate limiting for verification attempts.

A key may accumulate ``max_attempts`` hits within ``decay_minutes``. Hits
older than the window stop counting individually, so the limit lifts
gradually rather than at a fixed boundary.
"""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import TYPE_CHECKING

from .clock import SystemClock
from .config import RateLimitConfig
from .exceptions import RateLimitExceededError

if TYPE_CHECKING:
    from datetime import datetime

    from .ports import IClock, IRateLimitStore

logger = logging.getLogger(__name__)


class RateLimiter:
    """Counts hits per key and rejects once the window is full.

    Concurrent requests may both pass the check before either records a
    hit; the limiter accepts that under-count instead of serializing
    access.

    Example:
        ```python
        limiter = RateLimiter(store=InMemoryRateLimitStore())
        key = limiter.key_for("user-1", "203.0.113.7")

        await limiter.check(key)  # raises RateLimitExceededError when full
        await limiter.record_attempt(key)
        ```
    """

    def __init__(
        self,
        *,
        store: IRateLimitStore,
        config: RateLimitConfig | None = None,
        clock: IClock | None = None,
        prefix: str = "two_factor",
    ) -> None:
        self.store = store
        self.config = config or RateLimitConfig()
        self.clock = clock or SystemClock()
        self.prefix = prefix

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.config.decay_minutes)

    def key_for(
        self,
        user_id: str | None,
        ip_address: str | None = None,
        *,
        scope: str = "verify",
    ) -> str:
        """Throttling key for a user/IP pair, or IP alone for anonymous flows."""
        ip = ip_address or "unknown"
        if user_id is None:
            return f"{self.prefix}:{scope}:ip:{ip}"
        return f"{self.prefix}:{scope}:{user_id}:{ip}"

    async def _window_hits(self, key: str) -> tuple[list[datetime], datetime]:
        now = self.clock.now()
        hits = await self.store.hits_since(key, now - self.window)
        return hits, now

    async def attempts(self, key: str) -> int:
        hits, _ = await self._window_hits(key)
        return len(hits)

    async def remaining(self, key: str) -> int:
        if not self.config.enabled:
            return self.config.max_attempts
        return max(0, self.config.max_attempts - await self.attempts(key))

    async def is_limited(self, key: str) -> bool:
        if not self.config.enabled:
            return False
        return await self.attempts(key) >= self.config.max_attempts

    async def retry_after(self, key: str) -> int:
        """Seconds until enough hits age out to allow another attempt."""
        if not self.config.enabled:
            return 0
        hits, now = await self._window_hits(key)
        excess = len(hits) - self.config.max_attempts
        if excess < 0:
            return 0
        # the oldest hit whose expiry brings the count back under the limit
        release_at = hits[excess] + self.window
        return max(1, math.ceil((release_at - now).total_seconds()))

    async def check(self, key: str) -> None:
        """Raise when the key is limited.

        Raises:
            RateLimitExceededError: Carrying ``retry_after`` in seconds.
        """
        if await self.is_limited(key):
            retry_after = await self.retry_after(key)
            logger.warning("Rate limit reached, retry in %ss", retry_after)
            raise RateLimitExceededError(
                retry_after=retry_after,
                context={"retry_after": retry_after},
            )

    async def record_attempt(self, key: str) -> None:
        if not self.config.enabled:
            return
        await self.store.hit(
            key, self.clock.now(), ttl_seconds=self.config.decay_seconds
        )

    async def clear(self, key: str) -> None:
        await self.store.clear(key)


__all__: list[str] = ["RateLimiter"]
