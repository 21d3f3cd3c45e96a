"""Redis stores for short-lived two-factor state.

Rate-limit hits live in one sorted set per key (score = hit timestamp) and
outstanding email/SMS codes in one JSON string per user, both with TTLs so
Redis expires abandoned state on its own.
"""

from __future__ import annotations

import json
import logging
import math
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

try:
    from redis.exceptions import RedisError
except ImportError as e:
    raise ImportError(
        "redis is required for the Redis stores. "
        "Install with: pip install 'cqrs-ddd-two-factor[redis]'"
    ) from e

from ..exceptions import StorageError
from ..models import OtpChallenge
from ..ports import IOtpChallengeStore, IRateLimitStore

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

# Deletes the challenge only if its stored code equals ARGV[1].
_CONSUME_SCRIPT = """
local raw = redis.call("GET", KEYS[1])
if not raw then
    return 0
end
if cjson.decode(raw)["code"] ~= ARGV[1] then
    return 0
end
return redis.call("DEL", KEYS[1])
"""


class RedisRateLimitStore(IRateLimitStore):
    """
    Sliding-window hit log on Redis sorted sets.

    Members are unique per hit so identical timestamps still count twice.
    """

    def __init__(self, redis_client: Redis) -> None:
        self._redis = redis_client

    async def hit(self, key: str, at: datetime, *, ttl_seconds: int) -> None:
        member = f"{at.timestamp()}:{uuid.uuid4().hex}"
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zadd(key, {member: at.timestamp()})
                pipe.expire(key, ttl_seconds)
                await pipe.execute()
        except RedisError as e:
            logger.error("Redis rate limit hit failed: %s", e)
            raise StorageError("Rate limit store unavailable") from e

    async def hits_since(self, key: str, since: datetime) -> list[datetime]:
        cutoff = since.timestamp()
        try:
            await self._redis.zremrangebyscore(key, "-inf", cutoff)
            entries = await self._redis.zrangebyscore(
                key, f"({cutoff}", "+inf", withscores=True
            )
        except RedisError as e:
            logger.error("Redis rate limit read failed: %s", e)
            raise StorageError("Rate limit store unavailable") from e
        return [
            datetime.fromtimestamp(float(score), tz=timezone.utc)
            for _, score in entries
        ]

    async def clear(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as e:
            logger.error("Redis rate limit clear failed: %s", e)
            raise StorageError("Rate limit store unavailable") from e


class RedisOtpChallengeStore(IOtpChallengeStore):
    """
    One outstanding code per user, stored as JSON under
    ``<prefix>:otp:<user_id>`` and expiring with the code.
    """

    def __init__(self, redis_client: Redis, *, prefix: str = "two_factor") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, user_id: str) -> str:
        return f"{self._prefix}:otp:{user_id}"

    async def put(self, challenge: OtpChallenge) -> None:
        lifetime = (challenge.expires_at - challenge.created_at).total_seconds()
        ttl = max(1, math.ceil(lifetime))
        try:
            await self._redis.set(
                self._key(challenge.user_id), json.dumps(challenge.to_dict()), ex=ttl
            )
        except RedisError as e:
            logger.error("Redis OTP write failed: %s", e)
            raise StorageError("OTP challenge store unavailable") from e

    async def get(self, user_id: str) -> OtpChallenge | None:
        try:
            raw = await self._redis.get(self._key(user_id))
        except RedisError as e:
            logger.error("Redis OTP read failed: %s", e)
            raise StorageError("OTP challenge store unavailable") from e
        if not raw:
            return None
        return OtpChallenge.from_dict(json.loads(raw))

    async def delete(self, user_id: str) -> None:
        try:
            await self._redis.delete(self._key(user_id))
        except RedisError as e:
            logger.error("Redis OTP delete failed: %s", e)
            raise StorageError("OTP challenge store unavailable") from e

    async def consume(self, user_id: str, code: str) -> bool:
        try:
            deleted = await self._redis.eval(
                _CONSUME_SCRIPT, 1, self._key(user_id), code
            )
        except RedisError as e:
            logger.error("Redis OTP consume failed: %s", e)
            raise StorageError("OTP challenge store unavailable") from e
        return bool(deleted)


__all__: list[str] = ["RedisRateLimitStore", "RedisOtpChallengeStore"]
