"""Tests for the Redis stores against a mocked client."""

from __future__ import annotations

import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

pytest.importorskip("redis")

from redis.exceptions import ConnectionError as RedisConnectionError  # noqa: E402

from cqrs_ddd_two_factor import (  # noqa: E402
    OtpChallenge,
    StorageError,
    TwoFactorMethod,
)
from cqrs_ddd_two_factor.persistence.redis_stores import (  # noqa: E402
    RedisOtpChallengeStore,
    RedisRateLimitStore,
)


@pytest.fixture
def redis_client():
    client = AsyncMock()
    pipeline_mock = AsyncMock()

    # Pipeline commands are buffered synchronously; only execute awaits
    pipeline_mock.zadd = MagicMock()
    pipeline_mock.expire = MagicMock()
    pipeline_mock.execute = AsyncMock()

    client.pipeline = MagicMock(return_value=pipeline_mock)
    pipeline_mock.__aenter__.return_value = pipeline_mock
    pipeline_mock.__aexit__.return_value = None
    return client


class TestRedisRateLimitStore:
    """Test sorted-set hit tracking."""

    @pytest.mark.asyncio
    async def test_hit_adds_member_with_ttl(self, redis_client, clock) -> None:
        store = RedisRateLimitStore(redis_client)
        pipe = redis_client.pipeline.return_value

        await store.hit("two_factor:verify:user-1", clock.now(), ttl_seconds=900)

        redis_client.pipeline.assert_called_once_with(transaction=True)
        key, mapping = pipe.zadd.call_args.args
        assert key == "two_factor:verify:user-1"
        assert list(mapping.values()) == [clock.now().timestamp()]
        pipe.expire.assert_called_once_with("two_factor:verify:user-1", 900)
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hits_since_prunes_and_reads(self, redis_client, clock) -> None:
        store = RedisRateLimitStore(redis_client)
        since = clock.now() - timedelta(minutes=15)
        redis_client.zrangebyscore.return_value = [
            (b"a", clock.now().timestamp() - 60),
            (b"b", clock.now().timestamp()),
        ]

        hits = await store.hits_since("k", since)

        redis_client.zremrangebyscore.assert_awaited_once_with(
            "k", "-inf", since.timestamp()
        )
        assert hits == [clock.now() - timedelta(seconds=60), clock.now()]

    @pytest.mark.asyncio
    async def test_errors_become_storage_errors(self, redis_client, clock) -> None:
        store = RedisRateLimitStore(redis_client)
        redis_client.zremrangebyscore.side_effect = RedisConnectionError("down")
        redis_client.delete.side_effect = RedisConnectionError("down")

        with pytest.raises(StorageError):
            await store.hits_since("k", clock.now())
        with pytest.raises(StorageError):
            await store.clear("k")


class TestRedisOtpChallengeStore:
    """Test JSON challenge storage."""

    @pytest.mark.asyncio
    async def test_put_sets_expiry(self, redis_client, clock) -> None:
        store = RedisOtpChallengeStore(redis_client, prefix="acme")
        challenge = OtpChallenge(
            user_id="user-1",
            code="482913",
            channel=TwoFactorMethod.EMAIL,
            destination="jane@example.com",
            created_at=clock.now(),
            expires_at=clock.now() + timedelta(minutes=5),
        )

        await store.put(challenge)

        key, payload = redis_client.set.call_args.args
        assert key == "acme:otp:user-1"
        assert json.loads(payload)["code"] == "482913"
        assert redis_client.set.call_args.kwargs == {"ex": 300}

    @pytest.mark.asyncio
    async def test_get(self, redis_client, clock) -> None:
        store = RedisOtpChallengeStore(redis_client)
        challenge = OtpChallenge(
            user_id="user-1",
            code="482913",
            channel=TwoFactorMethod.SMS,
            destination="+15551234567",
            created_at=clock.now(),
            expires_at=clock.now() + timedelta(minutes=5),
        )
        redis_client.get.return_value = json.dumps(challenge.to_dict())

        assert await store.get("user-1") == challenge
        redis_client.get.assert_awaited_once_with("two_factor:otp:user-1")

        redis_client.get.return_value = None
        assert await store.get("user-1") is None

    @pytest.mark.asyncio
    async def test_delete_failure(self, redis_client) -> None:
        store = RedisOtpChallengeStore(redis_client)
        redis_client.delete.side_effect = RedisConnectionError("down")

        with pytest.raises(StorageError, match="OTP challenge store"):
            await store.delete("user-1")

    @pytest.mark.asyncio
    async def test_consume_runs_compare_and_delete(self, redis_client) -> None:
        store = RedisOtpChallengeStore(redis_client, prefix="acme")
        redis_client.eval.return_value = 1

        assert await store.consume("user-1", "482913")

        script, numkeys, key, code = redis_client.eval.call_args.args
        assert "cjson.decode" in script
        assert 'redis.call("DEL", KEYS[1])' in script
        assert (numkeys, key, code) == (1, "acme:otp:user-1", "482913")

        redis_client.eval.return_value = 0
        assert not await store.consume("user-1", "482913")

    @pytest.mark.asyncio
    async def test_consume_failure(self, redis_client) -> None:
        store = RedisOtpChallengeStore(redis_client)
        redis_client.eval.side_effect = RedisConnectionError("down")

        with pytest.raises(StorageError, match="OTP challenge store"):
            await store.consume("user-1", "482913")
