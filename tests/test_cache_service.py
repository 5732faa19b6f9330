import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from errors import CacheUnavailableError
from services.cache_service import (
    InMemoryOTPCache,
    RedisOTPCache,
    build_otp_cache,
    otp_cache_key,
)


class FakeRedisClient:
    def __init__(self, value=None, error=None):
        self.value = value
        self.error = error
        self.calls = []

    async def get(self, key):
        self.calls.append(("get", key))
        if self.error:
            raise self.error
        return self.value

    async def set(self, key, value, ex=None):
        self.calls.append(("set", key, value, ex))
        if self.error:
            raise self.error

    async def delete(self, key):
        self.calls.append(("delete", key))
        if self.error:
            raise self.error


@pytest.fixture
def redis_cache():
    # from_url does not connect until the first command
    return RedisOTPCache("redis://localhost:6399/0")


def test_cache_key_layout():
    assert otp_cache_key("user@x.com", "login") == "otp:user@x.com:login"


async def test_in_memory_cache_round_trip(clock):
    cache = InMemoryOTPCache(clock)

    await cache.set("user@x.com", "login", {"id": 1, "hash": "h"}, 600)

    assert await cache.get("user@x.com", "login") == {"id": 1, "hash": "h"}
    assert await cache.get("user@x.com", "reset") is None


async def test_in_memory_cache_honours_ttl(clock):
    cache = InMemoryOTPCache(clock)
    await cache.set("user@x.com", "login", {"id": 1, "hash": "h"}, 600)

    clock.advance(seconds=599)
    assert await cache.get("user@x.com", "login") is not None

    clock.advance(seconds=1)
    assert await cache.get("user@x.com", "login") is None


async def test_in_memory_cache_delete(clock):
    cache = InMemoryOTPCache(clock)
    await cache.set("user@x.com", "login", {"id": 1, "hash": "h"}, 600)

    await cache.delete("user@x.com", "login")
    await cache.delete("user@x.com", "login")

    assert await cache.get("user@x.com", "login") is None


async def test_redis_cache_decodes_json(redis_cache):
    redis_cache.client = FakeRedisClient(value='{"id": 7, "hash": "h"}')

    assert await redis_cache.get("user@x.com", "login") == {"id": 7, "hash": "h"}
    assert redis_cache.client.calls == [("get", "otp:user@x.com:login")]


async def test_redis_cache_discards_unreadable_entry(redis_cache):
    redis_cache.client = FakeRedisClient(value="not-json")

    assert await redis_cache.get("user@x.com", "login") is None


async def test_redis_cache_sets_ttl(redis_cache):
    redis_cache.client = FakeRedisClient()

    await redis_cache.set("user@x.com", "login", {"id": 7, "hash": "h"}, 600)

    assert redis_cache.client.calls == [
        ("set", "otp:user@x.com:login", '{"id": 7, "hash": "h"}', 600)
    ]


async def test_redis_timeout_is_reported_as_unavailable(redis_cache):
    redis_cache.client = FakeRedisClient(error=RedisTimeoutError("Timeout reading from socket"))

    with pytest.raises(CacheUnavailableError):
        await redis_cache.get("user@x.com", "login")


async def test_redis_connection_error_is_reported_as_unavailable(redis_cache):
    redis_cache.client = FakeRedisClient(error=RedisConnectionError("refused"))

    with pytest.raises(CacheUnavailableError):
        await redis_cache.set("user@x.com", "login", {"id": 1, "hash": "h"}, 600)
    with pytest.raises(CacheUnavailableError):
        await redis_cache.delete("user@x.com", "login")


def test_build_without_url_uses_in_memory_cache():
    assert isinstance(build_otp_cache(""), InMemoryOTPCache)


def test_build_with_url_uses_redis():
    assert isinstance(build_otp_cache("redis://localhost:6399/0"), RedisOTPCache)
