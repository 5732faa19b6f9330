import json
import logging
from datetime import datetime, timedelta
from typing import Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config import REDIS_SOCKET_TIMEOUT_SECONDS
from database import utcnow
from errors import CacheUnavailableError

logger = logging.getLogger("maapaap_api.cache")


def otp_cache_key(identifier: str, purpose: str) -> str:
    return f"otp:{identifier}:{purpose}"


class RedisOTPCache:
    """Redis-backed shadow of the most recently issued OTP per identifier.

    Every Redis failure (including socket timeouts) is raised as
    CacheUnavailableError so the OTP store can fall back to the database.
    """

    def __init__(self, redis_url: str, socket_timeout: float = REDIS_SOCKET_TIMEOUT_SECONDS):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    async def get(self, identifier: str, purpose: str) -> dict | None:
        try:
            raw = await self.client.get(otp_cache_key(identifier, purpose))
        except RedisError as e:
            raise CacheUnavailableError(str(e)) from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding unreadable OTP cache entry for identifier={identifier}")
            return None

    async def set(self, identifier: str, purpose: str, value: dict, ttl_seconds: int) -> None:
        try:
            await self.client.set(
                otp_cache_key(identifier, purpose), json.dumps(value), ex=max(1, ttl_seconds)
            )
        except RedisError as e:
            raise CacheUnavailableError(str(e)) from e

    async def delete(self, identifier: str, purpose: str) -> None:
        try:
            await self.client.delete(otp_cache_key(identifier, purpose))
        except RedisError as e:
            raise CacheUnavailableError(str(e)) from e

    async def close(self) -> None:
        await self.client.aclose()


class InMemoryOTPCache:
    """Process-local cache used when no REDIS_URL is configured."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._entries: dict[str, tuple[dict, datetime]] = {}

    async def get(self, identifier: str, purpose: str) -> dict | None:
        key = otp_cache_key(identifier, purpose)
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self.clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, identifier: str, purpose: str, value: dict, ttl_seconds: int) -> None:
        expires_at = self.clock() + timedelta(seconds=ttl_seconds)
        self._entries[otp_cache_key(identifier, purpose)] = (dict(value), expires_at)

    async def delete(self, identifier: str, purpose: str) -> None:
        self._entries.pop(otp_cache_key(identifier, purpose), None)

    async def close(self) -> None:
        self._entries.clear()


def build_otp_cache(redis_url: str, clock: Callable[[], datetime] = utcnow):
    if redis_url:
        return RedisOTPCache(redis_url)
    logger.warning("REDIS_URL is not set; using in-process OTP cache")
    return InMemoryOTPCache(clock)
