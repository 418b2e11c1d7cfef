"""
Redis-backed key-value store.
"""

from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..errors import PreconditionError, StoreUnavailableError
from ..logging import get_logger
from .base import KeyValueStore


class RedisStore(KeyValueStore):
    """Key-value store over redis.asyncio using SETEX, INCR and SET NX."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        socket_timeout: float = 5.0,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.logger = get_logger("querycache.store.redis")
        self.redis: Optional[redis.Redis] = client

    async def start(self):
        """Connect to Redis and verify the connection."""
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                decode_responses=False,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
                health_check_interval=30
            )

        try:
            await self.redis.ping()
        except (RedisError, OSError) as e:
            self.logger.error("Failed to start Redis store", error=str(e))
            raise StoreUnavailableError(str(e), details={"operation": "ping"}) from e

        self.logger.info("Redis store started")

    async def stop(self):
        """Close the Redis connection."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis store stopped")

    async def get(self, key: str) -> Optional[bytes]:
        client = self._client()
        try:
            value = await client.get(key)
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(str(e), details={"operation": "get", "key": key}) from e
        if isinstance(value, str):
            value = value.encode("utf-8")
        return value

    async def set(self, key: str, value: bytes) -> None:
        client = self._client()
        try:
            await client.set(key, value)
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(str(e), details={"operation": "set", "key": key}) from e

    async def set_with_expiry(self, key: str, value: bytes, ttl_seconds: int) -> None:
        client = self._client()
        try:
            await client.setex(key, ttl_seconds, value)
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(str(e), details={"operation": "setex", "key": key}) from e

    async def increment(self, key: str) -> int:
        client = self._client()
        try:
            return int(await client.incr(key))
        except (RedisError, OSError) as e:
            # INCR on a non-integer value is a ResponseError, also a RedisError
            raise StoreUnavailableError(str(e), details={"operation": "incr", "key": key}) from e

    async def set_if_absent(self, key: str, value: bytes) -> bool:
        client = self._client()
        try:
            return bool(await client.set(key, value, nx=True))
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(str(e), details={"operation": "setnx", "key": key}) from e

    async def ping(self) -> bool:
        """Check Redis health."""
        try:
            return bool(await self._client().ping())
        except (RedisError, OSError):
            return False

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise PreconditionError("Redis store not started. Call start() first.")
        return self.redis
