"""
Redis caching layer for the User Service.
"""

from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from shared.logging import get_logger
from shared.errors import CacheUnavailableError


class RedisCache:
    """Best-effort Redis cache for user snapshots.

    ``get`` reports any failure as a miss; ``set_with_expiry`` and ``delete``
    report failures as ``False``. Nothing raised by the transport ever reaches
    the caller.
    """

    def __init__(self, redis_url: str, key_prefix: str = "", client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.logger = get_logger("users.cache.redis")
        self.redis: Optional[redis.Redis] = client

    async def start(self):
        """Start the Redis cache.

        An unreachable server is logged and tolerated; the client reconnects
        lazily on the next command.
        """
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

        if await self.health_check():
            self.logger.info("Redis cache started")
        else:
            self.logger.warning("Redis cache unreachable at startup, serving from store only")

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            try:
                await self.redis.aclose()
            except (RedisError, OSError) as e:
                self.logger.warning("Error closing Redis cache", error=str(e))
            self.redis = None
            self.logger.info("Redis cache stopped")

    def key_for(self, username: str) -> str:
        """Cache key for a username."""
        return f"{self.key_prefix}{username}"

    async def _call(self, command: str, *args) -> Any:
        if self.redis is None:
            raise CacheUnavailableError("Redis cache is not started")

        # decode_responses=True raises UnicodeDecodeError on non-UTF-8 values
        try:
            return await getattr(self.redis, command)(*args)
        except (RedisError, OSError, UnicodeDecodeError) as e:
            raise CacheUnavailableError(str(e), {"command": command})

    async def get(self, key: str) -> Optional[str]:
        """Get a cached value, or None on miss or failure."""
        try:
            value = await self._call("get", key)
        except CacheUnavailableError as e:
            self.logger.error("Error reading cache", key=key, error=e.message)
            return None

        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Cache a value with a TTL."""
        try:
            await self._call("setex", key, ttl_seconds, value)
        except CacheUnavailableError as e:
            self.logger.error("Error writing cache", key=key, error=e.message)
            return False

        self.logger.debug("Cached value", key=key, ttl=ttl_seconds)
        return True

    async def delete(self, key: str) -> bool:
        """Remove a cached value."""
        try:
            await self._call("delete", key)
        except CacheUnavailableError as e:
            self.logger.error("Error deleting cache entry", key=key, error=e.message)
            return False

        self.logger.debug("Deleted cache entry", key=key)
        return True

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self._call("ping")
            return True
        except CacheUnavailableError:
            return False
