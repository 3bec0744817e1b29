"""
Read-through / write-through consistency policy for user records.

The store is authoritative and the cache holds JSON snapshots keyed by
username. Reads consult the cache first and fill it on a miss. Every write
goes to the store first; the matching cache entry is then overwritten
(update) or removed (create, delete) before control returns to the caller,
so a read that follows a write never sees the pre-write snapshot.
"""

from contextlib import nullcontext
from typing import List, Optional

from pydantic import ValidationError

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .cache.redis_cache import RedisCache
from .models import User
from .persistence.postgres import PostgresUserStore

DEFAULT_TTL_SECONDS = 3600
CACHE_TYPE = "user"


class UserCachePolicy:
    """Coordinates user store mutations with cache population and invalidation."""

    def __init__(
        self,
        store: PostgresUserStore,
        cache: RedisCache,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        metrics: Optional[MetricsCollector] = None
    ):
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.metrics = metrics
        self.logger = get_logger("users.consistency")

    async def list_users(self) -> List[User]:
        """All users, straight from the store."""
        with self._timed("list"):
            return await self.store.list()

    async def get_user(self, username: str) -> Optional[User]:
        """Fetch a user through the cache.

        Returns None when the user does not exist; misses are never cached.
        """
        cached = await self._read_cached(username)
        if cached is not None:
            self._count("cache_hits_total")
            return cached

        self._count("cache_misses_total")

        with self._timed("get"):
            user = await self.store.get_by_username(username)

        if user is not None:
            await self._write_cached(user)

        return user

    async def create_user(self, username: str, email: str) -> User:
        """Create a user, then drop any leftover entry for the username."""
        with self._timed("create"):
            user = await self.store.create(username, email)

        await self.invalidate(username)
        return user

    async def update_user(self, username: str, email: str) -> User:
        """Update a user's email, then overwrite the cached snapshot."""
        with self._timed("update"):
            user = await self.store.update_email(username, email)

        if not await self._write_cached(user):
            # Overwrite failed; make sure the old snapshot cannot be served.
            await self.invalidate(username)

        return user

    async def delete_user(self, username: str) -> None:
        """Delete a user, then remove the cached snapshot."""
        with self._timed("delete"):
            await self.store.delete(username)

        await self.invalidate(username)

    async def invalidate(self, username: str) -> bool:
        """Remove the cache entry for a username."""
        removed = await self.cache.delete(self.cache.key_for(username))
        if not removed:
            self.logger.warning("Cache invalidation failed", username=username)
        return removed

    async def _read_cached(self, username: str) -> Optional[User]:
        key = self.cache.key_for(username)
        payload = await self.cache.get(key)
        if payload is None:
            return None

        try:
            user = User.model_validate_json(payload)
        except ValidationError as e:
            self.logger.warning("Discarding undecodable cache entry", key=key, error=str(e))
            await self.cache.delete(key)
            return None

        if user.username != username:
            self.logger.warning("Discarding mismatched cache entry", key=key, cached_username=user.username)
            await self.cache.delete(key)
            return None
        return user

    async def _write_cached(self, user: User) -> bool:
        return await self.cache.set_with_expiry(
            self.cache.key_for(user.username),
            user.model_dump_json(),
            self.ttl_seconds
        )

    def _count(self, metric_name: str):
        if self.metrics:
            self.metrics.increment_counter(metric_name, cache_type=CACHE_TYPE)

    def _timed(self, operation: str):
        if self.metrics:
            return self.metrics.time_operation("store_operation_duration_seconds", operation=operation)
        return nullcontext()
