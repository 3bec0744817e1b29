"""
User service: CRUD over user records with a Redis read-through cache.
"""

from typing import Dict, List, Optional

from fastapi import Response, status

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import NotFoundError
from shared.tracing import add_span_attributes, add_span_event, trace_function

from .cache.redis_cache import RedisCache
from .consistency import UserCachePolicy
from .models import User, UserCreateRequest, UserUpdateRequest
from .persistence.postgres import PostgresUserStore

SERVICE_NAME = "users"
DEFAULT_PORT = 6000


class UsersService(BaseService):
    """User service implementation.

    Store and cache handles are created once per service, opened in the
    application lifespan and closed on shutdown. Both can be injected, which
    is how the tests substitute in-memory doubles.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        store: Optional[PostgresUserStore] = None,
        cache: Optional[RedisCache] = None
    ):
        super().__init__(SERVICE_NAME, DEFAULT_PORT, config=config)

        self.store = store or PostgresUserStore(
            self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool_size,
            max_size=self.config.postgres_max_pool_size,
            command_timeout=self.config.postgres_command_timeout,
            reset_schema=self.config.reset_schema_on_start
        )
        self.cache = cache or RedisCache(
            self.config.redis_url,
            key_prefix=self.config.cache_key_prefix
        )
        self.policy = UserCachePolicy(
            self.store,
            self.cache,
            ttl_seconds=self.config.cache_ttl_seconds,
            metrics=self.metrics
        )

        self._setup_users_routes()

    def _setup_users_routes(self):
        """Set up user routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Hello World!",
                "version": "1.0.0",
                "capabilities": ["persistence", "caching", "tracing"]
            }

        @self.app.get("/users", response_model=List[User])
        @trace_function("get_all_users")
        async def get_all_users():
            """List all users."""
            users = await self.policy.list_users()
            add_span_attributes(user_count=len(users))
            return users

        @self.app.get("/user/{username}", response_model=User)
        @trace_function("get_user_by_username", span_args=("username",))
        async def get_user_by_username(username: str):
            """Get a user, served from cache when possible."""
            user = await self.policy.get_user(username)
            if user is None:
                raise NotFoundError("User not found", {"username": username})
            return user

        @self.app.post("/user", response_model=User, status_code=status.HTTP_201_CREATED)
        @trace_function("create_user")
        async def create_user(request: UserCreateRequest):
            """Create a user."""
            add_span_attributes(username=request.username, email=request.email)
            user = await self.policy.create_user(request.username, request.email)
            self._log_business_event("user_created", username=user.username)
            return user

        @self.app.put("/user/{username}", response_model=User)
        @trace_function("update_user", span_args=("username",))
        async def update_user(username: str, request: UserUpdateRequest):
            """Update a user's email."""
            add_span_attributes(new_email=request.email)
            user = await self.policy.update_user(username, request.email)
            self._log_business_event("user_updated", username=username)
            return user

        @self.app.delete("/user/{username}", status_code=status.HTTP_204_NO_CONTENT)
        @trace_function("delete_user", span_args=("username",))
        async def delete_user(username: str):
            """Delete a user."""
            await self.policy.delete_user(username)
            self._log_business_event("user_deleted", username=username)
            return Response(status_code=status.HTTP_204_NO_CONTENT)

    def _log_business_event(self, event_type: str, **kwargs):
        """Log business event with full context."""
        self.logger.info("Business event", event_type=event_type, **kwargs)
        self.metrics.record_business_event(event_type)
        add_span_event("business_event", event_type=event_type, **kwargs)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check user service dependencies."""
        return {
            "postgres": "ok" if await self.store.health_check() else "error",
            "redis": "ok" if await self.cache.health_check() else "error",
        }

    async def start(self):
        """Start user service components.

        The store is a hard dependency and fails boot; the cache is not.
        """
        await self.store.start()
        await self.cache.start()

        self.logger.info("Users service started", port=self.config.port)

    async def stop(self):
        """Stop user service components."""
        await self.cache.stop()
        await self.store.stop()

        self.logger.info("Users service stopped")


def create_app():
    """Create user service application."""
    service = UsersService()
    return service.app


if __name__ == "__main__":
    service = UsersService()
    service.run()
