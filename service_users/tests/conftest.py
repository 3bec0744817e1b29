"""
Shared fixtures for User Service tests.
"""

from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from redis.exceptions import ConnectionError as RedisConnectionError

from shared.config import get_config
from shared.errors import ConstraintViolationError, NotFoundError
from service_users.app.cache.redis_cache import RedisCache
from service_users.app.main import UsersService
from service_users.app.models import User


class FakeRedis:
    """In-memory stand-in for the redis.asyncio client."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.calls: List[tuple] = []
        self.closed = False

    async def get(self, key):
        self.calls.append(("get", key))
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.calls.append(("setex", key, ttl))
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        self.calls.append(("delete",) + keys)
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True


class BrokenRedis:
    """Client whose every command fails as if the server were down."""

    def __init__(self):
        self.calls: List[str] = []

    def _fail(self, command):
        self.calls.append(command)
        raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    async def get(self, *args):
        self._fail("get")

    async def setex(self, *args):
        self._fail("setex")

    async def delete(self, *args):
        self._fail("delete")

    async def ping(self):
        self._fail("ping")

    async def aclose(self):
        return None


class InMemoryUserStore:
    """Dict-backed double with the PostgresUserStore interface."""

    def __init__(self):
        self.users: Dict[str, str] = {}
        self.started = False
        self.reads: List[str] = []

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False

    async def list(self) -> List[User]:
        return [User(username=username, email=email) for username, email in self.users.items()]

    async def get_by_username(self, username: str) -> Optional[User]:
        self.reads.append(username)
        if username not in self.users:
            return None
        return User(username=username, email=self.users[username])

    async def create(self, username: str, email: str) -> User:
        if username in self.users:
            raise ConstraintViolationError(
                'duplicate key value violates unique constraint "users_username_key"'
            )
        self.users[username] = email
        return User(username=username, email=email)

    async def update_email(self, username: str, email: str) -> User:
        if username not in self.users:
            raise NotFoundError("User not found", {"username": username})
        self.users[username] = email
        return User(username=username, email=email)

    async def delete(self, username: str) -> None:
        if self.users.pop(username, None) is None:
            raise NotFoundError("User not found", {"username": username})

    async def health_check(self) -> bool:
        return True


@pytest.fixture
def store():
    """In-memory user store."""
    return InMemoryUserStore()


@pytest.fixture
def fake_redis():
    """Working in-memory Redis client."""
    return FakeRedis()


@pytest.fixture
def broken_redis():
    """Redis client that always fails."""
    return BrokenRedis()


@pytest.fixture
def cache(fake_redis):
    """RedisCache over the in-memory client."""
    return RedisCache("redis://localhost:6379/0", key_prefix="user:", client=fake_redis)


@pytest.fixture
def config():
    """Service configuration for tests."""
    return get_config("users", 6000, env="test", enable_tracing=False)


@pytest.fixture
def service(config, store, cache):
    """UsersService wired to in-memory store and cache."""
    return UsersService(config=config, store=store, cache=cache)


@pytest.fixture
def client(service):
    """Test client with the application lifespan running."""
    with TestClient(service.app) as test_client:
        yield test_client


@pytest.fixture
def degraded_client(config, store, broken_redis):
    """Test client whose cache backend is unreachable."""
    service = UsersService(
        config=config,
        store=store,
        cache=RedisCache("redis://localhost:6379/0", key_prefix="user:", client=broken_redis)
    )
    with TestClient(service.app) as test_client:
        yield test_client


@pytest.fixture(scope="session")
def _span_exporter():
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return exporter


@pytest.fixture
def span_exporter(_span_exporter):
    """In-memory span exporter, cleared for each test."""
    _span_exporter.clear()
    yield _span_exporter
    _span_exporter.clear()
