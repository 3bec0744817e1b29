"""
Unit tests for the Users service HTTP surface.
"""

import json

import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient

from shared.errors import StoreUnavailableError
from service_users.app.main import UsersService


class TestUsersService:
    """Test cases for UsersService."""

    @pytest.fixture
    def alice(self):
        """Create-user payload."""
        return {"username": "alice", "email": "a@x.com"}

    def test_service_initialization(self, service):
        """Service wires store, cache and policy together."""
        assert service.service_name == "users"
        assert service.port == 6000
        assert service.policy.store is service.store
        assert service.policy.cache is service.cache
        assert service.policy.ttl_seconds == 3600

    def test_lifespan_opens_and_closes_resources(self, service, store, fake_redis):
        """Store and cache are opened at startup and closed at shutdown."""
        with TestClient(service.app):
            assert store.started is True
            assert service.cache.redis is fake_redis

        assert store.started is False
        assert fake_redis.closed is True

    def test_root_endpoint(self, client):
        """Root endpoint."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "users"
        assert data["message"] == "Hello World!"

    def test_user_lifecycle(self, client, alice):
        """Create, list, update, read, delete, read again."""
        response = client.post("/user", json=alice)
        assert response.status_code == 201
        assert response.json() == alice

        response = client.get("/users")
        assert response.status_code == 200
        assert alice in response.json()

        response = client.put("/user/alice", json={"email": "b@x.com"})
        assert response.status_code == 200
        assert response.json() == {"username": "alice", "email": "b@x.com"}

        response = client.get("/user/alice")
        assert response.status_code == 200
        assert response.json() == {"username": "alice", "email": "b@x.com"}

        response = client.delete("/user/alice")
        assert response.status_code == 204
        assert response.content == b""

        response = client.get("/user/alice")
        assert response.status_code == 404

    def test_get_missing_user(self, client, fake_redis):
        """Unknown users are 404 and nothing is cached."""
        response = client.get("/user/ghost")

        assert response.status_code == 404
        data = response.json()
        assert data["code"] == "NOT_FOUND"
        assert data["message"] == "User not found"
        assert data["details"] == {"username": "ghost"}
        assert fake_redis.data == {}

    def test_get_fills_then_serves_from_cache(self, client, store, fake_redis, alice):
        """First read fills the cache, second read is identical and skips the store."""
        client.post("/user", json=alice)

        first = client.get("/user/alice")
        second = client.get("/user/alice")

        assert first.json() == second.json() == alice
        assert store.reads == ["alice"]
        assert json.loads(fake_redis.data["user:alice"]) == alice

    def test_update_replaces_cached_snapshot(self, client, fake_redis, alice):
        """A cached pre-update snapshot is never served after PUT."""
        client.post("/user", json=alice)
        client.get("/user/alice")
        assert json.loads(fake_redis.data["user:alice"])["email"] == "a@x.com"

        client.put("/user/alice", json={"email": "b@x.com"})

        assert client.get("/user/alice").json()["email"] == "b@x.com"

    def test_delete_removes_cached_snapshot(self, client, fake_redis, alice):
        """A cached snapshot is never served after DELETE."""
        client.post("/user", json=alice)
        client.get("/user/alice")

        client.delete("/user/alice")

        assert "user:alice" not in fake_redis.data
        assert client.get("/user/alice").status_code == 404

    def test_update_missing_user(self, client):
        """PUT on an unknown user is 404."""
        response = client.put("/user/ghost", json={"email": "g@x.com"})
        assert response.status_code == 404

    def test_delete_missing_user(self, client):
        """DELETE on an unknown user is 404."""
        response = client.delete("/user/ghost")
        assert response.status_code == 404

    def test_create_duplicate_user(self, client, alice):
        """Duplicate usernames surface as 500 with the store's message."""
        client.post("/user", json=alice)

        response = client.post("/user", json=alice)

        assert response.status_code == 500
        data = response.json()
        assert data["code"] == "CONSTRAINT_VIOLATION"
        assert "users_username_key" in data["message"]

    def test_create_validation_error(self, client):
        """Missing fields are rejected before reaching the store."""
        response = client.post("/user", json={"username": "alice"})
        assert response.status_code == 422

    def test_store_unavailable(self, client, store):
        """Store connectivity failures are 500 carrying the raw message."""
        with patch.object(store, "list", new=AsyncMock(side_effect=StoreUnavailableError("connection refused"))):
            response = client.get("/users")

        assert response.status_code == 500
        assert response.json()["code"] == "STORE_UNAVAILABLE"
        assert response.json()["message"] == "connection refused"

    def test_degraded_cache_full_lifecycle(self, degraded_client, store, alice):
        """With Redis down every operation still succeeds from the store."""
        assert degraded_client.post("/user", json=alice).status_code == 201
        assert degraded_client.get("/user/alice").json() == alice

        response = degraded_client.put("/user/alice", json={"email": "b@x.com"})
        assert response.json() == {"username": "alice", "email": "b@x.com"}
        assert degraded_client.get("/user/alice").json()["email"] == "b@x.com"

        assert degraded_client.delete("/user/alice").status_code == 204
        assert degraded_client.get("/user/alice").status_code == 404
        assert store.users == {}

    def test_health_endpoint(self, client):
        """Health reports both dependencies."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "users"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"postgres": "ok", "redis": "ok"}

    def test_health_with_cache_down(self, degraded_client):
        """A dead cache shows up in health without failing it."""
        response = degraded_client.get("/health")
        assert response.status_code == 200
        assert response.json()["dependencies"]["redis"] == "error"

    @patch('service_users.app.main.UsersService._check_dependencies')
    def test_health_check_failure(self, mock_check_deps, client):
        """An exploding dependency check reports 503."""
        mock_check_deps.side_effect = RuntimeError("boom")

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "error"

    def test_metrics_endpoint(self, client, alice):
        """Prometheus exposition includes cache counters."""
        client.post("/user", json=alice)
        client.get("/user/alice")
        client.get("/user/alice")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert 'cache_hits_total{cache_type="user"} 1.0' in response.text
        assert 'cache_misses_total{cache_type="user"} 1.0' in response.text

    def test_request_id_echoed(self, client):
        """A supplied X-Request-ID is returned on the response."""
        response = client.get("/", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated(self, client):
        """A request ID is generated when none is supplied."""
        response = client.get("/")
        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_store_failure_at_startup_is_fatal(self, config, cache, fake_redis):
        """Boot fails fast when the store cannot start, before the cache is touched."""
        store = AsyncMock()
        store.start.side_effect = StoreUnavailableError("connection refused")
        service = UsersService(config=config, store=store, cache=cache)

        with pytest.raises(StoreUnavailableError):
            await service.start()

        assert fake_redis.calls == []
