"""
PostgreSQL persistence layer for the User Service.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import List, Optional

import asyncpg
from shared.logging import get_logger
from shared.errors import (
    ConstraintViolationError,
    NotFoundError,
    StoreError,
    StoreUnavailableError,
)
from ..models import User

CONNECTIVITY_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
)


class PostgresUserStore:
    """PostgreSQL store for user records, keyed by unique username."""

    def __init__(
        self,
        dsn: str,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 30.0,
        reset_schema: bool = False
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.reset_schema = reset_schema
        self.logger = get_logger("users.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the connection pool and make sure the users table exists."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )

            await self._create_tables()

            self.logger.info("PostgreSQL persistence started", reset_schema=self.reset_schema)

        except (asyncpg.PostgresError, *CONNECTIVITY_ERRORS) as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise StoreUnavailableError(str(e))

    async def stop(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            if self.reset_schema:
                await conn.execute("DROP TABLE IF EXISTS users")

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id SERIAL PRIMARY KEY,
                    username VARCHAR(255) NOT NULL UNIQUE,
                    email VARCHAR(255) NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)

    @asynccontextmanager
    async def _connection(self):
        """Acquire a pooled connection, translating driver errors."""
        if self.pool is None:
            raise StoreUnavailableError("PostgreSQL persistence is not started")

        try:
            async with self.pool.acquire() as conn:
                yield conn
        except asyncpg.UniqueViolationError as e:
            raise ConstraintViolationError(str(e))
        except CONNECTIVITY_ERRORS as e:
            self.logger.error("PostgreSQL unavailable", error=str(e))
            raise StoreUnavailableError(str(e))
        except asyncpg.PostgresError as e:
            self.logger.error("PostgreSQL error", error=str(e))
            raise StoreError(str(e))

    async def list(self) -> List[User]:
        """Load all users."""
        async with self._connection() as conn:
            rows = await conn.fetch("SELECT username, email FROM users ORDER BY id")

        return [self._row_to_user(row) for row in rows]

    async def get_by_username(self, username: str) -> Optional[User]:
        """Load a user, or None when absent."""
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT username, email FROM users WHERE username = $1",
                username
            )

        if not row:
            return None

        return self._row_to_user(row)

    async def create(self, username: str, email: str) -> User:
        """Insert a new user. Duplicate usernames raise ConstraintViolationError."""
        async with self._connection() as conn:
            row = await conn.fetchrow("""
                INSERT INTO users (username, email)
                VALUES ($1, $2)
                RETURNING username, email
            """, username, email)

        self.logger.info("User created", username=username)
        return self._row_to_user(row)

    async def update_email(self, username: str, email: str) -> User:
        """Change a user's email."""
        async with self._connection() as conn:
            row = await conn.fetchrow("""
                UPDATE users
                SET email = $2, updated_at = NOW()
                WHERE username = $1
                RETURNING username, email
            """, username, email)

        if not row:
            raise NotFoundError("User not found", {"username": username})

        self.logger.info("User updated", username=username)
        return self._row_to_user(row)

    async def delete(self, username: str) -> None:
        """Delete a user."""
        async with self._connection() as conn:
            result = await conn.execute(
                "DELETE FROM users WHERE username = $1",
                username
            )

        if result == "DELETE 0":
            self.logger.warning("User not found for deletion", username=username)
            raise NotFoundError("User not found", {"username": username})

        self.logger.info("User deleted", username=username)

    def _row_to_user(self, row) -> User:
        """Convert database row to User object."""
        return User(username=row["username"], email=row["email"])

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self._connection() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except StoreError:
            return False
