"""PostgreSQL connection pool (asyncpg) backing the scheduling repository."""

import os
import logging
from contextlib import asynccontextmanager
from typing import Any, Iterable, Optional, Sequence

import asyncpg

logger = logging.getLogger(__name__)

# Process-wide pool, created by the API lifespan or the CLI
_database: Optional["Database"] = None


class Database:
    """Async PostgreSQL pool holding tasks, goals and calendar events."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "autoplan",
        user: str = "autoplan",
        password: str = "",
        min_size: int = 1,
        max_size: int = 5,
        command_timeout: float = 30.0,
    ):
        """Initialize database configuration.

        Args:
            host: PostgreSQL host
            port: PostgreSQL port
            database: Database name
            user: Database user
            password: Database password
            min_size: Minimum pool size
            max_size: Maximum pool size
            command_timeout: Per-statement timeout in seconds
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.pool: Optional[asyncpg.Pool] = None

    @classmethod
    def from_env(cls) -> "Database":
        """Create Database instance from DB_* environment variables."""
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "autoplan"),
            user=os.getenv("DB_USER", "autoplan"),
            password=os.getenv("DB_PASSWORD", ""),
            min_size=int(os.getenv("DB_POOL_MIN", "1")),
            max_size=int(os.getenv("DB_POOL_MAX", "5")),
            command_timeout=float(os.getenv("DB_COMMAND_TIMEOUT", "30")),
        )

    @property
    def is_connected(self) -> bool:
        return self.pool is not None

    async def connect(self) -> None:
        """Create the connection pool."""
        if self.pool is not None:
            logger.warning("Database pool already exists")
            return

        logger.info(
            f"[DB] Connecting to PostgreSQL: {self.user}@{self.host}:{self.port}/{self.database}"
        )

        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=self.command_timeout,
        )

        logger.info("[DB] Pool ready")

    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self.pool is None:
            logger.warning("Database pool does not exist")
            return

        await self.pool.close()
        self.pool = None
        logger.info("[DB] Pool closed")

    @asynccontextmanager
    async def connection(self):
        """Acquire a pooled connection.

        Raises:
            RuntimeError: If the pool is not initialized
        """
        if self.pool is None:
            raise RuntimeError("Database pool not initialized. Call connect() first.")

        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self):
        """Acquire a connection and run the block inside one transaction."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def executemany(self, query: str, rows: Iterable[Sequence[Any]]) -> None:
        """Run ``query`` once per parameter row in a single round trip."""
        async with self.connection() as conn:
            await conn.executemany(query, list(rows))

    async def fetch(self, query: str, *args) -> list:
        async with self.connection() as conn:
            return await conn.fetch(query, *args)


def get_database() -> Database:
    """Get or create the process-wide database instance."""
    global _database
    if _database is None:
        _database = Database.from_env()
    return _database


async def init_database() -> Database:
    """Create and connect the process-wide database instance."""
    db = get_database()
    await db.connect()
    return db


async def close_database() -> None:
    """Close the process-wide database instance."""
    global _database
    if _database is not None:
        await _database.disconnect()
        _database = None
