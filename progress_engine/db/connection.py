"""Database connection management"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool
from progress_engine.config import DATABASE_URL
from progress_engine.exceptions import StoreConnectionError

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS user_progress (
    user_id     TEXT PRIMARY KEY,
    version     INTEGER NOT NULL DEFAULT 0,
    data        JSONB NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS task_catalog (
    task_id     TEXT PRIMARY KEY,
    data        JSONB NOT NULL
);

CREATE TABLE IF NOT EXISTS challenge_catalog (
    challenge_id TEXT PRIMARY KEY,
    data         JSONB NOT NULL
);
"""


class Database:
    """Database connection pool manager"""

    def __init__(self, connection_string: str = DATABASE_URL):
        self.connection_string = connection_string
        self._pool: Optional[AsyncConnectionPool] = None

    async def init_pool(self) -> None:
        """Initialize connection pool"""
        logger.info("Initializing database connection pool")
        self._pool = AsyncConnectionPool(
            self.connection_string,
            min_size=2,
            max_size=10,
            open=False
        )
        await self._pool.open()

    async def close_pool(self) -> None:
        """Close connection pool"""
        if self._pool:
            logger.info("Closing database connection pool")
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Get database connection from pool"""
        if not self._pool:
            raise StoreConnectionError("Database pool not initialized", operation="connection")

        async with self._pool.connection() as conn:
            conn.row_factory = dict_row
            yield conn

    async def ensure_schema(self) -> None:
        """Create the progress and catalog tables if they are missing"""
        async with self.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(SCHEMA)
            await conn.commit()
        logger.info("Database schema ready")
