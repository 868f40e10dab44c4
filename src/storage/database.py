"""
PostgreSQL access for feedwatch.

One asyncpg pool per process. Repositories take a connected ``Database``
and send raw SQL through the ``fetch*``/``execute`` helpers; unique-index
violations surface as ``asyncpg.UniqueViolationError`` so the item
repositories can turn them into ``RaceConditionViolation``.
"""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Seconds before a single statement is cancelled
COMMAND_TIMEOUT = 60


async def _init_connection(conn: asyncpg.Connection) -> None:
    """JSONB columns (job summaries) round-trip as dicts."""
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


class Database:
    """
    Pooled asyncpg connection manager.

    Usage:
        db = Database()
        await db.connect()
        rows = await db.fetch("SELECT * FROM site_sources WHERE status = $1", "active")
        await db.close()
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
    ):
        settings = get_settings()

        self._database_url = database_url or str(settings.database_url)
        self._min_size = min_size or settings.db_pool_min_size
        self._max_size = max_size or settings.db_pool_max_size

        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Create the pool. Raises whatever asyncpg raises when the server is unreachable."""
        try:
            self._pool = await asyncpg.create_pool(
                self._database_url,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=COMMAND_TIMEOUT,
                init=_init_connection,
            )
        except Exception as e:
            logger.error("Failed to connect to database: %s", e)
            raise

        logger.info("Database connected (pool: %d-%d)", self._min_size, self._max_size)

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database connection closed")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        async with self.pool.acquire() as conn:
            yield conn

    async def execute(self, query: str, *args: Any) -> str:
        """Run a statement and return its status tag, e.g. ``"UPDATE 1"``."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def health_check(self) -> bool:
        """True when ``SELECT 1`` succeeds."""
        try:
            return await self.fetchval("SELECT 1") == 1
        except Exception as e:
            logger.warning("Database health check failed: %s", e)
            return False
