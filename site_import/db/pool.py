from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from site_import.models.config_models import DatabaseConfig, ImportConfig

"""asyncpg connection pool handling.

The pool is created once at process start (``create_pool``), passed
explicitly to every component that needs the database, and closed at
shutdown. Nothing in the pipeline holds a module-level pool.

Connection settings, first hit wins:
    1. DATABASE_URL / PGDSN
    2. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
    3. the ``database`` section of config/import.yml
"""

__all__ = [
    "PoolExhaustedError",
    "acquire",
    "create_pool",
    "resolve_dsn",
]


class PoolExhaustedError(Exception):
    """No connection became free within the acquire timeout.

    Backpressure, not a failure: callers should retry later.
    """
    retryable = True

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"no database connection available within {timeout}s")


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    auth = f"{user}:{password}" if password else user
    return f"postgresql://{auth}@{host}:{port}/{database}"


async def create_pool(cfg: ImportConfig) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        dsn=resolve_dsn(cfg.database),
        min_size=cfg.pool.min_size,
        max_size=cfg.pool.max_size,
    )


@asynccontextmanager
async def acquire(pool: Any, timeout: float | None = None) -> AsyncIterator[Any]:
    """Scoped connection: always released, whatever happens in the block.

    Raises:
        PoolExhaustedError: the pool had no free connection within ``timeout``.
    """
    try:
        conn = await pool.acquire(timeout=timeout)
    except asyncio.TimeoutError as e:
        raise PoolExhaustedError(timeout or 0.0) from e
    try:
        yield conn
    finally:
        await pool.release(conn)
