from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from psycopg import AsyncCursor
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from .config import settings

pool = AsyncConnectionPool(
    conninfo=str(settings.database_url),
    min_size=1,
    max_size=10,
    kwargs={"autocommit": False},
    open=False,
)


@asynccontextmanager
async def get_conn() -> AsyncIterator[AsyncCursor]:
    """Yield a dict-row cursor; commits on success, rolls back on error."""

    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            yield cur
            await conn.commit()
