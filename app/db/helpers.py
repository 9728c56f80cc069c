# app/db/helpers.py
"""
Query helpers shared by the repositories.

Every helper takes an optional connection so a caller holding one (a
transaction, or the notifier's advisory-lock session) can run on it;
otherwise a pooled connection is borrowed for the single statement.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from app.db.pool import get_db_connection
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _cursor(
    connection: psycopg.AsyncConnection | None, operation: str, query: str
) -> AsyncIterator[psycopg.AsyncCursor]:
    """Cursor on the given connection or a pooled one, with psycopg errors wrapped."""
    try:
        if connection is not None:
            async with connection.cursor() as cur:
                yield cur
        else:
            async with await get_db_connection() as conn:
                async with conn.cursor() as cur:
                    yield cur

    except psycopg.Error as e:
        logger.error(f"Database {operation} error", query=query[:100], error=str(e))
        # constraint and data errors repeat on retry; connection errors may not
        recoverable = not isinstance(e, psycopg.IntegrityError | psycopg.DataError)
        raise DatabaseError(f"Query failed: {e}", operation=operation, recoverable=recoverable) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        Dict with row data or None if no results
    """
    async with _cursor(connection, "fetch_one", query) as cur:
        await cur.execute(query, params)
        return await cur.fetchone()


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """Execute query and return all rows as list of dicts."""
    async with _cursor(connection, "fetch_all", query) as cur:
        await cur.execute(query, params)
        return await cur.fetchall()


async def fetch_val(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """
    Execute query and return single value.

    Returns:
        First column of the first row, or None when no row came back
    """
    async with _cursor(connection, "fetch_val", query) as cur:
        await cur.execute(query, params)
        row = await cur.fetchone()
    if not row:
        return None
    return next(iter(row.values())) if isinstance(row, dict) else row[0]


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """
    Execute query and return number of affected rows.

    Guarded updates (WHERE status = ...) rely on this count to tell
    whether they won.
    """
    async with _cursor(connection, "execute", query) as cur:
        await cur.execute(query, params)
        return cur.rowcount
