"""Low-level SQLite helpers shared by the connection manager and the migrations."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

import aiosqlite

from .logger import get_logger

logger = get_logger()


@asynccontextmanager
async def atomic(connection: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """Run the block inside BEGIN IMMEDIATE / COMMIT, rolling back on any exception."""
    await connection.execute("BEGIN IMMEDIATE")
    try:
        yield connection
        await connection.execute("COMMIT")
    except BaseException as e:
        try:
            await connection.execute("ROLLBACK")
            logger.debug(f"Database transaction rolled back due to: {e!r}")
        except Exception as rollback_error:
            logger.error(f"Failed to rollback transaction: {rollback_error}")
        raise


@asynccontextmanager
async def savepoint(connection: aiosqlite.Connection, name: str) -> AsyncIterator[aiosqlite.Connection]:
    """Nested block inside an open transaction; a failure undoes only this block's writes."""
    await connection.execute(f"SAVEPOINT {name}")
    try:
        yield connection
    except BaseException:
        await connection.execute(f"ROLLBACK TO {name}")
        await connection.execute(f"RELEASE {name}")
        raise
    await connection.execute(f"RELEASE {name}")


async def execute_statements(connection: aiosqlite.Connection, statements: Iterable[str]) -> None:
    """Execute DDL one statement at a time.

    executescript() would COMMIT the surrounding transaction first, so
    migrations never use it.
    """
    for statement in statements:
        await connection.execute(statement)


async def list_tables(connection: aiosqlite.Connection) -> list[str]:
    cursor = await connection.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
    )
    return [row[0] for row in await cursor.fetchall()]


async def table_exists(connection: aiosqlite.Connection, table: str) -> bool:
    cursor = await connection.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    )
    return await cursor.fetchone() is not None


async def get_columns(connection: aiosqlite.Connection, table: str) -> list[str]:
    cursor = await connection.execute(f'PRAGMA table_info("{table}")')
    return [row[1] for row in await cursor.fetchall()]
