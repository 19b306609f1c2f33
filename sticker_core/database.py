"""Async SQLite connection manager for sticker_core."""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Optional

import aiosqlite

from .config import Config, WalletSettings
from .constants import DEFAULT_CONNECT_TIMEOUT_SECONDS, DEFAULT_DB_FILENAME
from .db_utils import atomic, savepoint
from .errors import DatabaseNotInitializedError
from .logger import get_logger
from .migrations import MigrationRunner

logger = get_logger()


class Database:
    """Owns the single SQLite handle shared by every store."""

    def __init__(
        self,
        db_path: str | Path = DEFAULT_DB_FILENAME,
        connect_timeout: float | None = None,
        *,
        wallet_settings: WalletSettings | None = None,
    ) -> None:
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._init_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._transaction_owner: Optional[asyncio.Task] = None
        self._savepoint_depth = 0
        self.schema_version = 0
        self.wallet_settings = wallet_settings or WalletSettings()

        if connect_timeout is None:
            connect_timeout = float(os.getenv("DB_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT_SECONDS))
        self.connect_timeout = connect_timeout

    @classmethod
    def from_config(cls, config: Config) -> "Database":
        return cls(
            config.db_path,
            connect_timeout=config.connect_timeout,
            wallet_settings=config.wallet,
        )

    @property
    def is_initialized(self) -> bool:
        return self._connection is not None

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise DatabaseNotInitializedError("Database not initialized. Call initialize() first.")
        return self._connection

    async def initialize(self) -> None:
        """Open the handle and bring the schema up to date.

        Concurrent callers share one in-flight initialization: whoever gets
        the lock second finds the handle already open and returns.
        """
        if self._connection is not None:
            return

        async with self._init_lock:
            if self._connection is not None:
                return

            try:
                connection = await asyncio.wait_for(
                    aiosqlite.connect(str(self.db_path), isolation_level=None),
                    timeout=self.connect_timeout,
                )
            except asyncio.TimeoutError:
                timeout_msg = (
                    f"Database connection timed out after {self.connect_timeout}s. "
                    f"Database path: {self.db_path}"
                )
                logger.error(timeout_msg)
                raise TimeoutError(timeout_msg) from None

            try:
                connection.row_factory = aiosqlite.Row
                await connection.execute("PRAGMA journal_mode = WAL;")
                # Table rebuilds in the migrations drop and rename referenced tables
                await connection.execute("PRAGMA foreign_keys = OFF;")

                runner = MigrationRunner(self.wallet_settings)
                version = await runner.run(connection)

                await connection.execute("PRAGMA foreign_keys = ON;")
            except Exception as init_error:
                await connection.close()
                logger.error(
                    f"Failed to initialize database: {init_error}. Database path: {self.db_path}"
                )
                raise

            self._connection = connection
            self.schema_version = version
            logger.info(f"Database ready at {self.db_path} (schema version {version})")

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info(f"Database connection closed: {self.db_path}")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for atomic multi-statement writes.

        Nested blocks opened by the task that already owns the transaction
        run as a SAVEPOINT inside it: if one raises, only its own writes are
        undone, so a caller may catch the error and carry on. Other tasks
        wait until the outer transaction commits or rolls back.

        Example:
            async with db.transaction() as conn:
                await conn.execute("UPDATE wallets ...")
                await conn.execute("INSERT INTO ledger_entries ...")
        """
        connection = self.connection
        task = asyncio.current_task()

        if self._transaction_owner is not None and self._transaction_owner is task:
            self._savepoint_depth += 1
            try:
                async with savepoint(connection, f"nested_{self._savepoint_depth}"):
                    yield connection
            finally:
                self._savepoint_depth -= 1
            return

        async with self._write_lock:
            self._transaction_owner = task
            try:
                async with atomic(connection):
                    yield connection
            finally:
                self._transaction_owner = None

    async def execute(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Cursor:
        """Run one write statement in its own transaction (or the caller's)."""
        async with self.transaction() as conn:
            return await conn.execute(sql, tuple(params))

    async def fetchone(self, sql: str, params: Iterable[Any] = ()) -> Optional[aiosqlite.Row]:
        cursor = await self.connection.execute(sql, tuple(params))
        return await cursor.fetchone()

    async def fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        cursor = await self.connection.execute(sql, tuple(params))
        return list(await cursor.fetchall())

    async def get_schema_version(self) -> int:
        """Read the persisted schema version; a missing row counts as 0."""
        row = await self.fetchone("SELECT version FROM db_version")
        return row["version"] if row and row["version"] else 0
