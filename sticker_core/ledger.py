"""Per-user ledger of asset movements."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

import aiosqlite

from .constants import LEDGER_EXPORT_PREFIX
from .database import Database
from .errors import NotFoundError
from .logger import get_logger
from .utils.timestamps import utc_now_iso

logger = get_logger()

LEDGER_COLUMNS = ("reason", "amount", "counterparty", "timestamp", "balance")


def ledger_key(user_id: int) -> str:
    """Name under which a user's ledger is exported (``transactions_<id>``)."""
    return f"{LEDGER_EXPORT_PREFIX}{user_id}"


class LedgerStore:
    """Append-only ledger rows stored in ``ledger_entries`` and always filtered by user."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create_ledger_for(self, user_id: int) -> None:
        # Entries live in one shared table, so only the owner has to exist.
        row = await self.db.fetchone("SELECT 1 FROM users WHERE id = ?", (user_id,))
        if row is None:
            raise NotFoundError(f"User {user_id} not found")
        logger.debug(f"Ledger ready for user {user_id}")

    async def insert_entry(
        self,
        user_id: int,
        reason: Optional[str],
        amount: int,
        counterparty: Optional[int],
        timestamp: Optional[str],
        balance: int,
    ) -> int:
        """Append one entry and return its id; joins the caller's transaction if one is open.

        A ``timestamp`` of None stamps the entry with the current UTC time.
        """
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO ledger_entries (user_id, reason, amount, counterparty, timestamp, balance)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, reason, amount, counterparty, timestamp or utc_now_iso(), balance),
            )
            entry_id = cursor.lastrowid

        logger.info(
            f"Ledger entry {entry_id} for user {user_id}: amount={amount}, "
            f"balance={balance}, counterparty={counterparty}"
        )
        return entry_id

    async def fetch_entries(self, user_id: int) -> list[aiosqlite.Row]:
        return await self.db.fetchall(
            """
            SELECT le.id, le.reason, le.amount, le.counterparty, u.name AS counterpartyName,
                   le.timestamp, le.balance
            FROM ledger_entries le
            LEFT JOIN users u ON le.counterparty = u.id
            WHERE le.user_id = ?
            ORDER BY le.timestamp DESC, le.id DESC
            """,
            (user_id,),
        )

    async def count_entries(self, user_id: int) -> int:
        row = await self.db.fetchone(
            "SELECT COUNT(*) AS count FROM ledger_entries WHERE user_id = ?", (user_id,)
        )
        return row["count"] if row else 0

    async def delete_ledger_for(self, user_id: int) -> int:
        async with self.db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM ledger_entries WHERE user_id = ?", (user_id,))
            removed = cursor.rowcount
        logger.info(f"Deleted {removed} ledger entries for user {user_id}")
        return removed

    async def dump_ledgers(self) -> dict[str, list[dict[str, Any]]]:
        """Export every ledger keyed ``transactions_<id>``, oldest entry first.

        Users holding a wallet get a key even when their ledger is still empty.
        """
        owners = await self.db.fetchall(
            """
            SELECT owner AS user_id FROM wallets
            UNION
            SELECT DISTINCT user_id FROM ledger_entries
            ORDER BY user_id
            """
        )
        dump: dict[str, list[dict[str, Any]]] = {ledger_key(row["user_id"]): [] for row in owners}

        rows = await self.db.fetchall(
            """
            SELECT id, user_id, reason, amount, counterparty, timestamp, balance
            FROM ledger_entries
            ORDER BY user_id, id
            """
        )
        for row in rows:
            entry = dict(row)
            user_id = entry.pop("user_id")
            dump[ledger_key(user_id)].append(entry)
        return dump

    async def restore_ledger(self, user_id: int, entries: Iterable[Mapping[str, Any]]) -> int:
        """Insert exported entries for one user in a single transaction."""
        await self.create_ledger_for(user_id)
        count = 0
        async with self.db.transaction() as conn:
            for entry in entries:
                await conn.execute(
                    """
                    INSERT INTO ledger_entries (user_id, reason, amount, counterparty, timestamp, balance)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (user_id, *(entry.get(column) for column in LEDGER_COLUMNS)),
                )
                count += 1
        logger.info(f"Restored {count} ledger entries for user {user_id}")
        return count
