"""User accounts, roles and access codes."""

from __future__ import annotations

import re
from typing import Optional

import aiosqlite

from .constants import ADMIN_USER_NAME, DEFAULT_USER_CODE, GUEST_USER_NAME
from .database import Database
from .errors import NotFoundError, ValidationError
from .ledger import LedgerStore
from .logger import get_logger
from .utils.timestamps import utc_now_iso
from .wallets import WalletStore

logger = get_logger()

CODE_PATTERN = re.compile(r"^\d{4}$")

USER_COLUMNS = "id, name, role_id, code, is_active, created_at, updated_at, icon, email, phone"


def validate_code(code: str) -> str:
    if not isinstance(code, str) or not CODE_PATTERN.match(code):
        raise ValidationError("Code must be a 4-digit number")
    return code


class UserStore:
    def __init__(self, db: Database, wallets: WalletStore, ledger: LedgerStore) -> None:
        self.db = db
        self.wallets = wallets
        self.ledger = ledger

    async def create_user(self, name: str, role_id: int, code: str) -> int:
        """Create a user; everyone except Guest also gets a wallet and a ledger."""
        validate_code(code)
        now = utc_now_iso()

        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO users (name, role_id, code, is_active, created_at, updated_at, icon, email, phone)
                VALUES (?, ?, ?, 1, ?, ?, NULL, '', '')
                """,
                (name, role_id, code, now, now),
            )
            user_id = cursor.lastrowid

            if name != GUEST_USER_NAME:
                await self.wallets.create_wallet(user_id)
                await self.ledger.create_ledger_for(user_id)

        logger.info(f"Created user {user_id} ({name}) with role {role_id}")
        return user_id

    async def get_users(self) -> list[aiosqlite.Row]:
        return await self.db.fetchall(f"SELECT {USER_COLUMNS} FROM users ORDER BY id")

    async def get_user_by_name(self, name: str) -> Optional[aiosqlite.Row]:
        return await self.db.fetchone(
            f"SELECT {USER_COLUMNS} FROM users WHERE name = ? ORDER BY id LIMIT 1", (name,)
        )

    async def get_user_by_id(self, user_id: int) -> Optional[aiosqlite.Row]:
        return await self.db.fetchone(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user_id,))

    async def _update_user(self, user_id: int, assignments: str, params: tuple) -> None:
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                f"UPDATE users SET {assignments}, updated_at = ? WHERE id = ?",
                (*params, utc_now_iso(), user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"User {user_id} not found")

    async def update_user_contact(self, user_id: int, email: str, phone: str) -> None:
        await self._update_user(user_id, "email = ?, phone = ?", (email, phone))

    async def update_user_code(self, user_id: int, new_code: str) -> None:
        validate_code(new_code)
        await self._update_user(user_id, "code = ?", (new_code,))

    async def reset_user_code(self, user_id: int, new_code: str) -> None:
        """Administrative code reset; same rules as update_user_code."""
        validate_code(new_code)
        await self._update_user(user_id, "code = ?", (new_code,))
        logger.info(f"Access code reset for user {user_id}")

    async def verify_user_code(self, user_id: int, code: str) -> bool:
        row = await self.db.fetchone("SELECT code FROM users WHERE id = ?", (user_id,))
        return row is not None and row["code"] == code

    async def update_user_icon(self, user_id: int, icon: Optional[str]) -> None:
        await self._update_user(user_id, "icon = ?", (icon,))

    async def admin_requires_code_setup(self) -> bool:
        """True while the Admin account still carries the factory code."""
        row = await self.db.fetchone(
            "SELECT code FROM users WHERE name = ? ORDER BY id LIMIT 1", (ADMIN_USER_NAME,)
        )
        if row is None:
            raise NotFoundError("Admin user not found")
        return row["code"] == DEFAULT_USER_CODE

    async def delete_user(self, user_id: int) -> None:
        """Remove the user together with their ledger and wallet.

        Rows that still reference the user (events, products, purchases)
        make SQLite reject the delete and nothing is removed.
        """
        async with self.db.transaction() as conn:
            await self.ledger.delete_ledger_for(user_id)
            await conn.execute("DELETE FROM wallets WHERE owner = ?", (user_id,))
            cursor = await conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"User {user_id} not found")
        logger.info(f"Deleted user {user_id}")

    async def has_event_type_owner(self, user_id: int) -> bool:
        row = await self.db.fetchone(
            "SELECT COUNT(*) AS count FROM event_types WHERE owner = ?", (user_id,)
        )
        return bool(row and row["count"])

    async def get_roles(self) -> list[aiosqlite.Row]:
        return await self.db.fetchall("SELECT role_id, role_name FROM roles ORDER BY role_id")

    async def get_db_version(self) -> int:
        return await self.db.get_schema_version()
