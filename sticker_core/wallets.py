"""Wallet balances and the asset movements that touch them."""

from __future__ import annotations

from typing import Optional

import aiosqlite

from .config import WalletSettings
from .database import Database
from .errors import InsufficientAssetsError, NotFoundError, ValidationError
from .ledger import LedgerStore


class WalletStore:
    """Reads and writes ``wallets``; every balance change goes through ``move_assets``."""

    def __init__(self, db: Database, ledger: LedgerStore) -> None:
        self.db = db
        self.ledger = ledger

    @property
    def wallet_settings(self) -> WalletSettings:
        """Initial balances, shared with the bootstrap that seeds the Admin wallet."""
        return self.db.wallet_settings

    async def create_wallet(
        self,
        owner: int,
        assets: Optional[int] = None,
        credit: Optional[int] = None,
    ) -> aiosqlite.Row:
        if assets is None:
            assets = self.wallet_settings.initial_assets
        if credit is None:
            credit = self.wallet_settings.initial_credit
        if assets < 0:
            raise ValidationError("Assets must not be negative")

        async with self.db.transaction() as conn:
            await conn.execute(
                "INSERT OR IGNORE INTO wallets (owner, assets, credit) VALUES (?, ?, ?)",
                (owner, assets, credit),
            )
        return await self.get_wallet(owner)

    async def get_wallet(self, owner: int) -> Optional[aiosqlite.Row]:
        return await self.db.fetchone(
            "SELECT owner, assets, credit FROM wallets WHERE owner = ?", (owner,)
        )

    async def get_all_wallets(self) -> list[aiosqlite.Row]:
        return await self.db.fetchall("SELECT owner, assets, credit FROM wallets ORDER BY owner")

    async def update_wallet(self, owner: int, assets: int, credit: int) -> None:
        """Overwrite both balances; used by admin edits and restores, never logged to the ledger."""
        if assets < 0:
            raise ValidationError("Assets must not be negative")

        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE wallets SET assets = ?, credit = ? WHERE owner = ?",
                (assets, credit, owner),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Wallet for user {owner} not found")

    async def adjust_assets(
        self,
        owner: int,
        delta: int,
        *,
        missing_message: str | None = None,
        insufficient_message: str = "Insufficient assets",
    ) -> int:
        """Add ``delta`` to the owner's assets and return the new balance.

        Raises NotFoundError when the wallet is missing and
        InsufficientAssetsError when the balance would drop below zero.
        """
        async with self.db.transaction() as conn:
            cursor = await conn.execute("SELECT assets FROM wallets WHERE owner = ?", (owner,))
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError(missing_message or f"Wallet for user {owner} not found")

            new_assets = row["assets"] + delta
            if new_assets < 0:
                raise InsufficientAssetsError(insufficient_message)

            await conn.execute(
                "UPDATE wallets SET assets = ? WHERE owner = ?", (new_assets, owner)
            )
        return new_assets

    async def move_assets(
        self,
        owner: int,
        delta: int,
        reason: Optional[str],
        counterparty: Optional[int],
        *,
        timestamp: Optional[str] = None,
        missing_message: str | None = None,
        insufficient_message: str = "Insufficient assets",
    ) -> int:
        """Adjust the wallet and append the matching ledger entry atomically."""
        async with self.db.transaction():
            balance = await self.adjust_assets(
                owner,
                delta,
                missing_message=missing_message,
                insufficient_message=insufficient_message,
            )
            await self.ledger.insert_entry(
                owner, reason, delta, counterparty, timestamp, balance
            )
        return balance
