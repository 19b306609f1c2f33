"""Facade that wires one Database into every store."""

from __future__ import annotations

from pathlib import Path

from .config import Config
from .database import Database
from .events import EventStore
from .ledger import LedgerStore
from .logger import setup_logger
from .product_images import ProductImageStore
from .products import ProductStore
from .purchases import PurchaseStore
from .users import UserStore
from .wallets import WalletStore


class StickerCore:
    """Entry point for host applications.

    Example:
        core = StickerCore.from_config(load_config())
        await core.initialize()
        await core.events.verify_event_with_reward(...)
        await core.close()
    """

    def __init__(
        self,
        db: Database,
        *,
        media_root: Path | None = None,
    ) -> None:
        self.db = db
        self.ledger = LedgerStore(db)
        self.wallets = WalletStore(db, self.ledger)
        self.users = UserStore(db, self.wallets, self.ledger)
        self.events = EventStore(db, self.wallets)
        self.images = ProductImageStore(db, media_root)
        self.products = ProductStore(db, self.images)
        self.purchases = PurchaseStore(db, self.wallets, self.images)

    @classmethod
    def from_config(cls, config: Config) -> "StickerCore":
        """Build the core from configuration and apply its log level to the package logger."""
        setup_logger(config.log_level)
        return cls(Database.from_config(config), media_root=config.media_root)

    async def initialize(self) -> None:
        await self.db.initialize()

    async def close(self) -> None:
        await self.db.close()

    async def __aenter__(self) -> "StickerCore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
