"""Persistence core for the sticker chart: schema migrations, wallets, ledger and marketplace."""

from .config import Config, WalletSettings, load_config
from .core import StickerCore
from .database import Database
from .errors import (
    DatabaseNotInitializedError,
    InsufficientAssetsError,
    InsufficientQuantityError,
    InvalidStateError,
    MigrationError,
    NotFoundError,
    StickerCoreError,
    ValidationError,
)
from .logger import get_logger, setup_logger
from .purchases import PurchaseStatus

__all__ = [
    "Config",
    "Database",
    "DatabaseNotInitializedError",
    "InsufficientAssetsError",
    "InsufficientQuantityError",
    "InvalidStateError",
    "MigrationError",
    "NotFoundError",
    "PurchaseStatus",
    "StickerCore",
    "StickerCoreError",
    "ValidationError",
    "WalletSettings",
    "get_logger",
    "load_config",
    "setup_logger",
]
