"""Global constants for sticker_core."""

from __future__ import annotations

# ============================================================================
# Database
# ============================================================================

CURRENT_SCHEMA_VERSION = 12
DEFAULT_DB_FILENAME = "eventmarker.db"
DEFAULT_CONNECT_TIMEOUT_SECONDS = 5.0

# ============================================================================
# Users
# ============================================================================

ADMIN_USER_NAME = "Admin"
GUEST_USER_NAME = "Guest"
DEFAULT_USER_CODE = "0000"

ROLE_ADMIN = 1
ROLE_GUEST = 2
ROLE_USER = 3
ROLE_NAMES = ("Admin", "Guest", "User")

# ============================================================================
# Wallets
# ============================================================================

DEFAULT_WALLET_ASSETS = 5
DEFAULT_WALLET_CREDIT = 100

# ============================================================================
# Ledger
# ============================================================================

# Key prefix used when the consolidated ledger is exported per user
LEDGER_EXPORT_PREFIX = "transactions_"

# ============================================================================
# Marketplace
# ============================================================================

PRODUCT_NAME_MAX_LENGTH = 20
PRODUCT_DESCRIPTION_MAX_LENGTH = 200
PRODUCT_IMAGE_PATTERN = r"product_(\d+)\.jpg"
IMAGE_PATH_SEPARATOR = ","

# ============================================================================
# Media
# ============================================================================

PHOTOS_DIR_MARKER = "photos/"
ICONS_DIR_MARKER = "icons/"
FILE_URI_SCHEME = "file://"
