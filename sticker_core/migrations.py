"""Schema migrations for the sticker_core database.

A database at version 0 is bootstrapped straight to the current schema. Any
other version below ``CURRENT_SCHEMA_VERSION`` runs every step it has not
seen yet, in ascending order, inside one transaction, and the version row is
written once at the end. A failure rolls back every step of that pass.
"""

from __future__ import annotations

import re
from typing import Awaitable, Callable, Optional

import aiosqlite

from .config import WalletSettings
from .constants import (
    ADMIN_USER_NAME,
    CURRENT_SCHEMA_VERSION,
    DEFAULT_USER_CODE,
    FILE_URI_SCHEME,
    GUEST_USER_NAME,
    ICONS_DIR_MARKER,
    IMAGE_PATH_SEPARATOR,
    LEDGER_EXPORT_PREFIX,
    PHOTOS_DIR_MARKER,
    PRODUCT_IMAGE_PATTERN,
    ROLE_ADMIN,
    ROLE_GUEST,
    ROLE_NAMES,
)
from .db_utils import atomic, execute_statements, get_columns, list_tables, table_exists
from .errors import MigrationError
from .logger import get_logger
from .utils.timestamps import utc_now_iso

logger = get_logger()

MigrationStep = Callable[[aiosqlite.Connection], Awaitable[None]]

LEGACY_LEDGER_TABLE = re.compile(rf"^{LEDGER_EXPORT_PREFIX}(\d+)$")

# ============================================================================
# CURRENT SCHEMA
# ============================================================================

DB_VERSION_TABLE = """
    CREATE TABLE IF NOT EXISTS db_version (
        version INTEGER PRIMARY KEY
    )
"""

ROLES_TABLE = """
    CREATE TABLE IF NOT EXISTS roles (
        role_id INTEGER PRIMARY KEY AUTOINCREMENT,
        role_name TEXT NOT NULL UNIQUE
    )
"""

USERS_TABLE = """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        role_id INTEGER NOT NULL,
        code TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        icon TEXT,
        email TEXT NOT NULL DEFAULT '',
        phone TEXT NOT NULL DEFAULT '',
        FOREIGN KEY (role_id) REFERENCES roles(role_id)
    )
"""

WALLETS_TABLE = """
    CREATE TABLE IF NOT EXISTS wallets (
        owner INTEGER PRIMARY KEY,
        assets INTEGER NOT NULL DEFAULT 5 CHECK (assets >= 0),
        credit INTEGER NOT NULL DEFAULT 100,
        FOREIGN KEY (owner) REFERENCES users(id) ON DELETE CASCADE
    )
"""

LEDGER_ENTRIES_TABLE = """
    CREATE TABLE IF NOT EXISTS ledger_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        reason TEXT,
        amount INTEGER NOT NULL,
        counterparty INTEGER,
        timestamp TEXT NOT NULL,
        balance INTEGER NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (counterparty) REFERENCES users(id) ON DELETE SET NULL
    )
"""

LEDGER_ENTRIES_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_ledger_entries_user_timestamp
    ON ledger_entries(user_id, timestamp DESC)
"""

EVENT_TYPES_TABLE = """
    CREATE TABLE IF NOT EXISTS event_types (
        name TEXT NOT NULL,
        owner INTEGER,
        icon TEXT NOT NULL,
        iconColor TEXT NOT NULL,
        availability INTEGER NOT NULL DEFAULT 0,
        weight INTEGER NOT NULL DEFAULT 1 CHECK (weight >= 1),
        expiration_date TEXT,
        created_at TEXT,
        PRIMARY KEY (name, owner),
        FOREIGN KEY (owner) REFERENCES users(id)
    )
"""

EVENTS_TABLE = """
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        date TEXT NOT NULL,
        markedAt TEXT NOT NULL,
        eventType TEXT NOT NULL,
        owner INTEGER,
        note TEXT,
        photoPath TEXT,
        created_by INTEGER,
        is_verified INTEGER NOT NULL DEFAULT 0,
        verified_at TEXT,
        verified_by INTEGER,
        FOREIGN KEY (eventType, owner) REFERENCES event_types(name, owner),
        FOREIGN KEY (created_by) REFERENCES users(id),
        FOREIGN KEY (verified_by) REFERENCES users(id)
    )
"""

PRODUCTS_TABLE = """
    CREATE TABLE IF NOT EXISTS products (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL CHECK (length(name) <= 20),
        description TEXT CHECK (length(description) <= 200),
        images TEXT,
        price INTEGER NOT NULL,
        creator INTEGER NOT NULL,
        online INTEGER NOT NULL DEFAULT 0,
        quantity INTEGER NOT NULL DEFAULT 0,
        createdAt TEXT NOT NULL,
        updatedAt TEXT,
        FOREIGN KEY (creator) REFERENCES users(id)
    )
"""

PRODUCT_IMAGES_TABLE = """
    CREATE TABLE IF NOT EXISTS productImages (
        id INTEGER PRIMARY KEY,
        referred INTEGER NOT NULL CHECK (referred > 0)
    )
"""

PRODUCT_IMAGES_INDEX = "CREATE INDEX IF NOT EXISTS idx_productImages_id ON productImages(id)"

PURCHASES_TABLE = """
    CREATE TABLE IF NOT EXISTS purchases (
        order_number INTEGER PRIMARY KEY AUTOINCREMENT,
        product_id INTEGER NOT NULL,
        owner INTEGER NOT NULL,
        price INTEGER NOT NULL,
        quantity INTEGER NOT NULL,
        createdAt TEXT NOT NULL,
        fulfilledAt TEXT,
        productName TEXT,
        description TEXT,
        images TEXT,
        fulfilledBy INTEGER,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'fulfilled', 'canceled')),
        canceledAt TEXT,
        canceledBy INTEGER,
        FOREIGN KEY (product_id) REFERENCES products(id),
        FOREIGN KEY (owner) REFERENCES users(id),
        FOREIGN KEY (fulfilledBy) REFERENCES users(id),
        FOREIGN KEY (canceledBy) REFERENCES users(id)
    )
"""

PURCHASES_INDEX = "CREATE INDEX IF NOT EXISTS idx_purchases_owner ON purchases(owner)"

CURRENT_SCHEMA = (
    ROLES_TABLE,
    USERS_TABLE,
    WALLETS_TABLE,
    LEDGER_ENTRIES_TABLE,
    LEDGER_ENTRIES_INDEX,
    EVENT_TYPES_TABLE,
    EVENTS_TABLE,
    PRODUCTS_TABLE,
    PRODUCT_IMAGES_TABLE,
    PRODUCT_IMAGES_INDEX,
    PURCHASES_TABLE,
    PURCHASES_INDEX,
)


def relative_media_path(path: Optional[str], marker: str) -> Optional[str]:
    """Cut an absolute ``file://`` path down to ``<marker>...``, or None if the marker is absent."""
    if not path:
        return None
    index = path.find(marker)
    if index == -1:
        return None
    return path[index:]


def parse_image_ids(images: Optional[str]) -> tuple[list[int], list[str]]:
    """Split a comma-separated image list into parsed ids and unparsable entries."""
    ids: list[int] = []
    rejected: list[str] = []
    if not images:
        return ids, rejected
    for raw in images.split(IMAGE_PATH_SEPARATOR):
        entry = raw.strip()
        if not entry:
            continue
        match = re.search(PRODUCT_IMAGE_PATTERN, entry)
        if match:
            ids.append(int(match.group(1)))
        else:
            rejected.append(entry)
    return ids, rejected


class MigrationRunner:
    """Brings a SQLite database from any known schema version to the current one."""

    def __init__(self, wallet_settings: WalletSettings | None = None) -> None:
        self.wallet_settings = wallet_settings or WalletSettings()
        self.migrations: dict[int, tuple[str, MigrationStep]] = {
            2: ("events_verification_columns", self._migration_v2),
            3: ("users_zero_padded_codes", self._migration_v3),
            4: ("users_contact_and_wallets", self._migration_v4),
            5: ("relative_media_paths", self._migration_v5),
            6: ("event_types_composite_key", self._migration_v6),
            7: ("event_types_expiration_date", self._migration_v7),
            8: ("event_types_created_at", self._migration_v8),
            9: ("products_and_purchases", self._migration_v9),
            10: ("product_images_and_purchase_snapshots", self._migration_v10),
            11: ("consolidated_ledger", self._migration_v11),
            12: ("purchase_status", self._migration_v12),
        }

    async def get_version(self, connection: aiosqlite.Connection) -> int:
        """Stored schema version; a missing table or row counts as 0."""
        if not await table_exists(connection, "db_version"):
            return 0
        cursor = await connection.execute("SELECT MAX(version) FROM db_version")
        row = await cursor.fetchone()
        return row[0] if row and row[0] else 0

    async def run(self, connection: aiosqlite.Connection) -> int:
        """Apply whatever the database is missing and return the version reached."""
        current_version = await self.get_version(connection)
        logger.info(f"Current database schema version: {current_version}")

        if current_version >= CURRENT_SCHEMA_VERSION:
            return current_version

        async with atomic(connection):
            await connection.execute(DB_VERSION_TABLE)

            if current_version == 0:
                await self._apply("v0", "bootstrap", self._bootstrap, connection)
            else:
                for version in sorted(self.migrations.keys()):
                    if current_version < version <= CURRENT_SCHEMA_VERSION:
                        name, migration_fn = self.migrations[version]
                        await self._apply(f"v{version}", name, migration_fn, connection)

            await self._write_version(connection, CURRENT_SCHEMA_VERSION)

        logger.info(
            f"Database schema migrated from v{current_version} to v{CURRENT_SCHEMA_VERSION}"
        )
        return CURRENT_SCHEMA_VERSION

    async def _apply(
        self, label: str, name: str, migration_fn: MigrationStep, connection: aiosqlite.Connection
    ) -> None:
        logger.info(f"Applying migration {label}: {name}")
        try:
            await migration_fn(connection)
        except Exception as e:
            logger.exception(f"Failed to apply migration {label} ({name}): {e}")
            raise MigrationError(f"Migration {label} ({name}) failed: {e}") from e
        logger.info(f"Migration {label}: {name} applied successfully")

    async def _write_version(self, connection: aiosqlite.Connection, version: int) -> None:
        # Exactly one row, holding the version just reached
        await connection.execute("DELETE FROM db_version")
        await connection.execute("INSERT INTO db_version (version) VALUES (?)", (version,))

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def _bootstrap(self, connection: aiosqlite.Connection) -> None:
        """Create the current schema and seed roles, Admin and Guest."""
        await execute_statements(connection, CURRENT_SCHEMA)

        for role_name in ROLE_NAMES:
            await connection.execute(
                "INSERT OR IGNORE INTO roles (role_name) VALUES (?)", (role_name,)
            )

        now = utc_now_iso()
        for name, role_id in ((ADMIN_USER_NAME, ROLE_ADMIN), (GUEST_USER_NAME, ROLE_GUEST)):
            await connection.execute(
                """
                INSERT INTO users (name, role_id, code, is_active, created_at, updated_at, icon, email, phone)
                SELECT ?, ?, ?, 1, ?, ?, NULL, '', ''
                WHERE NOT EXISTS (SELECT 1 FROM users WHERE name = ?)
                """,
                (name, role_id, DEFAULT_USER_CODE, now, now, name),
            )

        admin_id = await self._get_admin_id(connection)
        if admin_id is not None:
            await connection.execute(
                "INSERT OR IGNORE INTO wallets (owner, assets, credit) VALUES (?, ?, ?)",
                (admin_id, self.wallet_settings.initial_assets, self.wallet_settings.initial_credit),
            )

        tables = await list_tables(connection)
        if "event_types_old" in tables or "events_old" in tables:
            if admin_id is None:
                raise RuntimeError("Failed to retrieve admin user ID")

            if "event_types_old" in tables:
                await connection.execute(
                    """
                    INSERT INTO event_types (name, owner, icon, iconColor, availability, weight, expiration_date, created_at)
                    SELECT name, ?, icon, iconColor, availability, 1, NULL, NULL
                    FROM event_types_old
                    """,
                    (admin_id,),
                )
                await connection.execute("DROP TABLE IF EXISTS event_types_old")
                logger.info("Folded legacy event_types_old into event_types")

            if "events_old" in tables:
                await connection.execute(
                    """
                    INSERT INTO events (id, date, markedAt, eventType, owner, note, photoPath, created_by, is_verified, verified_at, verified_by)
                    SELECT id, date, markedAt, eventType, ?, note, photoPath, ?, 0, NULL, NULL
                    FROM events_old
                    """,
                    (admin_id, admin_id),
                )
                await connection.execute("DROP TABLE IF EXISTS events_old")
                logger.info("Folded legacy events_old into events")

        await self._fold_legacy_ledgers(connection, tables)

    async def _get_admin_id(self, connection: aiosqlite.Connection) -> Optional[int]:
        cursor = await connection.execute(
            "SELECT id FROM users WHERE name = ? ORDER BY id LIMIT 1", (ADMIN_USER_NAME,)
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    # ------------------------------------------------------------------
    # Incremental steps
    # ------------------------------------------------------------------

    async def _migration_v2(self, connection: aiosqlite.Connection) -> None:
        """Migration v2: verification metadata on events."""
        columns = await get_columns(connection, "events")
        if "verified_at" not in columns:
            await connection.execute("ALTER TABLE events ADD COLUMN verified_at TEXT")
        if "verified_by" not in columns:
            await connection.execute(
                "ALTER TABLE events ADD COLUMN verified_by INTEGER REFERENCES users(id)"
            )

    async def _migration_v3(self, connection: aiosqlite.Connection) -> None:
        """Migration v3: store user codes as zero-padded 4-digit text."""
        await execute_statements(
            connection,
            (
                "DROP TABLE IF EXISTS users_new",
                """
                CREATE TABLE users_new (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    role_id INTEGER NOT NULL,
                    code TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    icon TEXT,
                    FOREIGN KEY (role_id) REFERENCES roles(role_id)
                )
                """,
                """
                INSERT INTO users_new (id, name, role_id, code, is_active, created_at, updated_at, icon)
                SELECT id, name, role_id, printf('%04d', code), is_active, created_at, updated_at, icon
                FROM users
                """,
                "DROP TABLE users",
                "ALTER TABLE users_new RENAME TO users",
            ),
        )

    async def _migration_v4(self, connection: aiosqlite.Connection) -> None:
        """Migration v4: contact fields on users and a wallet per non-Guest user."""
        columns = await get_columns(connection, "users")
        if "email" not in columns:
            await connection.execute("ALTER TABLE users ADD COLUMN email TEXT NOT NULL DEFAULT ''")
        if "phone" not in columns:
            await connection.execute("ALTER TABLE users ADD COLUMN phone TEXT NOT NULL DEFAULT ''")

        await connection.execute(WALLETS_TABLE)
        await connection.execute(
            """
            INSERT OR IGNORE INTO wallets (owner, assets, credit)
            SELECT id, ?, ? FROM users WHERE name != ?
            """,
            (
                self.wallet_settings.initial_assets,
                self.wallet_settings.initial_credit,
                GUEST_USER_NAME,
            ),
        )

    async def _migration_v5(self, connection: aiosqlite.Connection) -> None:
        """Migration v5: absolute file:// media paths become app-relative."""
        for table, key, column, marker in (
            ("events", "id", "photoPath", PHOTOS_DIR_MARKER),
            ("users", "id", "icon", ICONS_DIR_MARKER),
        ):
            cursor = await connection.execute(
                f"SELECT {key}, {column} FROM {table} WHERE {column} LIKE ?",
                (f"{FILE_URI_SCHEME}%",),
            )
            rows = await cursor.fetchall()
            for row in rows:
                await connection.execute(
                    f"UPDATE {table} SET {column} = ? WHERE {key} = ?",
                    (relative_media_path(row[1], marker), row[0]),
                )
            if rows:
                logger.info(f"Rewrote {len(rows)} {table}.{column} paths to relative form")

    async def _migration_v6(self, connection: aiosqlite.Connection) -> None:
        """Migration v6: event types keyed by (name, owner); events carry their owner."""
        await execute_statements(
            connection,
            (
                "DROP TABLE IF EXISTS event_types_new",
                "DROP TABLE IF EXISTS events_new",
                """
                CREATE TABLE event_types_new (
                    name TEXT NOT NULL,
                    owner INTEGER,
                    icon TEXT NOT NULL,
                    iconColor TEXT NOT NULL,
                    availability INTEGER NOT NULL DEFAULT 0,
                    weight INTEGER NOT NULL DEFAULT 1 CHECK (weight >= 1),
                    PRIMARY KEY (name, owner),
                    FOREIGN KEY (owner) REFERENCES users(id)
                )
                """,
                """
                INSERT INTO event_types_new (name, owner, icon, iconColor, availability, weight)
                SELECT name, owner, icon, iconColor, availability, weight
                FROM event_types
                """,
                """
                CREATE TABLE events_new (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date TEXT NOT NULL,
                    markedAt TEXT NOT NULL,
                    eventType TEXT NOT NULL,
                    owner INTEGER,
                    note TEXT,
                    photoPath TEXT,
                    created_by INTEGER,
                    is_verified INTEGER NOT NULL DEFAULT 0,
                    verified_at TEXT,
                    verified_by INTEGER,
                    FOREIGN KEY (eventType, owner) REFERENCES event_types(name, owner),
                    FOREIGN KEY (created_by) REFERENCES users(id),
                    FOREIGN KEY (verified_by) REFERENCES users(id)
                )
                """,
                """
                INSERT INTO events_new (id, date, markedAt, eventType, owner, note, photoPath, created_by, is_verified, verified_at, verified_by)
                SELECT e.id, e.date, e.markedAt, e.eventType, et.owner, e.note, e.photoPath,
                       e.created_by, e.is_verified, e.verified_at, e.verified_by
                FROM events e
                LEFT JOIN event_types et ON e.eventType = et.name
                """,
                "DROP TABLE events",
                "DROP TABLE event_types",
                "ALTER TABLE event_types_new RENAME TO event_types",
                "ALTER TABLE events_new RENAME TO events",
            ),
        )

    async def _migration_v7(self, connection: aiosqlite.Connection) -> None:
        """Migration v7: optional expiration date on event types."""
        if "expiration_date" not in await get_columns(connection, "event_types"):
            await connection.execute("ALTER TABLE event_types ADD COLUMN expiration_date TEXT")

    async def _migration_v8(self, connection: aiosqlite.Connection) -> None:
        """Migration v8: creation timestamp on event types."""
        if "created_at" not in await get_columns(connection, "event_types"):
            await connection.execute("ALTER TABLE event_types ADD COLUMN created_at TEXT")

    async def _migration_v9(self, connection: aiosqlite.Connection) -> None:
        """Migration v9: marketplace tables in their first shape."""
        await execute_statements(
            connection,
            (
                PRODUCTS_TABLE,
                """
                CREATE TABLE IF NOT EXISTS purchases (
                    order_number INTEGER PRIMARY KEY AUTOINCREMENT,
                    product_id INTEGER NOT NULL,
                    owner INTEGER NOT NULL,
                    price INTEGER NOT NULL,
                    quantity INTEGER NOT NULL,
                    fullfilled INTEGER NOT NULL DEFAULT 0,
                    createdAt TEXT NOT NULL,
                    fullfilledAt TEXT,
                    FOREIGN KEY (product_id) REFERENCES products(id),
                    FOREIGN KEY (owner) REFERENCES users(id)
                )
                """,
            ),
        )

    async def _migration_v10(self, connection: aiosqlite.Connection) -> None:
        """Migration v10: image reference counts and purchase snapshots."""
        await execute_statements(connection, (PRODUCT_IMAGES_TABLE, PRODUCT_IMAGES_INDEX))

        purchase_columns = await get_columns(connection, "purchases")
        if "productName" not in purchase_columns:
            fulfilled_column = "fullfilledAt" if "fullfilledAt" in purchase_columns else "fulfilledAt"
            await execute_statements(
                connection,
                (
                    "DROP TABLE IF EXISTS purchases_new",
                    """
                    CREATE TABLE purchases_new (
                        order_number INTEGER PRIMARY KEY AUTOINCREMENT,
                        product_id INTEGER NOT NULL,
                        owner INTEGER NOT NULL,
                        price INTEGER NOT NULL,
                        quantity INTEGER NOT NULL,
                        createdAt TEXT NOT NULL,
                        fulfilledAt TEXT,
                        productName TEXT,
                        description TEXT,
                        images TEXT,
                        fulfilledBy INTEGER,
                        FOREIGN KEY (product_id) REFERENCES products(id),
                        FOREIGN KEY (owner) REFERENCES users(id),
                        FOREIGN KEY (fulfilledBy) REFERENCES users(id)
                    )
                    """,
                    f"""
                    INSERT INTO purchases_new (order_number, product_id, owner, price, quantity, createdAt,
                                               fulfilledAt, productName, description, images, fulfilledBy)
                    SELECT pu.order_number, pu.product_id, pu.owner, pu.price, pu.quantity, pu.createdAt,
                           pu.{fulfilled_column}, p.name, p.description, p.images, NULL
                    FROM purchases pu
                    LEFT JOIN products p ON p.id = pu.product_id
                    """,
                    "DROP TABLE purchases",
                    "ALTER TABLE purchases_new RENAME TO purchases",
                ),
            )

        await self._backfill_product_images(connection)

    async def _backfill_product_images(self, connection: aiosqlite.Connection) -> None:
        """Count every image a product or purchase snapshot refers to."""
        for table, key in (("products", "id"), ("purchases", "order_number")):
            cursor = await connection.execute(
                f"SELECT {key}, images FROM {table} WHERE images IS NOT NULL"
            )
            for row in await cursor.fetchall():
                image_ids, rejected = parse_image_ids(row[1])
                for entry in rejected:
                    logger.warning(
                        f"No valid image id found in image path for {table} {row[0]}: {entry}"
                    )
                for image_id in image_ids:
                    await connection.execute(
                        """
                        INSERT INTO productImages (id, referred) VALUES (?, 1)
                        ON CONFLICT(id) DO UPDATE SET referred = referred + 1
                        """,
                        (image_id,),
                    )

    async def _migration_v11(self, connection: aiosqlite.Connection) -> None:
        """Migration v11: fold per-user transactions_<id> tables into ledger_entries."""
        await execute_statements(connection, (LEDGER_ENTRIES_TABLE, LEDGER_ENTRIES_INDEX))
        await self._fold_legacy_ledgers(connection, await list_tables(connection))

    async def _fold_legacy_ledgers(self, connection: aiosqlite.Connection, tables: list[str]) -> None:
        for table in tables:
            match = LEGACY_LEDGER_TABLE.match(table)
            if not match:
                continue
            user_id = int(match.group(1))

            cursor = await connection.execute("SELECT 1 FROM users WHERE id = ?", (user_id,))
            if await cursor.fetchone() is None:
                logger.warning(f"Dropping legacy ledger {table}: user {user_id} no longer exists")
            else:
                cursor = await connection.execute(
                    f"""
                    INSERT INTO ledger_entries (user_id, reason, amount, counterparty, timestamp, balance)
                    SELECT ?, reason, COALESCE(amount, 0), counterparty,
                           COALESCE(timestamp, ''), COALESCE(balance, 0)
                    FROM "{table}"
                    ORDER BY id
                    """,
                    (user_id,),
                )
                logger.info(f"Folded {cursor.rowcount} entries from {table} into ledger_entries")

            await connection.execute(f'DROP TABLE "{table}"')

        if "transactions_tmpl" in tables:
            await connection.execute("DROP TABLE transactions_tmpl")

    async def _migration_v12(self, connection: aiosqlite.Connection) -> None:
        """Migration v12: explicit purchase status with separate cancel metadata."""
        columns = await get_columns(connection, "purchases")
        if "status" not in columns:
            await connection.execute(
                """
                ALTER TABLE purchases ADD COLUMN status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'fulfilled', 'canceled'))
                """
            )
        if "canceledAt" not in columns:
            await connection.execute("ALTER TABLE purchases ADD COLUMN canceledAt TEXT")
        if "canceledBy" not in columns:
            await connection.execute(
                "ALTER TABLE purchases ADD COLUMN canceledBy INTEGER REFERENCES users(id)"
            )

        # Cancellation used to be recorded as quantity 0 with the canceller in fulfilledBy
        await connection.execute(
            """
            UPDATE purchases
            SET status = 'canceled',
                canceledAt = fulfilledAt,
                canceledBy = fulfilledBy,
                fulfilledAt = NULL,
                fulfilledBy = NULL
            WHERE quantity = 0 AND status = 'pending'
            """
        )
        await connection.execute(
            """
            UPDATE purchases SET status = 'fulfilled'
            WHERE status = 'pending' AND fulfilledAt IS NOT NULL
            """
        )
        await execute_statements(connection, (PURCHASES_INDEX,))
