import logging

import aiosqlite
import pytest

from sticker_core.constants import CURRENT_SCHEMA_VERSION
from sticker_core.database import Database
from sticker_core.errors import MigrationError
from sticker_core.migrations import MigrationRunner, parse_image_ids, relative_media_path

STAMP = "2024-01-01T00:00:00.000Z"

LEGACY_V1_SCHEMA = f"""
CREATE TABLE db_version (version INTEGER PRIMARY KEY);
INSERT INTO db_version (version) VALUES (1);

CREATE TABLE roles (
    role_id INTEGER PRIMARY KEY AUTOINCREMENT,
    role_name TEXT NOT NULL UNIQUE
);
INSERT INTO roles (role_name) VALUES ('Admin'), ('Guest'), ('User');

CREATE TABLE users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    role_id INTEGER NOT NULL,
    code TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    icon TEXT
);
INSERT INTO users (name, role_id, code, created_at, updated_at, icon) VALUES
    ('Admin', 1, '0', '{STAMP}', '{STAMP}', NULL),
    ('Guest', 2, '0', '{STAMP}', '{STAMP}', NULL),
    ('Mia', 3, '42', '{STAMP}', '{STAMP}', 'file:///data/app/files/icons/mia.jpg');

CREATE TABLE event_types (
    name TEXT PRIMARY KEY,
    owner INTEGER,
    icon TEXT NOT NULL,
    iconColor TEXT NOT NULL,
    availability INTEGER NOT NULL DEFAULT 0,
    weight INTEGER NOT NULL DEFAULT 1
);
INSERT INTO event_types VALUES
    ('Dishes', 3, 'cup', '#ff0000', 0, 2),
    ('Reading', NULL, 'book', '#00ff00', 0, 1);

CREATE TABLE events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL,
    markedAt TEXT NOT NULL,
    eventType TEXT NOT NULL,
    note TEXT,
    photoPath TEXT,
    created_by INTEGER,
    is_verified INTEGER NOT NULL DEFAULT 0
);
INSERT INTO events (date, markedAt, eventType, note, photoPath, created_by) VALUES
    ('2024-01-02', '{STAMP}', 'Dishes', NULL, 'file:///data/app/files/photos/1.jpg', 3),
    ('2024-01-03', '{STAMP}', 'Reading', 'chapter one', 'file:///tmp/elsewhere/2.jpg', 3);
"""

LEGACY_V9_SCHEMA = f"""
CREATE TABLE db_version (version INTEGER PRIMARY KEY);
INSERT INTO db_version (version) VALUES (9);

CREATE TABLE roles (
    role_id INTEGER PRIMARY KEY AUTOINCREMENT,
    role_name TEXT NOT NULL UNIQUE
);
INSERT INTO roles (role_name) VALUES ('Admin'), ('Guest'), ('User');

CREATE TABLE users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    role_id INTEGER NOT NULL,
    code TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    icon TEXT,
    email TEXT NOT NULL DEFAULT '',
    phone TEXT NOT NULL DEFAULT ''
);
INSERT INTO users (name, role_id, code, created_at, updated_at) VALUES
    ('Admin', 1, '0000', '{STAMP}', '{STAMP}'),
    ('Guest', 2, '0000', '{STAMP}', '{STAMP}'),
    ('Mia', 3, '1111', '{STAMP}', '{STAMP}'),
    ('Leo', 3, '2222', '{STAMP}', '{STAMP}');

CREATE TABLE wallets (
    owner INTEGER PRIMARY KEY,
    assets INTEGER NOT NULL DEFAULT 5,
    credit INTEGER NOT NULL DEFAULT 100
);
INSERT INTO wallets VALUES (1, 5, 100), (3, 7, 100), (4, 2, 100);

CREATE TABLE transactions_tmpl (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reason TEXT, amount INTEGER, counterparty INTEGER, timestamp TEXT, balance INTEGER
);
CREATE TABLE transactions_1 (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reason TEXT, amount INTEGER, counterparty INTEGER, timestamp TEXT, balance INTEGER
);
CREATE TABLE transactions_3 (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reason TEXT, amount INTEGER, counterparty INTEGER, timestamp TEXT, balance INTEGER
);
INSERT INTO transactions_3 (reason, amount, counterparty, timestamp, balance)
    VALUES ('Sold 1 x Kite', 2, 4, '2024-02-01T10:00:00.000Z', 7);
CREATE TABLE transactions_4 (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reason TEXT, amount INTEGER, counterparty INTEGER, timestamp TEXT, balance INTEGER
);
INSERT INTO transactions_4 (reason, amount, counterparty, timestamp, balance)
    VALUES ('Purchased 1 x Kite', -2, 3, '2024-02-01T10:00:00.000Z', 2);
CREATE TABLE transactions_9 (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reason TEXT, amount INTEGER, counterparty INTEGER, timestamp TEXT, balance INTEGER
);
INSERT INTO transactions_9 (reason, amount, counterparty, timestamp, balance)
    VALUES ('Orphan', 1, NULL, '2024-02-01T10:00:00.000Z', 1);

CREATE TABLE event_types (
    name TEXT NOT NULL,
    owner INTEGER,
    icon TEXT NOT NULL,
    iconColor TEXT NOT NULL,
    availability INTEGER NOT NULL DEFAULT 0,
    weight INTEGER NOT NULL DEFAULT 1 CHECK (weight >= 1),
    expiration_date TEXT,
    created_at TEXT,
    PRIMARY KEY (name, owner)
);
CREATE TABLE events (
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
    verified_by INTEGER
);

CREATE TABLE products (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL CHECK (length(name) <= 20),
    description TEXT CHECK (length(description) <= 200),
    images TEXT,
    price INTEGER NOT NULL,
    creator INTEGER NOT NULL,
    online INTEGER NOT NULL DEFAULT 0,
    quantity INTEGER NOT NULL DEFAULT 0,
    createdAt TEXT NOT NULL,
    updatedAt TEXT
);
INSERT INTO products (name, description, images, price, creator, online, quantity, createdAt) VALUES
    ('Kite', 'Red kite',
     'products/product_1700000000001.jpg,products/product_1700000000002.jpg', 2, 3, 1, 4, '{STAMP}'),
    ('Ball', NULL, 'products/product_1700000000001.jpg,broken.png', 1, 3, 1, 1, '{STAMP}');

CREATE TABLE purchases (
    order_number INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id INTEGER NOT NULL,
    owner INTEGER NOT NULL,
    price INTEGER NOT NULL,
    quantity INTEGER NOT NULL,
    fullfilled INTEGER NOT NULL DEFAULT 0,
    createdAt TEXT NOT NULL,
    fullfilledAt TEXT
);
INSERT INTO purchases (product_id, owner, price, quantity, fullfilled, createdAt, fullfilledAt) VALUES
    (1, 4, 2, 1, 0, '2024-02-01T10:00:00.000Z', NULL),
    (2, 4, 1, 1, 1, '2024-02-02T10:00:00.000Z', '2024-02-03T10:00:00.000Z'),
    (1, 4, 2, 0, 0, '2024-02-04T10:00:00.000Z', '2024-02-05T10:00:00.000Z');
"""


async def _seed(path, script: str) -> None:
    async with aiosqlite.connect(path) as conn:
        await conn.executescript(script)
        await conn.commit()


async def _tables(db: Database) -> set[str]:
    rows = await db.fetchall("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row["name"] for row in rows}


async def _columns(db: Database, table: str) -> dict[str, aiosqlite.Row]:
    rows = await db.fetchall(f"PRAGMA table_info({table})")
    return {row["name"]: row for row in rows}


@pytest.mark.asyncio
async def test_legacy_v1_database_catches_up_in_one_pass(tmp_path):
    path = tmp_path / "v1.db"
    await _seed(path, LEGACY_V1_SCHEMA)

    db = Database(path)
    await db.initialize()
    try:
        assert await db.get_schema_version() == CURRENT_SCHEMA_VERSION

        users = await db.fetchall("SELECT id, name, code, icon, email, phone FROM users ORDER BY id")
        assert [row["code"] for row in users] == ["0000", "0000", "0042"]
        assert users[2]["icon"] == "icons/mia.jpg"
        assert all(row["email"] == "" and row["phone"] == "" for row in users)

        wallets = await db.fetchall("SELECT owner, assets, credit FROM wallets ORDER BY owner")
        assert [(row["owner"], row["assets"], row["credit"]) for row in wallets] == [
            (1, 5, 100),
            (3, 5, 100),
        ]

        events = await db.fetchall("SELECT id, eventType, owner, photoPath FROM events ORDER BY id")
        assert [(row["eventType"], row["owner"], row["photoPath"]) for row in events] == [
            ("Dishes", 3, "photos/1.jpg"),
            ("Reading", None, None),
        ]
        assert {"verified_at", "verified_by"} <= set(await _columns(db, "events"))

        event_type_columns = await _columns(db, "event_types")
        assert sorted(name for name, row in event_type_columns.items() if row["pk"]) == ["name", "owner"]
        assert {"expiration_date", "created_at"} <= set(event_type_columns)

        assert {"products", "purchases", "productImages", "ledger_entries"} <= await _tables(db)
        assert {"status", "canceledAt", "canceledBy"} <= set(await _columns(db, "purchases"))

        assert await db.fetchall("PRAGMA foreign_key_check") == []
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_caught_up_database_reopens_without_bootstrapping(tmp_path):
    path = tmp_path / "v1.db"
    await _seed(path, LEGACY_V1_SCHEMA)

    db = Database(path)
    await db.initialize()
    try:
        versions = await db.fetchall("SELECT version FROM db_version")
        assert [row["version"] for row in versions] == [CURRENT_SCHEMA_VERSION]
        await db.execute("UPDATE users SET name = 'Boss' WHERE id = 1")
        user_count = len(await db.fetchall("SELECT id FROM users"))
    finally:
        await db.close()

    reopened = Database(path)
    await reopened.initialize()
    try:
        assert reopened.schema_version == CURRENT_SCHEMA_VERSION
        versions = await reopened.fetchall("SELECT version FROM db_version")
        assert [row["version"] for row in versions] == [CURRENT_SCHEMA_VERSION]
        users = await reopened.fetchall("SELECT id FROM users")
        assert len(users) == user_count
        assert await reopened.fetchone("SELECT id FROM users WHERE name = 'Admin'") is None
    finally:
        await reopened.close()


@pytest.mark.asyncio
async def test_legacy_v9_database_consolidates_ledgers_and_purchases(tmp_path):
    path = tmp_path / "v9.db"
    await _seed(path, LEGACY_V9_SCHEMA)

    db = Database(path)
    await db.initialize()
    try:
        tables = await _tables(db)
        assert not any(name.startswith("transactions_") for name in tables)

        entries = await db.fetchall(
            "SELECT user_id, reason, amount, counterparty, balance FROM ledger_entries ORDER BY user_id"
        )
        assert [tuple(row) for row in entries] == [
            (3, "Sold 1 x Kite", 2, 4, 7),
            (4, "Purchased 1 x Kite", -2, 3, 2),
        ]

        purchases = await db.fetchall(
            """
            SELECT order_number, quantity, productName, fulfilledAt, status, canceledAt, canceledBy
            FROM purchases ORDER BY order_number
            """
        )
        assert [tuple(row) for row in purchases] == [
            (1, 1, "Kite", None, "pending", None, None),
            (2, 1, "Ball", "2024-02-03T10:00:00.000Z", "fulfilled", None, None),
            (3, 0, "Kite", None, "canceled", "2024-02-05T10:00:00.000Z", None),
        ]
        assert "fullfilledAt" not in await _columns(db, "purchases")

        images = await db.fetchall("SELECT id, referred FROM productImages ORDER BY id")
        assert [tuple(row) for row in images] == [(1700000000001, 5), (1700000000002, 3)]
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_failed_step_rolls_back_the_whole_pass(tmp_path, monkeypatch):
    path = tmp_path / "v9.db"
    await _seed(path, LEGACY_V9_SCHEMA)

    async def broken_step(self, connection):
        raise RuntimeError("boom")

    monkeypatch.setattr(MigrationRunner, "_migration_v12", broken_step)

    db = Database(path)
    with pytest.raises(MigrationError, match=r"Migration v12 \(purchase_status\) failed: boom"):
        await db.initialize()
    assert not db.is_initialized

    async with aiosqlite.connect(path) as conn:
        cursor = await conn.execute("SELECT version FROM db_version")
        assert (await cursor.fetchone())[0] == 9
        cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        tables = {row[0] for row in await cursor.fetchall()}
    assert "transactions_3" in tables
    assert "ledger_entries" not in tables
    assert "productImages" not in tables

    monkeypatch.undo()
    await db.initialize()
    try:
        assert await db.get_schema_version() == CURRENT_SCHEMA_VERSION
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_bootstrap_folds_renamed_legacy_tables(tmp_path):
    path = tmp_path / "old.db"
    await _seed(
        path,
        """
        CREATE TABLE event_types_old (
            name TEXT PRIMARY KEY, icon TEXT NOT NULL, iconColor TEXT NOT NULL,
            availability INTEGER NOT NULL DEFAULT 0
        );
        INSERT INTO event_types_old VALUES ('Walk', 'paw', '#123456', 2);
        CREATE TABLE events_old (
            id INTEGER PRIMARY KEY AUTOINCREMENT, date TEXT NOT NULL, markedAt TEXT NOT NULL,
            eventType TEXT NOT NULL, note TEXT, photoPath TEXT
        );
        INSERT INTO events_old (date, markedAt, eventType, note) VALUES ('2023-12-01', '2023-12-01T09:00:00Z', 'Walk', 'park');
        """,
    )

    db = Database(path)
    await db.initialize()
    try:
        tables = await _tables(db)
        assert "event_types_old" not in tables
        assert "events_old" not in tables

        event_type = await db.fetchone("SELECT name, owner, weight, availability FROM event_types")
        assert tuple(event_type) == ("Walk", 1, 1, 2)

        event = await db.fetchone("SELECT eventType, owner, created_by, is_verified, note FROM events")
        assert tuple(event) == ("Walk", 1, 1, 0, "park")
        assert await db.get_schema_version() == CURRENT_SCHEMA_VERSION
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_unparsable_images_are_logged_and_skipped(tmp_path):
    path = tmp_path / "v9.db"
    await _seed(path, LEGACY_V9_SCHEMA)

    records: list[logging.LogRecord] = []

    class _Collector(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            records.append(record)

    handler = _Collector(level=logging.WARNING)
    logger = logging.getLogger("sticker_core")
    logger.addHandler(handler)

    db = Database(path)
    try:
        await db.initialize()
    finally:
        logger.removeHandler(handler)
        await db.close()

    messages = [record.getMessage() for record in records]
    assert any("broken.png" in message for message in messages)


def test_relative_media_path():
    assert relative_media_path("file:///x/files/photos/a.jpg", "photos/") == "photos/a.jpg"
    assert relative_media_path("file:///x/files/other/a.jpg", "photos/") is None
    assert relative_media_path(None, "icons/") is None


def test_parse_image_ids():
    ids, rejected = parse_image_ids("products/product_12.jpg, bad.png,,products/product_7.jpg")
    assert ids == [12, 7]
    assert rejected == ["bad.png"]
