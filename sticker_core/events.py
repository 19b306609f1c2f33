"""Event types, recorded events and their verification."""

from __future__ import annotations

from typing import Any, Optional

import aiosqlite

from .database import Database
from .errors import InvalidStateError, NotFoundError, ValidationError
from .logger import get_logger
from .utils.reasons import get_reason
from .utils.timestamps import utc_now_iso
from .wallets import WalletStore

logger = get_logger()

EVENT_COLUMNS = (
    "id, date, markedAt, eventType, owner, note, photoPath, "
    "created_by, is_verified, verified_at, verified_by"
)
EVENT_TYPE_COLUMNS = "name, owner, icon, iconColor, availability, weight, expiration_date, created_at"

_UNSET: Any = object()


def _validate_weight(weight: int) -> None:
    if weight < 1:
        raise ValidationError("Weight must be at least 1")


class EventStore:
    def __init__(self, db: Database, wallets: WalletStore) -> None:
        self.db = db
        self.wallets = wallets

    # ------------------------------------------------------------------
    # Event types
    # ------------------------------------------------------------------

    async def insert_event_type(
        self,
        name: str,
        icon: str,
        icon_color: str,
        availability: int = 0,
        owner: Optional[int] = None,
        weight: int = 1,
        expiration_date: Optional[str] = None,
        created_at: Optional[str] = None,
    ) -> None:
        _validate_weight(weight)
        async with self.db.transaction() as conn:
            await conn.execute(
                f"INSERT INTO event_types ({EVENT_TYPE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    name,
                    owner,
                    icon,
                    icon_color,
                    availability,
                    weight,
                    expiration_date,
                    created_at or utc_now_iso(),
                ),
            )

    async def get_event_type(self, name: str, owner: Optional[int]) -> Optional[aiosqlite.Row]:
        return await self.db.fetchone(
            f"SELECT {EVENT_TYPE_COLUMNS} FROM event_types WHERE name = ? AND owner IS ?",
            (name, owner),
        )

    async def get_event_types(self) -> list[aiosqlite.Row]:
        return await self.db.fetchall(f"SELECT {EVENT_TYPE_COLUMNS} FROM event_types")

    async def get_event_types_with_owner(self) -> list[aiosqlite.Row]:
        """Event types with their owner's name and how many events they hold."""
        return await self.db.fetchall(
            """
            SELECT et.name, et.owner, et.icon, et.iconColor, et.availability, et.weight,
                   et.expiration_date, et.created_at, u.name AS ownerName, COUNT(e.id) AS eventCount
            FROM event_types et
            LEFT JOIN users u ON et.owner = u.id
            LEFT JOIN events e ON et.name = e.eventType AND et.owner IS e.owner
            GROUP BY et.name, et.owner
            ORDER BY et.created_at
            """
        )

    async def update_event_type(
        self,
        old_name: str,
        old_owner: Optional[int],
        icon: str,
        icon_color: str,
        *,
        availability: Optional[int] = None,
        new_name: Optional[str] = None,
        owner: Any = _UNSET,
        weight: Optional[int] = None,
        expiration_date: Any = _UNSET,
    ) -> None:
        """Update an event type; renaming or re-owning it carries its events along."""
        assignments = ["icon = ?", "iconColor = ?"]
        values: list[Any] = [icon, icon_color]

        if new_name is not None:
            assignments.append("name = ?")
            values.append(new_name)
        if owner is not _UNSET:
            assignments.append("owner = ?")
            values.append(owner)
        if availability is not None:
            assignments.append("availability = ?")
            values.append(availability)
        if weight is not None:
            _validate_weight(weight)
            assignments.append("weight = ?")
            values.append(weight)
        if expiration_date is not _UNSET:
            assignments.append("expiration_date = ?")
            values.append(expiration_date or None)

        target_name = new_name if new_name is not None else old_name
        target_owner = owner if owner is not _UNSET else old_owner
        key_changed = target_name != old_name or target_owner != old_owner

        async with self.db.transaction() as conn:
            if key_changed:
                # events reference (name, owner); checked again at COMMIT
                await conn.execute("PRAGMA defer_foreign_keys = ON")

            cursor = await conn.execute(
                f"UPDATE event_types SET {', '.join(assignments)} WHERE name = ? AND owner IS ?",
                (*values, old_name, old_owner),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Event type not found")

            if key_changed:
                await conn.execute(
                    "UPDATE events SET eventType = ?, owner = ? WHERE eventType = ? AND owner IS ?",
                    (target_name, target_owner, old_name, old_owner),
                )

    async def has_associated_achievements(self, name: str, owner: Optional[int]) -> bool:
        row = await self.db.fetchone(
            "SELECT COUNT(*) AS count FROM events WHERE eventType = ? AND owner IS ?",
            (name, owner),
        )
        return bool(row and row["count"])

    async def delete_event_type(self, name: str, owner: Optional[int]) -> None:
        if await self.has_associated_achievements(name, owner):
            raise InvalidStateError("Cannot delete an event type that still has events")
        async with self.db.transaction() as conn:
            await conn.execute(
                "DELETE FROM event_types WHERE name = ? AND owner IS ?", (name, owner)
            )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def insert_event(
        self,
        date: str,
        marked_at: str,
        event_type: str,
        owner: Optional[int],
        created_by: int,
        note: Optional[str] = None,
        photo_path: Optional[str] = None,
        is_verified: bool = False,
    ) -> int:
        """Record an event; an event type with availability N allows N events per day."""
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "SELECT availability FROM event_types WHERE name = ? AND owner IS ?",
                (event_type, owner),
            )
            type_row = await cursor.fetchone()
            if type_row is None:
                raise NotFoundError("Event type not found")

            availability = type_row["availability"]
            if availability > 0:
                cursor = await conn.execute(
                    """
                    SELECT COUNT(*) FROM events
                    WHERE eventType = ? AND owner IS ? AND substr(date, 1, 10) = substr(?, 1, 10)
                    """,
                    (event_type, owner, date),
                )
                recorded = (await cursor.fetchone())[0]
                if recorded >= availability:
                    raise InvalidStateError(
                        f"Daily limit of {availability} reached for event type {event_type}"
                    )

            cursor = await conn.execute(
                """
                INSERT INTO events (date, markedAt, eventType, owner, note, photoPath,
                                    created_by, is_verified, verified_at, verified_by)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL, NULL)
                """,
                (
                    date,
                    marked_at,
                    event_type,
                    owner,
                    note or None,
                    photo_path or None,
                    created_by,
                    1 if is_verified else 0,
                ),
            )
            return cursor.lastrowid

    async def get_event(self, event_id: int) -> Optional[aiosqlite.Row]:
        return await self.db.fetchone(f"SELECT {EVENT_COLUMNS} FROM events WHERE id = ?", (event_id,))

    async def fetch_events(self, event_type: str, owner: Optional[int]) -> list[aiosqlite.Row]:
        return await self.db.fetchall(
            f"SELECT {EVENT_COLUMNS} FROM events WHERE eventType = ? AND owner IS ? ORDER BY id",
            (event_type, owner),
        )

    async def fetch_events_with_creator(
        self, event_type: str, owner: Optional[int]
    ) -> list[aiosqlite.Row]:
        return await self.db.fetchall(
            """
            SELECT e.id, e.date, e.markedAt, e.eventType, e.owner, e.note, e.photoPath,
                   e.created_by, e.is_verified, e.verified_at, e.verified_by,
                   u.name AS creatorName, v.name AS verifierName
            FROM events e
            LEFT JOIN users u ON e.created_by = u.id
            LEFT JOIN users v ON e.verified_by = v.id
            WHERE e.eventType = ? AND e.owner IS ?
            ORDER BY e.id
            """,
            (event_type, owner),
        )

    async def fetch_all_events_with_details(self) -> list[aiosqlite.Row]:
        return await self.db.fetchall(
            """
            SELECT e.id, e.date, e.markedAt, e.eventType, e.owner, e.note, e.photoPath,
                   e.created_by, e.is_verified, e.verified_at, e.verified_by,
                   uc.name AS creatorName,
                   uv.name AS verifierName,
                   et.owner AS eventTypeOwner,
                   uo.name AS ownerName
            FROM events e
            LEFT JOIN users uc ON e.created_by = uc.id
            LEFT JOIN users uv ON e.verified_by = uv.id
            LEFT JOIN event_types et ON e.eventType = et.name AND e.owner IS et.owner
            LEFT JOIN users uo ON et.owner = uo.id
            ORDER BY e.date DESC, e.id DESC
            """
        )

    async def fetch_all_events(self) -> list[aiosqlite.Row]:
        return await self.db.fetchall(f"SELECT {EVENT_COLUMNS} FROM events ORDER BY id")

    async def delete_event(self, event_id: int) -> None:
        async with self.db.transaction() as conn:
            await conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
        logger.info(f"Event deleted: {event_id}")

    async def verify_event(self, event_id: int, verifier_id: int) -> None:
        """Mark an event verified without moving any assets."""
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE events SET is_verified = 1, verified_at = ?, verified_by = ? WHERE id = ?",
                (utc_now_iso(), verifier_id, event_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Event not found")
        logger.info(f"Event {event_id} verified by {verifier_id}")

    async def verify_event_with_reward(
        self,
        event_id: int,
        verifier_id: int,
        event_type: str,
        owner_id: Optional[int],
        verifier_reason: Optional[str] = None,
        owner_reason: Optional[str] = None,
    ) -> int:
        """
        Verify an event and pay its weight from the verifier to the event type owner.

        The verifier is debited by the event type's weight and the owner is
        credited the same amount, each with a ledger entry naming the other.
        Without an owner the weight is simply consumed. Everything happens in
        one transaction.

        Returns:
            The weight that was transferred

        Raises:
            NotFoundError: Event type, event or verifier wallet missing
            InvalidStateError: The event is already verified
            InsufficientAssetsError: The verifier holds less than the weight
        """
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "SELECT weight FROM event_types WHERE name = ? AND owner IS ?",
                (event_type, owner_id),
            )
            type_row = await cursor.fetchone()
            if type_row is None:
                raise NotFoundError("Event type not found")
            weight = type_row["weight"]

            cursor = await conn.execute("SELECT is_verified FROM events WHERE id = ?", (event_id,))
            event_row = await cursor.fetchone()
            if event_row is None:
                raise NotFoundError("Event not found")
            if event_row["is_verified"]:
                raise InvalidStateError(f"Event {event_id} is already verified")

            now = utc_now_iso()
            await conn.execute(
                "UPDATE events SET is_verified = 1, verified_at = ?, verified_by = ? WHERE id = ?",
                (now, verifier_id, event_id),
            )

            await self.wallets.move_assets(
                verifier_id,
                -weight,
                verifier_reason or get_reason("verified", event_type=event_type, event_id=event_id),
                owner_id,
                timestamp=now,
                missing_message="Verifier wallet not found",
                insufficient_message="Insufficient assets for verification",
            )

            if owner_id is not None:
                await self.wallets.move_assets(
                    owner_id,
                    weight,
                    owner_reason or get_reason("rewarded", event_type=event_type, event_id=event_id),
                    verifier_id,
                    timestamp=now,
                    missing_message="Owner wallet not found",
                )

        logger.info(
            f"Event {event_id} verified by {verifier_id}: weight {weight} paid to "
            f"{owner_id if owner_id is not None else 'nobody'}"
        )
        return weight
