"""Marketplace products."""

from __future__ import annotations

from collections import Counter
from typing import Any, Optional

import aiosqlite

from .constants import PRODUCT_DESCRIPTION_MAX_LENGTH, PRODUCT_NAME_MAX_LENGTH
from .database import Database
from .errors import InvalidStateError, NotFoundError, ValidationError
from .logger import get_logger
from .product_images import ProductImageStore, split_images
from .utils.timestamps import utc_now_iso

logger = get_logger()

PRODUCT_COLUMNS = "id, name, description, images, price, creator, online, quantity, createdAt, updatedAt"


def validate_product_fields(
    name: Optional[str] = None,
    description: Optional[str] = None,
    price: Optional[int] = None,
    quantity: Optional[int] = None,
) -> None:
    if name is not None and len(name) > PRODUCT_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Product name must not exceed {PRODUCT_NAME_MAX_LENGTH} characters"
        )
    if description is not None and len(description) > PRODUCT_DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            f"Product description must not exceed {PRODUCT_DESCRIPTION_MAX_LENGTH} characters"
        )
    if price is not None and price < 0:
        raise ValidationError("Product price must not be negative")
    if quantity is not None and quantity < 0:
        raise ValidationError("Product quantity must not be negative")


class ProductStore:
    def __init__(self, db: Database, images: ProductImageStore) -> None:
        self.db = db
        self.images = images

    async def create_product(
        self,
        name: str,
        price: int,
        creator: int,
        description: Optional[str] = None,
        images: Optional[str] = None,
        online: bool = False,
        quantity: int = 0,
        created_at: Optional[str] = None,
    ) -> int:
        validate_product_fields(name, description, price, quantity)
        created_at = created_at or utc_now_iso()

        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO products (name, description, images, price, creator, online,
                                      quantity, createdAt, updatedAt)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name,
                    description or None,
                    images or None,
                    price,
                    creator,
                    1 if online else 0,
                    quantity,
                    created_at,
                    created_at,
                ),
            )
            product_id = cursor.lastrowid
            await self.images.add_references(split_images(images))

        logger.info(f"Created product {product_id} ({name}) for creator {creator}")
        return product_id

    async def get_products(self) -> list[aiosqlite.Row]:
        return await self.db.fetchall(f"SELECT {PRODUCT_COLUMNS} FROM products ORDER BY id")

    async def get_product_by_id(self, product_id: int) -> Optional[aiosqlite.Row]:
        return await self.db.fetchone(
            """
            SELECT p.id, p.name, p.description, p.images, p.price, p.creator, p.online,
                   p.quantity, p.createdAt, p.updatedAt, u.name AS creatorName
            FROM products p
            LEFT JOIN users u ON p.creator = u.id
            WHERE p.id = ?
            """,
            (product_id,),
        )

    async def update_product(
        self,
        product_id: int,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        images: Optional[str] = None,
        price: Optional[int] = None,
        online: Optional[bool] = None,
        quantity: Optional[int] = None,
    ) -> None:
        """Update the given fields; a new image list moves references from the old images to the new ones."""
        validate_product_fields(name, description, price, quantity)

        assignments: list[str] = []
        values: list[Any] = []
        for column, value in (("name", name), ("price", price), ("quantity", quantity)):
            if value is not None:
                assignments.append(f"{column} = ?")
                values.append(value)
        # Empty strings clear these columns
        for column, value in (("description", description), ("images", images)):
            if value is not None:
                assignments.append(f"{column} = ?")
                values.append(value or None)
        if online is not None:
            assignments.append("online = ?")
            values.append(1 if online else 0)

        if not assignments:
            return

        assignments.append("updatedAt = ?")
        values.append(utc_now_iso())

        released: list[str] = []
        async with self.db.transaction() as conn:
            cursor = await conn.execute("SELECT images FROM products WHERE id = ?", (product_id,))
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError("Product not found")

            await conn.execute(
                f"UPDATE products SET {', '.join(assignments)} WHERE id = ?",
                (*values, product_id),
            )

            if images is not None:
                before = Counter(split_images(row["images"]))
                after = Counter(split_images(images))
                await self.images.add_references((after - before).elements())
                released = await self.images.release_references((before - after).elements())

        self.images.discard_files(released)

    async def delete_product(self, product_id: int) -> None:
        """Delete a product that no purchase refers to and release its images."""
        async with self.db.transaction() as conn:
            cursor = await conn.execute("SELECT images FROM products WHERE id = ?", (product_id,))
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError("Product not found")
            if await self.has_purchases_for_product(product_id):
                raise InvalidStateError("Cannot delete a product that has purchases")

            await conn.execute("DELETE FROM products WHERE id = ?", (product_id,))
            released = await self.images.release_references(split_images(row["images"]))

        self.images.discard_files(released)
        logger.info(f"Deleted product {product_id}")

    async def has_purchases_for_product(self, product_id: int) -> bool:
        row = await self.db.fetchone(
            "SELECT COUNT(*) AS count FROM purchases WHERE product_id = ?", (product_id,)
        )
        return bool(row and row["count"])
