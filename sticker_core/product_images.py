"""Reference counting for product image files.

A product image is identified by the number in its file name
(``products/product_<digits>.jpg``). Products and purchase snapshots that show
an image each hold one reference; when the last one goes away the row is
removed and the file is deleted from the media directory.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, Optional

import aiosqlite

from .constants import IMAGE_PATH_SEPARATOR, PRODUCT_IMAGE_PATTERN
from .database import Database
from .errors import NotFoundError, ValidationError
from .logger import get_logger

logger = get_logger()

_IMAGE_ID = re.compile(PRODUCT_IMAGE_PATTERN)


def generate_image_id(image_path: str) -> Optional[int]:
    """Numeric id embedded in a product image path, or None if it has none."""
    match = _IMAGE_ID.search(image_path or "")
    if not match:
        return None
    return int(match.group(1)) or None


def split_images(images: Optional[str]) -> list[str]:
    if not images:
        return []
    return [entry.strip() for entry in images.split(IMAGE_PATH_SEPARATOR) if entry.strip()]


def join_images(paths: Iterable[str]) -> Optional[str]:
    joined = IMAGE_PATH_SEPARATOR.join(paths)
    return joined or None


def _validate_referred(referred: int) -> None:
    if referred <= 0:
        raise ValidationError("Referred must be a positive integer")


class ProductImageStore:
    def __init__(self, db: Database, media_root: Path | None = None) -> None:
        self.db = db
        self.media_root = media_root

    async def create_product_image(self, image_id: int, referred: int = 1) -> None:
        _validate_referred(referred)
        async with self.db.transaction() as conn:
            await conn.execute(
                "INSERT INTO productImages (id, referred) VALUES (?, ?)", (image_id, referred)
            )

    async def get_product_images(self) -> list[aiosqlite.Row]:
        return await self.db.fetchall("SELECT id, referred FROM productImages ORDER BY id")

    async def get_product_image_by_id(self, image_id: int) -> Optional[aiosqlite.Row]:
        return await self.db.fetchone(
            "SELECT id, referred FROM productImages WHERE id = ?", (image_id,)
        )

    async def get_image_refer(self, image_path: str) -> Optional[aiosqlite.Row]:
        image_id = generate_image_id(image_path)
        if image_id is None:
            return None
        return await self.get_product_image_by_id(image_id)

    async def update_product_image(self, image_id: int, referred: Optional[int] = None) -> None:
        if referred is None:
            return
        _validate_referred(referred)
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE productImages SET referred = ? WHERE id = ?", (referred, image_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Product image {image_id} not found")

    async def delete_product_image(self, image_id: int) -> None:
        async with self.db.transaction() as conn:
            await conn.execute("DELETE FROM productImages WHERE id = ?", (image_id,))
        logger.debug(f"Removed image reference row {image_id}")

    async def add_references(self, image_paths: Iterable[str]) -> None:
        """Count one more holder for each path; paths without an id are skipped with a warning."""
        async with self.db.transaction() as conn:
            for image_path in image_paths:
                image_id = generate_image_id(image_path)
                if image_id is None:
                    logger.warning(f"Failed to add {image_path} to productImages")
                    continue
                await conn.execute(
                    """
                    INSERT INTO productImages (id, referred) VALUES (?, 1)
                    ON CONFLICT(id) DO UPDATE SET referred = referred + 1
                    """,
                    (image_id,),
                )

    async def release_references(self, image_paths: Iterable[str]) -> list[str]:
        """Drop one holder per path and return the paths nobody refers to any more.

        Deleting those files is left to the caller, after its transaction commits.
        """
        released: list[str] = []
        async with self.db.transaction() as conn:
            for image_path in image_paths:
                image_id = generate_image_id(image_path)
                row = None
                if image_id is not None:
                    cursor = await conn.execute(
                        "SELECT referred FROM productImages WHERE id = ?", (image_id,)
                    )
                    row = await cursor.fetchone()

                if row is not None and row["referred"] > 1:
                    await conn.execute(
                        "UPDATE productImages SET referred = referred - 1 WHERE id = ?",
                        (image_id,),
                    )
                    continue

                if row is not None:
                    await conn.execute("DELETE FROM productImages WHERE id = ?", (image_id,))
                released.append(image_path)
        return released

    def discard_files(self, image_paths: Iterable[str]) -> None:
        """Best-effort removal of released image files below ``media_root``."""
        if self.media_root is None:
            return
        for image_path in image_paths:
            file_path = self.media_root / image_path
            if not file_path.exists():
                logger.warning(f"Unsaved image not found: {file_path}")
                continue
            try:
                file_path.unlink()
                logger.info(f"Deleted image: {file_path}")
            except OSError as e:
                logger.warning(f"Failed to delete image {file_path}: {e}")

    async def add_reference(self, image_path: str) -> None:
        await self.add_references([image_path])

    async def remove_reference(self, image_path: str) -> None:
        released = await self.release_references([image_path])
        self.discard_files(released)
