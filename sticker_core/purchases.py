"""Marketplace purchases: buying, cancelling and fulfilling orders."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence

import aiosqlite

from .database import Database
from .errors import (
    InsufficientAssetsError,
    InsufficientQuantityError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from .logger import get_logger
from .product_images import ProductImageStore, join_images, split_images
from .utils.reasons import get_reason
from .utils.timestamps import utc_now_iso
from .wallets import WalletStore

logger = get_logger()


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    CANCELED = "canceled"


PURCHASE_COLUMNS = (
    "order_number, product_id, owner, price, quantity, createdAt, fulfilledAt, "
    "productName, description, images, fulfilledBy, status, canceledAt, canceledBy"
)

PURCHASE_DETAIL_QUERY = """
    SELECT p.order_number, p.product_id, p.owner, p.price, p.quantity, p.createdAt,
           p.fulfilledAt, p.productName, p.description, p.images, p.fulfilledBy,
           p.status, p.canceledAt, p.canceledBy,
           u.name AS ownerName, u.icon AS ownerIcon,
           uf.name AS fulfilledByName, uf.icon AS fulfilledByIcon,
           uc.name AS canceledByName
    FROM purchases p
    LEFT JOIN users u ON p.owner = u.id
    LEFT JOIN users uf ON p.fulfilledBy = uf.id
    LEFT JOIN users uc ON p.canceledBy = uc.id
"""


def _as_image_list(images: Optional[Sequence[str] | str]) -> list[str]:
    if images is None:
        return []
    if isinstance(images, str):
        return split_images(images)
    return [image for image in images if image]


class PurchaseStore:
    def __init__(self, db: Database, wallets: WalletStore, images: ProductImageStore) -> None:
        self.db = db
        self.wallets = wallets
        self.images = images

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_purchases(self) -> list[aiosqlite.Row]:
        return await self.db.fetchall(f"SELECT {PURCHASE_COLUMNS} FROM purchases ORDER BY order_number")

    async def get_all_purchases(self) -> list[aiosqlite.Row]:
        return await self.db.fetchall(PURCHASE_DETAIL_QUERY + " ORDER BY p.order_number")

    async def get_purchase_by_order_number(self, order_number: int) -> Optional[aiosqlite.Row]:
        return await self.db.fetchone(
            PURCHASE_DETAIL_QUERY + " WHERE p.order_number = ?", (order_number,)
        )

    async def get_purchases_by_user(self, user_id: int) -> list[aiosqlite.Row]:
        return await self.db.fetchall(
            PURCHASE_DETAIL_QUERY + " WHERE p.owner = ? ORDER BY p.createdAt DESC, p.order_number DESC",
            (user_id,),
        )

    async def _get_for_update(self, conn: aiosqlite.Connection, order_number: int) -> aiosqlite.Row:
        cursor = await conn.execute(
            f"SELECT {PURCHASE_COLUMNS} FROM purchases WHERE order_number = ?", (order_number,)
        )
        purchase = await cursor.fetchone()
        if purchase is None:
            raise NotFoundError(f"Purchase with order_number {order_number} not found")
        return purchase

    # ------------------------------------------------------------------
    # Plain record management
    # ------------------------------------------------------------------

    async def create_purchase(
        self,
        product_id: int,
        owner: int,
        price: int,
        quantity: int,
        product_name: str,
        description: Optional[str] = None,
        images: Optional[Sequence[str] | str] = None,
        created_at: Optional[str] = None,
    ) -> int:
        """Insert a pending purchase snapshot and count its images. No assets move."""
        image_list = _as_image_list(images)
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO purchases (product_id, owner, price, quantity, createdAt, fulfilledAt,
                                       productName, description, images, fulfilledBy, status)
                VALUES (?, ?, ?, ?, ?, NULL, ?, ?, ?, NULL, ?)
                """,
                (
                    product_id,
                    owner,
                    price,
                    quantity,
                    created_at or utc_now_iso(),
                    product_name,
                    description or None,
                    join_images(image_list),
                    PurchaseStatus.PENDING.value,
                ),
            )
            order_number = cursor.lastrowid
            await self.images.add_references(image_list)
        return order_number

    async def update_purchase(
        self,
        order_number: int,
        *,
        product_id: Optional[int] = None,
        owner: Optional[int] = None,
        price: Optional[int] = None,
        quantity: Optional[int] = None,
    ) -> None:
        """
        Change the unit price or quantity of a pending purchase.

        The difference is settled in the same transaction: the buyer pays
        (or gets back) the change in total cost, the seller receives (or
        returns) it, and the product stock absorbs the change in quantity.
        A later cancel therefore reverses exactly what was paid. Moving an
        order to another product or buyer is refused; cancel it instead.

        Raises:
            NotFoundError: Purchase or product missing
            InvalidStateError: The order is not pending, or product/owner would change
            ValidationError: Negative price or quantity below 1
            InsufficientQuantityError: Not enough stock for a larger quantity
            InsufficientAssetsError: Buyer or seller cannot cover the difference
        """
        if price is not None and price < 0:
            raise ValidationError("Unit price must not be negative")
        if quantity is not None and quantity < 1:
            raise ValidationError("Purchase quantity must be at least 1")

        async with self.db.transaction() as conn:
            purchase = await self._get_for_update(conn, order_number)
            if purchase["status"] != PurchaseStatus.PENDING.value:
                raise InvalidStateError(
                    f"Cannot update purchase with order_number {order_number} "
                    f"because it is {purchase['status']}"
                )
            if product_id is not None and product_id != purchase["product_id"]:
                raise InvalidStateError("Cannot move a placed order to another product")
            if owner is not None and owner != purchase["owner"]:
                raise InvalidStateError("Cannot move a placed order to another buyer")

            new_price = purchase["price"] if price is None else price
            new_quantity = purchase["quantity"] if quantity is None else quantity
            if (new_price, new_quantity) == (purchase["price"], purchase["quantity"]):
                return

            cursor = await conn.execute(
                "SELECT id, creator, quantity FROM products WHERE id = ?", (purchase["product_id"],)
            )
            product = await cursor.fetchone()
            if product is None:
                raise NotFoundError(f"Product with ID {purchase['product_id']} not found")

            extra_units = new_quantity - purchase["quantity"]
            if extra_units > product["quantity"]:
                raise InsufficientQuantityError("Insufficient product quantity")

            timestamp = utc_now_iso()
            difference = new_price * new_quantity - purchase["price"] * purchase["quantity"]
            if difference:
                buyer_id = purchase["owner"]
                seller_id = product["creator"]
                reason = get_reason(
                    "order_adjusted",
                    quantity=new_quantity,
                    product_name=purchase["productName"],
                    product_id=purchase["product_id"],
                    unit_price=new_price,
                    order_number=order_number,
                )
                await self.wallets.move_assets(
                    buyer_id,
                    -difference,
                    reason,
                    seller_id,
                    timestamp=timestamp,
                    missing_message="Buyer wallet not found",
                    insufficient_message="Insufficient credit",
                )
                await self.wallets.move_assets(
                    seller_id,
                    difference,
                    reason,
                    buyer_id,
                    timestamp=timestamp,
                    missing_message="Creator wallet not found",
                    insufficient_message=f"Insufficient assets to adjust order {order_number}",
                )

            if extra_units:
                await conn.execute(
                    "UPDATE products SET quantity = quantity - ?, updatedAt = ? WHERE id = ?",
                    (extra_units, timestamp, product["id"]),
                )
            await conn.execute(
                "UPDATE purchases SET price = ?, quantity = ? WHERE order_number = ?",
                (new_price, new_quantity, order_number),
            )

        logger.info(
            f"Order {order_number} adjusted to {new_quantity} x {new_price} "
            f"(difference {difference})"
        )

    async def delete_purchase(self, order_number: int) -> None:
        """Delete an unfulfilled purchase record and release its snapshot images."""
        async with self.db.transaction() as conn:
            purchase = await self._get_for_update(conn, order_number)
            if purchase["status"] == PurchaseStatus.FULFILLED.value:
                raise InvalidStateError(
                    f"Cannot delete purchase with order_number {order_number} because it is fulfilled"
                )
            await conn.execute("DELETE FROM purchases WHERE order_number = ?", (order_number,))
            released = await self.images.release_references(split_images(purchase["images"]))

        self.images.discard_files(released)
        logger.info(f"Deleted purchase {order_number}")

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def process_purchase(
        self,
        buyer_id: int,
        product_id: int,
        quantity: int,
        unit_price: Optional[int] = None,
        product_name: Optional[str] = None,
        description: Optional[str] = None,
        images: Optional[Sequence[str] | str] = None,
    ) -> int:
        """
        Buy ``quantity`` units of a product.

        The buyer pays ``unit_price * quantity`` assets to the product's
        creator, the stock goes down, and a pending purchase snapshot plus
        one ledger entry per party are written, all in one transaction.
        Snapshot fields left as None are copied from the product.

        Returns:
            The product's remaining quantity
        """
        if quantity < 1:
            raise ValidationError("Purchase quantity must be at least 1")

        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "SELECT id, name, description, images, price, creator, quantity FROM products WHERE id = ?",
                (product_id,),
            )
            product = await cursor.fetchone()
            if product is None:
                raise NotFoundError("Product not found")
            if product["creator"] == buyer_id:
                raise InvalidStateError("Cannot purchase own product")
            if product["quantity"] < quantity:
                raise InsufficientQuantityError("Insufficient product quantity")

            if unit_price is None:
                unit_price = product["price"]
            if unit_price < 0:
                raise ValidationError("Unit price must not be negative")
            total_cost = unit_price * quantity
            seller_id = product["creator"]

            buyer_wallet = await self.wallets.get_wallet(buyer_id)
            if buyer_wallet is None:
                raise NotFoundError("Buyer wallet not found")
            if buyer_wallet["assets"] < total_cost:
                raise InsufficientAssetsError("Insufficient credit")
            if await self.wallets.get_wallet(seller_id) is None:
                raise NotFoundError("Creator wallet not found")

            product_name = product_name or product["name"]
            if description is None:
                description = product["description"]
            image_list = _as_image_list(images if images is not None else product["images"])

            new_quantity = product["quantity"] - quantity
            await conn.execute(
                "UPDATE products SET quantity = ?, updatedAt = ? WHERE id = ?",
                (new_quantity, utc_now_iso(), product_id),
            )

            timestamp = utc_now_iso()
            order_number = await self.create_purchase(
                product_id,
                buyer_id,
                unit_price,
                quantity,
                product_name,
                description,
                image_list,
                created_at=timestamp,
            )

            reason_args = dict(
                quantity=quantity,
                product_name=product_name,
                product_id=product_id,
                unit_price=unit_price,
                order_number=order_number,
            )
            await self.wallets.move_assets(
                buyer_id,
                -total_cost,
                get_reason("purchased", **reason_args),
                seller_id,
                timestamp=timestamp,
                missing_message="Buyer wallet not found",
                insufficient_message="Insufficient credit",
            )
            await self.wallets.move_assets(
                seller_id,
                total_cost,
                get_reason("sold", **reason_args),
                buyer_id,
                timestamp=timestamp,
                missing_message="Creator wallet not found",
            )

        logger.info(
            f"Order {order_number}: user {buyer_id} bought {quantity} x product {product_id} "
            f"from {seller_id} for {total_cost}"
        )
        return new_quantity

    async def cancel_purchase(self, order_number: int, actor_id: int) -> None:
        """
        Cancel a pending purchase and reverse everything it did.

        The buyer is refunded, the seller debited, the stock restored and the
        order marked canceled by ``actor_id``. If the seller no longer holds
        enough assets nothing changes.
        """
        async with self.db.transaction() as conn:
            purchase = await self._get_for_update(conn, order_number)
            if purchase["status"] == PurchaseStatus.CANCELED.value:
                raise InvalidStateError(
                    f"Purchase with order_number {order_number} is already canceled"
                )
            if purchase["status"] == PurchaseStatus.FULFILLED.value:
                raise InvalidStateError(
                    f"Purchase with order_number {order_number} is already fulfilled"
                )

            cursor = await conn.execute(
                "SELECT id, creator, quantity FROM products WHERE id = ?", (purchase["product_id"],)
            )
            product = await cursor.fetchone()
            if product is None:
                raise NotFoundError(f"Product with ID {purchase['product_id']} not found")

            total_cost = purchase["price"] * purchase["quantity"]
            buyer_id = purchase["owner"]
            seller_id = product["creator"]
            timestamp = utc_now_iso()
            reason_args = dict(
                quantity=purchase["quantity"],
                product_name=purchase["productName"],
                product_id=purchase["product_id"],
                unit_price=purchase["price"],
                order_number=order_number,
            )

            await self.wallets.move_assets(
                buyer_id,
                total_cost,
                get_reason("refund_for", **reason_args),
                seller_id,
                timestamp=timestamp,
                missing_message=f"Buyer wallet for user {buyer_id} not found",
            )
            await self.wallets.move_assets(
                seller_id,
                -total_cost,
                get_reason("deduction_for_refund", **reason_args),
                buyer_id,
                timestamp=timestamp,
                missing_message=f"Creator wallet for user {seller_id} not found",
                insufficient_message=f"Insufficient assets to refund order {order_number}",
            )

            await conn.execute(
                "UPDATE products SET quantity = quantity + ?, updatedAt = ? WHERE id = ?",
                (purchase["quantity"], timestamp, product["id"]),
            )
            await conn.execute(
                """
                UPDATE purchases SET status = ?, canceledAt = ?, canceledBy = ?
                WHERE order_number = ?
                """,
                (PurchaseStatus.CANCELED.value, timestamp, actor_id, order_number),
            )

        logger.info(f"Order {order_number} canceled by {actor_id}: {total_cost} refunded to {buyer_id}")

    async def fulfill_purchase(
        self,
        order_number: int,
        fulfilled_by: int,
        fulfilled_at: Optional[str] = None,
    ) -> None:
        """Mark a pending purchase as handed over. No assets move."""
        async with self.db.transaction() as conn:
            purchase = await self._get_for_update(conn, order_number)
            if purchase["status"] == PurchaseStatus.FULFILLED.value:
                raise InvalidStateError(
                    f"Purchase with order_number {order_number} is already fulfilled"
                )
            if purchase["status"] == PurchaseStatus.CANCELED.value:
                raise InvalidStateError(
                    f"Purchase with order_number {order_number} is already canceled"
                )

            cursor = await conn.execute("SELECT 1 FROM users WHERE id = ?", (fulfilled_by,))
            if await cursor.fetchone() is None:
                raise NotFoundError(f"User with ID {fulfilled_by} not found")

            await conn.execute(
                """
                UPDATE purchases SET status = ?, fulfilledAt = ?, fulfilledBy = ?
                WHERE order_number = ?
                """,
                (PurchaseStatus.FULFILLED.value, fulfilled_at or utc_now_iso(), fulfilled_by, order_number),
            )
        logger.info(f"Order {order_number} fulfilled by {fulfilled_by}")
