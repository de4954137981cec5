"""
SQLAlchemy implementations of the catalog and order stores.

Each operation opens its own session from the Database it was constructed
with, so order creation (phase one) and the stock batch (phase two) commit
independently.
"""
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from storefront_checkout.core.errors import (
    OrderNumberCollision,
    StockDecrementRejected,
    StorageConflict,
    TransientStorageError,
)
from storefront_checkout.core.stores import (
    OrderLine,
    OrderRecord,
    ProductRecord,
    StockLine,
)
from storefront_checkout.database.connection import Database
from storefront_checkout.database.models import Order, OrderItem, Product, StockAdjustment

logger = structlog.get_logger(__name__)

INVENTORY_BACKLOG_STATUSES = ("pending", "failed")


def _to_record(order: Order) -> OrderRecord:
    return OrderRecord(
        order_number=order.order_number,
        buyer_id=order.buyer_id,
        email=order.email,
        items=[
            OrderLine(
                product_id=item.product_id,
                quantity=item.quantity,
                price_at_purchase=item.price_at_purchase,
                product_name=item.product_name,
            )
            for item in order.items
        ],
        total=order.total,
        currency=order.currency,
        payment_id=order.payment_id,
        payment_reference=order.payment_reference,
        address=dict(order.address or {}),
        created_at=order.created_at,
        status=order.status,
        inventory_status=order.inventory_status,
        inventory_attempts=order.inventory_attempts,
        inventory_error=order.inventory_error,
    )


def merge_stock_lines(lines: Sequence[StockLine]) -> "OrderedDict[str, int]":
    """
    Sum quantities per product and sort by product id.

    Updating rows in a stable order keeps two concurrent batches over the
    same products from deadlocking each other.
    """
    totals: Dict[str, int] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return OrderedDict(sorted(totals.items()))


class SqlCatalogStore:
    """Catalog reads and the conditional stock batch."""

    def __init__(self, database: Database):
        self.database = database

    async def get_products(self, product_ids: Sequence[str]) -> Dict[str, ProductRecord]:
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}

        try:
            async with self.database.session() as session:
                result = await session.execute(select(Product).where(Product.id.in_(ids)))
                products = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("catalog_read_failed", error=str(e), product_count=len(ids))
            raise TransientStorageError(f"Catalog read failed: {e}")

        return {
            p.id: ProductRecord(id=p.id, name=p.name, price=p.price, stock=p.stock)
            for p in products
        }

    async def apply_stock_batch(self, order_number: str, lines: Sequence[StockLine]) -> bool:
        """
        Decrement stock for an order's products in one transaction.

        Each decrement is a conditional UPDATE (``stock >= quantity``) so two
        concurrent orders can never lose an update or drive stock negative.
        The ledger row is inserted first; if it already exists the batch was
        applied before and nothing changes.
        """
        merged = merge_stock_lines(lines)

        try:
            async with self.database.session() as session:
                async with session.begin():
                    session.add(
                        StockAdjustment(
                            order_number=order_number,
                            lines=[
                                {"product_id": pid, "quantity": qty}
                                for pid, qty in merged.items()
                            ],
                        )
                    )
                    await session.flush()

                    for product_id, quantity in merged.items():
                        stmt = (
                            update(Product)
                            .where(Product.id == product_id, Product.stock >= quantity)
                            .values(stock=Product.stock - quantity)
                            .execution_options(synchronize_session=False)
                        )
                        result = await session.execute(stmt)
                        if result.rowcount != 1:
                            logger.warning(
                                "stock_decrement_rejected",
                                order_number=order_number,
                                product_id=product_id,
                                quantity=quantity,
                            )
                            raise StockDecrementRejected(product_id, quantity)

        except IntegrityError:
            # Only the ledger insert can conflict; the batch is already in.
            logger.info("stock_batch_already_applied", order_number=order_number)
            return False
        except SQLAlchemyError as e:
            logger.error("stock_batch_failed", order_number=order_number, error=str(e))
            raise TransientStorageError(f"Stock update failed: {e}")

        logger.info(
            "stock_batch_applied",
            order_number=order_number,
            products=len(merged),
        )
        return True


class SqlOrderStore:
    """Order persistence with uniqueness on payment id and order number."""

    def __init__(self, database: Database):
        self.database = database

    async def insert_order(self, order: OrderRecord) -> OrderRecord:
        row = Order(
            order_number=order.order_number,
            buyer_id=order.buyer_id,
            email=order.email,
            total=order.total,
            currency=order.currency,
            status=order.status,
            payment_id=order.payment_id,
            payment_reference=order.payment_reference,
            address=order.address,
            inventory_status=order.inventory_status,
            created_at=order.created_at,
            updated_at=order.created_at,
            items=[
                OrderItem(
                    position=position,
                    product_id=line.product_id,
                    product_name=line.product_name,
                    quantity=line.quantity,
                    price_at_purchase=line.price_at_purchase,
                )
                for position, line in enumerate(order.items)
            ],
        )

        try:
            async with self.database.session() as session:
                async with session.begin():
                    session.add(row)
        except IntegrityError as e:
            await self._raise_conflict(order, e)
        except SQLAlchemyError as e:
            logger.error("order_insert_failed", payment_id=order.payment_id, error=str(e))
            raise TransientStorageError(f"Order insert failed: {e}")

        logger.info(
            "order_inserted",
            order_number=order.order_number,
            payment_id=order.payment_id,
        )
        return order

    async def _raise_conflict(self, order: OrderRecord, error: IntegrityError) -> None:
        """Work out which uniqueness constraint an insert tripped over."""
        try:
            async with self.database.session() as session:
                by_payment = await session.scalar(
                    select(func.count()).select_from(Order).where(
                        Order.payment_id == order.payment_id
                    )
                )
                by_number = await session.scalar(
                    select(func.count()).select_from(Order).where(
                        Order.order_number == order.order_number
                    )
                )
        except SQLAlchemyError as e:
            raise TransientStorageError(f"Order conflict lookup failed: {e}")

        if by_payment:
            raise StorageConflict(order.payment_id)
        if by_number:
            raise OrderNumberCollision(f"Order number {order.order_number} is taken")

        logger.error("order_insert_integrity_error", payment_id=order.payment_id, error=str(error))
        raise TransientStorageError(f"Order insert rejected: {error}")

    async def find_by_payment_id(self, payment_id: str) -> Optional[OrderRecord]:
        try:
            async with self.database.session() as session:
                result = await session.execute(
                    select(Order).where(Order.payment_id == payment_id)
                )
                order = result.scalar_one_or_none()
                return _to_record(order) if order is not None else None
        except SQLAlchemyError as e:
            logger.error("order_lookup_failed", payment_id=payment_id, error=str(e))
            raise TransientStorageError(f"Order lookup failed: {e}")

    async def mark_inventory(
        self, order_number: str, status: str, error: Optional[str] = None
    ) -> None:
        values = {
            "inventory_status": status,
            "inventory_error": error[:1024] if error else None,
            "inventory_attempts": Order.inventory_attempts + 1,
        }
        try:
            async with self.database.session() as session:
                async with session.begin():
                    await session.execute(
                        update(Order)
                        .where(Order.order_number == order_number)
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
        except SQLAlchemyError as e:
            logger.error(
                "order_inventory_mark_failed",
                order_number=order_number,
                status=status,
                error=str(e),
            )
            raise TransientStorageError(f"Order update failed: {e}")

    async def list_inventory_backlog(
        self, older_than: datetime, max_attempts: int, limit: int
    ) -> List[OrderRecord]:
        stmt = (
            select(Order)
            .where(
                Order.inventory_status.in_(INVENTORY_BACKLOG_STATUSES),
                Order.created_at <= older_than,
                Order.inventory_attempts < max_attempts,
            )
            .order_by(Order.created_at)
            .limit(limit)
        )
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                return [_to_record(order) for order in result.scalars().all()]
        except SQLAlchemyError as e:
            raise TransientStorageError(f"Inventory backlog query failed: {e}")

    async def count_inventory_backlog(self) -> int:
        try:
            async with self.database.session() as session:
                count = await session.scalar(
                    select(func.count()).select_from(Order).where(
                        Order.inventory_status.in_(INVENTORY_BACKLOG_STATUSES)
                    )
                )
        except SQLAlchemyError as e:
            raise TransientStorageError(f"Inventory backlog count failed: {e}")
        return int(count or 0)
