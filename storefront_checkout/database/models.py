"""SQLAlchemy database models for the catalog slice, orders and stock ledger."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Product(Base):
    """
    Catalog products.

    Only the fields checkout and fulfillment need; the rest of the product
    document lives in the content store.
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="non_negative_price"),
        CheckConstraint("stock >= 0", name="non_negative_stock"),
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, price={self.price}, stock={self.stock})>"


class Order(Base):
    """
    Orders materialized from captured payments.

    `payment_id` is unique: it is the constraint that makes order creation
    exactly-once under concurrent webhook redelivery.
    """

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    buyer_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="paid")
    payment_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    inventory_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="pending", index=True
    )
    inventory_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    inventory_error: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("total >= 0", name="non_negative_total"),
        CheckConstraint(
            "status IN ('paid', 'shipped', 'delivered', 'cancelled')",
            name="valid_order_status",
        ),
        CheckConstraint(
            "inventory_status IN ('pending', 'applied', 'failed')",
            name="valid_inventory_status",
        ),
        Index("idx_orders_inventory_created", "inventory_status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Order(order_number={self.order_number}, payment_id={self.payment_id}, "
            f"status={self.status}, inventory_status={self.inventory_status})>"
        )


class OrderItem(Base):
    """Order line items; `price_at_purchase` is fixed when the order is created."""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price_at_purchase: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="positive_quantity"),
    )


class StockAdjustment(Base):
    """
    Stock ledger.

    One row per order whose stock batch has been applied, written in the same
    transaction as the decrements. The unique order number makes re-applying a
    batch for the same order a no-op.
    """

    __tablename__ = "stock_adjustments"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    lines: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    def __repr__(self) -> str:
        return f"<StockAdjustment(order_number={self.order_number})>"
