"""
Storage interfaces the pipeline depends on, and the records they exchange.

The catalog and the order store are external collaborators; the pipeline
only needs the narrow operations below. SQLAlchemy implementations live in
``storefront_checkout.database.repositories``.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Sequence


@dataclass(frozen=True)
class ProductRecord:
    """Catalog view of a product."""

    id: str
    name: str
    price: Decimal
    stock: int


@dataclass(frozen=True)
class StockLine:
    """One product's share of a stock batch."""

    product_id: str
    quantity: int


@dataclass(frozen=True)
class OrderLine:
    product_id: str
    quantity: int
    price_at_purchase: Decimal
    product_name: Optional[str] = None


@dataclass
class OrderRecord:
    """An order as written to, or read from, the order store."""

    order_number: str
    buyer_id: str
    email: str
    items: List[OrderLine]
    total: Decimal
    currency: str
    payment_id: str
    payment_reference: Optional[str]
    address: Dict[str, Any]
    created_at: datetime
    status: str = "paid"
    inventory_status: str = "pending"
    inventory_attempts: int = 0
    inventory_error: Optional[str] = None

    def stock_lines(self) -> List[StockLine]:
        return [StockLine(item.product_id, item.quantity) for item in self.items]


class CatalogStore(Protocol):
    async def get_products(self, product_ids: Sequence[str]) -> Dict[str, ProductRecord]:
        """Batched fetch-by-id; missing ids are simply absent from the result."""
        ...

    async def apply_stock_batch(self, order_number: str, lines: Sequence[StockLine]) -> bool:
        """
        Atomically decrement stock for every line, or for none.

        Returns False if the batch for this order was already applied.

        Raises:
            StockDecrementRejected: If any product lacks the stock
            TransientStorageError: On storage failure
        """
        ...


class OrderStore(Protocol):
    async def insert_order(self, order: OrderRecord) -> OrderRecord:
        """
        Insert an order.

        Raises:
            StorageConflict: If an order with the same payment id exists
            OrderNumberCollision: If the order number is taken
            TransientStorageError: On storage failure
        """
        ...

    async def find_by_payment_id(self, payment_id: str) -> Optional[OrderRecord]:
        ...

    async def mark_inventory(
        self, order_number: str, status: str, error: Optional[str] = None
    ) -> None:
        ...

    async def list_inventory_backlog(
        self, older_than: datetime, max_attempts: int, limit: int
    ) -> List[OrderRecord]:
        ...
