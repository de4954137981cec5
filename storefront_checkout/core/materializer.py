"""
Order materialization from captured payments.

Turns a verified ``payment.captured`` event into an order and its stock
decrement, as two explicit phases:

1. Insert the order (``status = paid``, ``inventory_status = pending``).
   The order store's unique payment id makes this exactly-once; losing the
   race to a concurrent delivery of the same payment is a no-op.
2. Apply the order's stock batch atomically, then mark the order
   ``inventory_status = applied``.

If phase 2 fails the order stays durable with ``inventory_status = failed``
and the compensation worker re-applies the batch. Re-running the webhook
would not help: the idempotency guard skips payments that have an order.
"""
import random
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional

import structlog

from storefront_checkout.core.errors import (
    MalformedMetadata,
    OrderNumberCollision,
    PartialFailure,
    StockDecrementRejected,
    StorageConflict,
    TransientStorageError,
)
from storefront_checkout.core.events import PaymentCapturedEvent
from storefront_checkout.core.idempotency import IdempotencyGuard
from storefront_checkout.core.metadata import OrderMetadata, decode_metadata
from storefront_checkout.core.stores import (
    CatalogStore,
    OrderLine,
    OrderRecord,
    OrderStore,
    ProductRecord,
)
from storefront_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

DEFAULT_COUNTRY = "IN"
_BASE36 = string.digits + string.ascii_uppercase


def _base36(value: int) -> str:
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits)) or "0"


def generate_order_number(
    prefix: str = "ORD",
    now_ms: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Human-facing order number, e.g. ``ORD-MGX3K2QD-7F2KQA``.

    The millisecond timestamp prefix makes numbers sort by creation time; the
    random suffix keeps same-millisecond collisions negligible. Uniqueness is
    enforced by the order store, not here.
    """
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    suffix = "".join((rng or random).choices(_BASE36, k=6))
    return f"{prefix}-{_base36(now_ms)}-{suffix}"


@dataclass(frozen=True)
class MaterializationResult:
    status: str  # processed, duplicate
    payment_id: str
    order_number: Optional[str] = None


class OrderMaterializer:
    """Creates the order and applies its stock batch for a captured payment."""

    def __init__(
        self,
        catalog: CatalogStore,
        orders: OrderStore,
        guard: Optional[IdempotencyGuard] = None,
        order_number_prefix: str = "ORD",
        order_number_attempts: int = 3,
        order_number_factory: Optional[Callable[[str], str]] = None,
    ):
        self.catalog = catalog
        self.orders = orders
        self.guard = guard
        self.order_number_prefix = order_number_prefix
        self.order_number_attempts = max(1, order_number_attempts)
        self.order_number_factory = order_number_factory or generate_order_number

    async def materialize(self, event: PaymentCapturedEvent) -> MaterializationResult:
        """
        Materialize the order for a captured payment.

        Raises:
            MalformedMetadata: If the payment notes can't be turned into lines
            PartialFailure: If the order was stored but stock wasn't updated
            TransientStorageError: If storage failed before the order was stored
            OrderNumberCollision: If no free order number was found
        """
        log = logger.bind(payment_id=event.payment_id, order_reference=event.order_reference)

        metadata = decode_metadata(event.notes)
        products = await self.catalog.get_products(metadata.product_ids)
        lines = self._price_lines(metadata, products, log)

        total = Decimal(event.amount_minor_units) / 100
        line_total = sum((line.price_at_purchase * line.quantity for line in lines), Decimal("0"))
        if line_total != total:
            log.warning(
                "order_amount_mismatch",
                captured_total=str(total),
                line_total=str(line_total),
            )

        try:
            order = await self._insert(event, metadata, lines, total, log)
        except StorageConflict:
            log.info("order_already_materialized", source="constraint")
            metrics.record_idempotency_hit("constraint")
            return MaterializationResult(status="duplicate", payment_id=event.payment_id)

        metrics.record_order_materialized()
        await self._apply_stock(order, log)

        if self.guard is not None:
            await self.guard.mark_processed(event.payment_id)

        return MaterializationResult(
            status="processed",
            payment_id=event.payment_id,
            order_number=order.order_number,
        )

    @staticmethod
    def _price_lines(
        metadata: OrderMetadata, products: Dict[str, ProductRecord], log: structlog.BoundLogger
    ) -> List[OrderLine]:
        """
        Fix the price of every line.

        The price embedded at checkout wins. Legacy notes carry no prices, so
        their lines take the current catalog price.
        """
        if not metadata.has_prices:
            log.info("order_priced_from_catalog", metadata_version=metadata.version)

        lines = []
        for item in metadata.items:
            product = products.get(item.product_id)
            price = item.unit_price
            if price is None:
                if product is None:
                    log.warning("order_line_unpriced", product_id=item.product_id)
                    price = Decimal("0")
                else:
                    price = product.price
            lines.append(
                OrderLine(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    price_at_purchase=price,
                    product_name=product.name if product is not None else None,
                )
            )
        return lines

    async def _insert(
        self,
        event: PaymentCapturedEvent,
        metadata: OrderMetadata,
        lines: List[OrderLine],
        total: Decimal,
        log: structlog.BoundLogger,
    ) -> OrderRecord:
        for attempt in range(1, self.order_number_attempts + 1):
            order = OrderRecord(
                order_number=self.order_number_factory(self.order_number_prefix),
                buyer_id=metadata.buyer_id,
                email=metadata.email or event.email or "",
                items=lines,
                total=total,
                currency=event.currency,
                payment_id=event.payment_id,
                payment_reference=event.order_reference,
                address={
                    "name": metadata.display_name,
                    "line1": "",
                    "city": "",
                    "postcode": "",
                    "country": DEFAULT_COUNTRY,
                },
                created_at=datetime.now(timezone.utc),
            )
            try:
                await self.orders.insert_order(order)
            except OrderNumberCollision:
                log.warning(
                    "order_number_collision",
                    order_number=order.order_number,
                    attempt=attempt,
                )
                continue

            log.info(
                "order_created",
                order_number=order.order_number,
                total=str(total),
                lines=len(lines),
            )
            return order

        raise OrderNumberCollision(
            f"No free order number after {self.order_number_attempts} attempts"
        )

    async def _apply_stock(self, order: OrderRecord, log: structlog.BoundLogger) -> None:
        try:
            await self.catalog.apply_stock_batch(order.order_number, order.stock_lines())
        except (StockDecrementRejected, TransientStorageError) as e:
            reason = e.code
            log.critical(
                "order_stock_decrement_failed",
                order_number=order.order_number,
                reason=reason,
                error=str(e),
            )
            metrics.record_stock_decrement_failure(reason)
            try:
                await self.orders.mark_inventory(order.order_number, "failed", str(e))
            except TransientStorageError as mark_error:
                # Still "pending", which the compensation worker also picks up.
                log.error(
                    "order_inventory_mark_failed",
                    order_number=order.order_number,
                    error=str(mark_error),
                )
            raise PartialFailure(order.order_number, str(e)) from e

        try:
            await self.orders.mark_inventory(order.order_number, "applied")
        except TransientStorageError as e:
            # Stock is already applied; the worker's re-run is a ledger no-op.
            log.warning(
                "order_inventory_mark_failed",
                order_number=order.order_number,
                error=str(e),
            )
