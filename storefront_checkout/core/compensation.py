"""
Out-of-band compensation for orders whose stock batch was not applied.

When the materializer stores an order but fails to decrement stock, the
order is left with ``inventory_status`` of ``failed`` (or ``pending`` if even
that update failed). This engine finds such orders and re-applies their
stock batch. The stock ledger makes re-application safe: a batch that did
land is recognized and only the order status is corrected.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import structlog

from storefront_checkout.core.errors import StockDecrementRejected, TransientStorageError
from storefront_checkout.core.stores import CatalogStore, OrderRecord, OrderStore
from storefront_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class StockCompensator:
    """
    Re-applies stock batches for orders stuck before phase two.

    Orders are retried until ``max_attempts`` is reached; after that they
    stay ``failed`` for an operator to resolve (typically an oversold
    product that needs a restock or a cancellation).
    """

    def __init__(
        self,
        catalog: CatalogStore,
        orders: OrderStore,
        grace_seconds: int = 60,
        max_attempts: int = 10,
        batch_size: int = 50,
    ):
        self.catalog = catalog
        self.orders = orders
        self.grace_seconds = grace_seconds
        self.max_attempts = max_attempts
        self.batch_size = batch_size

    async def compensate_order(self, order: OrderRecord) -> str:
        """
        Re-apply one order's stock batch.

        Returns:
            str: "applied", "failed" or "exhausted"
        """
        log = logger.bind(order_number=order.order_number, payment_id=order.payment_id)

        try:
            newly_applied = await self.catalog.apply_stock_batch(
                order.order_number, order.stock_lines()
            )
        except (StockDecrementRejected, TransientStorageError) as e:
            await self.orders.mark_inventory(order.order_number, "failed", str(e))
            attempts = order.inventory_attempts + 1
            exhausted = attempts >= self.max_attempts
            outcome = "exhausted" if exhausted else "failed"
            if exhausted:
                log.critical("stock_compensation_exhausted", attempts=attempts, error=str(e))
            else:
                log.warning("stock_compensation_failed", attempts=attempts, error=str(e))
            metrics.record_compensation(outcome)
            return outcome

        await self.orders.mark_inventory(order.order_number, "applied")
        log.info("stock_compensation_applied", newly_applied=newly_applied)
        metrics.record_compensation("applied")
        return "applied"

    async def run_once(self) -> Dict[str, Any]:
        """
        Compensate one batch of stuck orders.

        Returns:
            Dict[str, Any]: Counts per outcome
        """
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.grace_seconds)
        backlog = await self.orders.list_inventory_backlog(
            older_than=cutoff,
            max_attempts=self.max_attempts,
            limit=self.batch_size,
        )

        summary: Dict[str, Any] = {
            "checked": len(backlog), "applied": 0, "failed": 0, "exhausted": 0
        }
        if not backlog:
            return summary

        logger.info("stock_compensation_batch_started", orders=len(backlog))

        for order in backlog:
            try:
                outcome = await self.compensate_order(order)
            except TransientStorageError as e:
                logger.error(
                    "stock_compensation_error",
                    order_number=order.order_number,
                    error=str(e),
                )
                outcome = "failed"
            summary[outcome] += 1

        logger.info("stock_compensation_batch_completed", **summary)
        return summary
