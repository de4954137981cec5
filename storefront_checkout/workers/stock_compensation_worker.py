"""
Stock compensation background worker.

Periodically re-applies the stock batch of orders that were stored but whose
stock decrement never landed.
"""
import argparse
import asyncio
import signal
from typing import Any, Dict, Optional

import structlog

from storefront_checkout.config import Settings, get_settings
from storefront_checkout.core.compensation import StockCompensator
from storefront_checkout.core.errors import TransientStorageError
from storefront_checkout.database import Database, SqlCatalogStore, SqlOrderStore
from storefront_checkout.monitoring.logging import setup_logging
from storefront_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


async def run_compensation_cycle(
    compensator: StockCompensator, orders: SqlOrderStore
) -> Dict[str, Any]:
    """
    Run one compensation batch and refresh the backlog gauge.
    """
    summary = await compensator.run_once()

    if summary["exhausted"]:
        logger.warning(
            "stock_compensation_needs_operator",
            exhausted=summary["exhausted"],
        )

    metrics.set_inventory_pending(await orders.count_inventory_backlog())
    return summary


async def start_compensation_worker(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    once: bool = False,
) -> None:
    """
    Start the stock compensation worker.

    Args:
        settings: Settings to use (default: environment)
        database: Database to use (default: built from settings)
        once: Run a single batch and exit
    """
    settings = settings or get_settings()
    setup_logging(settings)
    database = database or Database.from_settings(settings)

    catalog = SqlCatalogStore(database)
    orders = SqlOrderStore(database)
    compensator = StockCompensator(
        catalog,
        orders,
        grace_seconds=settings.compensation_grace_seconds,
        max_attempts=settings.compensation_max_attempts,
        batch_size=settings.compensation_batch_size,
    )

    logger.info(
        "stock_compensation_worker_starting",
        interval_seconds=settings.compensation_interval_seconds,
        max_attempts=settings.compensation_max_attempts,
    )

    running = True

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("stock_compensation_worker_shutdown_signal_received", signal=sig)
        running = False

    if not once:
        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    try:
        while running:
            try:
                await run_compensation_cycle(compensator, orders)
            except TransientStorageError as e:
                logger.error("stock_compensation_cycle_error", error=str(e))
                # Keep polling; the next cycle retries the same backlog

            if once:
                break

            # Sleep in short steps so a shutdown signal is noticed promptly
            remaining = settings.compensation_interval_seconds
            while remaining > 0 and running:
                step = min(remaining, 1.0)
                await asyncio.sleep(step)
                remaining -= step

    finally:
        await database.dispose()
        logger.info("stock_compensation_worker_stopped")


def main() -> None:
    parser = argparse.ArgumentParser(description="Stock compensation worker")
    parser.add_argument("--once", action="store_true", help="Run a single batch and exit")
    args = parser.parse_args()

    asyncio.run(start_compensation_worker(once=args.once))


if __name__ == "__main__":
    main()
