"""
Tests for stock compensation of orders whose stock batch did not land.
"""
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict

import pytest
from sqlalchemy import update

from storefront_checkout.config import Settings
from storefront_checkout.core.compensation import StockCompensator
from storefront_checkout.core.errors import PartialFailure
from storefront_checkout.core.events import PaymentCapturedEvent
from storefront_checkout.core.materializer import OrderMaterializer
from storefront_checkout.database import Database, Product, SqlCatalogStore, SqlOrderStore
from storefront_checkout.workers.stock_compensation_worker import start_compensation_worker

StockOf = Callable[[str], Awaitable[int]]
SHORT_NOTES = {"clerkUserId": "user_123", "productIds": "p1", "quantities": "7"}


async def _set_stock(database: Database, product_id: str, stock: int) -> None:
    async with database.session() as session:
        async with session.begin():
            await session.execute(
                update(Product).where(Product.id == product_id).values(stock=stock)
            )


async def _flagged_order(
    catalog: SqlCatalogStore,
    orders: SqlOrderStore,
    capture_payload: Callable[..., Dict[str, Any]],
) -> str:
    """Materialize an order for 7 units of p1 (stock 5) and return its number."""
    event = PaymentCapturedEvent.from_payload(capture_payload(amount=70000, notes=SHORT_NOTES))
    with pytest.raises(PartialFailure) as exc_info:
        await OrderMaterializer(catalog, orders).materialize(event)
    return exc_info.value.order_number


class TestStockCompensator:
    """Test suite for StockCompensator."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_restocked_order_is_applied(
        self,
        database: Database,
        catalog: SqlCatalogStore,
        orders: SqlOrderStore,
        capture_payload: Callable[..., Dict[str, Any]],
        stock_of: StockOf,
    ) -> None:
        await _flagged_order(catalog, orders, capture_payload)
        await _set_stock(database, "p1", 10)
        compensator = StockCompensator(catalog, orders, grace_seconds=0)

        summary = await compensator.run_once()

        assert summary == {"checked": 1, "applied": 1, "failed": 0, "exhausted": 0}
        assert await stock_of("p1") == 3
        order = await orders.find_by_payment_id("pay_test_001")
        assert order.inventory_status == "applied"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_still_short_order_stays_failed(
        self,
        catalog: SqlCatalogStore,
        orders: SqlOrderStore,
        capture_payload: Callable[..., Dict[str, Any]],
        stock_of: StockOf,
    ) -> None:
        await _flagged_order(catalog, orders, capture_payload)
        compensator = StockCompensator(catalog, orders, grace_seconds=0, max_attempts=10)

        summary = await compensator.run_once()

        assert summary["failed"] == 1
        order = await orders.find_by_payment_id("pay_test_001")
        assert order.inventory_status == "failed"
        assert order.inventory_attempts == 2
        assert await stock_of("p1") == 5

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exhausted_orders_are_left_for_an_operator(
        self,
        catalog: SqlCatalogStore,
        orders: SqlOrderStore,
        capture_payload: Callable[..., Dict[str, Any]],
    ) -> None:
        await _flagged_order(catalog, orders, capture_payload)
        compensator = StockCompensator(catalog, orders, grace_seconds=0, max_attempts=2)

        first = await compensator.run_once()
        second = await compensator.run_once()

        assert first["exhausted"] == 1
        assert second["checked"] == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_already_applied_batch_only_fixes_status(
        self,
        catalog: SqlCatalogStore,
        orders: SqlOrderStore,
        capture_payload: Callable[..., Dict[str, Any]],
        stock_of: StockOf,
    ) -> None:
        """An order stuck in pending whose stock did land is not decremented twice."""
        event = PaymentCapturedEvent.from_payload(capture_payload())
        result = await OrderMaterializer(catalog, orders).materialize(event)
        await orders.mark_inventory(result.order_number, "pending")
        compensator = StockCompensator(catalog, orders, grace_seconds=0)

        summary = await compensator.run_once()

        assert summary["applied"] == 1
        assert await stock_of("p1") == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_grace_period_skips_fresh_orders(
        self,
        catalog: SqlCatalogStore,
        orders: SqlOrderStore,
        capture_payload: Callable[..., Dict[str, Any]],
    ) -> None:
        await _flagged_order(catalog, orders, capture_payload)
        compensator = StockCompensator(catalog, orders, grace_seconds=3600)

        summary = await compensator.run_once()

        assert summary["checked"] == 0


class TestCompensationWorker:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_single_cycle(
        self,
        test_settings: Settings,
        database: Database,
        catalog: SqlCatalogStore,
        orders: SqlOrderStore,
        capture_payload: Callable[..., Dict[str, Any]],
        stock_of: StockOf,
    ) -> None:
        await _flagged_order(catalog, orders, capture_payload)
        await _set_stock(database, "p1", 7)

        # The worker owns (and disposes) its own engine on the same database file
        await start_compensation_worker(settings=test_settings, once=True)

        order = await orders.find_by_payment_id("pay_test_001")
        assert order.inventory_status == "applied"
        assert order.total == Decimal("700.00")
        assert await stock_of("p1") == 0
