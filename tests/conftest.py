"""
Pytest configuration and fixtures.

Tests run against a throwaway SQLite database per test; the payment processor
is replaced with an AsyncMock.
"""
import json
from decimal import Decimal
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from storefront_checkout.api.main import create_app
from storefront_checkout.config import Settings
from storefront_checkout.core.metadata import LineItem, OrderMetadata, encode_metadata
from storefront_checkout.core.signature import compute_signature
from storefront_checkout.database import Database, Product, SqlCatalogStore, SqlOrderStore
from storefront_checkout.integrations.razorpay_client import GatewayOrder

WEBHOOK_SECRET = "whsec_test_fake_secret"
KEY_SECRET = "test_key_secret_for_testing"
BUYER_HEADERS = {
    "X-Buyer-Id": "user_123",
    "X-Buyer-Email": "asha@example.com",
    "X-Buyer-Name": "Asha Rao",
}


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without the HTTP layer")
    config.addinivalue_line("markers", "race: concurrent delivery and stock tests")
    config.addinivalue_line("markers", "integration: tests through the FastAPI application")


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        razorpay_key_id="rzp_test_fakekey123",
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'storefront_test.db'}",
        redis_url=None,
        app_name="storefront-checkout-test",
        app_env="test",
        log_level="DEBUG",
        confirmation_poll_interval_seconds=0.01,
        confirmation_poll_attempts=3,
        compensation_grace_seconds=0,
    )


@pytest_asyncio.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database, Any]:
    """Create a fresh database with the catalog seeded."""
    db = Database.from_settings(test_settings)
    await db.create_all()

    async with db.session() as session:
        async with session.begin():
            session.add_all(
                [
                    Product(id="p1", name="Black T-Shirt", price=Decimal("100.00"), stock=5),
                    Product(id="p2", name="Coffee Mug", price=Decimal("250.50"), stock=10),
                    Product(id="p3", name="Sold Out Cap", price=Decimal("499.00"), stock=0),
                ]
            )

    yield db

    await db.dispose()


@pytest.fixture
def catalog(database: Database) -> SqlCatalogStore:
    return SqlCatalogStore(database)


@pytest.fixture
def orders(database: Database) -> SqlOrderStore:
    return SqlOrderStore(database)


@pytest.fixture
def gateway() -> AsyncMock:
    """Mock Razorpay client echoing the requested order."""

    async def _create_order(
        amount: int, currency: str, receipt: str, notes: Optional[Dict[str, str]] = None
    ) -> GatewayOrder:
        return GatewayOrder(
            id="order_test_123",
            amount=amount,
            currency=currency,
            receipt=receipt,
            status="created",
            notes=notes or {},
        )

    mock_gateway = AsyncMock()
    mock_gateway.create_order.side_effect = _create_order
    return mock_gateway


@pytest.fixture
def app(test_settings: Settings, database: Database, gateway: AsyncMock) -> FastAPI:
    return create_app(settings=test_settings, database=database, gateway=gateway)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def order_notes() -> Dict[str, str]:
    """Notes for two Black T-Shirts at 100, as written at checkout."""
    return encode_metadata(
        OrderMetadata(
            buyer_id="user_123",
            email="asha@example.com",
            display_name="Asha Rao",
            items=(LineItem(product_id="p1", quantity=2, unit_price=Decimal("100.00")),),
        )
    )


@pytest.fixture
def capture_payload(order_notes: Dict[str, str]) -> Callable[..., Dict[str, Any]]:
    """Build a payment.captured webhook body."""

    def _build(
        payment_id: str = "pay_test_001",
        amount: int = 20000,
        notes: Optional[Any] = None,
        event: str = "payment.captured",
    ) -> Dict[str, Any]:
        return {
            "entity": "event",
            "account_id": "acc_test",
            "event": event,
            "contains": ["payment"],
            "payload": {
                "payment": {
                    "entity": {
                        "id": payment_id,
                        "entity": "payment",
                        "amount": amount,
                        "currency": "INR",
                        "status": "captured",
                        "order_id": "order_test_123",
                        "email": "asha@example.com",
                        "notes": order_notes if notes is None else notes,
                    }
                }
            },
            "created_at": 1700000000,
        }

    return _build


@pytest.fixture
def signed_delivery() -> Callable[[Dict[str, Any]], Dict[str, Any]]:
    """Serialize a webhook body and sign it with the test secret."""

    def _sign(payload: Dict[str, Any]) -> Dict[str, Any]:
        body = json.dumps(payload).encode("utf-8")
        return {
            "content": body,
            "headers": {
                "Content-Type": "application/json",
                "X-Razorpay-Signature": compute_signature(WEBHOOK_SECRET, body),
            },
        }

    return _sign


@pytest.fixture
def stock_of(database: Database) -> Callable[[str], Awaitable[int]]:
    """Read a product's current stock straight from the database."""

    async def _stock(product_id: str) -> int:
        async with database.session() as session:
            product = await session.get(Product, product_id)
            return product.stock

    return _stock


@pytest.fixture
def buyer_headers() -> Dict[str, str]:
    """Identity headers the auth gateway forwards for a signed-in buyer."""
    return dict(BUYER_HEADERS)
