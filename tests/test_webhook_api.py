"""
Tests for the Razorpay webhook endpoint.
"""
import json
from typing import Any, Awaitable, Callable, Dict

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from storefront_checkout.api.main import create_app
from storefront_checkout.config import Settings
from storefront_checkout.core.signature import compute_signature
from storefront_checkout.database import Database, SqlOrderStore

WEBHOOK_URL = "/webhooks/razorpay"
Payload = Callable[..., Dict[str, Any]]
Signer = Callable[[Dict[str, Any]], Dict[str, Any]]


class TestRazorpayWebhook:
    """Test suite for POST /webhooks/razorpay."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_captured_payment_creates_order(
        self,
        client: AsyncClient,
        orders: SqlOrderStore,
        capture_payload: Payload,
        signed_delivery: Signer,
        stock_of: Callable[[str], Awaitable[int]],
    ) -> None:
        response = await client.post(WEBHOOK_URL, **signed_delivery(capture_payload()))

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "processed"
        assert data["payment_id"] == "pay_test_001"
        assert data["event_type"] == "payment.captured"
        assert data["order_number"].startswith("ORD-")

        order = await orders.find_by_payment_id("pay_test_001")
        assert order is not None
        assert order.order_number == data["order_number"]
        assert await stock_of("p1") == 3

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_redelivery_succeeds_without_side_effects(
        self,
        client: AsyncClient,
        capture_payload: Payload,
        signed_delivery: Signer,
        stock_of: Callable[[str], Awaitable[int]],
    ) -> None:
        delivery = signed_delivery(capture_payload())

        first = await client.post(WEBHOOK_URL, **delivery)
        second = await client.post(WEBHOOK_URL, **delivery)

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["status"] == "processed"
        assert second.json()["status"] == "duplicate"
        assert await stock_of("p1") == 3

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_tampered_body_is_rejected(
        self,
        client: AsyncClient,
        orders: SqlOrderStore,
        capture_payload: Payload,
        signed_delivery: Signer,
        stock_of: Callable[[str], Awaitable[int]],
    ) -> None:
        """A body altered after signing writes nothing."""
        delivery = signed_delivery(capture_payload())
        delivery["content"] = delivery["content"].replace(b"20000", b"20001")

        response = await client.post(WEBHOOK_URL, **delivery)

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid signature"
        assert await orders.find_by_payment_id("pay_test_001") is None
        assert await stock_of("p1") == 5

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_signature_header_is_rejected(
        self,
        client: AsyncClient,
        orders: SqlOrderStore,
        capture_payload: Payload,
    ) -> None:
        response = await client.post(
            WEBHOOK_URL,
            content=json.dumps(capture_payload()).encode(),
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Missing signature"
        assert await orders.find_by_payment_id("pay_test_001") is None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_signature_checked_over_raw_bytes(
        self,
        client: AsyncClient,
        capture_payload: Payload,
    ) -> None:
        """Whitespace the processor sent is part of what was signed."""
        body = json.dumps(capture_payload(), indent=2).encode()
        response = await client.post(
            WEBHOOK_URL,
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-Razorpay-Signature": compute_signature("whsec_test_fake_secret", body),
            },
        )

        assert response.status_code == 200
        assert response.json()["status"] == "processed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_other_events_are_acknowledged(
        self,
        client: AsyncClient,
        orders: SqlOrderStore,
        capture_payload: Payload,
        signed_delivery: Signer,
    ) -> None:
        response = await client.post(
            WEBHOOK_URL, **signed_delivery(capture_payload(event="payment.authorized"))
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert await orders.find_by_payment_id("pay_test_001") is None

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "notes",
        [
            {"productIds": "p1", "quantities": "x"},
            {"meta_version": "2", "buyer_id": "user_123", "item_chunks": None},
            {
                "meta_version": "2",
                "buyer_id": "user_123",
                "item_chunks": "1",
                "items_1": '[{"product_id":"p1","quantity":1,"unit_price":"NaN"}]',
            },
        ],
    )
    async def test_malformed_notes_are_unprocessable(
        self,
        client: AsyncClient,
        capture_payload: Payload,
        signed_delivery: Signer,
        stock_of: Callable[[str], Awaitable[int]],
        notes: Dict[str, Any],
    ) -> None:
        response = await client.post(WEBHOOK_URL, **signed_delivery(capture_payload(notes=notes)))

        assert response.status_code == 422
        assert await stock_of("p1") == 5

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_signed_non_json_body_is_unprocessable(self, client: AsyncClient) -> None:
        body = b"not json"
        response = await client.post(
            WEBHOOK_URL,
            content=body,
            headers={"X-Razorpay-Signature": compute_signature("whsec_test_fake_secret", body)},
        )

        assert response.status_code == 422

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_stock_shortfall_asks_for_attention(
        self,
        client: AsyncClient,
        orders: SqlOrderStore,
        capture_payload: Payload,
        signed_delivery: Signer,
    ) -> None:
        """The order is kept and flagged; the response is a server error."""
        notes = {"clerkUserId": "user_123", "productIds": "p3", "quantities": "1"}

        response = await client.post(
            WEBHOOK_URL, **signed_delivery(capture_payload(amount=49900, notes=notes))
        )

        assert response.status_code == 500
        order = await orders.find_by_payment_id("pay_test_001")
        assert order is not None
        assert order.inventory_status == "failed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_webhook_secret_is_server_error(
        self,
        test_settings: Settings,
        database: Database,
        gateway: Any,
        capture_payload: Payload,
        signed_delivery: Signer,
    ) -> None:
        settings = test_settings.model_copy(update={"razorpay_webhook_secret": None})
        app: FastAPI = create_app(settings=settings, database=database, gateway=gateway)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.post(WEBHOOK_URL, **signed_delivery(capture_payload()))

        assert response.status_code == 500
