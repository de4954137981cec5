"""
Tests for the Razorpay Orders API client.
"""
import base64
import json
from typing import Any, Callable, List

import httpx
import pytest

from storefront_checkout.core.errors import Misconfigured
from storefront_checkout.integrations.razorpay_client import (
    CircuitBreaker,
    RazorpayClient,
    RazorpayError,
    RazorpayErrorType,
)

BASE_URL = "https://api.razorpay.test/v1"


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> RazorpayClient:
    return RazorpayClient(
        "rzp_test_key",
        "secret",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        base_url=BASE_URL,
    )


class TestRazorpayClient:
    """Test suite for RazorpayClient."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_order(self) -> None:
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "id": "order_abc",
                    "entity": "order",
                    "amount": body["amount"],
                    "currency": body["currency"],
                    "receipt": body["receipt"],
                    "status": "created",
                    "notes": body["notes"],
                },
            )

        client = _client(handler)
        order = await client.create_order(
            amount=20000, currency="INR", receipt="order_1", notes={"meta_version": "2"}
        )

        assert order.id == "order_abc"
        assert order.amount == 20000
        assert order.status == "created"
        assert order.notes == {"meta_version": "2"}

        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BASE_URL}/orders"
        expected_auth = base64.b64encode(b"rzp_test_key:secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected_auth}"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transient_errors_are_reported_after_one_call(self) -> None:
        """A lost response may still have opened a session, so nothing is resent."""
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(503, json={"error": {"description": "unavailable"}})

        with pytest.raises(RazorpayError) as exc_info:
            await _client(handler).create_order(amount=20000, currency="INR", receipt="r")

        assert exc_info.value.error_type == RazorpayErrorType.TRANSIENT
        assert exc_info.value.status_code == 503
        assert calls["count"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self) -> None:
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(
                400, json={"error": {"code": "BAD_REQUEST_ERROR", "description": "amount invalid"}}
            )

        with pytest.raises(RazorpayError) as exc_info:
            await _client(handler).create_order(amount=1, currency="INR", receipt="r")

        assert exc_info.value.error_type == RazorpayErrorType.PERMANENT
        assert exc_info.value.status_code == 400
        assert str(exc_info.value) == "amount invalid"
        assert calls["count"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rate_limit_is_classified(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": {"description": "slow down"}})

        with pytest.raises(RazorpayError) as exc_info:
            await _client(handler).create_order(amount=100, currency="INR", receipt="r")

        assert exc_info.value.error_type == RazorpayErrorType.RATE_LIMIT

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_network_failure_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RazorpayError) as exc_info:
            await _client(handler).create_order(amount=100, currency="INR", receipt="r")

        assert exc_info.value.error_type == RazorpayErrorType.TRANSIENT

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_keys_are_misconfiguration(self) -> None:
        client = RazorpayClient(None, None, http_client=httpx.AsyncClient())

        with pytest.raises(Misconfigured):
            await client.create_order(amount=100, currency="INR", receipt="r")


class TestCircuitBreaker:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_opens_after_repeated_failures(self) -> None:
        breaker = CircuitBreaker(failure_threshold=2, timeout=60)

        async def failing() -> Any:
            raise RazorpayError("down", RazorpayErrorType.TRANSIENT)

        for _ in range(2):
            with pytest.raises(RazorpayError):
                await breaker.call(failing)

        with pytest.raises(RazorpayError, match="Circuit breaker is open"):
            await breaker.call(failing)
        assert breaker.state == "open"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_permanent_errors_do_not_open_the_circuit(self) -> None:
        breaker = CircuitBreaker(failure_threshold=1, timeout=60)

        async def rejected() -> Any:
            raise RazorpayError("bad request", RazorpayErrorType.PERMANENT)

        for _ in range(3):
            with pytest.raises(RazorpayError, match="bad request"):
                await breaker.call(rejected)
        assert breaker.state == "closed"
