"""
Razorpay Orders API client with error classification.

Implements:
- Circuit breaker pattern
- Error classification (transient / permanent / rate limited)

A Razorpay "order" is the checkout session: it fixes the amount and carries
the notes that come back on the captured-payment webhook. Creating one is
never retried here. A POST whose response is lost may still have opened a
session, so the buyer decides whether to try again.
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog

from storefront_checkout.config import Settings
from storefront_checkout.core.errors import Misconfigured
from storefront_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

RAZORPAY_API_BASE = "https://api.razorpay.com/v1"


class RazorpayErrorType(Enum):
    """Classification of Razorpay errors."""

    TRANSIENT = "transient"  # Processor unhealthy or unreachable
    PERMANENT = "permanent"  # Request rejected
    RATE_LIMIT = "rate_limit"


class RazorpayError(Exception):
    """Base exception for Razorpay-related errors."""

    def __init__(
        self,
        message: str,
        error_type: RazorpayErrorType,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code
        self.original_error = original_error


class CircuitBreaker:
    """
    Circuit breaker for Razorpay API calls.

    Prevents cascading failures by temporarily stopping requests
    when error rate exceeds threshold.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """
        Await func with circuit breaker protection.

        Raises:
            RazorpayError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.time() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise RazorpayError(
                    "Circuit breaker is open",
                    RazorpayErrorType.TRANSIENT,
                )

        try:
            result = await func(*args, **kwargs)
        except RazorpayError as e:
            # Bad requests say nothing about the processor's health.
            if e.error_type != RazorpayErrorType.PERMANENT:
                self.on_failure()
            raise
        except Exception:
            self.on_failure()
            raise

        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold:
            self._set_state("open")
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
            )

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)


@dataclass(frozen=True)
class GatewayOrder:
    """The processor-side checkout session."""

    id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: Optional[str] = None
    notes: Dict[str, Any] = field(default_factory=dict)


class RazorpayClient:
    """
    Thin async wrapper over the Razorpay REST API.

    Features:
    - Circuit breaker pattern
    - Comprehensive error classification
    """

    def __init__(
        self,
        key_id: Optional[str],
        key_secret: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = RAZORPAY_API_BASE,
        timeout: float = 10.0,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self.circuit_breaker = CircuitBreaker()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RazorpayClient":
        return cls(settings.razorpay_key_id, settings.razorpay_key_secret)

    def _credentials(self) -> tuple[str, str]:
        if not self.key_id or not self.key_secret:
            logger.error("razorpay_credentials_not_configured")
            raise Misconfigured(
                "Razorpay keys are not defined. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        return self.key_id, self.key_secret

    @staticmethod
    def _classify_status(status_code: int) -> RazorpayErrorType:
        """Classify an HTTP error status."""
        if status_code == 429:
            return RazorpayErrorType.RATE_LIMIT
        if status_code >= 500:
            return RazorpayErrorType.TRANSIENT
        return RazorpayErrorType.PERMANENT

    async def _request(
        self, method: str, path: str, operation: str, payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        auth = self._credentials()
        start_time = time.time()

        try:
            response = await self.http_client.request(
                method, f"{self.base_url}{path}", json=payload, auth=auth
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error_type = self._classify_status(e.response.status_code)
            try:
                description = e.response.json().get("error", {}).get("description")
            except ValueError:
                description = None
            message = description or e.response.text or str(e)

            logger.error(
                "razorpay_api_error",
                operation=operation,
                status_code=e.response.status_code,
                error_type=error_type.value,
                error_message=message,
            )
            metrics.record_razorpay_api_error(error_type.value)
            metrics.record_razorpay_api_call(operation, "error", time.time() - start_time)
            raise RazorpayError(message, error_type, e.response.status_code, e) from e
        except httpx.TransportError as e:
            logger.error("razorpay_api_unreachable", operation=operation, error=str(e))
            metrics.record_razorpay_api_error(RazorpayErrorType.TRANSIENT.value)
            metrics.record_razorpay_api_call(operation, "error", time.time() - start_time)
            raise RazorpayError(
                f"Razorpay API unreachable: {e}", RazorpayErrorType.TRANSIENT, original_error=e
            ) from e

        metrics.record_razorpay_api_call(operation, "success", time.time() - start_time)
        return response.json()

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        """
        Create a Razorpay order.

        Args:
            amount: Amount in the smallest currency unit (paise for INR)
            currency: Currency code
            receipt: Merchant-side receipt reference
            notes: Metadata returned on the payment webhook

        Returns:
            GatewayOrder: Created order

        Raises:
            Misconfigured: If API keys are missing
            RazorpayError: If order creation fails
        """
        logger.info("creating_razorpay_order", amount=amount, currency=currency, receipt=receipt)

        data = await self.circuit_breaker.call(
            self._request,
            "POST",
            "/orders",
            "create_order",
            {
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": notes or {},
            },
        )

        order = GatewayOrder(
            id=data["id"],
            amount=int(data["amount"]),
            currency=data["currency"],
            receipt=data.get("receipt"),
            status=data.get("status"),
            notes=data.get("notes") or {},
        )
        logger.info("razorpay_order_created", order_id=order.id, status=order.status)
        return order

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self.http_client.aclose()
