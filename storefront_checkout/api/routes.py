"""
API routes for checkout, webhook fulfillment and order confirmation.
"""
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from storefront_checkout.config import Settings
from storefront_checkout.core.checkout import BuyerIdentity, CartLine, CheckoutSessionBuilder
from storefront_checkout.core.errors import (
    CheckoutError,
    InvalidSignature,
    PartialFailure,
    TransientStorageError,
    Unauthenticated,
)
from storefront_checkout.core.poller import ConfirmationPoller
from storefront_checkout.core.signature import SignatureVerifier
from storefront_checkout.core.stores import OrderRecord
from storefront_checkout.database import SqlCatalogStore, SqlOrderStore
from storefront_checkout.integrations.webhook_handler import WebhookHandler
from storefront_checkout.monitoring.health import HealthCheck

from .dependencies import (
    get_app_settings,
    get_catalog,
    get_checkout_builder,
    get_confirmation_poller,
    get_current_buyer,
    get_health_check,
    get_order_store,
    get_signature_verifier,
    get_webhook_handler,
)
from .schemas import (
    CheckoutRequest,
    CheckoutSessionResponse,
    ConfirmationResponse,
    HealthCheckResponse,
    OrderSummaryResponse,
    ProductStockResponse,
    StockCheckRequest,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
order_router = APIRouter(prefix="/orders", tags=["orders"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])
product_router = APIRouter(prefix="/products", tags=["products"])
monitoring_router = APIRouter(tags=["monitoring"])


def _http_error(error: CheckoutError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)


def _require_buyer(buyer: Optional[BuyerIdentity]) -> BuyerIdentity:
    if buyer is None:
        raise _http_error(Unauthenticated())
    return buyer


def _owned_by(order: Optional[OrderRecord], buyer: BuyerIdentity) -> bool:
    return order is not None and order.buyer_id == buyer.buyer_id


@checkout_router.post(
    "/sessions",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a checkout session",
    description="Validate the cart against the catalog and open a Razorpay order",
)
async def create_checkout_session(
    payload: CheckoutRequest,
    buyer: Optional[BuyerIdentity] = Depends(get_current_buyer),
    builder: CheckoutSessionBuilder = Depends(get_checkout_builder),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """
    Open a checkout session for the cart.

    Nothing is persisted and no stock is reserved.
    """
    lines = [CartLine(product_id=item.product_id, quantity=item.quantity) for item in payload.items]

    try:
        session = await builder.build(lines, buyer)
    except CheckoutError as e:
        if e.status_code >= 500:
            logger.error("api_checkout_error", error=str(e), error_code=e.code)
        else:
            logger.info("api_checkout_rejected", error=str(e), error_code=e.code)
        raise _http_error(e)

    return {
        "session_id": session.session_id,
        "amount": session.amount,
        "currency": session.currency,
        "key_id": settings.razorpay_key_id,
        "store_name": settings.store_display_name,
    }


@webhook_router.post(
    "/razorpay",
    response_model=WebhookResponse,
    summary="Razorpay webhook endpoint",
    description="Handle Razorpay webhook events",
)
async def razorpay_webhook(
    request: Request,
    razorpay_signature: Optional[str] = Header(default=None, alias="X-Razorpay-Signature"),
    razorpay_event_id: Optional[str] = Header(default=None, alias="X-Razorpay-Event-Id"),
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> Dict[str, Any]:
    """
    Handle Razorpay webhook events.

    Verifies the signature over the raw body and creates the order for
    captured payments. Duplicate deliveries succeed without side effects.
    """
    body = await request.body()

    try:
        return await handler.process(body, razorpay_signature, razorpay_event_id)

    except InvalidSignature as e:
        logger.warning(
            "webhook_signature_rejected",
            error=str(e),
            event_id=razorpay_event_id,
            client_host=request.client.host if request.client else None,
            headers=dict(request.headers),
        )
        raise _http_error(e)

    except PartialFailure as e:
        logger.critical("api_webhook_partial_failure", order_number=e.order_number, error=str(e))
        raise _http_error(e)

    except CheckoutError as e:
        logger.error("api_webhook_error", error=str(e), error_code=e.code)
        raise _http_error(e)


@order_router.get(
    "/by-payment/{payment_id}",
    response_model=OrderSummaryResponse,
    summary="Get order by payment",
    description="Retrieve the order created for a captured payment",
)
async def get_order_by_payment(
    payment_id: str,
    buyer: Optional[BuyerIdentity] = Depends(get_current_buyer),
    orders: SqlOrderStore = Depends(get_order_store),
) -> OrderSummaryResponse:
    """Get the buyer's order for a payment id."""
    buyer = _require_buyer(buyer)

    try:
        order = await orders.find_by_payment_id(payment_id)
    except TransientStorageError as e:
        raise _http_error(e)

    # Someone else's order is reported the same way as a missing one.
    if not _owned_by(order, buyer):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    return OrderSummaryResponse.from_record(order)


@order_router.get(
    "/confirmation/{payment_id}",
    response_model=ConfirmationResponse,
    summary="Wait for order confirmation",
    description="Poll briefly for the order the webhook creates",
)
async def wait_for_confirmation(
    payment_id: str,
    buyer: Optional[BuyerIdentity] = Depends(get_current_buyer),
    poller: ConfirmationPoller = Depends(get_confirmation_poller),
) -> Dict[str, Any]:
    """
    Wait for the webhook to create the order.

    Returns ``processing`` when the order has not appeared yet; the buyer's
    payment has still been taken.
    """
    buyer = _require_buyer(buyer)

    outcome = await poller.wait_for_order(payment_id)
    if outcome.confirmed:
        if not _owned_by(outcome.order, buyer):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
        return {
            "status": outcome.status,
            "attempts": outcome.attempts,
            "order": OrderSummaryResponse.from_record(outcome.order),
        }

    return {"status": outcome.status, "attempts": outcome.attempts, "order": None}


@payment_router.post(
    "/verify",
    response_model=VerifyPaymentResponse,
    summary="Verify checkout callback",
    description="Check the signature the payment UI returns after a payment",
)
async def verify_payment(
    payload: VerifyPaymentRequest,
    verifier: SignatureVerifier = Depends(get_signature_verifier),
) -> Any:
    """
    Verify the payment UI's callback signature.

    Creates nothing; the webhook remains the only path that creates orders.
    """
    try:
        verifier.verify_checkout_callback(
            payload.razorpay_order_id,
            payload.razorpay_payment_id,
            payload.razorpay_signature,
        )
    except InvalidSignature as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": e.message},
        )
    except CheckoutError as e:
        logger.error("api_verify_payment_error", error=str(e), error_code=e.code)
        return JSONResponse(
            status_code=e.status_code,
            content={"success": False, "error": "Verification error"},
        )

    return {"success": True}


@product_router.post(
    "/stock",
    response_model=List[ProductStockResponse],
    summary="Check stock",
    description="Batched live stock lookup for the cart page",
)
async def check_stock(
    payload: StockCheckRequest,
    catalog: SqlCatalogStore = Depends(get_catalog),
) -> List[Dict[str, Any]]:
    """Return live stock for the products that exist, in request order."""
    try:
        products = await catalog.get_products(payload.ids)
    except TransientStorageError as e:
        logger.error("api_stock_check_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stock fetch failed",
        )

    return [
        {"id": p.id, "name": p.name, "price": p.price, "stock": p.stock}
        for p in (products.get(pid) for pid in payload.ids)
        if p is not None
    ]


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,  # Don't include in OpenAPI docs
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
