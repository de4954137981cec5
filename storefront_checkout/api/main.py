"""
Main FastAPI application.

Storefront checkout and order-fulfillment API with:
- CORS configuration
- Error handling
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront_checkout import __version__
from storefront_checkout.config import Settings, get_settings
from storefront_checkout.core.checkout import CheckoutSessionBuilder, PaymentGateway
from storefront_checkout.core.idempotency import IdempotencyGuard
from storefront_checkout.core.materializer import OrderMaterializer
from storefront_checkout.core.poller import ConfirmationPoller
from storefront_checkout.core.signature import SignatureVerifier
from storefront_checkout.database import Database, SqlCatalogStore, SqlOrderStore
from storefront_checkout.integrations.razorpay_client import RazorpayClient
from storefront_checkout.integrations.webhook_handler import WebhookHandler
from storefront_checkout.monitoring.health import HealthCheck
from storefront_checkout.monitoring.logging import setup_logging

from .routes import (
    checkout_router,
    monitoring_router,
    order_router,
    payment_router,
    product_router,
    webhook_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    settings: Settings = app.state.settings
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        test_mode=settings.is_test_mode,
    )

    try:
        await app.state.database.create_all()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    yield

    logger.info("application_shutdown")
    gateway = app.state.gateway
    if isinstance(gateway, RazorpayClient):
        await gateway.aclose()
    if app.state.redis_client is not None:
        await app.state.redis_client.aclose()
    try:
        await app.state.database.dispose()
        logger.info("database_connections_closed")
    except Exception as e:
        logger.error("database_shutdown_error", error=str(e))


def _wire_services(
    app: FastAPI,
    settings: Settings,
    database: Database,
    gateway: PaymentGateway,
    redis_client: Optional[aioredis.Redis],
) -> None:
    catalog = SqlCatalogStore(database)
    orders = SqlOrderStore(database)
    guard = IdempotencyGuard(orders, redis_client, cache_ttl=settings.idempotency_cache_ttl)
    verifier = SignatureVerifier(
        settings.razorpay_webhook_secret, key_secret=settings.razorpay_key_secret
    )
    materializer = OrderMaterializer(
        catalog,
        orders,
        guard=guard,
        order_number_prefix=settings.order_number_prefix,
        order_number_attempts=settings.order_number_max_attempts,
    )

    app.state.settings = settings
    app.state.database = database
    app.state.gateway = gateway
    app.state.redis_client = redis_client
    app.state.catalog = catalog
    app.state.orders = orders
    app.state.verifier = verifier
    app.state.checkout_builder = CheckoutSessionBuilder(
        catalog, gateway, currency=settings.currency
    )
    app.state.webhook_handler = WebhookHandler(verifier, guard, materializer)
    app.state.poller = ConfirmationPoller(
        orders.find_by_payment_id,
        interval_seconds=settings.confirmation_poll_interval_seconds,
        max_attempts=settings.confirmation_poll_attempts,
    )
    app.state.health_check = HealthCheck(database, redis_client)


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    gateway: Optional[PaymentGateway] = None,
    redis_client: Optional[aioredis.Redis] = None,
) -> FastAPI:
    """
    Build the application and its services.

    Collaborators default to those described by settings; tests pass their own.
    """
    settings = settings or get_settings()
    setup_logging(settings)

    if redis_client is None and settings.redis_url:
        redis_client = aioredis.from_url(
            settings.redis_url, encoding="utf-8", decode_responses=True
        )

    app = FastAPI(
        title="Storefront Checkout",
        description=(
            "Checkout sessions, Razorpay webhook fulfillment and order confirmation. "
            "Features: signature verification, exactly-once order creation, "
            "atomic stock batches and stock compensation."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    _wire_services(
        app,
        settings,
        database or Database.from_settings(settings),
        gateway or RazorpayClient.from_settings(settings),
        redis_client,
    )

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """
        Add request ID to all requests for tracing.

        Also adds timing information and structured logging context.
        """
        request_id = str(uuid.uuid4())
        start_time = time.time()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        logger.info(
            "request_started",
            client_host=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response

        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
            raise

        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )

    app.include_router(checkout_router)
    app.include_router(webhook_router)
    app.include_router(order_router)
    app.include_router(payment_router)
    app.include_router(product_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "test_mode": settings.is_test_mode,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "storefront_checkout.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
