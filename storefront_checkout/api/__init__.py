"""FastAPI application and routes."""
from .main import create_app
from .schemas import (
    CheckoutRequest,
    CheckoutSessionResponse,
    ConfirmationResponse,
    OrderSummaryResponse,
    WebhookResponse,
)

__all__ = [
    "create_app",
    "CheckoutRequest",
    "CheckoutSessionResponse",
    "ConfirmationResponse",
    "OrderSummaryResponse",
    "WebhookResponse",
]
