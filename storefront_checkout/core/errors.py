"""
Error taxonomy for checkout and fulfillment.

Checkout-time errors are shown to the buyer. Webhook-time errors map to HTTP
codes that tell the payment processor whether to redeliver: 4xx stops retries,
5xx asks for another attempt.
"""
from typing import Optional


class CheckoutError(Exception):
    """Base exception for the checkout and fulfillment pipeline."""

    status_code = 500
    code = "checkout_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthenticated(CheckoutError):
    """Raised when checkout is attempted without a buyer identity."""

    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str = "Please sign in to checkout"):
        super().__init__(message)


class EmptyCart(CheckoutError):
    """Raised when checkout is attempted with no cart lines."""

    status_code = 400
    code = "empty_cart"

    def __init__(self, message: str = "Your cart is empty"):
        super().__init__(message)


class ProductUnavailable(CheckoutError):
    """Raised when a cart line references a product the catalog doesn't have."""

    status_code = 409
    code = "product_unavailable"

    def __init__(self, product_id: str):
        super().__init__(f"Product {product_id} is unavailable")
        self.product_id = product_id


class InsufficientStock(CheckoutError):
    """Raised when a cart line asks for more than the catalog has in stock."""

    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: str, available: int, name: Optional[str] = None):
        label = f'"{name}"' if name else product_id
        super().__init__(f"Only {available} of {label} available")
        self.product_id = product_id
        self.available = available


class InvalidSignature(CheckoutError):
    """Raised when a webhook or checkout callback signature doesn't verify."""

    status_code = 400
    code = "invalid_signature"


class Misconfigured(CheckoutError):
    """Raised when a required processor secret is not configured."""

    status_code = 500
    code = "misconfigured"


class MalformedMetadata(CheckoutError):
    """Raised when payment notes can't be turned back into order lines."""

    status_code = 422
    code = "malformed_metadata"


class StorageConflict(CheckoutError):
    """Raised when an order insert collides with an existing payment id."""

    status_code = 200
    code = "storage_conflict"

    def __init__(self, payment_id: str):
        super().__init__(f"Order for payment {payment_id} already exists")
        self.payment_id = payment_id


class StockDecrementRejected(CheckoutError):
    """Raised when a conditional stock batch would drive a product below zero."""

    status_code = 409
    code = "stock_decrement_rejected"

    def __init__(self, product_id: str, requested: int):
        super().__init__(f"Stock decrement of {requested} rejected for product {product_id}")
        self.product_id = product_id
        self.requested = requested


class PartialFailure(CheckoutError):
    """
    Raised when the order was persisted but its stock batch was not applied.

    Re-running the webhook cannot fix this (the idempotency guard skips the
    order), so the order is flagged for the compensation worker instead.
    """

    status_code = 500
    code = "partial_failure"

    def __init__(self, order_number: str, reason: str):
        super().__init__(f"Order {order_number} persisted but stock was not updated: {reason}")
        self.order_number = order_number
        self.reason = reason


class TransientStorageError(CheckoutError):
    """Raised when storage fails in a way that is safe to retry."""

    status_code = 503
    code = "transient_storage_error"


class PaymentGatewayError(CheckoutError):
    """Raised when the payment processor can't open a checkout session."""

    status_code = 502
    code = "payment_gateway_error"


class OrderNumberCollision(CheckoutError):
    """Raised when a generated order number is already taken."""

    status_code = 503
    code = "order_number_collision"
