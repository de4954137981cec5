"""
Pydantic schemas for API request/response models.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from storefront_checkout.core.stores import OrderRecord


class CartLineIn(BaseModel):
    """One cart line as submitted by the storefront."""

    product_id: str = Field(..., min_length=1, max_length=64, description="Catalog product id")
    quantity: int = Field(..., gt=0, description="Requested quantity")


class CheckoutRequest(BaseModel):
    """Request schema for opening a checkout session."""

    items: List[CartLineIn] = Field(default_factory=list, description="Cart lines")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"items": [{"product_id": "prod_tshirt_black", "quantity": 2}]}
            ]
        }
    }


class CheckoutSessionResponse(BaseModel):
    """Everything the payment UI needs to take the payment."""

    session_id: str = Field(..., description="Razorpay order id")
    amount: int = Field(..., description="Amount in the smallest currency unit")
    currency: str = Field(..., description="Currency code")
    key_id: Optional[str] = Field(default=None, description="Public Razorpay key id")
    store_name: Optional[str] = Field(default=None, description="Name shown in the payment UI")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "session_id": "order_NkP2a8mCbb3Z1Q",
                    "amount": 20000,
                    "currency": "INR",
                    "key_id": "rzp_test_1DP5mmOlF5G5ag",
                    "store_name": "My Store",
                }
            ]
        }
    }


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    status: str = Field(..., description="Processing status (processed/duplicate/ignored)")
    event_type: Optional[str] = Field(default=None, description="Razorpay event type")
    payment_id: Optional[str] = Field(default=None, description="Razorpay payment id")
    order_number: Optional[str] = Field(default=None, description="Created order number")


class OrderLineResponse(BaseModel):
    name: Optional[str] = Field(default=None, description="Product name")
    product_id: str = Field(..., description="Catalog product id")
    quantity: int = Field(..., description="Ordered quantity")
    amount: Decimal = Field(..., description="Unit price at purchase")


class OrderSummaryResponse(BaseModel):
    """Order as shown on the success page."""

    order_number: str = Field(..., description="Human-facing order number")
    payment_id: str = Field(..., description="Razorpay payment id")
    customer_email: str = Field(..., description="Customer email")
    customer_name: Optional[str] = Field(default=None, description="Customer display name")
    amount_total: Decimal = Field(..., description="Order total in major units")
    currency: str = Field(..., description="Currency code")
    payment_status: str = Field(..., description="Order status")
    inventory_status: str = Field(..., description="Stock update status")
    shipping_address: Dict[str, Any] = Field(default_factory=dict, description="Shipping address")
    line_items: List[OrderLineResponse] = Field(default_factory=list, description="Ordered lines")
    created_at: str = Field(..., description="Creation timestamp (ISO 8601)")

    @classmethod
    def from_record(cls, order: OrderRecord) -> "OrderSummaryResponse":
        return cls(
            order_number=order.order_number,
            payment_id=order.payment_id,
            customer_email=order.email,
            customer_name=order.address.get("name"),
            amount_total=order.total,
            currency=order.currency,
            payment_status=order.status,
            inventory_status=order.inventory_status,
            shipping_address=order.address,
            line_items=[
                OrderLineResponse(
                    name=line.product_name,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    amount=line.price_at_purchase,
                )
                for line in order.items
            ],
            created_at=order.created_at.isoformat(),
        )


class ConfirmationResponse(BaseModel):
    """Outcome of waiting for the webhook to create the order."""

    status: str = Field(..., description="confirmed or processing")
    attempts: int = Field(..., description="Lookups performed")
    order: Optional[OrderSummaryResponse] = Field(default=None, description="Order, if confirmed")


class VerifyPaymentRequest(BaseModel):
    """Fields the payment UI hands back after a successful payment."""

    razorpay_order_id: str = Field(..., description="Razorpay order id")
    razorpay_payment_id: str = Field(..., description="Razorpay payment id")
    razorpay_signature: str = Field(..., description="HMAC-SHA256 hex signature")


class VerifyPaymentResponse(BaseModel):
    success: bool = Field(..., description="Whether the signature verified")
    error: Optional[str] = Field(default=None, description="Why verification failed")


class StockCheckRequest(BaseModel):
    """Batched stock lookup for the cart page."""

    ids: List[str] = Field(..., max_length=100, description="Catalog product ids")

    @field_validator("ids")
    @classmethod
    def strip_ids(cls, v: List[str]) -> List[str]:
        """Drop blanks and duplicates, keeping order."""
        return list(dict.fromkeys(pid.strip() for pid in v if pid.strip()))


class ProductStockResponse(BaseModel):
    id: str = Field(..., description="Catalog product id")
    name: str = Field(..., description="Product name")
    price: Decimal = Field(..., description="Current price")
    stock: int = Field(..., description="Units in stock")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
