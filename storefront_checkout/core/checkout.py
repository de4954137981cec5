"""
Checkout session creation.

Validates a cart against live catalog data, prices it with server-side
prices and opens a processor order carrying the metadata needed to build
the order when the payment is captured. Nothing is written here.
"""
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional, Protocol, Sequence

import structlog

from storefront_checkout.core.errors import (
    CheckoutError,
    EmptyCart,
    InsufficientStock,
    PaymentGatewayError,
    ProductUnavailable,
    Unauthenticated,
)
from storefront_checkout.core.metadata import LineItem, OrderMetadata, encode_metadata
from storefront_checkout.core.stores import CatalogStore
from storefront_checkout.integrations.razorpay_client import GatewayOrder, RazorpayError
from storefront_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CartLine:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class BuyerIdentity:
    """Authenticated caller, as asserted by the auth gateway."""

    buyer_id: str
    email: str = ""
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.email


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    amount: int
    currency: str
    metadata: Dict[str, str]


class PaymentGateway(Protocol):
    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        ...


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to the smallest currency unit."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CheckoutSessionBuilder:
    """
    Builds checkout sessions from carts.

    Every failure is raised to the caller; the buyer decides whether to retry
    with a fresh cart.
    """

    def __init__(self, catalog: CatalogStore, gateway: PaymentGateway, currency: str = "INR"):
        self.catalog = catalog
        self.gateway = gateway
        self.currency = currency

    async def build(
        self, lines: Sequence[CartLine], buyer: Optional[BuyerIdentity]
    ) -> CheckoutSession:
        """
        Validate the cart and open a processor order for it.

        Raises:
            EmptyCart: If there are no lines
            Unauthenticated: If there is no buyer identity
            ProductUnavailable: If any product is missing from the catalog
            InsufficientStock: If any product has too little stock
            PaymentGatewayError: If the processor can't open the order
        """
        try:
            session = await self._build(lines, buyer)
        except CheckoutError as e:
            metrics.record_checkout(e.code)
            raise

        metrics.record_checkout("created", session.amount)
        return session

    async def _build(
        self, lines: Sequence[CartLine], buyer: Optional[BuyerIdentity]
    ) -> CheckoutSession:
        if not lines:
            raise EmptyCart()
        if buyer is None or not buyer.buyer_id:
            raise Unauthenticated()

        logger.info("checkout_started", buyer_id=buyer.buyer_id, lines=len(lines))

        products = await self.catalog.get_products([line.product_id for line in lines])

        requested: Dict[str, int] = {}
        for line in lines:
            if line.product_id not in products:
                logger.info("checkout_product_unavailable", product_id=line.product_id)
                raise ProductUnavailable(line.product_id)
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

        # Advisory only: stock can still run out before the payment is captured.
        for product_id, quantity in requested.items():
            product = products[product_id]
            if product.stock < quantity:
                logger.info(
                    "checkout_insufficient_stock",
                    product_id=product_id,
                    requested=quantity,
                    available=product.stock,
                )
                raise InsufficientStock(product_id, product.stock, product.name)

        total = sum(
            (products[line.product_id].price * line.quantity for line in lines),
            Decimal("0"),
        )
        amount = to_minor_units(total)

        notes = encode_metadata(
            OrderMetadata(
                buyer_id=buyer.buyer_id,
                email=buyer.email,
                display_name=buyer.display_name,
                items=tuple(
                    LineItem(
                        product_id=line.product_id,
                        quantity=line.quantity,
                        unit_price=products[line.product_id].price,
                    )
                    for line in lines
                ),
            )
        )

        try:
            order = await self.gateway.create_order(
                amount=amount,
                currency=self.currency,
                receipt=f"order_{int(time.time() * 1000)}",
                notes=notes,
            )
        except RazorpayError as e:
            logger.error(
                "checkout_gateway_failed",
                buyer_id=buyer.buyer_id,
                error=str(e),
                error_type=e.error_type.value,
            )
            raise PaymentGatewayError("Something went wrong. Please try again.") from e

        logger.info(
            "checkout_session_created",
            buyer_id=buyer.buyer_id,
            session_id=order.id,
            amount=order.amount,
            currency=order.currency,
        )
        return CheckoutSession(
            session_id=order.id,
            amount=order.amount,
            currency=order.currency,
            metadata=notes,
        )
