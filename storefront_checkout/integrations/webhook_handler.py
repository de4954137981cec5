"""
Razorpay webhook handler with signature verification and duplicate detection.

Implements:
- Signature verification over the raw body, before any parsing
- Event type routing to registered handlers
- Duplicate-delivery short-circuit through the idempotency guard
- Order materialization for captured payments
"""
import json
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import structlog

from storefront_checkout.core.errors import CheckoutError, MalformedMetadata
from storefront_checkout.core.events import (
    PAYMENT_CAPTURED,
    PaymentCapturedEvent,
    peek_event_type,
)
from storefront_checkout.core.idempotency import IdempotencyGuard
from storefront_checkout.core.materializer import OrderMaterializer
from storefront_checkout.core.signature import SignatureVerifier
from storefront_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Mapping[str, Any]], Awaitable[Dict[str, Any]]]


class WebhookHandler:
    """
    Handles Razorpay webhook deliveries.

    Features:
    - HMAC signature verification with the webhook secret
    - Duplicate detection (processed payment ids) before any write
    - Event type routing to appropriate handlers
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        guard: IdempotencyGuard,
        materializer: OrderMaterializer,
    ):
        self.verifier = verifier
        self.guard = guard
        self.materializer = materializer
        self.event_handlers: Dict[str, EventHandler] = {}

        self.register_handler(PAYMENT_CAPTURED, self.handle_payment_captured)

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event_type: Razorpay event type (e.g., 'payment.captured')
            handler: Async callable taking the decoded webhook body
        """
        self.event_handlers[event_type] = handler
        logger.debug("webhook_handler_registered", event_type=event_type)

    def verify_and_parse(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the delivery's signature, then decode it.

        Raises:
            Misconfigured: If the webhook secret is missing
            InvalidSignature: If the signature is missing or wrong
            MalformedMetadata: If the verified body is not a JSON object
        """
        self.verifier.verify_webhook(raw_body, signature)

        try:
            payload = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedMetadata(f"Webhook body is not valid JSON: {e}")
        if not isinstance(payload, dict):
            raise MalformedMetadata("Webhook body is not a JSON object")
        return payload

    async def process(
        self,
        raw_body: bytes,
        signature: Optional[str],
        event_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Process one webhook delivery.

        Args:
            raw_body: Request body exactly as received
            signature: X-Razorpay-Signature header value
            event_id: X-Razorpay-Event-Id header value, for logging

        Returns:
            Dict[str, Any]: Processing result

        Raises:
            CheckoutError: Subclass describing why the delivery failed
        """
        start_time = time.time()
        payload = self.verify_and_parse(raw_body, signature)
        event_type = peek_event_type(payload)

        log = logger.bind(event_id=event_id, event_type=event_type)
        log.info("processing_webhook_event")

        handler = self.event_handlers.get(event_type)
        if handler is None:
            log.info("webhook_event_ignored")
            metrics.record_webhook_event(event_type, "ignored", time.time() - start_time)
            return {"status": "ignored", "event_type": event_type, "event_id": event_id}

        try:
            result = await handler(payload)
        except CheckoutError as e:
            log.error("webhook_event_processing_failed", error=str(e), error_code=e.code)
            metrics.record_webhook_event(event_type, "failed", time.time() - start_time)
            raise

        metrics.record_webhook_event(event_type, result["status"], time.time() - start_time)
        log.info(
            "webhook_event_processed",
            status=result["status"],
            payment_id=result.get("payment_id"),
        )
        return {**result, "event_type": event_type, "event_id": event_id}

    async def handle_payment_captured(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Handle payment.captured.

        Duplicate deliveries are acknowledged without side effects.
        """
        event = PaymentCapturedEvent.from_payload(payload)

        if await self.guard.is_processed(event.payment_id):
            logger.info("webhook_duplicate_delivery", payment_id=event.payment_id)
            return {"status": "duplicate", "payment_id": event.payment_id}

        result = await self.materializer.materialize(event)
        return {
            "status": result.status,
            "payment_id": result.payment_id,
            "order_number": result.order_number,
        }
