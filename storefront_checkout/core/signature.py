"""
HMAC-SHA256 signature verification for processor callbacks.

Webhooks are signed over the exact raw request body with the webhook secret.
The payment UI's checkout callback is signed over ``"{order_id}|{payment_id}"``
with the API key secret. Both signatures are lowercase hex digests and are
compared in constant time.
"""
import hashlib
import hmac
from typing import Optional

import structlog

from storefront_checkout.core.errors import InvalidSignature, Misconfigured
from storefront_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def compute_signature(secret: str, message: bytes) -> str:
    """Hex HMAC-SHA256 of message under secret."""
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class SignatureVerifier:
    """
    Verifies that payloads originate from the payment processor.

    Verification must run on the raw bytes before any JSON parsing; a
    re-serialized body will not match.
    """

    def __init__(
        self,
        webhook_secret: Optional[str],
        key_secret: Optional[str] = None,
    ):
        self.webhook_secret = webhook_secret
        self.key_secret = key_secret

    def verify_webhook(self, raw_body: bytes, signature: Optional[str]) -> None:
        """
        Verify a webhook delivery.

        Args:
            raw_body: Request body exactly as received
            signature: X-Razorpay-Signature header value

        Raises:
            Misconfigured: If no webhook secret is configured
            InvalidSignature: If the header is missing or doesn't match
        """
        if not self.webhook_secret:
            logger.error("webhook_secret_not_configured")
            metrics.record_signature_rejection("misconfigured")
            raise Misconfigured("Webhook secret is not configured")

        if not signature:
            logger.warning("webhook_signature_rejected", reason="missing_signature")
            metrics.record_signature_rejection("missing_signature")
            raise InvalidSignature("Missing signature")

        expected = compute_signature(self.webhook_secret, raw_body)
        if not hmac.compare_digest(expected.encode(), signature.strip().lower().encode("utf-8")):
            logger.warning(
                "webhook_signature_rejected",
                reason="mismatch",
                body_length=len(raw_body),
            )
            metrics.record_signature_rejection("mismatch")
            raise InvalidSignature("Invalid signature")

    def verify_checkout_callback(
        self, order_id: str, payment_id: str, signature: Optional[str]
    ) -> None:
        """
        Verify the signature the payment UI hands back after a successful payment.

        Raises:
            Misconfigured: If no key secret is configured
            InvalidSignature: If the signature is missing or doesn't match
        """
        if not self.key_secret:
            logger.error("razorpay_key_secret_not_configured")
            raise Misconfigured("Payment key secret is not configured")

        if not signature or not order_id or not payment_id:
            logger.warning("checkout_callback_rejected", reason="missing_fields")
            raise InvalidSignature("Payment verification failed")

        expected = compute_signature(
            self.key_secret, f"{order_id}|{payment_id}".encode("utf-8")
        )
        if not hmac.compare_digest(expected.encode(), signature.strip().lower().encode("utf-8")):
            logger.warning(
                "checkout_callback_rejected",
                reason="mismatch",
                order_id=order_id,
                payment_id=payment_id,
            )
            raise InvalidSignature("Payment verification failed")

        logger.info("checkout_callback_verified", order_id=order_id, payment_id=payment_id)
