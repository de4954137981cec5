"""External integrations for checkout and fulfillment."""
from .razorpay_client import GatewayOrder, RazorpayClient, RazorpayError
from .webhook_handler import WebhookHandler

__all__ = ["GatewayOrder", "RazorpayClient", "RazorpayError", "WebhookHandler"]
