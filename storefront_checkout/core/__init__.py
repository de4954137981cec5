"""Checkout, webhook fulfillment and order confirmation logic."""
