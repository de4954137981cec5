"""Payment confirmation and order fulfillment service for the storefront."""

__version__ = "1.0.0"
