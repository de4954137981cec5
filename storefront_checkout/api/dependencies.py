"""
FastAPI dependencies.

Services are built once by ``create_app`` and kept on ``app.state``; these
helpers hand them to route handlers.
"""
from typing import Optional

from fastapi import Request

from storefront_checkout.config import Settings
from storefront_checkout.core.checkout import BuyerIdentity, CheckoutSessionBuilder
from storefront_checkout.core.poller import ConfirmationPoller
from storefront_checkout.core.signature import SignatureVerifier
from storefront_checkout.database import SqlCatalogStore, SqlOrderStore
from storefront_checkout.integrations.webhook_handler import WebhookHandler
from storefront_checkout.monitoring.health import HealthCheck


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_catalog(request: Request) -> SqlCatalogStore:
    return request.app.state.catalog


def get_order_store(request: Request) -> SqlOrderStore:
    return request.app.state.orders


def get_checkout_builder(request: Request) -> CheckoutSessionBuilder:
    return request.app.state.checkout_builder


def get_webhook_handler(request: Request) -> WebhookHandler:
    return request.app.state.webhook_handler


def get_signature_verifier(request: Request) -> SignatureVerifier:
    return request.app.state.verifier


def get_health_check(request: Request) -> HealthCheck:
    return request.app.state.health_check


def get_confirmation_poller(request: Request) -> ConfirmationPoller:
    return request.app.state.poller


def get_current_buyer(request: Request) -> Optional[BuyerIdentity]:
    """
    Buyer identity asserted by the upstream auth gateway.

    Returns None when the gateway forwarded no buyer id; callers decide
    whether that is an error.
    """
    settings = get_app_settings(request)
    buyer_id = (request.headers.get(settings.buyer_id_header) or "").strip()
    if not buyer_id:
        return None
    return BuyerIdentity(
        buyer_id=buyer_id,
        email=(request.headers.get(settings.buyer_email_header) or "").strip(),
        name=(request.headers.get(settings.buyer_name_header) or "").strip(),
    )
