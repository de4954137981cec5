"""Parsed processor webhook events."""
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from storefront_checkout.core.errors import MalformedMetadata

PAYMENT_CAPTURED = "payment.captured"


@dataclass(frozen=True)
class PaymentCapturedEvent:
    """
    A payment entity from a webhook delivery.

    The same payment can be delivered any number of times; nothing about the
    event itself is unique on the wire.
    """

    event_type: str
    payment_id: str
    order_reference: Optional[str]
    amount_minor_units: int
    currency: str
    email: Optional[str] = None
    notes: Any = field(default_factory=dict)

    @property
    def is_capture(self) -> bool:
        return self.event_type == PAYMENT_CAPTURED

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PaymentCapturedEvent":
        """
        Build an event from a decoded webhook body.

        Raises:
            MalformedMetadata: If the payment entity is missing or incomplete
        """
        event_type = payload.get("event")
        if not isinstance(event_type, str):
            raise MalformedMetadata("Webhook body has no event type")

        try:
            entity: Dict[str, Any] = payload["payload"]["payment"]["entity"]
        except (KeyError, TypeError):
            raise MalformedMetadata(f"Webhook {event_type} has no payment entity")

        payment_id = entity.get("id")
        amount = entity.get("amount")
        if not isinstance(payment_id, str) or not payment_id:
            raise MalformedMetadata("Payment entity has no id")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise MalformedMetadata(f"Payment {payment_id} has invalid amount: {amount!r}")

        return cls(
            event_type=event_type,
            payment_id=payment_id,
            order_reference=entity.get("order_id"),
            amount_minor_units=amount,
            currency=str(entity.get("currency") or "INR"),
            email=entity.get("email"),
            notes=entity.get("notes") or {},
        )


def peek_event_type(payload: Mapping[str, Any]) -> str:
    """Event type of a decoded webhook body, without requiring a payment entity."""
    event_type = payload.get("event")
    return event_type if isinstance(event_type, str) else "unknown"
