"""
Order metadata carried through the payment processor.

The processor stores checkout metadata as "notes": a flat mapping of at most
15 string keys, each value at most 256 characters. The notes are the only
channel that carries the cart across the asynchronous webhook boundary, so
they must hold everything needed to rebuild the order.

Version 2 notes store the line items as one JSON array of objects, split into
numbered chunks (``items_1``, ``items_2``, ...). Version 1 notes, written by
the previous storefront, hold index-aligned comma-joined ``productIds`` and
``quantities`` lists and are still decoded so old captures can be replayed.
"""
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from storefront_checkout.core.errors import MalformedMetadata

META_VERSION = 2
MAX_NOTES = 15
MAX_NOTE_LENGTH = 256
ITEMS_NOTE_PREFIX = "items_"

_FIXED_NOTE_KEYS = ("meta_version", "buyer_id", "email", "customer_name", "item_chunks")


@dataclass(frozen=True)
class LineItem:
    """One ordered product as embedded in the notes."""

    product_id: str
    quantity: int
    unit_price: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"product_id": self.product_id, "quantity": self.quantity}
        if self.unit_price is not None:
            data["unit_price"] = str(self.unit_price)
        return data


@dataclass(frozen=True)
class OrderMetadata:
    """Everything needed to materialize an order without re-reading the cart."""

    buyer_id: str
    email: str
    display_name: str
    items: Tuple[LineItem, ...] = field(default_factory=tuple)
    version: int = META_VERSION

    @property
    def product_ids(self) -> List[str]:
        return [item.product_id for item in self.items]

    @property
    def has_prices(self) -> bool:
        return all(item.unit_price is not None for item in self.items)


def _fits_note(key: str, value: str) -> str:
    if len(value) > MAX_NOTE_LENGTH:
        raise MalformedMetadata(f"{key} is longer than {MAX_NOTE_LENGTH} characters")
    return value


def encode_metadata(metadata: OrderMetadata) -> Dict[str, str]:
    """
    Encode order metadata as processor notes.

    Buyer fields are stored whole or not at all; the order must carry the
    same identity the buyer checked out with.

    Raises:
        MalformedMetadata: If the cart or a buyer field doesn't fit in the notes
    """
    if not metadata.items:
        raise MalformedMetadata("Cannot encode metadata without line items")

    payload = json.dumps(
        [item.to_dict() for item in metadata.items], separators=(",", ":")
    )
    chunks = [
        payload[i:i + MAX_NOTE_LENGTH] for i in range(0, len(payload), MAX_NOTE_LENGTH)
    ]
    if len(chunks) + len(_FIXED_NOTE_KEYS) > MAX_NOTES:
        raise MalformedMetadata(
            f"Cart has too many lines to embed ({len(metadata.items)} lines)"
        )

    notes = {
        "meta_version": str(META_VERSION),
        "buyer_id": _fits_note("buyer_id", metadata.buyer_id),
        "email": _fits_note("email", metadata.email),
        "customer_name": _fits_note("customer_name", metadata.display_name),
        "item_chunks": str(len(chunks)),
    }
    for index, chunk in enumerate(chunks, start=1):
        notes[f"{ITEMS_NOTE_PREFIX}{index}"] = chunk
    return notes


def decode_metadata(notes: Any) -> OrderMetadata:
    """
    Rebuild order metadata from processor notes.

    Accepts both the versioned envelope and the legacy comma-joined lists.

    Raises:
        MalformedMetadata: If line data is missing, misaligned or invalid
    """
    # The processor serializes empty notes as an empty JSON array.
    if isinstance(notes, list) and not notes:
        notes = {}
    if not isinstance(notes, Mapping):
        raise MalformedMetadata("Payment notes are not an object")

    if "meta_version" in notes:
        return _decode_v2(notes)
    return _decode_legacy(notes)


def _decode_v2(notes: Mapping[str, Any]) -> OrderMetadata:
    version = str(notes.get("meta_version"))
    if version != str(META_VERSION):
        raise MalformedMetadata(f"Unsupported metadata version: {version}")

    try:
        chunk_count = int(notes.get("item_chunks", ""))
    except (TypeError, ValueError):
        raise MalformedMetadata("Missing or invalid item_chunks note")

    parts = []
    for index in range(1, chunk_count + 1):
        part = notes.get(f"{ITEMS_NOTE_PREFIX}{index}")
        if not isinstance(part, str):
            raise MalformedMetadata(f"Missing line item chunk {index} of {chunk_count}")
        parts.append(part)

    try:
        raw_items = json.loads("".join(parts))
    except json.JSONDecodeError as e:
        raise MalformedMetadata(f"Line items are not valid JSON: {e}")

    if not isinstance(raw_items, list) or not raw_items:
        raise MalformedMetadata("Line items must be a non-empty array")

    items = tuple(_parse_item(raw, position) for position, raw in enumerate(raw_items))
    return OrderMetadata(
        buyer_id=str(notes.get("buyer_id") or ""),
        email=str(notes.get("email") or ""),
        display_name=str(notes.get("customer_name") or ""),
        items=items,
        version=META_VERSION,
    )


def _parse_item(raw: Any, position: int) -> LineItem:
    if not isinstance(raw, Mapping):
        raise MalformedMetadata(f"Line item {position} is not an object")

    product_id = raw.get("product_id")
    if not isinstance(product_id, str) or not product_id:
        raise MalformedMetadata(f"Line item {position} has no product_id")

    quantity = raw.get("quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise MalformedMetadata(f"Line item {position} has invalid quantity: {quantity!r}")

    unit_price = None
    if raw.get("unit_price") is not None:
        try:
            unit_price = Decimal(str(raw["unit_price"]))
        except InvalidOperation:
            raise MalformedMetadata(f"Line item {position} has invalid unit_price")
        if not unit_price.is_finite() or unit_price < 0:
            raise MalformedMetadata(f"Line item {position} has invalid unit_price")

    return LineItem(product_id=product_id, quantity=quantity, unit_price=unit_price)


def _decode_legacy(notes: Mapping[str, Any]) -> OrderMetadata:
    product_ids_raw = notes.get("productIds")
    quantities_raw = notes.get("quantities")
    if not product_ids_raw or not quantities_raw:
        raise MalformedMetadata("Missing order metadata: productIds and quantities are required")

    product_ids = [pid.strip() for pid in str(product_ids_raw).split(",")]
    quantity_strings = [q.strip() for q in str(quantities_raw).split(",")]
    if len(product_ids) != len(quantity_strings):
        raise MalformedMetadata(
            f"productIds ({len(product_ids)}) and quantities ({len(quantity_strings)}) "
            "are not index-aligned"
        )

    items = []
    for position, (product_id, quantity_string) in enumerate(zip(product_ids, quantity_strings)):
        if not product_id:
            raise MalformedMetadata(f"Line item {position} has no product id")
        try:
            quantity = int(quantity_string)
        except ValueError:
            raise MalformedMetadata(
                f"Line item {position} has invalid quantity: {quantity_string!r}"
            )
        if quantity <= 0:
            raise MalformedMetadata(f"Line item {position} has invalid quantity: {quantity}")
        items.append(LineItem(product_id=product_id, quantity=quantity))

    return OrderMetadata(
        buyer_id=str(notes.get("clerkUserId") or notes.get("buyer_id") or ""),
        email=str(notes.get("userEmail") or notes.get("email") or ""),
        display_name=str(notes.get("customerName") or ""),
        items=tuple(items),
        version=1,
    )
