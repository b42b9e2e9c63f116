"""Order reconstruction metadata carried on payment artifacts.

Everything needed to create the order is written onto the payment
intent or invoice, so a paid artifact can become an order even when the
browser session that started checkout is gone.
"""

import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

# Card processor metadata values are capped at 500 characters.
MAX_VALUE_LENGTH = 500


@dataclass(frozen=True)
class PricedLine:
    """A cart line with the catalog unit price at checkout time."""

    design_id: int
    size_option_id: int
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class OrderBlueprint:
    """Order fields decoded from artifact metadata."""

    checkout_id: str
    lines: list[PricedLine]
    customer_name: str
    customer_email: str
    shipping_address: str
    notes: str | None
    shipping_service: str
    shipping_price: Decimal
    total: Decimal


def build_metadata(
    checkout_id: str,
    lines: list[PricedLine],
    customer_name: str,
    customer_email: str,
    shipping_address: str,
    notes: str | None,
    shipping_service: str,
    shipping_price: Decimal,
    total: Decimal,
) -> dict[str, str]:
    """Encode an order blueprint as flat string metadata."""
    metadata = {
        "checkout_id": checkout_id,
        "order_type": "cart" if len(lines) > 1 else "single",
        "item_count": str(len(lines)),
        "customer_name": customer_name,
        "customer_email": customer_email,
        "shipping_method": shipping_service,
        "shipping_rate": str(shipping_price),
        "total": str(total),
    }
    _set_chunked(metadata, "customer_address", shipping_address)
    if notes:
        _set_chunked(metadata, "notes", notes)
    encoded_lines = json.dumps(
        [[line.design_id, line.size_option_id, line.quantity, str(line.unit_price)] for line in lines],
        separators=(",", ":"),
    )
    _set_chunked(metadata, "cart_items", encoded_lines)
    return metadata


def parse_metadata(metadata: Mapping[str, Any]) -> OrderBlueprint:
    """Decode metadata written by build_metadata.

    Raises:
        ValueError: If required keys are missing or malformed.
    """
    try:
        raw_lines = json.loads(_get_chunked(metadata, "cart_items"))
        lines = [
            PricedLine(
                design_id=int(design_id),
                size_option_id=int(size_option_id),
                quantity=int(quantity),
                unit_price=Decimal(unit_price),
            )
            for design_id, size_option_id, quantity, unit_price in raw_lines
        ]
        if not lines:
            raise ValueError("no cart items")
        return OrderBlueprint(
            checkout_id=str(metadata["checkout_id"]),
            lines=lines,
            customer_name=str(metadata["customer_name"]),
            customer_email=str(metadata["customer_email"]),
            shipping_address=_get_chunked(metadata, "customer_address"),
            notes=_get_chunked(metadata, "notes") or None,
            shipping_service=str(metadata.get("shipping_method", "")),
            shipping_price=Decimal(str(metadata.get("shipping_rate", "0"))),
            total=Decimal(str(metadata["total"])),
        )
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise ValueError(f"Payment metadata cannot be turned into an order: {e}") from e


def _set_chunked(metadata: dict[str, str], key: str, value: str) -> None:
    chunks = [value[i:i + MAX_VALUE_LENGTH] for i in range(0, len(value), MAX_VALUE_LENGTH)] or [""]
    metadata[key] = chunks[0]
    for index, chunk in enumerate(chunks[1:], start=1):
        metadata[f"{key}_{index}"] = chunk


def _get_chunked(metadata: Mapping[str, Any], key: str) -> str:
    if key not in metadata:
        return ""
    parts = [str(metadata[key])]
    index = 1
    while f"{key}_{index}" in metadata:
        parts.append(str(metadata[f"{key}_{index}"]))
        index += 1
    return "".join(parts)
