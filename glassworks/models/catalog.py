"""Catalog model type definitions for database operations."""

from datetime import datetime
from decimal import Decimal
from typing import TypedDict


class Design(TypedDict):
    """Design table row representation.

    A design is the artwork etched into the glass; it is sold in
    any of the size options.
    """

    id: int
    title: str
    description: str
    image_url: str
    created_at: datetime


class SizeOption(TypedDict):
    """Size option table row representation.

    The size option carries the price. Designs have no price of their own.
    """

    id: int
    name: str  # "12 Inch Glass Art"
    size: str  # "12"
    price: Decimal | str
    description: str | None
    stripe_product_id: str | None
    stripe_price_id: str | None
    created_at: datetime
