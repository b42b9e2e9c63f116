"""Order model type definitions for database operations."""

from datetime import datetime
from decimal import Decimal
from typing import Literal, TypedDict


OrderStatus = Literal["pending", "confirmed"]

PaymentMethod = Literal["stripe", "bitcoin"]


class OrderLine(TypedDict):
    """Order line table row representation.

    One row per cart line, with the unit price captured at checkout.
    """

    order_id: int
    design_id: int
    size_option_id: int
    quantity: int
    unit_price: Decimal | str


class Order(TypedDict):
    """Order table row representation.

    design_id and size_option_id point at the first cart line; the full
    cart lives in order_lines.
    """

    id: int
    design_id: int
    size_option_id: int
    customer_name: str
    customer_email: str
    shipping_address: str
    notes: str | None
    amount: Decimal | str
    payment_method: PaymentMethod
    provider_reference: str
    shipping_method: str | None
    shipping_rate: Decimal | str | None
    status: OrderStatus
    created_at: datetime


class OrderCreate(TypedDict, total=False):
    """Data required to create a new order.

    Status is always "pending" on insert.
    """

    design_id: int
    size_option_id: int
    customer_name: str
    customer_email: str
    shipping_address: str
    notes: str | None
    amount: str
    payment_method: PaymentMethod
    provider_reference: str
    shipping_method: str | None
    shipping_rate: str | None
    status: OrderStatus


class OrderLineCreate(TypedDict):
    """Data for one order line insert."""

    design_id: int
    size_option_id: int
    quantity: int
    unit_price: str
