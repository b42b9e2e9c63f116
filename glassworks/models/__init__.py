"""Database model type definitions."""

from glassworks.models.catalog import Design, SizeOption
from glassworks.models.checkout import CheckoutAttempt, CheckoutState, PaymentRail
from glassworks.models.order import Order, OrderLine, OrderStatus

__all__ = [
    "Design",
    "SizeOption",
    "CheckoutAttempt",
    "CheckoutState",
    "PaymentRail",
    "Order",
    "OrderLine",
    "OrderStatus",
]
