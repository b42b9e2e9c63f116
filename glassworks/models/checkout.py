"""Checkout attempt model type definitions for database operations."""

from datetime import datetime
from enum import Enum
from typing import Any, TypedDict
from uuid import UUID


class PaymentRail(str, Enum):
    """Payment rails a checkout can run on."""

    CARD = "card"
    BITCOIN = "bitcoin"


class CheckoutState(str, Enum):
    """Checkout attempt lifecycle states."""

    CART_ASSEMBLED = "cart_assembled"
    SHIPPING_SELECTED = "shipping_selected"
    PAYMENT_ARTIFACT_CREATED = "payment_artifact_created"
    PAYMENT_CONFIRMED = "payment_confirmed"
    ORDER_PERSISTED = "order_persisted"
    NOTIFICATION_ATTEMPTED = "notification_attempted"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_EXPIRED = "payment_expired"
    ABANDONED = "abandoned"


# Allowed forward moves. Terminal states have no entry.
CHECKOUT_TRANSITIONS: dict[CheckoutState, frozenset[CheckoutState]] = {
    CheckoutState.CART_ASSEMBLED: frozenset({CheckoutState.SHIPPING_SELECTED}),
    CheckoutState.SHIPPING_SELECTED: frozenset({CheckoutState.PAYMENT_ARTIFACT_CREATED}),
    CheckoutState.PAYMENT_ARTIFACT_CREATED: frozenset(
        {
            CheckoutState.PAYMENT_CONFIRMED,
            CheckoutState.PAYMENT_FAILED,
            CheckoutState.PAYMENT_EXPIRED,
            CheckoutState.ABANDONED,
        }
    ),
    CheckoutState.PAYMENT_CONFIRMED: frozenset({CheckoutState.ORDER_PERSISTED}),
    CheckoutState.ORDER_PERSISTED: frozenset({CheckoutState.NOTIFICATION_ATTEMPTED}),
}

# Once here, the money has moved (or is moving) and the attempt cannot be abandoned.
PAID_STATES = frozenset(
    {
        CheckoutState.PAYMENT_CONFIRMED,
        CheckoutState.ORDER_PERSISTED,
        CheckoutState.NOTIFICATION_ATTEMPTED,
    }
)


def can_transition(current: CheckoutState, target: CheckoutState) -> bool:
    """Check whether an attempt may move from current to target."""
    return target in CHECKOUT_TRANSITIONS.get(current, frozenset())


class CheckoutAttempt(TypedDict):
    """Checkout attempt table row representation.

    One row per payment artifact. The row is never promoted into an
    order; an order is created separately once payment is confirmed.
    """

    id: UUID
    rail: str
    provider_reference: str
    state: str
    metadata: dict[str, Any]
    subtotal: str
    shipping_price: str
    total: str
    order_id: int | None
    created_at: datetime
    updated_at: datetime
