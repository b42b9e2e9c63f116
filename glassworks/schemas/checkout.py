"""Checkout Pydantic schemas for API request/response models."""

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from glassworks.schemas.cart import CartLineSchema, CustomerInfo
from glassworks.schemas.payment import BitcoinInvoice, InvoiceStatus
from glassworks.schemas.shipping import ShippingService


class CheckoutRequest(BaseModel):
    """Body for starting a payment on either rail.

    Accepts either a cart (``items``) or a single design/size pair.
    ``amount`` is what the browser displayed; it is compared with the
    server-computed total and never charged.
    """

    items: list[CartLineSchema] = Field(default_factory=list, description="Cart lines")
    design_id: int | None = Field(default=None, description="Single-item checkout design id")
    size_option_id: int | None = Field(default=None, description="Single-item checkout size option id")
    customer: CustomerInfo = Field(description="Customer contact and shipping address")
    destination_postal_code: str = Field(description="Destination ZIP code")
    shipping_service: ShippingService = Field(description="Shipping service the customer picked")
    amount: Decimal | None = Field(default=None, description="Advisory total shown to the customer")
    previous_checkout_id: UUID | None = Field(
        default=None,
        description="Checkout being replaced when the customer switches payment method",
    )

    @model_validator(mode="after")
    def fold_single_item(self) -> "CheckoutRequest":
        """Turn a single design/size selection into a one-line cart."""
        if not self.items and self.design_id and self.size_option_id:
            self.items = [
                CartLineSchema(design_id=self.design_id, size_option_id=self.size_option_id, quantity=1)
            ]
        return self


class CheckoutTotals(BaseModel):
    """Server-computed amounts for a checkout."""

    subtotal: Decimal = Field(description="Sum of catalog price x quantity")
    shipping_price: Decimal = Field(description="Price of the selected shipping service")
    total: Decimal = Field(description="Amount charged")


class CardIntentResponse(BaseModel):
    """Response for POST /checkout/card/intent."""

    checkout_id: UUID = Field(description="Checkout attempt id")
    client_secret: str = Field(description="Secret for confirming the card in the browser")
    provider_intent_id: str = Field(description="Payment intent id")
    publishable_key: str | None = Field(default=None, description="Card processor publishable key")
    totals: CheckoutTotals


class CompleteCardOrderRequest(BaseModel):
    """Body for POST /checkout/card/complete."""

    provider_reference_id: str = Field(min_length=1, description="Payment intent id")


class OrderCompletionResponse(BaseModel):
    """Result of turning a confirmed payment into an order."""

    order_id: int = Field(description="Order id")
    status: str = Field(description="Order status")
    duplicate: bool = Field(default=False, description="True when the order already existed")


class BitcoinInvoiceResponse(BaseModel):
    """Response for POST /checkout/bitcoin/invoice."""

    checkout_id: UUID = Field(description="Checkout attempt id")
    invoice: BitcoinInvoice
    totals: CheckoutTotals


class InvoiceStatusResponse(BaseModel):
    """Response for GET /checkout/bitcoin/invoice/{invoice_id}."""

    invoice_id: str
    status: InvoiceStatus = Field(description="Status with wall-clock expiry applied")
    invoice: BitcoinInvoice
    order_id: int | None = Field(default=None, description="Order id once the invoice is paid")
