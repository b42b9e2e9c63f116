"""Payment artifact schemas shared by the card and bitcoin rails."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class CardIntentStatus(str, Enum):
    """Card payment intent status as seen by checkout."""

    REQUIRES_PAYMENT = "requires_payment"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class InvoiceStatus(str, Enum):
    """Bitcoin invoice status. Everything except PENDING is terminal."""

    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not InvoiceStatus.PENDING


class CardIntent(BaseModel):
    """A card payment intent created with the card processor."""

    provider_intent_id: str = Field(description="Processor payment intent id")
    client_secret: str | None = Field(default=None, description="Secret the browser confirms the card with")
    status: CardIntentStatus = Field(description="Normalized intent status")
    provider_status: str = Field(default="", description="Raw processor status")
    charge_amount_minor_units: int = Field(ge=0, description="Amount charged, in cents")
    metadata: dict[str, str] = Field(default_factory=dict, description="Order reconstruction metadata")


class BitcoinInvoice(BaseModel):
    """A bitcoin/lightning invoice created with the bitcoin processor."""

    invoice_id: str = Field(description="Processor invoice id")
    status: InvoiceStatus = Field(description="Invoice status reported by the processor")
    amount_minor_units: int = Field(ge=0, description="Invoice amount in USD cents")
    btc_amount: str | None = Field(default=None, description="Amount in BTC")
    lightning_payload: str | None = Field(default=None, description="BOLT11 lightning invoice")
    onchain_address: str | None = Field(default=None, description="On-chain deposit address")
    expires_at: datetime = Field(description="When the invoice stops accepting payment")
    payment_url: str | None = Field(default=None, description="Hosted checkout page")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Order reconstruction metadata")

    @field_validator("expires_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        """Treat naive provider timestamps as UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def effective_status(self, now: datetime | None = None) -> InvoiceStatus:
        """Status with wall-clock expiry applied.

        A pending invoice past expires_at is reported as expired even
        if the processor has not pushed that status yet.
        """
        now = now or datetime.now(timezone.utc)
        if self.status is InvoiceStatus.PENDING and now >= self.expires_at:
            return InvoiceStatus.EXPIRED
        return self.status
