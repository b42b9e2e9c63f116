"""Shipping rate Pydantic schemas."""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from glassworks.schemas.cart import CartLineSchema


class ShippingService(str, Enum):
    """Carrier service tiers offered at checkout."""

    STANDARD = "PRIORITY_MAIL"
    EXPRESS = "PRIORITY_MAIL_EXPRESS"


class ShippingOption(BaseModel):
    """One priced way to ship the order."""

    service: ShippingService = Field(description="Carrier service tier")
    description: str = Field(description="Human-readable service description")
    price: Decimal = Field(ge=0, description="Price in USD")
    estimated_delivery_days: str = Field(description="Delivery estimate, e.g. '2-3 business days'")
    carrier_icon: str = Field(description="Icon shown next to the option")
    estimated: bool = Field(
        default=False,
        description="True when the price comes from the fallback table instead of the carrier",
    )


class ShippingRatesRequest(BaseModel):
    """Request body for POST /shipping/rates."""

    destination_postal_code: str = Field(description="Destination ZIP code")
    size_option_id: int = Field(description="Size option being shipped")


class ShippingQuoteRequest(BaseModel):
    """Request body for POST /shipping/quote."""

    destination_postal_code: str = Field(description="Destination ZIP code")
    items: list[CartLineSchema] = Field(default_factory=list, description="Cart lines")


class SizeOptionSummary(BaseModel):
    """Size option echoed back with a rate lookup."""

    id: int
    name: str
    size: str | None = None


class ShippingRatesResponse(BaseModel):
    """Shipping options for a destination."""

    destination_postal_code: str = Field(description="Destination ZIP code")
    size_option: SizeOptionSummary | None = Field(default=None, description="Size the rates were quoted for")
    shipping_options: list[ShippingOption] = Field(description="Available shipping options")


class ValidateZipRequest(BaseModel):
    """Request body for POST /shipping/validate-zip."""

    zip_code: str = Field(min_length=1, description="ZIP code to validate")


class ValidateZipResponse(BaseModel):
    """ZIP code validation result."""

    zip_code: str
    is_valid: bool
    message: str
