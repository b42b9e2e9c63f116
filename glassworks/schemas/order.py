"""Order Pydantic schemas for API responses."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class OrderLineResponse(BaseModel):
    """One line of an order."""

    model_config = ConfigDict(from_attributes=True)

    design_id: int
    size_option_id: int
    quantity: int = Field(ge=1)
    unit_price: Decimal


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(description="Order id")
    design_id: int = Field(description="Design of the first line")
    size_option_id: int = Field(description="Size option of the first line")
    customer_name: str
    customer_email: str
    shipping_address: str
    notes: str | None = None
    amount: Decimal = Field(description="Total actually charged, USD")
    payment_method: str = Field(description="stripe or bitcoin")
    provider_reference: str | None = Field(default=None, description="Payment intent id or invoice id")
    shipping_method: str | None = None
    shipping_rate: Decimal | None = None
    status: str = Field(description="pending or confirmed")
    created_at: datetime | None = None


class DesignSummary(BaseModel):
    """Design fields shown on the confirmation page."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None = None
    image_url: str | None = None


class SizeOptionDetail(BaseModel):
    """Size option fields shown on the confirmation page."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    size: str | None = None
    price: Decimal
    description: str | None = None


class OrderDetailsResponse(BaseModel):
    """Order with its design, size option and lines."""

    order: OrderResponse
    design: DesignSummary | None = None
    size_option: SizeOptionDetail | None = None
    lines: list[OrderLineResponse] = Field(default_factory=list)
