"""Cart and customer Pydantic schemas."""

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class CartLineSchema(BaseModel):
    """One cart line. Prices are never accepted from the client."""

    model_config = ConfigDict(from_attributes=True)

    design_id: int = Field(gt=0, description="Design id")
    size_option_id: int = Field(gt=0, description="Size option id")
    quantity: int = Field(default=1, ge=1, le=100, description="Quantity ordered")


class CustomerInfo(BaseModel):
    """Who is buying and where it ships."""

    name: str = Field(min_length=1, max_length=200, description="Customer full name")
    email: EmailStr = Field(description="Customer email")
    address: str = Field(min_length=1, max_length=500, description="Full shipping address")
    notes: str | None = Field(default=None, max_length=1000, description="Special instructions")
