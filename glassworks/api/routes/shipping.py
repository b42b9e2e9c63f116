"""Shipping rate API routes."""

from fastapi import APIRouter

from glassworks.schemas.shipping import (
    ShippingQuoteRequest,
    ShippingRatesRequest,
    ShippingRatesResponse,
    SizeOptionSummary,
    ValidateZipRequest,
    ValidateZipResponse,
)
from glassworks.services.checkout_service import CheckoutService
from glassworks.services.shipping_rates import validate_postal_code

router = APIRouter(prefix="/shipping", tags=["shipping"])


@router.post(
    "/rates",
    response_model=ShippingRatesResponse,
    summary="Shipping rates for a size",
    description="Returns priced shipping options for one size option. Falls back to estimated rates when USPS is unavailable.",
)
async def get_shipping_rates(data: ShippingRatesRequest) -> ShippingRatesResponse:
    """Compute shipping options for a single size option.

    Args:
        data: Destination ZIP and size option id.

    Returns:
        ShippingRatesResponse: Never-empty list of options.

    Raises:
        InvalidDestination: 422 if the ZIP is malformed.
        NotFoundError: 404 if the size option does not exist.
    """
    service = CheckoutService()
    size_option, options = await service.shipping_rates_for_size(
        data.destination_postal_code,
        data.size_option_id,
    )

    return ShippingRatesResponse(
        destination_postal_code=data.destination_postal_code,
        size_option=SizeOptionSummary(
            id=size_option["id"],
            name=size_option["name"],
            size=size_option.get("size"),
        ),
        shipping_options=options,
    )


@router.post(
    "/quote",
    response_model=ShippingRatesResponse,
    summary="Shipping rates for a cart",
    description="Returns priced shipping options for a whole cart, boxed by its largest piece.",
)
async def quote_cart_shipping(data: ShippingQuoteRequest) -> ShippingRatesResponse:
    """Compute shipping options for a cart.

    Raises:
        EmptyCart: 422 if the cart has no lines.
        InvalidDestination: 422 if the ZIP is malformed.
        CatalogItemNotFound: 404 if a line no longer exists.
    """
    service = CheckoutService()
    options = await service.quote_shipping(data.items, data.destination_postal_code)

    return ShippingRatesResponse(
        destination_postal_code=data.destination_postal_code,
        shipping_options=options,
    )


@router.post(
    "/validate-zip",
    response_model=ValidateZipResponse,
    summary="Validate ZIP code",
    description="Checks the ZIP code format without contacting the carrier.",
)
async def validate_zip(data: ValidateZipRequest) -> ValidateZipResponse:
    """Validate a ZIP code's format."""
    is_valid = validate_postal_code(data.zip_code)
    return ValidateZipResponse(
        zip_code=data.zip_code,
        is_valid=is_valid,
        message="Valid zip code" if is_valid else "Invalid zip code format",
    )
