"""Checkout API routes for the card and bitcoin payment rails."""

from fastapi import APIRouter, status

from glassworks.core.config import get_settings
from glassworks.schemas.checkout import (
    BitcoinInvoiceResponse,
    CardIntentResponse,
    CheckoutRequest,
    CompleteCardOrderRequest,
    InvoiceStatusResponse,
    OrderCompletionResponse,
)
from glassworks.schemas.order import (
    DesignSummary,
    OrderDetailsResponse,
    OrderLineResponse,
    OrderResponse,
    SizeOptionDetail,
)
from glassworks.services.checkout_service import CheckoutService, CompletedOrder

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _completion_response(completed: CompletedOrder) -> OrderCompletionResponse:
    return OrderCompletionResponse(
        order_id=completed.order["id"],
        status=completed.order["status"],
        duplicate=completed.duplicate,
    )


@router.post(
    "/card/intent",
    response_model=CardIntentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create card payment intent",
    description="Prices the cart server-side and creates a Stripe payment intent for it.",
)
async def create_card_intent(data: CheckoutRequest) -> CardIntentResponse:
    """Create a card payment intent for a cart.

    The charged amount is recomputed from catalog prices and a fresh
    shipping quote; any amount sent by the browser is ignored.

    Args:
        data: Cart, customer and shipping selection.

    Returns:
        CardIntentResponse: Client secret for confirming the card.
    """
    service = CheckoutService()
    result = await service.begin_card_payment(data)

    return CardIntentResponse(
        checkout_id=result.checkout_id,
        client_secret=result.intent.client_secret or "",
        provider_intent_id=result.intent.provider_intent_id,
        publishable_key=get_settings().stripe_publishable_key or None,
        totals=result.totals,
    )


@router.post(
    "/card/complete",
    response_model=OrderCompletionResponse,
    summary="Finalize card order",
    description="Re-checks the payment intent with Stripe and creates the order. Safe to retry.",
)
async def complete_card_order(data: CompleteCardOrderRequest) -> OrderCompletionResponse:
    """Create the order for a succeeded payment intent.

    Raises:
        PaymentNotConfirmed: 409 if the intent has not succeeded.
        StalePaymentArtifact: 409 if the customer switched payment method.
    """
    service = CheckoutService()
    completed = await service.complete_card_payment(data.provider_reference_id)
    return _completion_response(completed)


@router.post(
    "/bitcoin/invoice",
    response_model=BitcoinInvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create bitcoin invoice",
    description="Prices the cart server-side and creates a Zaprite invoice. No order exists until it is paid.",
)
async def create_bitcoin_invoice(data: CheckoutRequest) -> BitcoinInvoiceResponse:
    """Create a bitcoin invoice for a cart.

    Args:
        data: Cart, customer and shipping selection.

    Returns:
        BitcoinInvoiceResponse: Invoice with lightning and on-chain payment details.
    """
    service = CheckoutService()
    result = await service.begin_bitcoin_payment(data)

    return BitcoinInvoiceResponse(
        checkout_id=result.checkout_id,
        invoice=result.invoice,
        totals=result.totals,
    )


@router.get(
    "/bitcoin/invoice/{invoice_id}",
    response_model=InvoiceStatusResponse,
    summary="Poll bitcoin invoice",
    description="Returns the invoice status. The order is created the first time the invoice is seen paid.",
)
async def get_bitcoin_invoice(invoice_id: str) -> InvoiceStatusResponse:
    """Poll an invoice until it reaches a terminal status."""
    service = CheckoutService()
    observation = await service.observe_invoice(invoice_id)

    return InvoiceStatusResponse(
        invoice_id=invoice_id,
        status=observation.status,
        invoice=observation.invoice,
        order_id=observation.order_id,
    )


# Orders router - mounted separately at /orders
orders_router = APIRouter(prefix="/orders", tags=["orders"])


@orders_router.get(
    "/{order_id}",
    response_model=OrderDetailsResponse,
    summary="Get order by ID",
    description="Returns an order with its design, size option and lines for the confirmation page.",
)
async def get_order(order_id: int) -> OrderDetailsResponse:
    """Get a single order by ID.

    Raises:
        NotFoundError: 404 if order not found.
    """
    service = CheckoutService()
    details = await service.get_order_details(order_id)

    return OrderDetailsResponse(
        order=OrderResponse(**details["order"]),
        design=DesignSummary(**details["design"]) if details.get("design") else None,
        size_option=SizeOptionDetail(**details["size_option"]) if details.get("size_option") else None,
        lines=[OrderLineResponse(**line) for line in details.get("lines", [])],
    )
