"""Webhook API routes for the payment processors."""

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status

from glassworks.services.bitcoin_payments import get_bitcoin_adapter
from glassworks.services.card_payments import CardPaymentAdapter
from glassworks.services.checkout_service import CheckoutService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/stripe",
    status_code=status.HTTP_200_OK,
    summary="Handle Stripe webhooks",
    description="Receives and processes Stripe webhook events. Requires valid signature.",
)
async def stripe_webhook(request: Request) -> dict[str, Any]:
    """Handle Stripe webhook events.

    The Stripe signature is verified before processing.

    Handles:
    - payment_intent.succeeded: Creates the order (authoritative completion path)
    - payment_intent.canceled: Marks the checkout failed
    - payment_intent.payment_failed: Logged; the customer may retry the card

    Args:
        request: FastAPI request object for reading raw body and headers.

    Returns:
        dict: Acknowledgment message.

    Raises:
        HTTPException: 400 if signature is missing or invalid.
    """
    # Get raw body for signature verification
    payload = await request.body()

    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        logger.error("Missing Stripe-Signature header in webhook request")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe-Signature header",
        )

    try:
        event = CardPaymentAdapter().construct_event(payload, sig_header)
    except ValueError as e:
        logger.error("Invalid webhook signature: %s", str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e

    event_type = event.get("type", "")
    logger.info("Processing Stripe webhook event: %s", event_type)

    service = CheckoutService()
    result = await service.handle_card_webhook_event(event)

    # Always return 200 OK to acknowledge receipt (idempotent)
    return {"status": "received", "result": result.get("status")}


@router.post(
    "/zaprite",
    status_code=status.HTTP_200_OK,
    summary="Handle Zaprite webhooks",
    description="Receives Zaprite invoice events. Requires a valid HMAC signature.",
)
async def zaprite_webhook(request: Request) -> dict[str, Any]:
    """Handle Zaprite webhook events.

    The body is verified against the x-zaprite-signature header before
    anything else happens. A paid invoice becomes an order.

    Raises:
        HTTPException: 400 if signature is missing or invalid, or the body is not JSON.
    """
    payload = await request.body()

    sig_header = request.headers.get("x-zaprite-signature")
    if not sig_header:
        logger.error("Missing x-zaprite-signature header in webhook request")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing signature",
        )

    if not get_bitcoin_adapter().verify_webhook_signature(payload, sig_header):
        logger.error("Zaprite webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        ) from e

    if not isinstance(event, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        )

    service = CheckoutService()
    result = await service.handle_bitcoin_webhook(event)

    return {"status": "received", "result": result.get("status")}
