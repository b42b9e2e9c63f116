"""Card payments through Stripe payment intents."""

import asyncio
import logging
from typing import Any, Callable

import stripe

from glassworks.core.config import Settings, get_settings
from glassworks.core.stripe import get_stripe
from glassworks.schemas.payment import CardIntent, CardIntentStatus
from glassworks.services.provider_errors import PaymentProviderError

logger = logging.getLogger(__name__)


def normalize_intent_status(provider_status: str) -> CardIntentStatus:
    """Collapse Stripe's intent statuses into the three checkout cares about.

    A declined card leaves the intent in requires_payment_method, and the
    customer may retry it, so only a canceled intent counts as failed.
    """
    if provider_status == "succeeded":
        return CardIntentStatus.SUCCEEDED
    if provider_status == "canceled":
        return CardIntentStatus.FAILED
    return CardIntentStatus.REQUIRES_PAYMENT


class CardPaymentAdapter:
    """Creates and reads Stripe payment intents.

    Never writes to the order store.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize card adapter with the Stripe module and settings."""
        self.stripe = get_stripe()
        self.settings = settings or get_settings()

    async def create_intent(
        self,
        amount_minor_units: int,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> CardIntent:
        """Create a card-only payment intent.

        Args:
            amount_minor_units: Amount in cents. Clamped up to the processor minimum.
            metadata: Flat string metadata sufficient to rebuild the order.
            idempotency_key: Optional key so a retried request reuses the intent.

        Returns:
            CardIntent: The created intent with its client secret.

        Raises:
            PaymentProviderError: If Stripe fails or times out.
        """
        minimum = self.settings.stripe_minimum_charge_cents
        charge_amount = max(amount_minor_units, minimum)
        if charge_amount != amount_minor_units:
            logger.warning("Charge of %d cents raised to Stripe minimum %d", amount_minor_units, minimum)

        params: dict[str, Any] = {
            "amount": charge_amount,
            "currency": "usd",
            "payment_method_types": ["card"],
            "metadata": metadata,
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        intent = await self._call(self.stripe.PaymentIntent.create, **params)
        logger.info("Payment intent created: %s (%d cents)", intent.id, charge_amount)
        return self._to_card_intent(intent)

    async def retrieve_intent(self, intent_id: str) -> CardIntent:
        """Fetch an intent's current status from Stripe.

        Raises:
            PaymentProviderError: If Stripe fails or times out.
        """
        intent = await self._call(self.stripe.PaymentIntent.retrieve, intent_id)
        return self._to_card_intent(intent)

    async def cancel_intent(self, intent_id: str) -> CardIntent:
        """Cancel an intent the customer walked away from.

        Raises:
            PaymentProviderError: If Stripe refuses (e.g. already succeeded) or times out.
        """
        intent = await self._call(self.stripe.PaymentIntent.cancel, intent_id)
        logger.info("Payment intent canceled: %s", intent_id)
        return self._to_card_intent(intent)

    def construct_event(self, payload: bytes, sig_header: str) -> dict[str, Any]:
        """Verify a Stripe webhook signature and return the event.

        Args:
            payload: Raw webhook payload bytes.
            sig_header: Stripe-Signature header value.

        Returns:
            dict: Verified Stripe event.

        Raises:
            ValueError: If signature is invalid or the webhook secret is not configured.
        """
        if not self.settings.stripe_webhook_secret:
            raise ValueError("Stripe webhook secret is not configured. Please set STRIPE_WEBHOOK_SECRET environment variable.")

        try:
            return self.stripe.Webhook.construct_event(
                payload, sig_header, self.settings.stripe_webhook_secret
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise ValueError("Invalid webhook signature") from e

    async def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking Stripe call off the event loop with a bounded timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs),
                timeout=self.settings.payment_request_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Stripe call timed out after %.1fs", self.settings.payment_request_timeout)
            raise PaymentProviderError("stripe", "request timed out") from e
        except stripe.StripeError as e:
            logger.error("Stripe error: %s", str(e))
            raise PaymentProviderError("stripe", str(e)) from e

    @staticmethod
    def _to_card_intent(intent: Any) -> CardIntent:
        provider_status = intent.status
        return CardIntent(
            provider_intent_id=intent.id,
            client_secret=intent.client_secret,
            status=normalize_intent_status(provider_status),
            provider_status=provider_status,
            charge_amount_minor_units=intent.amount,
            metadata={str(k): str(v) for k, v in dict(intent.metadata or {}).items()},
        )
