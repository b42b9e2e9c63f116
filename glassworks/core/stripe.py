"""Stripe client configuration and singleton."""

import logging

import stripe

from glassworks.core.config import get_settings

logger = logging.getLogger(__name__)

# Stripe retries idempotent requests itself; keep it low so the per-call
# timeout in the card adapter stays meaningful.
STRIPE_MAX_NETWORK_RETRIES = 1


def configure_stripe() -> None:
    """Configure Stripe SDK with API key from settings.

    This should be called once at application startup.
    If Stripe keys are not configured, the card rail is disabled and
    card checkout requests are rejected with a clear error.
    """
    settings = get_settings()
    if settings.stripe_secret_key:
        stripe.api_key = settings.stripe_secret_key
        stripe.max_network_retries = STRIPE_MAX_NETWORK_RETRIES
        if settings.is_stripe_test_mode:
            logger.info("Stripe configured in test mode")
    else:
        logger.warning("Stripe secret key not configured. Card payments will not work.")


def get_stripe() -> stripe:
    """Get the configured Stripe module.

    Returns:
        stripe: The Stripe module with API key configured.

    Note:
        Stripe SDK uses module-level configuration, so this returns
        the stripe module itself. Ensure configure_stripe() has been
        called before using Stripe API calls.
    """
    return stripe
