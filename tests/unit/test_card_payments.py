"""Unit tests for the Stripe card payment adapter."""

import time
from typing import Any, Callable
from unittest.mock import MagicMock, patch

import pytest
import stripe

from glassworks.schemas.payment import CardIntentStatus
from glassworks.services.card_payments import CardPaymentAdapter, normalize_intent_status
from glassworks.services.provider_errors import PaymentProviderError


def make_intent(**overrides: Any) -> MagicMock:
    intent = MagicMock()
    intent.id = overrides.get("id", "pi_test_123")
    intent.client_secret = overrides.get("client_secret", "pi_test_123_secret_abc")
    intent.status = overrides.get("status", "requires_payment_method")
    intent.amount = overrides.get("amount", 30999)
    intent.metadata = overrides.get("metadata", {"checkout_id": "abc"})
    return intent


@pytest.fixture
def mock_stripe() -> MagicMock:
    """Create a mock Stripe module."""
    return MagicMock()


@pytest.fixture
def adapter(mock_stripe: MagicMock, make_settings: Callable[..., Any]) -> CardPaymentAdapter:
    """Create a CardPaymentAdapter with mocked Stripe."""
    settings = make_settings(
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret="whsec_test",
        payment_request_timeout=1.0,
    )
    with patch("glassworks.services.card_payments.get_stripe", return_value=mock_stripe):
        return CardPaymentAdapter(settings)


class TestNormalizeIntentStatus:
    """Tests for collapsing Stripe statuses."""

    def test_succeeded(self) -> None:
        """Test that succeeded maps to succeeded."""
        assert normalize_intent_status("succeeded") is CardIntentStatus.SUCCEEDED

    def test_canceled_is_failed(self) -> None:
        """Test that a canceled intent is failed."""
        assert normalize_intent_status("canceled") is CardIntentStatus.FAILED

    @pytest.mark.parametrize(
        "provider_status",
        ["requires_payment_method", "requires_confirmation", "requires_action", "processing"],
    )
    def test_everything_else_requires_payment(self, provider_status: str) -> None:
        """Test that open and declined intents still require payment."""
        assert normalize_intent_status(provider_status) is CardIntentStatus.REQUIRES_PAYMENT


class TestCreateIntent:
    """Tests for CardPaymentAdapter.create_intent."""

    @pytest.mark.asyncio
    async def test_creates_card_only_intent(self, adapter: CardPaymentAdapter, mock_stripe: MagicMock) -> None:
        """Test that the intent is created for cards in USD with metadata."""
        mock_stripe.PaymentIntent.create.return_value = make_intent()

        intent = await adapter.create_intent(30999, {"checkout_id": "abc"}, idempotency_key="checkout-abc")

        mock_stripe.PaymentIntent.create.assert_called_once_with(
            amount=30999,
            currency="usd",
            payment_method_types=["card"],
            metadata={"checkout_id": "abc"},
            idempotency_key="checkout-abc",
        )
        assert intent.provider_intent_id == "pi_test_123"
        assert intent.client_secret == "pi_test_123_secret_abc"
        assert intent.status is CardIntentStatus.REQUIRES_PAYMENT
        assert intent.metadata == {"checkout_id": "abc"}

    @pytest.mark.asyncio
    async def test_amount_clamped_to_minimum(self, adapter: CardPaymentAdapter, mock_stripe: MagicMock) -> None:
        """Test that amounts below the processor minimum are raised to it."""
        mock_stripe.PaymentIntent.create.return_value = make_intent(amount=50)

        await adapter.create_intent(10, {})

        assert mock_stripe.PaymentIntent.create.call_args.kwargs["amount"] == 50
        assert "idempotency_key" not in mock_stripe.PaymentIntent.create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_stripe_error_becomes_provider_error(
        self, adapter: CardPaymentAdapter, mock_stripe: MagicMock
    ) -> None:
        """Test that Stripe errors are wrapped."""
        mock_stripe.PaymentIntent.create.side_effect = stripe.APIConnectionError("network down")

        with pytest.raises(PaymentProviderError) as exc_info:
            await adapter.create_intent(30999, {})

        assert exc_info.value.provider == "stripe"

    @pytest.mark.asyncio
    async def test_timeout_becomes_provider_error(
        self, mock_stripe: MagicMock, make_settings: Callable[..., Any]
    ) -> None:
        """Test that a hung Stripe call is bounded by the payment timeout."""
        mock_stripe.PaymentIntent.create.side_effect = lambda **kwargs: time.sleep(0.3)
        with patch("glassworks.services.card_payments.get_stripe", return_value=mock_stripe):
            slow_adapter = CardPaymentAdapter(make_settings(payment_request_timeout=0.05))

        with pytest.raises(PaymentProviderError, match="timed out"):
            await slow_adapter.create_intent(30999, {})


class TestRetrieveAndCancel:
    """Tests for reading and cancelling intents."""

    @pytest.mark.asyncio
    async def test_retrieve_succeeded_intent(self, adapter: CardPaymentAdapter, mock_stripe: MagicMock) -> None:
        """Test that a succeeded intent is reported with its charge amount."""
        mock_stripe.PaymentIntent.retrieve.return_value = make_intent(status="succeeded", amount=30999)

        intent = await adapter.retrieve_intent("pi_test_123")

        mock_stripe.PaymentIntent.retrieve.assert_called_once_with("pi_test_123")
        assert intent.status is CardIntentStatus.SUCCEEDED
        assert intent.provider_status == "succeeded"
        assert intent.charge_amount_minor_units == 30999

    @pytest.mark.asyncio
    async def test_retrieve_stringifies_metadata(self, adapter: CardPaymentAdapter, mock_stripe: MagicMock) -> None:
        """Test that metadata values come back as strings."""
        mock_stripe.PaymentIntent.retrieve.return_value = make_intent(metadata={"item_count": 2})

        intent = await adapter.retrieve_intent("pi_test_123")

        assert intent.metadata == {"item_count": "2"}

    @pytest.mark.asyncio
    async def test_cancel_intent(self, adapter: CardPaymentAdapter, mock_stripe: MagicMock) -> None:
        """Test that cancel returns a failed intent."""
        mock_stripe.PaymentIntent.cancel.return_value = make_intent(status="canceled")

        intent = await adapter.cancel_intent("pi_test_123")

        mock_stripe.PaymentIntent.cancel.assert_called_once_with("pi_test_123")
        assert intent.status is CardIntentStatus.FAILED


class TestConstructEvent:
    """Tests for webhook signature verification."""

    def test_valid_signature_returns_event(self, adapter: CardPaymentAdapter, mock_stripe: MagicMock) -> None:
        """Test that a verified event is returned."""
        event = {"type": "payment_intent.succeeded"}
        mock_stripe.Webhook.construct_event.return_value = event

        assert adapter.construct_event(b"{}", "t=1,v1=abc") == event
        mock_stripe.Webhook.construct_event.assert_called_once_with(b"{}", "t=1,v1=abc", "whsec_test")

    def test_invalid_signature_raises_value_error(
        self, adapter: CardPaymentAdapter, mock_stripe: MagicMock
    ) -> None:
        """Test that a bad signature raises ValueError."""
        mock_stripe.Webhook.construct_event.side_effect = stripe.SignatureVerificationError("bad", "t=1,v1=abc")

        with pytest.raises(ValueError, match="Invalid webhook signature"):
            adapter.construct_event(b"{}", "t=1,v1=abc")

    def test_missing_secret_raises_value_error(
        self, mock_stripe: MagicMock, make_settings: Callable[..., Any]
    ) -> None:
        """Test that verification refuses to run without a secret."""
        with patch("glassworks.services.card_payments.get_stripe", return_value=mock_stripe):
            unconfigured = CardPaymentAdapter(make_settings(stripe_webhook_secret=""))

        with pytest.raises(ValueError, match="not configured"):
            unconfigured.construct_event(b"{}", "t=1,v1=abc")

        mock_stripe.Webhook.construct_event.assert_not_called()
