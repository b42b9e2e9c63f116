"""Integration tests for payment webhook endpoints."""

import hashlib
import hmac
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from glassworks.services.bitcoin_payments import BitcoinPaymentAdapter

ZAPRITE_SECRET = "test-zaprite-webhook-secret"


def sign(body: bytes, secret: str = ZAPRITE_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture
def zaprite_adapter(make_settings):
    """Patch the webhook route's bitcoin adapter with a known secret."""
    adapter = BitcoinPaymentAdapter(settings=make_settings(zaprite_webhook_secret=ZAPRITE_SECRET))
    with patch("glassworks.api.routes.webhooks.get_bitcoin_adapter", return_value=adapter):
        yield adapter


class TestStripeWebhook:
    """Tests for POST /api/v1/webhooks/stripe endpoint."""

    def test_missing_signature_returns_400(self, client: TestClient) -> None:
        """Test that a request without Stripe-Signature is rejected."""
        response = client.post("/api/v1/webhooks/stripe", content=b"{}")

        assert response.status_code == 400
        assert response.json()["detail"] == "Missing Stripe-Signature header"

    @patch("glassworks.api.routes.webhooks.CheckoutService")
    @patch("glassworks.api.routes.webhooks.CardPaymentAdapter")
    def test_invalid_signature_returns_400(
        self,
        mock_adapter_cls: MagicMock,
        mock_service_cls: MagicMock,
        client: TestClient,
    ) -> None:
        """Test that a bad signature is rejected before any processing."""
        mock_adapter_cls.return_value.construct_event.side_effect = ValueError("Invalid webhook signature")

        response = client.post(
            "/api/v1/webhooks/stripe",
            content=b"{}",
            headers={"stripe-signature": "t=1,v1=bad"},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid signature"
        mock_service_cls.assert_not_called()

    @patch("glassworks.api.routes.webhooks.CheckoutService")
    @patch("glassworks.api.routes.webhooks.CardPaymentAdapter")
    def test_valid_event_is_processed(
        self,
        mock_adapter_cls: MagicMock,
        mock_service_cls: MagicMock,
        client: TestClient,
    ) -> None:
        """Test that a verified event is handed to checkout."""
        event = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_test_123"}}}
        mock_adapter_cls.return_value.construct_event.return_value = event
        mock_service_cls.return_value.handle_card_webhook_event = AsyncMock(
            return_value={"status": "processed", "order_id": 42}
        )

        response = client.post(
            "/api/v1/webhooks/stripe",
            content=json.dumps(event).encode(),
            headers={"stripe-signature": "t=1,v1=good"},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "received", "result": "processed"}
        mock_service_cls.return_value.handle_card_webhook_event.assert_awaited_once_with(event)
        payload, signature = mock_adapter_cls.return_value.construct_event.call_args[0]
        assert payload == json.dumps(event).encode()
        assert signature == "t=1,v1=good"


class TestZapriteWebhook:
    """Tests for POST /api/v1/webhooks/zaprite endpoint."""

    def test_missing_signature_returns_400(self, client: TestClient, zaprite_adapter: BitcoinPaymentAdapter) -> None:
        """Test that a request without a signature is rejected."""
        response = client.post("/api/v1/webhooks/zaprite", content=b"{}")

        assert response.status_code == 400
        assert response.json()["detail"] == "Missing signature"

    @patch("glassworks.api.routes.webhooks.CheckoutService")
    def test_bad_signature_returns_400(
        self,
        mock_service_cls: MagicMock,
        client: TestClient,
        zaprite_adapter: BitcoinPaymentAdapter,
    ) -> None:
        """Test that a tampered body is rejected and never processed."""
        body = json.dumps({"type": "order.paid", "data": {"id": "inv_123"}}).encode()

        response = client.post(
            "/api/v1/webhooks/zaprite",
            content=body,
            headers={"x-zaprite-signature": sign(body, "some-other-secret")},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid signature"
        mock_service_cls.assert_not_called()

    @patch("glassworks.api.routes.webhooks.CheckoutService")
    def test_valid_signature_is_processed(
        self,
        mock_service_cls: MagicMock,
        client: TestClient,
        zaprite_adapter: BitcoinPaymentAdapter,
    ) -> None:
        """Test that a correctly signed event is handed to checkout."""
        event = {"type": "order.paid", "data": {"id": "inv_123"}}
        body = json.dumps(event).encode()
        mock_service_cls.return_value.handle_bitcoin_webhook = AsyncMock(return_value={"status": "processed"})

        response = client.post(
            "/api/v1/webhooks/zaprite",
            content=body,
            headers={"x-zaprite-signature": sign(body)},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "received", "result": "processed"}
        mock_service_cls.return_value.handle_bitcoin_webhook.assert_awaited_once_with(event)

    @patch("glassworks.api.routes.webhooks.CheckoutService")
    def test_signed_non_json_body_returns_400(
        self,
        mock_service_cls: MagicMock,
        client: TestClient,
        zaprite_adapter: BitcoinPaymentAdapter,
    ) -> None:
        """Test that a signed body that is not a JSON object is rejected."""
        for body in (b"not json", b"[1, 2]"):
            response = client.post(
                "/api/v1/webhooks/zaprite",
                content=body,
                headers={"x-zaprite-signature": sign(body)},
            )

            assert response.status_code == 400
            assert response.json()["detail"] == "Invalid JSON payload"
        mock_service_cls.assert_not_called()
