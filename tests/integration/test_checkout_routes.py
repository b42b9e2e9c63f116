"""Integration tests for checkout API endpoints."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

from fastapi.testclient import TestClient

from glassworks.api.middleware.error_handler import (
    CatalogItemNotFound,
    PaymentNotConfirmed,
    PaymentProviderUnavailable,
    PaymentRailUnavailable,
    StalePaymentArtifact,
)
from glassworks.schemas.checkout import CheckoutTotals
from glassworks.schemas.payment import BitcoinInvoice, CardIntent, CardIntentStatus, InvoiceStatus
from glassworks.services.checkout_service import (
    BitcoinCheckout,
    CardCheckout,
    CompletedOrder,
    InvoiceObservation,
)

TOTALS = CheckoutTotals(subtotal=Decimal("299.99"), shipping_price=Decimal("10.00"), total=Decimal("309.99"))

CHECKOUT_BODY: dict[str, Any] = {
    "items": [{"design_id": 7, "size_option_id": 2, "quantity": 1}],
    "customer": {
        "name": "Satoshi N",
        "email": "satoshi@example.com",
        "address": "1 Genesis Way, Austin, TX 78701",
    },
    "destination_postal_code": "90210",
    "shipping_service": "PRIORITY_MAIL",
    "amount": "309.99",
}


def make_invoice(status: InvoiceStatus = InvoiceStatus.PENDING) -> BitcoinInvoice:
    return BitcoinInvoice(
        invoice_id="inv_123",
        status=status,
        amount_minor_units=30999,
        btc_amount="0.00512",
        lightning_payload="lnbc1...",
        onchain_address="bc1qexample",
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=30),
        payment_url="https://pay.zaprite.test/inv_123",
    )


class TestCardIntent:
    """Tests for POST /api/v1/checkout/card/intent endpoint."""

    @patch("glassworks.api.routes.checkout.CheckoutService")
    def test_creates_intent(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that a card intent is returned with server totals."""
        checkout_id = uuid4()
        mock_service_cls.return_value.begin_card_payment = AsyncMock(
            return_value=CardCheckout(
                checkout_id=checkout_id,
                intent=CardIntent(
                    provider_intent_id="pi_test_123",
                    client_secret="pi_test_123_secret",
                    status=CardIntentStatus.REQUIRES_PAYMENT,
                    charge_amount_minor_units=30999,
                ),
                totals=TOTALS,
            )
        )

        response = client.post("/api/v1/checkout/card/intent", json=CHECKOUT_BODY)

        assert response.status_code == 201
        data = response.json()
        assert data["checkout_id"] == str(checkout_id)
        assert data["client_secret"] == "pi_test_123_secret"
        assert data["provider_intent_id"] == "pi_test_123"
        assert data["publishable_key"] == "pk_test_stripe_publishable_key"
        assert Decimal(data["totals"]["total"]) == Decimal("309.99")

    @patch("glassworks.api.routes.checkout.CheckoutService")
    def test_single_item_body(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that a design/size pair is accepted in place of items."""
        mock_service_cls.return_value.begin_card_payment = AsyncMock(side_effect=PaymentRailUnavailable("Card"))
        body = {key: value for key, value in CHECKOUT_BODY.items() if key != "items"}
        body.update(design_id=7, size_option_id=2)

        client.post("/api/v1/checkout/card/intent", json=body)

        request = mock_service_cls.return_value.begin_card_payment.call_args[0][0]
        assert [(item.design_id, item.size_option_id, item.quantity) for item in request.items] == [(7, 2, 1)]

    @patch("glassworks.api.routes.checkout.CheckoutService")
    def test_rail_unavailable_returns_503(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that a disabled card rail returns 503."""
        mock_service_cls.return_value.begin_card_payment = AsyncMock(side_effect=PaymentRailUnavailable("Card"))

        response = client.post("/api/v1/checkout/card/intent", json=CHECKOUT_BODY)

        assert response.status_code == 503
        assert response.json()["error"] == "payment_rail_unavailable"

    @patch("glassworks.api.routes.checkout.CheckoutService")
    def test_provider_unavailable_returns_503(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that a processor outage returns a retryable 503."""
        mock_service_cls.return_value.begin_card_payment = AsyncMock(side_effect=PaymentProviderUnavailable())

        response = client.post("/api/v1/checkout/card/intent", json=CHECKOUT_BODY)

        assert response.status_code == 503
        assert response.json()["error"] == "payment_provider_unavailable"

    @patch("glassworks.api.routes.checkout.CheckoutService")
    def test_catalog_item_missing_returns_404(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that a missing catalog item returns 404."""
        mock_service_cls.return_value.begin_card_payment = AsyncMock(side_effect=CatalogItemNotFound(7, 2))

        response = client.post("/api/v1/checkout/card/intent", json=CHECKOUT_BODY)

        assert response.status_code == 404

    def test_invalid_email_rejected(self, client: TestClient) -> None:
        """Test that request validation rejects a malformed email."""
        body = {**CHECKOUT_BODY, "customer": {**CHECKOUT_BODY["customer"], "email": "not-an-email"}}

        response = client.post("/api/v1/checkout/card/intent", json=body)

        assert response.status_code == 422

    def test_unknown_shipping_service_rejected(self, client: TestClient) -> None:
        """Test that request validation rejects an unknown shipping service."""
        body = {**CHECKOUT_BODY, "shipping_service": "CARRIER_PIGEON"}

        response = client.post("/api/v1/checkout/card/intent", json=body)

        assert response.status_code == 422


class TestCompleteCardOrder:
    """Tests for POST /api/v1/checkout/card/complete endpoint."""

    @patch("glassworks.api.routes.checkout.CheckoutService")
    def test_completes_order(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that a succeeded intent returns its order."""
        mock_service_cls.return_value.complete_card_payment = AsyncMock(
            return_value=CompletedOrder(order={"id": 42, "status": "confirmed"}, duplicate=False)
        )

        response = client.post("/api/v1/checkout/card/complete", json={"provider_reference_id": "pi_test_123"})

        assert response.status_code == 200
        assert response.json() == {"order_id": 42, "status": "confirmed", "duplicate": False}
        mock_service_cls.return_value.complete_card_payment.assert_awaited_once_with("pi_test_123")

    @patch("glassworks.api.routes.checkout.CheckoutService")
    def test_replay_reports_duplicate(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that a repeated completion returns the same order flagged duplicate."""
        mock_service_cls.return_value.complete_card_payment = AsyncMock(
            return_value=CompletedOrder(order={"id": 42, "status": "confirmed"}, duplicate=True)
        )

        response = client.post("/api/v1/checkout/card/complete", json={"provider_reference_id": "pi_test_123"})

        assert response.json()["duplicate"] is True

    @patch("glassworks.api.routes.checkout.CheckoutService")
    def test_unconfirmed_payment_returns_409(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that completing an unpaid intent returns 409."""
        mock_service_cls.return_value.complete_card_payment = AsyncMock(
            side_effect=PaymentNotConfirmed("requires_payment_method")
        )

        response = client.post("/api/v1/checkout/card/complete", json={"provider_reference_id": "pi_test_123"})

        assert response.status_code == 409
        assert response.json()["error"] == "payment_not_confirmed"

    @patch("glassworks.api.routes.checkout.CheckoutService")
    def test_stale_intent_returns_409(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that completing an abandoned intent returns 409."""
        mock_service_cls.return_value.complete_card_payment = AsyncMock(
            side_effect=StalePaymentArtifact("pi_test_123")
        )

        response = client.post("/api/v1/checkout/card/complete", json={"provider_reference_id": "pi_test_123"})

        assert response.status_code == 409
        assert response.json()["error"] == "stale_payment_artifact"

    def test_missing_reference_rejected(self, client: TestClient) -> None:
        """Test that an empty intent id is rejected."""
        response = client.post("/api/v1/checkout/card/complete", json={"provider_reference_id": ""})

        assert response.status_code == 422


class TestBitcoinInvoice:
    """Tests for the bitcoin invoice endpoints."""

    @patch("glassworks.api.routes.checkout.CheckoutService")
    def test_creates_invoice(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that an invoice is returned with its payment details."""
        checkout_id = uuid4()
        mock_service_cls.return_value.begin_bitcoin_payment = AsyncMock(
            return_value=BitcoinCheckout(checkout_id=checkout_id, invoice=make_invoice(), totals=TOTALS)
        )

        response = client.post("/api/v1/checkout/bitcoin/invoice", json=CHECKOUT_BODY)

        assert response.status_code == 201
        data = response.json()
        assert data["checkout_id"] == str(checkout_id)
        assert data["invoice"]["invoice_id"] == "inv_123"
        assert data["invoice"]["status"] == "pending"
        assert data["invoice"]["lightning_payload"] == "lnbc1..."
        assert data["invoice"]["onchain_address"] == "bc1qexample"

    @patch("glassworks.api.routes.checkout.CheckoutService")
    def test_poll_pending_invoice(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that polling a pending invoice returns no order."""
        invoice = make_invoice()
        mock_service_cls.return_value.observe_invoice = AsyncMock(
            return_value=InvoiceObservation(invoice=invoice, status=InvoiceStatus.PENDING, order_id=None)
        )

        response = client.get("/api/v1/checkout/bitcoin/invoice/inv_123")

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert response.json()["order_id"] is None

    @patch("glassworks.api.routes.checkout.CheckoutService")
    def test_poll_paid_invoice(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that polling a paid invoice returns the order id."""
        invoice = make_invoice(InvoiceStatus.PAID)
        mock_service_cls.return_value.observe_invoice = AsyncMock(
            return_value=InvoiceObservation(invoice=invoice, status=InvoiceStatus.PAID, order_id=42)
        )

        response = client.get("/api/v1/checkout/bitcoin/invoice/inv_123")

        assert response.json()["status"] == "paid"
        assert response.json()["order_id"] == 42
        mock_service_cls.return_value.observe_invoice.assert_awaited_once_with("inv_123")
