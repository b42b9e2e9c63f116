"""Integration tests for shipping API endpoints."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from glassworks.api.middleware.error_handler import CatalogItemNotFound, EmptyCart, InvalidDestination
from glassworks.services.shipping_rates import fallback_options

SIZE_OPTION = {"id": 2, "name": "12 Inch Glass Art", "size": "12", "price": "299.99"}


class TestShippingRates:
    """Tests for POST /api/v1/shipping/rates endpoint."""

    @patch("glassworks.api.routes.shipping.CheckoutService")
    def test_returns_options_for_size(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that rates are returned with the size option they were quoted for."""
        mock_service_cls.return_value.shipping_rates_for_size = AsyncMock(
            return_value=(SIZE_OPTION, fallback_options("90210"))
        )

        response = client.post(
            "/api/v1/shipping/rates",
            json={"destination_postal_code": "90210", "size_option_id": 2},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["size_option"] == {"id": 2, "name": "12 Inch Glass Art", "size": "12"}
        assert [option["service"] for option in data["shipping_options"]] == [
            "PRIORITY_MAIL",
            "PRIORITY_MAIL_EXPRESS",
        ]
        assert all(option["estimated"] for option in data["shipping_options"])

    @patch("glassworks.api.routes.shipping.CheckoutService")
    def test_invalid_zip_returns_422(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that a malformed ZIP is a validation error."""
        mock_service_cls.return_value.shipping_rates_for_size = AsyncMock(side_effect=InvalidDestination("ABCDE"))

        response = client.post(
            "/api/v1/shipping/rates",
            json={"destination_postal_code": "ABCDE", "size_option_id": 2},
        )

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_destination"

    @patch("glassworks.services.order_store.get_supabase_client")
    @patch("glassworks.services.catalog_reader.get_supabase_client")
    def test_fallback_rates_without_usps_credentials(
        self,
        mock_catalog_supabase: MagicMock,
        mock_store_supabase: MagicMock,
        client: TestClient,
    ) -> None:
        """Test the full path to the fallback table when USPS is not configured."""
        size_response = MagicMock()
        size_response.data = SIZE_OPTION
        mock_catalog_supabase.return_value.table.return_value.select.return_value.eq.return_value.maybe_single.return_value.execute.return_value = (
            size_response
        )

        response = client.post(
            "/api/v1/shipping/rates",
            json={"destination_postal_code": "10001", "size_option_id": 2},
        )

        assert response.status_code == 200
        prices = [Decimal(option["price"]) for option in response.json()["shipping_options"]]
        assert prices == [Decimal("22.00"), Decimal("45.00")]

    @patch("glassworks.services.order_store.get_supabase_client")
    @patch("glassworks.services.catalog_reader.get_supabase_client")
    def test_unknown_size_option_returns_404(
        self,
        mock_catalog_supabase: MagicMock,
        mock_store_supabase: MagicMock,
        client: TestClient,
    ) -> None:
        """Test that an unknown size option is not found."""
        mock_catalog_supabase.return_value.table.return_value.select.return_value.eq.return_value.maybe_single.return_value.execute.return_value = None

        response = client.post(
            "/api/v1/shipping/rates",
            json={"destination_postal_code": "10001", "size_option_id": 99},
        )

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestShippingQuote:
    """Tests for POST /api/v1/shipping/quote endpoint."""

    @patch("glassworks.api.routes.shipping.CheckoutService")
    def test_quotes_cart(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that a cart gets shipping options."""
        mock_service_cls.return_value.quote_shipping = AsyncMock(return_value=fallback_options("60601"))

        response = client.post(
            "/api/v1/shipping/quote",
            json={
                "destination_postal_code": "60601",
                "items": [{"design_id": 7, "size_option_id": 2, "quantity": 2}],
            },
        )

        assert response.status_code == 200
        assert len(response.json()["shipping_options"]) == 2
        items, postal_code = mock_service_cls.return_value.quote_shipping.call_args[0]
        assert items[0].quantity == 2
        assert postal_code == "60601"

    @patch("glassworks.api.routes.shipping.CheckoutService")
    def test_empty_cart_returns_422(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that an empty cart is rejected."""
        mock_service_cls.return_value.quote_shipping = AsyncMock(side_effect=EmptyCart())

        response = client.post("/api/v1/shipping/quote", json={"destination_postal_code": "60601", "items": []})

        assert response.status_code == 422
        assert response.json()["error"] == "empty_cart"

    @patch("glassworks.api.routes.shipping.CheckoutService")
    def test_missing_catalog_item_returns_404(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that a cart line for a deleted item is not found."""
        mock_service_cls.return_value.quote_shipping = AsyncMock(side_effect=CatalogItemNotFound(7, 99))

        response = client.post(
            "/api/v1/shipping/quote",
            json={"destination_postal_code": "60601", "items": [{"design_id": 7, "size_option_id": 99}]},
        )

        assert response.status_code == 404

    def test_zero_quantity_rejected(self, client: TestClient) -> None:
        """Test that request validation rejects a zero quantity."""
        response = client.post(
            "/api/v1/shipping/quote",
            json={"destination_postal_code": "60601", "items": [{"design_id": 7, "size_option_id": 2, "quantity": 0}]},
        )

        assert response.status_code == 422


class TestValidateZip:
    """Tests for POST /api/v1/shipping/validate-zip endpoint."""

    def test_valid_zip(self, client: TestClient) -> None:
        """Test that a valid ZIP is accepted."""
        response = client.post("/api/v1/shipping/validate-zip", json={"zip_code": "90210-1234"})

        assert response.status_code == 200
        assert response.json() == {"zip_code": "90210-1234", "is_valid": True, "message": "Valid zip code"}

    def test_invalid_zip(self, client: TestClient) -> None:
        """Test that an invalid ZIP is reported without error."""
        response = client.post("/api/v1/shipping/validate-zip", json={"zip_code": "9021"})

        assert response.status_code == 200
        assert response.json()["is_valid"] is False
        assert response.json()["message"] == "Invalid zip code format"
