"""Global error handling middleware for consistent error responses."""

import logging
import traceback
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from glassworks.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors.

    Use this class to raise application-specific errors that should
    be returned to the client with a specific status code and message.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type: str = "api_error",
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code to return.
            error_type: Error category/type for client handling.
            details: Optional additional error details.
        """
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        self.details = details
        super().__init__(message)


class NotFoundError(APIError):
    """Resource not found error."""

    def __init__(self, message: str = "Resource not found", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_type="not_found",
            details=details,
        )


class ValidationError(APIError):
    """Request validation error."""

    def __init__(
        self,
        message: str = "Validation error",
        details: list[dict[str, Any]] | None = None,
        error_type: str = "validation_error",
    ) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_type=error_type,
            details=details,
        )


class InvalidDestination(ValidationError):
    """Destination postal code is not a 5-digit (optionally +4) ZIP."""

    def __init__(self, postal_code: str) -> None:
        super().__init__(
            message="Invalid zip code format. Please use 5-digit format (e.g., 12345)",
            details=[{"loc": ["destination_postal_code"], "msg": f"'{postal_code}' is not a valid ZIP code", "type": "invalid_destination"}],
            error_type="invalid_destination",
        )


class EmptyCart(ValidationError):
    """Checkout attempted with no cart lines."""

    def __init__(self) -> None:
        super().__init__(message="Cart is empty", error_type="empty_cart")


class InvalidShippingSelection(ValidationError):
    """Selected shipping service is not offered for the destination."""

    def __init__(self, service: str) -> None:
        super().__init__(
            message=f"Shipping service {service} is not available for this destination",
            error_type="invalid_shipping_selection",
        )


class CatalogItemNotFound(NotFoundError):
    """A cart line references a design or size option that no longer exists."""

    def __init__(self, design_id: int, size_option_id: int) -> None:
        super().__init__(
            message=f"Design or size option not found for item: {design_id}/{size_option_id}",
            details=[{"loc": ["items"], "msg": f"{design_id}/{size_option_id}", "type": "catalog_item_not_found"}],
        )
        self.error_type = "catalog_item_not_found"


class CheckoutNotFound(NotFoundError):
    """No checkout attempt is known for the given id or provider reference."""

    def __init__(self, reference: str) -> None:
        super().__init__(message=f"Checkout not found: {reference}")
        self.error_type = "checkout_not_found"


class PaymentProviderUnavailable(APIError):
    """Payment provider failed or timed out; safe to retry."""

    def __init__(self, message: str = "Payment provider unavailable, please retry") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_type="payment_provider_unavailable",
        )


class PaymentRailUnavailable(APIError):
    """The requested payment rail is not configured on this deployment."""

    def __init__(self, rail: str) -> None:
        super().__init__(
            message=f"{rail} payments are not available",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_type="payment_rail_unavailable",
        )


class PaymentNotConfirmed(APIError):
    """Order creation attempted before the provider reports success."""

    def __init__(self, provider_status: str) -> None:
        super().__init__(
            message=f"Payment not completed (status: {provider_status})",
            status_code=status.HTTP_409_CONFLICT,
            error_type="payment_not_confirmed",
        )


class PaymentFailed(APIError):
    """Provider reports the payment failed, expired or was cancelled."""

    def __init__(self, provider_status: str) -> None:
        super().__init__(
            message=f"Payment {provider_status}",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            error_type="payment_failed",
        )


class StalePaymentArtifact(APIError):
    """Completion signal for an artifact the customer already abandoned."""

    def __init__(self, provider_reference: str) -> None:
        super().__init__(
            message=f"Payment {provider_reference} belongs to an abandoned checkout",
            status_code=status.HTTP_409_CONFLICT,
            error_type="stale_payment_artifact",
        )


class CheckoutAlreadyCompleted(APIError):
    """Rail switch requested after the previous payment was confirmed."""

    def __init__(self, checkout_id: str) -> None:
        super().__init__(
            message=f"Checkout {checkout_id} has already been paid",
            status_code=status.HTTP_409_CONFLICT,
            error_type="checkout_already_completed",
        )


class OrderReconstructionFailed(APIError):
    """A paid artifact carries metadata that cannot be turned into an order."""

    def __init__(self, provider_reference: str) -> None:
        super().__init__(
            message=f"Payment {provider_reference} is missing order details",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_type="order_reconstruction_failed",
        )


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Create a standardized JSON error response.

    Args:
        error_type: Error category for client handling.
        message: Human-readable error description.
        status_code: HTTP status code.
        details: Optional error details.
        request_id: Optional request ID for tracing.

    Returns:
        JSONResponse: Formatted error response.
    """
    error_response = ErrorResponse.from_exception(
        error_type=error_type,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json", exclude_none=True),
    )


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Middleware to catch and format all exceptions.

    Ensures consistent error response format across the application.
    Logs full stack traces for debugging while returning safe messages to clients.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: Either the successful response or formatted error response.
    """
    request_id = request.headers.get("X-Request-ID")

    try:
        response = await call_next(request)
        return response

    except APIError as e:
        logger.warning(
            "API error: %s - %s",
            e.error_type,
            e.message,
            extra={"request_id": request_id, "status_code": e.status_code},
        )
        return create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            details=e.details,
            request_id=request_id,
        )

    except HTTPException as e:
        logger.warning(
            "HTTP exception: %s - %s",
            e.status_code,
            e.detail,
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="http_error",
            message=str(e.detail),
            status_code=e.status_code,
            request_id=request_id,
        )

    except Exception as e:
        logger.error(
            "Unhandled exception: %s\n%s",
            str(e),
            traceback.format_exc(),
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="internal_error",
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )
