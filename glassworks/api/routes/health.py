"""Health check endpoints for monitoring and deployment verification."""

import time

from fastapi import APIRouter, Response, status

from glassworks.core.config import get_settings
from glassworks.core.supabase import check_database_connection
from glassworks.models.checkout import PaymentRail
from glassworks.schemas.common import CheckResult, HealthResponse, HealthStatus, ReadinessResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Basic health check to verify the service is running. Used for liveness checks.",
)
async def health_check() -> HealthResponse:
    """Return basic health status.

    This endpoint should always return 200 if the service is running.
    It does not check external dependencies.

    Returns:
        HealthResponse: Current health status with timestamp.
    """
    return HealthResponse(status=HealthStatus.HEALTHY)


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "All dependencies healthy"},
        503: {"description": "One or more dependencies unhealthy"},
    },
    summary="Readiness check",
    description="Check if all dependencies are available. Used for readiness checks.",
)
async def readiness_check(response: Response) -> ReadinessResponse:
    """Check readiness of all dependencies.

    Verifies database connectivity and reports which payment rails are
    configured. Returns 503 if the database is unreachable or no payment
    rail is enabled.

    Args:
        response: FastAPI response object for setting status code.

    Returns:
        ReadinessResponse: Status of all dependency checks.
    """
    settings = get_settings()
    checks: list[CheckResult] = []

    # Check database connection
    start_time = time.perf_counter()
    db_result = await check_database_connection()
    latency_ms = (time.perf_counter() - start_time) * 1000

    checks.append(
        CheckResult(
            name="database",
            healthy=db_result["healthy"],
            latency_ms=round(latency_ms, 2),
            error=db_result.get("error"),
        )
    )

    payment_rails = []
    if settings.card_rail_enabled:
        payment_rails.append(PaymentRail.CARD.value)
    if settings.bitcoin_rail_enabled:
        payment_rails.append(PaymentRail.BITCOIN.value)

    checks.append(
        CheckResult(
            name="payment_rails",
            healthy=bool(payment_rails),
            error=None if payment_rails else "No payment rail configured",
        )
    )

    # Determine overall status
    all_healthy = all(check.healthy for check in checks)
    overall_status = HealthStatus.HEALTHY if all_healthy else HealthStatus.UNHEALTHY

    # Set appropriate HTTP status code
    if not all_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadinessResponse(
        status=overall_status,
        checks=checks,
        payment_rails=payment_rails,
        live_shipping=settings.live_shipping_enabled,
    )
