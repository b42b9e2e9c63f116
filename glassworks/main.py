"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from glassworks.api.middleware.error_handler import error_handler_middleware
from glassworks.api.middleware.latency_logging import latency_logging_middleware
from glassworks.api.middleware.request_size import request_size_limit_middleware
from glassworks.api.routes import catalog, health, shipping, webhooks
from glassworks.api.routes.checkout import orders_router, router as checkout_router
from glassworks.core.config import get_settings
from glassworks.core.stripe import configure_stripe
from glassworks.services.bitcoin_payments import shutdown_bitcoin_adapter
from glassworks.services.invoice_watcher import init_invoice_watcher, shutdown_invoice_watcher
from glassworks.services.shipping_rates import shutdown_rate_provider

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown events.

    Args:
        app: FastAPI application instance.

    Yields:
        None: Control back to the application.
    """
    # Startup
    settings = get_settings()
    logger.info("Starting %s in %s mode", settings.app_name, settings.app_env)

    # Configure Stripe SDK
    configure_stripe()
    logger.info("Stripe SDK configured")

    if not settings.card_rail_enabled:
        logger.warning("Card payments disabled: STRIPE_SECRET_KEY not set")
    if not settings.bitcoin_rail_enabled:
        logger.warning("Bitcoin payments disabled: ZAPRITE_API_KEY not set")
    if not settings.live_shipping_enabled:
        logger.warning("USPS credentials not set; shipping uses the fallback rate table")

    # Initialize invoice watcher for server-side bitcoin polling
    if settings.bitcoin_invoice_watch:
        await init_invoice_watcher()
        logger.info("Invoice watcher initialized")

    yield
    # Shutdown
    await shutdown_invoice_watcher()
    logger.info("Invoice watcher shutdown")
    await shutdown_rate_provider()
    await shutdown_bitcoin_adapter()
    logger.info("HTTP clients closed")
    logger.info("Shutting down %s", settings.app_name)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Glassworks API",
        description="Checkout backend for the BTC Glass storefront",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add error handler middleware (outermost - catches all errors)
    app.add_middleware(BaseHTTPMiddleware, dispatch=error_handler_middleware)

    # Add latency logging middleware (tracks request timing)
    app.add_middleware(BaseHTTPMiddleware, dispatch=latency_logging_middleware)

    # Add request size limit middleware (rejects oversized requests early)
    app.add_middleware(BaseHTTPMiddleware, dispatch=request_size_limit_middleware)

    # Mount health routes at root level (no prefix)
    app.include_router(health.router)

    # Create API v1 router for versioned endpoints
    api_v1_router = APIRouter(prefix="/api/v1")

    # Catalog routes
    api_v1_router.include_router(catalog.router)

    # Shipping rate routes
    api_v1_router.include_router(shipping.router)

    # Checkout and orders routes
    api_v1_router.include_router(checkout_router)
    api_v1_router.include_router(orders_router)

    # Webhook routes
    api_v1_router.include_router(webhooks.router)

    app.include_router(api_v1_router)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "glassworks.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
