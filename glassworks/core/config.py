"""Application configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    A payment rail or live shipping lookup is enabled only when its
    credentials are present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="glassworks-storefront", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    max_request_body_size: int = Field(default=1_048_576, description="Maximum request body size in bytes")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")

    # Stripe (card rail)
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret")
    stripe_publishable_key: str = Field(default="", description="Stripe publishable key (for frontend)")
    stripe_minimum_charge_cents: int = Field(default=50, description="Smallest chargeable amount in cents")

    # Zaprite (bitcoin rail)
    zaprite_api_key: str = Field(default="", description="Zaprite API key")
    zaprite_webhook_secret: str = Field(default="", description="Zaprite webhook HMAC secret")
    zaprite_api_base: str = Field(default="https://api.zaprite.com/v1", description="Zaprite API base URL")
    bitcoin_invoice_ttl_minutes: int = Field(default=30, description="Invoice lifetime when the provider omits one")
    bitcoin_poll_interval_seconds: float = Field(default=3.0, description="Invoice status polling interval")
    bitcoin_invoice_watch: bool = Field(default=True, description="Poll open invoices server-side until terminal")

    # USPS (shipping rates)
    usps_client_id: str = Field(default="", description="USPS OAuth client id")
    usps_client_secret: str = Field(default="", description="USPS OAuth client secret")
    usps_origin_zip: str = Field(
        default="",
        validation_alias=AliasChoices("usps_origin_zip", "dropshipper_zip"),
        description="Origin ZIP code packages ship from",
    )
    usps_token_url: str = Field(default="https://apis.usps.com/oauth2/v3/token", description="USPS OAuth token URL")
    usps_prices_url: str = Field(default="https://apis.usps.com/prices/v3", description="USPS prices API base URL")
    usps_token_refresh_skew_seconds: int = Field(default=300, description="Refresh token this long before expiry")

    # Timeouts for external calls (seconds)
    shipping_request_timeout: float = Field(default=5.0, description="Timeout for a shipping quote")
    payment_request_timeout: float = Field(default=10.0, description="Timeout for a payment provider call")

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for sending emails")
    email_from_address: str = Field(
        default="BTC Glass <orders@btcglass.store>",
        description="From address for transactional emails",
    )
    manufacturer_email: str = Field(default="theee@btcglass.store", description="Recipient of new-order notifications")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_stripe_test_mode(self) -> bool:
        """Check if using Stripe test keys."""
        return self.stripe_secret_key.startswith("sk_test_")

    @property
    def card_rail_enabled(self) -> bool:
        """Card payments need a Stripe secret key."""
        return bool(self.stripe_secret_key)

    @property
    def bitcoin_rail_enabled(self) -> bool:
        """Bitcoin payments need a Zaprite API key."""
        return bool(self.zaprite_api_key)

    @property
    def live_shipping_enabled(self) -> bool:
        """Live USPS lookups need client credentials and an origin ZIP."""
        return bool(self.usps_client_id and self.usps_client_secret and self.usps_origin_zip)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
