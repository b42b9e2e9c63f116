"""USPS shipping rate lookups with a deterministic fallback table.

Shipping must never block checkout: when USPS is unreachable, slow, not
configured or returns nothing usable, rates come from a static table
keyed by a coarse destination zone.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx

from glassworks.api.middleware.error_handler import InvalidDestination
from glassworks.core.config import Settings, get_settings
from glassworks.schemas.shipping import ShippingOption, ShippingService
from glassworks.services.provider_errors import ShippingProviderError

logger = logging.getLogger(__name__)

POSTAL_CODE_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")


class SizeClass(str, Enum):
    """Package size classes used for carrier quotes."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass(frozen=True)
class PackageDimensions:
    """Boxed package dimensions in inches and weight in pounds."""

    length: int
    width: int
    height: int
    weight: int


PACKAGE_DIMENSIONS = {
    SizeClass.SMALL: PackageDimensions(length=10, width=10, height=4, weight=2),
    SizeClass.MEDIUM: PackageDimensions(length=14, width=14, height=4, weight=3),
    SizeClass.LARGE: PackageDimensions(length=22, width=22, height=4, weight=5),
}

# Glass edge length in inches -> box class
SIZE_CLASS_BY_INCHES = {
    6: SizeClass.SMALL,
    8: SizeClass.SMALL,
    10: SizeClass.MEDIUM,
    12: SizeClass.MEDIUM,
    15: SizeClass.MEDIUM,
    16: SizeClass.LARGE,
    18: SizeClass.LARGE,
    20: SizeClass.LARGE,
}

SIZE_CLASS_RANK = {SizeClass.SMALL: 0, SizeClass.MEDIUM: 1, SizeClass.LARGE: 2}

# service -> (description, delivery estimate, icon)
SERVICE_DETAILS = {
    ShippingService.STANDARD: ("USPS Priority Mail (2-3 business days)", "2-3 business days", "🚚"),
    ShippingService.EXPRESS: ("USPS Priority Express (1-2 business days)", "1-2 business days", "⚡"),
}

FALLBACK_RATES = {
    "nearby": {ShippingService.STANDARD: Decimal("10.00"), ShippingService.EXPRESS: Decimal("27.00")},
    "regional": {ShippingService.STANDARD: Decimal("15.00"), ShippingService.EXPRESS: Decimal("35.00")},
    "distant": {ShippingService.STANDARD: Decimal("22.00"), ShippingService.EXPRESS: Decimal("45.00")},
}


def validate_postal_code(postal_code: str) -> bool:
    """Check for a 5-digit ZIP, optionally with a +4 suffix."""
    return bool(POSTAL_CODE_PATTERN.match(postal_code or ""))


def size_class_for(size_option_name: str) -> SizeClass:
    """Map a size option name like "12 Inch Glass Art" to a box class.

    Unknown names ship as medium.
    """
    match = re.search(r"\d+", size_option_name or "")
    if not match:
        return SizeClass.MEDIUM
    return SIZE_CLASS_BY_INCHES.get(int(match.group()), SizeClass.MEDIUM)


def fallback_zone(postal_code: str) -> str:
    """Coarse shipping zone from the first three ZIP digits.

    Origin is on the west coast, so western prefixes are cheapest.
    """
    prefix = int(postal_code[:3])
    if 900 <= prefix <= 961 or 800 <= prefix <= 899:
        return "nearby"
    if 500 <= prefix <= 799:
        return "regional"
    return "distant"


def _option(service: ShippingService, price: Decimal, estimated: bool) -> ShippingOption:
    description, delivery_days, icon = SERVICE_DETAILS[service]
    return ShippingOption(
        service=service,
        description=description,
        price=price,
        estimated_delivery_days=delivery_days,
        carrier_icon=icon,
        estimated=estimated,
    )


def fallback_options(postal_code: str) -> list[ShippingOption]:
    """Static rates for the destination's zone, tagged as estimated."""
    zone = fallback_zone(postal_code)
    logger.info("Using fallback shipping rates for zip %s (zone: %s)", postal_code, zone)
    return [_option(service, price, estimated=True) for service, price in FALLBACK_RATES[zone].items()]


class TokenCache:
    """Bearer token holder with a single shared refresh.

    Concurrent callers that find the token missing or stale all await
    the same in-flight refresh instead of each authenticating.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[tuple[str, int]]],
        refresh_skew_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            fetch: Coroutine function returning (access_token, expires_in_seconds).
            refresh_skew_seconds: Treat the token as stale this long before it expires.
            clock: Monotonic clock, injectable for tests.
        """
        self._fetch = fetch
        self._skew = refresh_skew_seconds
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0
        self._refresh: asyncio.Future | None = None

    async def get(self) -> str:
        """Return a valid token, refreshing it at most once concurrently."""
        if self._token is not None and self._clock() < self._expires_at:
            return self._token

        if self._refresh is None or self._refresh.done():
            self._refresh = asyncio.ensure_future(self._do_refresh())

        # shield: one caller timing out must not cancel the refresh for the others
        return await asyncio.shield(self._refresh)

    def invalidate(self) -> None:
        """Forget the current token so the next get() refreshes."""
        self._token = None
        self._expires_at = 0.0

    async def _do_refresh(self) -> str:
        token, expires_in = await self._fetch()
        self._token = token
        self._expires_at = self._clock() + max(expires_in - self._skew, 0)
        return token


class RateProviderAdapter:
    """Quotes USPS Priority and Priority Express rates for a package."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            settings: Optional settings override.
            http_client: Optional HTTP client (tests pass one with a mock transport).
        """
        self.settings = settings or get_settings()
        self._http = http_client
        self.tokens = TokenCache(
            self._fetch_token,
            refresh_skew_seconds=self.settings.usps_token_refresh_skew_seconds,
        )

    @property
    def http(self) -> httpx.AsyncClient:
        """Lazily created HTTP client."""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.shipping_request_timeout)
        return self._http

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def get_shipping_options(
        self,
        destination_postal_code: str,
        size_option_name: str,
    ) -> list[ShippingOption]:
        """Get priced shipping options for a destination and size.

        Args:
            destination_postal_code: 5-digit or ZIP+4 destination.
            size_option_name: Human-readable size option name.

        Returns:
            list[ShippingOption]: Never empty for a valid destination.

        Raises:
            InvalidDestination: If the postal code is malformed. No request is made.
        """
        if not validate_postal_code(destination_postal_code):
            raise InvalidDestination(destination_postal_code)

        size_class = size_class_for(size_option_name)
        dimensions = PACKAGE_DIMENSIONS[size_class]

        if not self.settings.live_shipping_enabled:
            logger.info("USPS credentials not configured")
            return fallback_options(destination_postal_code)

        logger.info("Getting USPS rates for %s package to %s", size_class.value, destination_postal_code)
        try:
            options = await asyncio.wait_for(
                self._live_options(destination_postal_code[:5], dimensions),
                timeout=self.settings.shipping_request_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("USPS rate lookup timed out for %s", destination_postal_code)
            return fallback_options(destination_postal_code)
        except (ShippingProviderError, httpx.HTTPError) as e:
            logger.warning("USPS rate lookup failed for %s: %s", destination_postal_code, str(e))
            return fallback_options(destination_postal_code)

        if not options:
            logger.warning("No USPS rates returned for %s", destination_postal_code)
            return fallback_options(destination_postal_code)

        return options

    async def _live_options(self, destination_zip: str, dimensions: PackageDimensions) -> list[ShippingOption]:
        token = await self.tokens.get()
        services = list(SERVICE_DETAILS)
        prices = await asyncio.gather(
            *(self._quote_service(token, destination_zip, dimensions, service) for service in services)
        )
        return [
            _option(service, price, estimated=False)
            for service, price in zip(services, prices)
            if price is not None
        ]

    async def _fetch_token(self) -> tuple[str, int]:
        """Request a client-credentials token from USPS."""
        logger.info("Requesting new USPS access token")
        response = await self.http.post(
            self.settings.usps_token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": self.settings.usps_client_id,
                "client_secret": self.settings.usps_client_secret,
                "scope": "prices",
            },
        )
        if response.status_code != 200:
            raise ShippingProviderError("usps", f"authentication failed: {response.status_code}")

        try:
            body = response.json()
            return body["access_token"], int(body.get("expires_in", 0))
        except (ValueError, KeyError, TypeError) as e:
            raise ShippingProviderError("usps", f"malformed token response: {e}") from e

    async def _quote_service(
        self,
        token: str,
        destination_zip: str,
        dimensions: PackageDimensions,
        service: ShippingService,
    ) -> Decimal | None:
        """Quote one service tier. Returns None when this tier has no usable rate."""
        payload = {
            "originZIPCode": self.settings.usps_origin_zip,
            "destinationZIPCode": destination_zip,
            "weight": dimensions.weight,
            "length": dimensions.length,
            "width": dimensions.width,
            "height": dimensions.height,
            "mailClass": service.value,
            "processingCategory": "MACHINABLE",
            "destinationType": "STREET",
            "rateIndicator": "SP",
        }
        try:
            response = await self.http.post(
                f"{self.settings.usps_prices_url}/base-rates/search",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.warning("USPS %s rate request error: %s", service.value, str(e))
            return None

        if response.status_code == 401:
            self.tokens.invalidate()
        if response.status_code != 200:
            logger.warning("USPS %s rate request failed: %d", service.value, response.status_code)
            return None

        try:
            return _extract_price(response.json())
        except ValueError:
            logger.warning("USPS %s rate response was not JSON", service.value)
            return None


def _extract_price(body: dict[str, Any]) -> Decimal | None:
    raw = body.get("totalBasePrice")
    if not raw and body.get("rates"):
        raw = body["rates"][0].get("totalBasePrice")
    if not raw:
        return None
    try:
        price = Decimal(str(raw)).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None
    return price if price > 0 else None


_rate_provider: RateProviderAdapter | None = None


def get_rate_provider() -> RateProviderAdapter:
    """Get or create the process-wide rate provider (it owns the token cache)."""
    global _rate_provider
    if _rate_provider is None:
        _rate_provider = RateProviderAdapter()
    return _rate_provider


async def shutdown_rate_provider() -> None:
    """Close the shared rate provider's HTTP client. Call at app shutdown."""
    global _rate_provider
    if _rate_provider is not None:
        await _rate_provider.aclose()
        _rate_provider = None
