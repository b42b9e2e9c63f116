"""Bitcoin and lightning payments through Zaprite invoices."""

import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from glassworks.core.config import Settings, get_settings
from glassworks.schemas.payment import BitcoinInvoice, InvoiceStatus
from glassworks.services.provider_errors import PaymentProviderError

logger = logging.getLogger(__name__)

# Retry configuration for idempotent reads
MAX_RETRIES = 3
MIN_WAIT_SECONDS = 0.5
MAX_WAIT_SECONDS = 2

# Zaprite order statuses -> invoice status
STATUS_MAP = {
    "pending": InvoiceStatus.PENDING,
    "processing": InvoiceStatus.PENDING,
    "underpaid": InvoiceStatus.PENDING,
    "paid": InvoiceStatus.PAID,
    "complete": InvoiceStatus.PAID,
    "overpaid": InvoiceStatus.PAID,
    "expired": InvoiceStatus.EXPIRED,
    "cancelled": InvoiceStatus.CANCELLED,
    "canceled": InvoiceStatus.CANCELLED,
    "void": InvoiceStatus.CANCELLED,
}


def normalize_invoice_status(raw_status: str | None) -> InvoiceStatus:
    """Map a provider status string onto the four invoice states."""
    return STATUS_MAP.get((raw_status or "pending").lower(), InvoiceStatus.PENDING)


class BitcoinPaymentAdapter:
    """Creates and reads Zaprite invoices and verifies Zaprite webhooks."""

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

    @property
    def http(self) -> httpx.AsyncClient:
        """Lazily created HTTP client bound to the Zaprite API."""
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.settings.zaprite_api_base,
                timeout=self.settings.payment_request_timeout,
            )
        return self._http

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.zaprite_api_key}",
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def create_invoice(
        self,
        amount_minor_units: int,
        description: str,
        customer_email: str,
        metadata: dict[str, Any],
    ) -> BitcoinInvoice:
        """Create an invoice. Not retried: a second POST would be a second invoice.

        Args:
            amount_minor_units: Amount in USD cents.
            description: Line shown on the hosted checkout page.
            customer_email: Customer email for the processor's receipt.
            metadata: Order reconstruction metadata.

        Returns:
            BitcoinInvoice: The pending invoice.

        Raises:
            PaymentProviderError: If Zaprite fails or times out.
        """
        try:
            response = await self.http.post(
                "/order",
                json={
                    "amount": amount_minor_units,
                    "currency": "USD",
                    "description": description,
                    "customer_email": customer_email,
                    "metadata": metadata,
                },
                headers=self._headers,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Zaprite invoice creation failed: %s", str(e))
            raise PaymentProviderError("zaprite", f"Failed to create invoice: {e}") from e

        invoice = self._parse(
            body,
            default_amount=amount_minor_units,
            default_metadata=metadata,
        )
        logger.info("Zaprite invoice created: %s (%d cents)", invoice.invoice_id, amount_minor_units)
        return invoice

    async def get_invoice(self, invoice_id: str) -> BitcoinInvoice:
        """Fetch an invoice's current state.

        Raises:
            PaymentProviderError: If Zaprite fails after retries.
        """
        try:
            response = await self._get(f"/order/{invoice_id}")
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Zaprite invoice lookup failed for %s: %s", invoice_id, str(e))
            raise PaymentProviderError("zaprite", f"Failed to get invoice: {e}") from e

        return self._parse(body)

    def _parse(self, body: Any, **defaults: Any) -> BitcoinInvoice:
        """Build an invoice from a response body, rejecting malformed ones."""
        try:
            return self._to_invoice(body, **defaults)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise PaymentProviderError("zaprite", f"Malformed invoice response: {e}") from e

    def verify_webhook_signature(self, raw_payload: bytes, signature_header: str | None) -> bool:
        """Check the hex HMAC-SHA256 of the raw body against the header.

        Comparison is constant-time. A missing secret or header, or a
        header that is not hex, verifies as False.
        """
        secret = self.settings.zaprite_webhook_secret
        if not secret or not signature_header:
            return False

        expected = hmac.new(secret.encode(), raw_payload, hashlib.sha256).hexdigest()
        provided = signature_header.strip().lower()
        if not provided.isascii():
            return False
        return hmac.compare_digest(expected, provided)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=0.5, min=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
        reraise=True,
    )
    async def _get(self, path: str) -> httpx.Response:
        """GET with retry on transport errors."""
        return await self.http.get(path, headers=self._headers)

    def _to_invoice(
        self,
        body: dict[str, Any],
        default_amount: int = 0,
        default_metadata: dict[str, Any] | None = None,
    ) -> BitcoinInvoice:
        expires_at = body.get("expiresAt") or (
            datetime.now(timezone.utc) + timedelta(minutes=self.settings.bitcoin_invoice_ttl_minutes)
        )
        return BitcoinInvoice(
            invoice_id=str(body["id"]),
            status=normalize_invoice_status(body.get("status")),
            amount_minor_units=int(body.get("amount") or default_amount),
            btc_amount=body.get("btcAmount"),
            lightning_payload=body.get("lightningInvoice"),
            onchain_address=body.get("onchainAddress"),
            expires_at=expires_at,
            payment_url=body.get("checkoutUrl") or body.get("paymentUrl"),
            metadata=body.get("metadata") or default_metadata or {},
        )


_bitcoin_adapter: BitcoinPaymentAdapter | None = None


def get_bitcoin_adapter() -> BitcoinPaymentAdapter:
    """Get or create the process-wide bitcoin adapter."""
    global _bitcoin_adapter
    if _bitcoin_adapter is None:
        _bitcoin_adapter = BitcoinPaymentAdapter()
    return _bitcoin_adapter


async def shutdown_bitcoin_adapter() -> None:
    """Close the shared bitcoin adapter's HTTP client. Call at app shutdown."""
    global _bitcoin_adapter
    if _bitcoin_adapter is not None:
        await _bitcoin_adapter.aclose()
        _bitcoin_adapter = None
