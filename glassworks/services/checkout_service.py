"""Checkout orchestration: cart to shipping to payment to order."""

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping
from uuid import UUID, uuid4

from glassworks.api.middleware.error_handler import (
    CatalogItemNotFound,
    CheckoutAlreadyCompleted,
    CheckoutNotFound,
    EmptyCart,
    InvalidDestination,
    InvalidShippingSelection,
    NotFoundError,
    OrderReconstructionFailed,
    PaymentFailed,
    PaymentNotConfirmed,
    PaymentProviderUnavailable,
    PaymentRailUnavailable,
    StalePaymentArtifact,
)
from glassworks.core.config import Settings, get_settings
from glassworks.models.catalog import Design, SizeOption
from glassworks.models.checkout import PAID_STATES, CheckoutAttempt, CheckoutState, PaymentRail
from glassworks.models.order import Order
from glassworks.schemas.cart import CartLineSchema
from glassworks.schemas.checkout import CheckoutRequest, CheckoutTotals
from glassworks.schemas.payment import BitcoinInvoice, CardIntent, CardIntentStatus, InvoiceStatus
from glassworks.schemas.shipping import ShippingOption
from glassworks.services.bitcoin_payments import BitcoinPaymentAdapter, get_bitcoin_adapter
from glassworks.services.card_payments import CardPaymentAdapter
from glassworks.services.catalog_reader import CatalogReader
from glassworks.services.checkout_metadata import (
    OrderBlueprint,
    PricedLine,
    build_metadata,
    parse_metadata,
)
from glassworks.services.email_service import EmailService, OrderEmail, OrderEmailItem
from glassworks.services.invoice_watcher import InvoiceWatcher, get_invoice_watcher
from glassworks.services.order_store import CheckoutAttemptStore, OrderStore
from glassworks.services.provider_errors import PaymentProviderError
from glassworks.services.shipping_rates import (
    SIZE_CLASS_RANK,
    RateProviderAdapter,
    get_rate_provider,
    size_class_for,
    validate_postal_code,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_minor_units(amount: Decimal) -> int:
    """USD amount to cents, rounding half up."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(minor_units: int) -> Decimal:
    return (Decimal(minor_units) / 100).quantize(CENT)


@dataclass(frozen=True)
class ResolvedLine:
    """A cart line joined with its catalog rows."""

    priced: PricedLine
    design: Design
    size_option: SizeOption


@dataclass(frozen=True)
class PricedCheckout:
    """Server-computed prices for a checkout request."""

    lines: list[ResolvedLine]
    shipping: ShippingOption
    subtotal: Decimal
    total: Decimal

    @property
    def totals(self) -> CheckoutTotals:
        return CheckoutTotals(subtotal=self.subtotal, shipping_price=self.shipping.price, total=self.total)


@dataclass(frozen=True)
class CardCheckout:
    checkout_id: UUID
    intent: CardIntent
    totals: CheckoutTotals


@dataclass(frozen=True)
class BitcoinCheckout:
    checkout_id: UUID
    invoice: BitcoinInvoice
    totals: CheckoutTotals


@dataclass(frozen=True)
class CompletedOrder:
    """An order produced by a confirmed payment.

    duplicate is True when the order already existed, i.e. this
    completion was a replay.
    """

    order: Order
    duplicate: bool


@dataclass(frozen=True)
class InvoiceObservation:
    invoice: BitcoinInvoice
    status: InvoiceStatus
    order_id: int | None


class CheckoutService:
    """Runs a checkout from cart through payment to a single order.

    A checkout attempt moves payment_artifact_created -> payment_confirmed
    -> order_persisted -> notification_attempted, or ends in
    payment_failed, payment_expired or abandoned. Orders are only ever
    created from a payment the provider reports as settled, and at most
    one order exists per provider reference.
    """

    def __init__(
        self,
        catalog: CatalogReader | None = None,
        rate_provider: RateProviderAdapter | None = None,
        card_adapter: CardPaymentAdapter | None = None,
        bitcoin_adapter: BitcoinPaymentAdapter | None = None,
        order_store: OrderStore | None = None,
        attempt_store: CheckoutAttemptStore | None = None,
        email_service: EmailService | None = None,
        invoice_watcher: InvoiceWatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize checkout service with its collaborators.

        Every collaborator is optional; tests pass fakes.
        """
        self.settings = settings or get_settings()
        self.catalog = catalog or CatalogReader()
        self.rates = rate_provider or get_rate_provider()
        self.card = card_adapter or CardPaymentAdapter(self.settings)
        self.bitcoin = bitcoin_adapter or get_bitcoin_adapter()
        self.orders = order_store or OrderStore()
        self.attempts = attempt_store or CheckoutAttemptStore()
        self.emails = email_service or EmailService()
        if invoice_watcher is None and self.settings.bitcoin_invoice_watch:
            invoice_watcher = get_invoice_watcher()
        self.watcher = invoice_watcher

    # === Shipping ===

    async def quote_shipping(
        self,
        items: list[CartLineSchema],
        destination_postal_code: str,
    ) -> list[ShippingOption]:
        """Shipping options for a whole cart.

        Raises:
            EmptyCart: If there are no lines.
            InvalidDestination: If the ZIP is malformed.
            CatalogItemNotFound: If any line no longer exists.
        """
        _, options = await self._resolve_and_quote(items, destination_postal_code)
        return options

    async def shipping_rates_for_size(
        self,
        destination_postal_code: str,
        size_option_id: int,
    ) -> tuple[SizeOption, list[ShippingOption]]:
        """Shipping options for one size option.

        Raises:
            InvalidDestination: If the ZIP is malformed.
            NotFoundError: If the size option does not exist.
        """
        if not validate_postal_code(destination_postal_code):
            raise InvalidDestination(destination_postal_code)

        size_option = await self.catalog.get_size_option(size_option_id)
        if not size_option:
            raise NotFoundError("Size option not found")

        logger.info("Calculating shipping rates for %s to %s", size_option["name"], destination_postal_code)
        options = await self.rates.get_shipping_options(destination_postal_code, size_option["name"])
        return size_option, options

    # === Payment artifacts ===

    async def begin_card_payment(self, request: CheckoutRequest) -> CardCheckout:
        """Price the cart and create a card payment intent for it.

        Raises:
            PaymentRailUnavailable: If card payments are not configured.
            PaymentProviderUnavailable: If the card processor fails.
            CheckoutAlreadyCompleted: If the checkout being replaced was already paid.
        """
        if not self.settings.card_rail_enabled:
            raise PaymentRailUnavailable("Card")

        priced = await self._price_checkout(request)
        await self._release_previous(request.previous_checkout_id)

        checkout_id = uuid4()
        metadata = self._build_metadata(checkout_id, request, priced)

        try:
            intent = await self.card.create_intent(
                to_minor_units(priced.total),
                metadata,
                idempotency_key=f"checkout-{checkout_id}",
            )
        except PaymentProviderError as e:
            raise PaymentProviderUnavailable() from e

        await self.attempts.create(
            rail=PaymentRail.CARD.value,
            provider_reference=intent.provider_intent_id,
            metadata=metadata,
            subtotal=str(priced.subtotal),
            shipping_price=str(priced.shipping.price),
            total=str(priced.total),
            attempt_id=checkout_id,
        )
        return CardCheckout(checkout_id=checkout_id, intent=intent, totals=priced.totals)

    async def begin_bitcoin_payment(self, request: CheckoutRequest) -> BitcoinCheckout:
        """Price the cart and create a bitcoin invoice for it.

        No order is created here. The invoice is watched until it
        settles when server-side watching is enabled.

        Raises:
            PaymentRailUnavailable: If bitcoin payments are not configured.
            PaymentProviderUnavailable: If the bitcoin processor fails.
            CheckoutAlreadyCompleted: If the checkout being replaced was already paid.
        """
        if not self.settings.bitcoin_rail_enabled:
            raise PaymentRailUnavailable("Bitcoin")

        priced = await self._price_checkout(request)
        await self._release_previous(request.previous_checkout_id)

        checkout_id = uuid4()
        metadata = self._build_metadata(checkout_id, request, priced)

        try:
            invoice = await self.bitcoin.create_invoice(
                amount_minor_units=to_minor_units(priced.total),
                description=f"BTC Glass - {self._cart_title(priced.lines)}",
                customer_email=request.customer.email,
                metadata=metadata,
            )
        except PaymentProviderError as e:
            raise PaymentProviderUnavailable() from e

        await self.attempts.create(
            rail=PaymentRail.BITCOIN.value,
            provider_reference=invoice.invoice_id,
            metadata=metadata,
            subtotal=str(priced.subtotal),
            shipping_price=str(priced.shipping.price),
            total=str(priced.total),
            attempt_id=checkout_id,
        )

        if self.watcher is not None:
            self.watcher.watch(invoice.invoice_id, self.bitcoin.get_invoice, self._on_invoice_paid)

        return BitcoinCheckout(checkout_id=checkout_id, invoice=invoice, totals=priced.totals)

    # === Confirmation ===

    async def complete_card_payment(self, provider_reference_id: str) -> CompletedOrder:
        """Turn a card payment into an order after checking it with the processor.

        Safe to call any number of times, from the browser and the
        webhook alike. A confirmed order is returned without contacting
        the processor; a pending one is finished.

        Raises:
            PaymentNotConfirmed: If the intent has not succeeded.
            PaymentFailed: If the intent was canceled.
            StalePaymentArtifact: If the customer had switched away from this intent.
            PaymentProviderUnavailable: If the processor cannot be reached.
        """
        existing = await self._confirmed_order(provider_reference_id)
        if existing:
            return CompletedOrder(order=existing, duplicate=True)

        try:
            intent = await self.card.retrieve_intent(provider_reference_id)
        except PaymentProviderError as e:
            raise PaymentProviderUnavailable() from e

        if intent.status is CardIntentStatus.FAILED:
            await self._close_attempt(provider_reference_id, CheckoutState.PAYMENT_FAILED)
            raise PaymentFailed(intent.provider_status)
        if intent.status is not CardIntentStatus.SUCCEEDED:
            raise PaymentNotConfirmed(intent.provider_status)

        return await self._materialize_order(
            provider_reference=intent.provider_intent_id,
            payment_method="stripe",
            artifact_metadata=intent.metadata,
            charged_minor_units=intent.charge_amount_minor_units,
        )

    async def confirm_bitcoin_payment(self, invoice_id: str) -> CompletedOrder:
        """Turn a paid invoice into an order.

        Raises:
            PaymentNotConfirmed: If the invoice is still pending.
            PaymentFailed: If the invoice expired or was cancelled.
            StalePaymentArtifact: If the customer had switched away from this invoice.
            PaymentProviderUnavailable: If the processor cannot be reached.
        """
        existing = await self._confirmed_order(invoice_id)
        if existing:
            return CompletedOrder(order=existing, duplicate=True)

        invoice = await self._get_invoice(invoice_id)

        if invoice.status is InvoiceStatus.PAID:
            return await self._materialize_invoice(invoice)

        if invoice.status.is_terminal:
            await self._close_invoice_attempt(invoice)
            raise PaymentFailed(invoice.status.value)

        raise PaymentNotConfirmed(invoice.status.value)

    async def observe_invoice(self, invoice_id: str) -> InvoiceObservation:
        """Fetch an invoice for a polling client, settling it if it is paid.

        The returned status has wall-clock expiry applied.
        """
        invoice = await self._get_invoice(invoice_id)
        order_id = None

        if invoice.status is InvoiceStatus.PAID:
            completed = await self._materialize_invoice(invoice)
            order_id = completed.order["id"]
        elif invoice.status.is_terminal:
            await self._close_invoice_attempt(invoice)

        return InvoiceObservation(invoice=invoice, status=invoice.effective_status(), order_id=order_id)

    # === Webhooks ===

    async def handle_card_webhook_event(self, event: Mapping[str, Any]) -> dict[str, Any]:
        """Process a verified Stripe event.

        payment_intent.succeeded is the authoritative completion path.

        Returns:
            dict: What was done, for logging.
        """
        event_type = event.get("type", "")
        intent = event.get("data", {}).get("object", {})
        intent_id = intent.get("id")

        if event_type == "payment_intent.succeeded" and intent_id:
            try:
                completed = await self.complete_card_payment(intent_id)
            except StalePaymentArtifact:
                logger.warning("Ignoring success for abandoned payment intent %s", intent_id)
                return {"status": "ignored", "reason": "stale"}
            return {
                "status": "processed",
                "order_id": completed.order["id"],
                "duplicate": completed.duplicate,
            }

        if event_type == "payment_intent.canceled" and intent_id:
            await self._close_attempt(intent_id, CheckoutState.PAYMENT_FAILED)
            return {"status": "processed"}

        if event_type == "payment_intent.payment_failed":
            # Declined card; the intent stays open for another attempt
            logger.info("Payment attempt failed for intent %s", intent_id)
            return {"status": "logged"}

        logger.debug("Unhandled webhook event type: %s", event_type)
        return {"status": "ignored"}

    async def handle_bitcoin_webhook(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Process a verified Zaprite event.

        The invoice is re-read from Zaprite rather than trusting the
        payload's status.
        """
        event_type = payload.get("type", "")
        data = payload.get("data") or {}
        invoice_id = data.get("id")

        if not invoice_id:
            logger.warning("Zaprite webhook %s without invoice id", event_type)
            return {"status": "ignored"}

        logger.info("Zaprite webhook event: %s %s", event_type, invoice_id)
        try:
            observation = await self.observe_invoice(str(invoice_id))
        except StalePaymentArtifact:
            logger.warning("Ignoring payment for abandoned invoice %s", invoice_id)
            return {"status": "ignored", "reason": "stale"}

        return {
            "status": "processed",
            "invoice_status": observation.status.value,
            "order_id": observation.order_id,
        }

    # === Orders ===

    async def get_order_details(self, order_id: int) -> dict[str, Any]:
        """Get an order with its design, size option and lines.

        Raises:
            NotFoundError: If the order does not exist.
        """
        details = await self.orders.get_order_with_details(order_id)
        if not details:
            raise NotFoundError("Order not found")
        return details

    # === Internals ===

    async def _resolve_lines(self, items: Iterable[CartLineSchema]) -> list[ResolvedLine]:
        """Join cart lines with current catalog prices. One missing row fails the cart."""
        resolved = []
        for item in items:
            size_option = await self.catalog.get_size_option(item.size_option_id)
            design = await self.catalog.get_design(item.design_id)
            if not size_option or not design:
                logger.warning("Cart references missing catalog item %d/%d", item.design_id, item.size_option_id)
                raise CatalogItemNotFound(item.design_id, item.size_option_id)

            resolved.append(
                ResolvedLine(
                    priced=PricedLine(
                        design_id=item.design_id,
                        size_option_id=item.size_option_id,
                        quantity=item.quantity,
                        unit_price=Decimal(str(size_option["price"])).quantize(CENT),
                    ),
                    design=design,
                    size_option=size_option,
                )
            )
        return resolved

    async def _resolve_and_quote(
        self,
        items: list[CartLineSchema],
        destination_postal_code: str,
    ) -> tuple[list[ResolvedLine], list[ShippingOption]]:
        if not items:
            raise EmptyCart()
        if not validate_postal_code(destination_postal_code):
            raise InvalidDestination(destination_postal_code)

        resolved = await self._resolve_lines(items)

        # The whole cart ships in the box for its largest piece
        largest = max(resolved, key=lambda line: SIZE_CLASS_RANK[size_class_for(line.size_option["name"])])
        options = await self.rates.get_shipping_options(destination_postal_code, largest.size_option["name"])
        return resolved, options

    async def _price_checkout(self, request: CheckoutRequest) -> PricedCheckout:
        """Compute the authoritative total. The client's amount is never used."""
        resolved, options = await self._resolve_and_quote(request.items, request.destination_postal_code)

        shipping = next((option for option in options if option.service == request.shipping_service), None)
        if shipping is None:
            raise InvalidShippingSelection(request.shipping_service.value)

        subtotal = sum((line.priced.line_total for line in resolved), Decimal("0")).quantize(CENT)
        total = (subtotal + shipping.price).quantize(CENT)

        if request.amount is not None and request.amount.quantize(CENT) != total:
            logger.warning(
                "Client amount %s differs from computed total %s; charging computed total",
                request.amount,
                total,
            )

        return PricedCheckout(lines=resolved, shipping=shipping, subtotal=subtotal, total=total)

    def _build_metadata(
        self,
        checkout_id: UUID,
        request: CheckoutRequest,
        priced: PricedCheckout,
    ) -> dict[str, str]:
        return build_metadata(
            checkout_id=str(checkout_id),
            lines=[line.priced for line in priced.lines],
            customer_name=request.customer.name,
            customer_email=request.customer.email,
            shipping_address=request.customer.address,
            notes=request.customer.notes,
            shipping_service=priced.shipping.service.value,
            shipping_price=priced.shipping.price,
            total=priced.total,
        )

    async def _release_previous(self, previous_checkout_id: UUID | None) -> None:
        """Abandon the checkout the customer is switching away from."""
        if previous_checkout_id is None:
            return

        attempt = await self.attempts.get(previous_checkout_id)
        if attempt is None:
            logger.warning("Previous checkout %s not found; nothing to release", previous_checkout_id)
            return

        state = CheckoutState(attempt["state"])
        if state in PAID_STATES:
            raise CheckoutAlreadyCompleted(str(previous_checkout_id))
        if state is not CheckoutState.PAYMENT_ARTIFACT_CREATED:
            return

        updated = await self.attempts.update_state(previous_checkout_id, state, CheckoutState.ABANDONED)
        if updated is None:
            # Moved on concurrently; if that was a payment, the switch is too late
            current = await self.attempts.get(previous_checkout_id)
            if current and CheckoutState(current["state"]) in PAID_STATES:
                raise CheckoutAlreadyCompleted(str(previous_checkout_id))
            return

        logger.info("Checkout %s abandoned (%s)", previous_checkout_id, attempt["rail"])
        await self._discard_artifact(attempt)

    async def _discard_artifact(self, attempt: CheckoutAttempt) -> None:
        reference = attempt["provider_reference"]
        if attempt["rail"] == PaymentRail.CARD.value:
            try:
                await self.card.cancel_intent(reference)
            except PaymentProviderError as e:
                logger.warning("Could not cancel abandoned intent %s: %s", reference, str(e))
        elif self.watcher is not None:
            self.watcher.unwatch(reference)

    async def _close_attempt(self, provider_reference: str, target: CheckoutState) -> None:
        """Record a failed or expired payment. No order is created."""
        attempt = await self.attempts.find_by_provider_reference(provider_reference)
        if attempt is None:
            return
        state = CheckoutState(attempt["state"])
        if state is CheckoutState.PAYMENT_ARTIFACT_CREATED:
            await self.attempts.update_state(attempt["id"], state, target)
            logger.info("Checkout %s marked %s", attempt["id"], target.value)

    async def _close_invoice_attempt(self, invoice: BitcoinInvoice) -> None:
        target = (
            CheckoutState.PAYMENT_EXPIRED
            if invoice.status is InvoiceStatus.EXPIRED
            else CheckoutState.PAYMENT_FAILED
        )
        await self._close_attempt(invoice.invoice_id, target)

    async def _get_invoice(self, invoice_id: str) -> BitcoinInvoice:
        try:
            return await self.bitcoin.get_invoice(invoice_id)
        except PaymentProviderError as e:
            raise PaymentProviderUnavailable() from e

    async def _materialize_invoice(self, invoice: BitcoinInvoice) -> CompletedOrder:
        return await self._materialize_order(
            provider_reference=invoice.invoice_id,
            payment_method="bitcoin",
            artifact_metadata=invoice.metadata,
            charged_minor_units=invoice.amount_minor_units,
        )

    async def _on_invoice_paid(self, invoice: BitcoinInvoice) -> None:
        """Invoice watcher callback for the first paid observation."""
        try:
            await self._materialize_invoice(invoice)
        except StalePaymentArtifact:
            logger.warning("Ignoring payment for abandoned invoice %s", invoice.invoice_id)

    def _blueprint(
        self,
        provider_reference: str,
        artifact_metadata: Mapping[str, Any],
        attempt: CheckoutAttempt | None,
    ) -> OrderBlueprint:
        """Order fields from the artifact metadata, or the attempt's copy of it."""
        try:
            return parse_metadata(artifact_metadata)
        except ValueError as e:
            if attempt is None:
                logger.error("Cannot rebuild order for %s: %s", provider_reference, str(e))
                raise OrderReconstructionFailed(provider_reference) from e

        try:
            return parse_metadata(attempt["metadata"])
        except ValueError as e:
            logger.error("Cannot rebuild order for %s: %s", provider_reference, str(e))
            raise OrderReconstructionFailed(provider_reference) from e

    async def _confirmed_order(self, provider_reference: str) -> Order | None:
        """The order for a payment if it has completed its lifecycle."""
        existing = await self.orders.find_by_provider_reference(provider_reference)
        if existing is None:
            return None
        if existing["status"] != "confirmed":
            logger.info("Order %s for %s is still pending; finishing it", existing["id"], provider_reference)
            return None
        logger.info("Order %s already exists for %s", existing["id"], provider_reference)
        return existing

    async def _confirm_attempt(self, attempt: CheckoutAttempt) -> CheckoutAttempt:
        """Move an attempt to payment_confirmed, or refuse if it is no longer active.

        When the compare-and-set misses, another request moved the row
        after it was read (a rail switch, a failure, or a parallel
        completion), so the attempt is judged on its current state.

        Raises:
            StalePaymentArtifact: If the attempt was abandoned.
            PaymentFailed: If the attempt failed or expired.
        """
        provider_reference = attempt["provider_reference"]
        state = CheckoutState(attempt["state"])
        if state is CheckoutState.PAYMENT_ARTIFACT_CREATED:
            updated = await self.attempts.update_state(attempt["id"], state, CheckoutState.PAYMENT_CONFIRMED)
            if updated is not None:
                return updated
            current = await self.attempts.get(attempt["id"])
            if current is None:
                raise CheckoutNotFound(provider_reference)
            attempt, state = current, CheckoutState(current["state"])

        if state is CheckoutState.ABANDONED:
            logger.warning("Completion for abandoned checkout %s (%s)", attempt["id"], provider_reference)
            raise StalePaymentArtifact(provider_reference)
        if state in (CheckoutState.PAYMENT_FAILED, CheckoutState.PAYMENT_EXPIRED):
            raise PaymentFailed(state.value)
        if state not in PAID_STATES:
            raise PaymentNotConfirmed(state.value)
        return attempt

    async def _materialize_order(
        self,
        provider_reference: str,
        payment_method: str,
        artifact_metadata: Mapping[str, Any],
        charged_minor_units: int,
    ) -> CompletedOrder:
        """Create the order for a settled payment, then notify and confirm it.

        Callers have already confirmed the payment with the provider. An
        order left pending by an interrupted earlier call is finished
        instead of being returned as is.
        """
        attempt = await self.attempts.find_by_provider_reference(provider_reference)
        if attempt is None:
            logger.warning("No checkout attempt for %s; rebuilding order from payment metadata", provider_reference)
        else:
            attempt = await self._confirm_attempt(attempt)

        blueprint = self._blueprint(provider_reference, artifact_metadata, attempt)
        charged = from_minor_units(charged_minor_units)
        if charged != blueprint.total:
            logger.warning(
                "Payment %s settled %s for a %s total; recording the charged amount",
                provider_reference,
                charged,
                blueprint.total,
            )

        first = blueprint.lines[0]
        order_data = {
            "design_id": first.design_id,
            "size_option_id": first.size_option_id,
            "customer_name": blueprint.customer_name,
            "customer_email": blueprint.customer_email,
            "shipping_address": blueprint.shipping_address,
            "notes": blueprint.notes,
            "amount": str(charged),
            "payment_method": payment_method,
            "provider_reference": provider_reference,
            "shipping_method": blueprint.shipping_service or None,
            "shipping_rate": str(blueprint.shipping_price),
        }
        lines = [
            {
                "design_id": line.design_id,
                "size_option_id": line.size_option_id,
                "quantity": line.quantity,
                "unit_price": str(line.unit_price),
            }
            for line in blueprint.lines
        ]

        order, created = await self.orders.create_order(order_data, lines)
        return await self._finish_order(order, blueprint, attempt, duplicate=not created)

    async def _finish_order(
        self,
        order: Order,
        blueprint: OrderBlueprint,
        attempt: CheckoutAttempt | None,
        duplicate: bool,
    ) -> CompletedOrder:
        """Notify and confirm an order that is still pending.

        Whoever moves the attempt from payment_confirmed to
        order_persisted sends the notifications, so a retry or a
        parallel completion never emails twice.
        """
        if order["status"] == "confirmed":
            return CompletedOrder(order=order, duplicate=duplicate)

        if attempt is None:
            notify = not duplicate
        else:
            claimed = await self.attempts.update_state(
                attempt["id"],
                CheckoutState.PAYMENT_CONFIRMED,
                CheckoutState.ORDER_PERSISTED,
                order_id=order["id"],
            )
            notify = claimed is not None
            if not notify:
                logger.info("Notifications for order %s already handled", order["id"])

        if notify:
            await self._notify(order, blueprint)
            if attempt is not None:
                await self.attempts.update_state(
                    attempt["id"],
                    CheckoutState.ORDER_PERSISTED,
                    CheckoutState.NOTIFICATION_ATTEMPTED,
                )

        confirmed = await self.orders.update_status(order["id"], "confirmed")
        return CompletedOrder(order=confirmed or order, duplicate=duplicate)

    async def _notify(self, order: Order, blueprint: OrderBlueprint) -> None:
        """Email the manufacturer and the customer. Never raises."""
        try:
            email = await self._order_email(order, blueprint)
        except Exception as e:
            logger.error("Could not prepare notifications for order %s: %s", order["id"], str(e))
            return

        results = await asyncio.gather(
            self.emails.send_order_notification(email),
            self.emails.send_customer_confirmation(email),
            return_exceptions=True,
        )
        for recipient, result in zip(("manufacturer", "customer"), results):
            if isinstance(result, BaseException):
                logger.error("%s notification for order %s raised: %s", recipient, order["id"], str(result))
            elif not result.get("success"):
                logger.warning(
                    "%s notification for order %s failed: %s",
                    recipient,
                    order["id"],
                    result.get("error"),
                )

    async def _order_email(self, order: Order, blueprint: OrderBlueprint) -> OrderEmail:
        designs: dict[int, Design | None] = {}
        sizes: dict[int, SizeOption | None] = {}
        for line in blueprint.lines:
            if line.design_id not in designs:
                designs[line.design_id] = await self.catalog.get_design(line.design_id)
            if line.size_option_id not in sizes:
                sizes[line.size_option_id] = await self.catalog.get_size_option(line.size_option_id)

        def title(line: PricedLine) -> str:
            design = designs.get(line.design_id)
            size = sizes.get(line.size_option_id)
            design_title = design["title"] if design else f"Design #{line.design_id}"
            size_name = size["name"] if size else f"Size #{line.size_option_id}"
            return f"{design_title} - {size_name}"

        first = blueprint.lines[0]
        first_design = designs.get(first.design_id) or {}
        product_title = title(first)
        if len(blueprint.lines) > 1:
            product_title = f"{product_title} (+{len(blueprint.lines) - 1} more)"

        return OrderEmail(
            order_id=order["id"],
            customer_name=blueprint.customer_name,
            customer_email=blueprint.customer_email,
            shipping_address=blueprint.shipping_address,
            product_title=product_title,
            product_description=first_design.get("description") or "",
            product_image=first_design.get("image_url") or "",
            amount=f"{blueprint.total:.2f}",
            payment_method="Bitcoin" if order["payment_method"] == "bitcoin" else "Card",
            shipping_method=blueprint.shipping_service or None,
            shipping_rate=f"{blueprint.shipping_price:.2f}",
            notes=blueprint.notes,
            items=[
                OrderEmailItem(title=title(line), quantity=line.quantity, unit_price=f"{line.unit_price:.2f}")
                for line in blueprint.lines
            ],
        )

    @staticmethod
    def _cart_title(lines: list[ResolvedLine]) -> str:
        first = lines[0]
        cart_title = f"{first.design['title']} - {first.size_option['name']}"
        if len(lines) > 1:
            cart_title = f"{cart_title} (+{len(lines) - 1} more)"
        return cart_title
