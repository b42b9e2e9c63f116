"""Persistence for orders and checkout attempts."""

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from postgrest.exceptions import APIError as PostgrestAPIError

from glassworks.core.supabase import get_supabase_client
from glassworks.models.checkout import CheckoutAttempt, CheckoutState, can_transition
from glassworks.models.order import Order, OrderCreate, OrderLine, OrderLineCreate, OrderStatus

logger = logging.getLogger(__name__)

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"

# Inserts an order and its lines in one transaction (supabase/migrations)
CREATE_ORDER_FUNCTION = "create_order_with_lines"


def _is_unique_violation(error: PostgrestAPIError) -> bool:
    return str(getattr(error, "code", "")) == UNIQUE_VIOLATION


class OrderStore:
    """Service for order persistence.

    provider_reference is unique in the orders table, so at most one
    order exists per paid artifact no matter how many completion paths
    race to create it.
    """

    def __init__(self) -> None:
        """Initialize order store with Supabase client."""
        self.client = get_supabase_client()

    async def create_order(
        self,
        data: OrderCreate,
        lines: list[OrderLineCreate],
    ) -> tuple[Order, bool]:
        """Insert an order with its lines, or return the one already stored for its provider reference.

        The order row and its lines are written by one database function
        call, so either both exist or neither does.

        Args:
            data: Order fields. provider_reference is required.
            lines: Cart lines with unit price snapshots.

        Returns:
            Tuple of (order, created). created is False when another
            request already stored the order.
        """
        provider_reference = data["provider_reference"]

        existing = await self.find_by_provider_reference(provider_reference)
        if existing:
            logger.info("Duplicate order suppressed for %s (order %s)", provider_reference, existing["id"])
            return existing, False

        try:
            response = self.client.rpc(
                CREATE_ORDER_FUNCTION,
                {"p_order": {**data, "status": "pending"}, "p_lines": lines},
            ).execute()
        except PostgrestAPIError as e:
            if not _is_unique_violation(e):
                raise
            # Lost the race: another request inserted first
            winner = await self.find_by_provider_reference(provider_reference)
            if winner is None:
                raise
            logger.info("Duplicate order suppressed for %s (order %s)", provider_reference, winner["id"])
            return winner, False

        order = response.data[0]
        logger.info("Order %s created for %s with %d lines", order["id"], provider_reference, len(lines))
        return order, True

    async def find_by_provider_reference(self, provider_reference: str) -> Order | None:
        """Get the order created for a payment intent or invoice, if any."""
        response = (
            self.client.table("orders")
            .select("*")
            .eq("provider_reference", provider_reference)
            .maybe_single()
            .execute()
        )
        return response.data if response else None

    async def get_order(self, order_id: int) -> Order | None:
        """Get an order by ID."""
        response = (
            self.client.table("orders")
            .select("*")
            .eq("id", order_id)
            .maybe_single()
            .execute()
        )
        return response.data if response else None

    async def get_order_lines(self, order_id: int) -> list[OrderLine]:
        """Get an order's lines in insertion order."""
        response = (
            self.client.table("order_lines")
            .select("*")
            .eq("order_id", order_id)
            .order("id")
            .execute()
        )
        return response.data or []

    async def get_order_with_details(self, order_id: int) -> dict[str, Any] | None:
        """Get an order with its design, size option and lines.

        Returns:
            dict with order, design, size_option and lines keys, or None
            if the order does not exist.
        """
        order = await self.get_order(order_id)
        if not order:
            return None

        design = (
            self.client.table("designs")
            .select("*")
            .eq("id", order["design_id"])
            .maybe_single()
            .execute()
        )
        size_option = (
            self.client.table("size_options")
            .select("*")
            .eq("id", order["size_option_id"])
            .maybe_single()
            .execute()
        )

        return {
            "order": order,
            "design": design.data if design else None,
            "size_option": size_option.data if size_option else None,
            "lines": await self.get_order_lines(order_id),
        }

    async def update_status(self, order_id: int, status: OrderStatus) -> Order | None:
        """Set an order's status. The only mutation orders allow."""
        response = (
            self.client.table("orders")
            .update({"status": status})
            .eq("id", order_id)
            .execute()
        )
        if response.data:
            logger.info("Order %s marked as %s", order_id, status)
            return response.data[0]

        logger.warning("Order not found for status update: %s", order_id)
        return None


class CheckoutAttemptStore:
    """Service for checkout attempt persistence."""

    def __init__(self) -> None:
        """Initialize checkout attempt store with Supabase client."""
        self.client = get_supabase_client()

    async def create(
        self,
        rail: str,
        provider_reference: str,
        metadata: dict[str, Any],
        subtotal: str,
        shipping_price: str,
        total: str,
        attempt_id: UUID,
    ) -> CheckoutAttempt:
        """Record a checkout attempt for a freshly created payment artifact."""
        response = (
            self.client.table("checkout_attempts")
            .insert(
                {
                    "id": str(attempt_id),
                    "rail": rail,
                    "provider_reference": provider_reference,
                    "state": CheckoutState.PAYMENT_ARTIFACT_CREATED.value,
                    "metadata": metadata,
                    "subtotal": subtotal,
                    "shipping_price": shipping_price,
                    "total": total,
                }
            )
            .execute()
        )
        logger.info("Checkout attempt %s created (%s, %s)", attempt_id, rail, provider_reference)
        return response.data[0]

    async def get(self, attempt_id: UUID) -> CheckoutAttempt | None:
        """Get a checkout attempt by ID."""
        response = (
            self.client.table("checkout_attempts")
            .select("*")
            .eq("id", str(attempt_id))
            .maybe_single()
            .execute()
        )
        return response.data if response else None

    async def find_by_provider_reference(self, provider_reference: str) -> CheckoutAttempt | None:
        """Get the checkout attempt that owns a payment intent or invoice."""
        response = (
            self.client.table("checkout_attempts")
            .select("*")
            .eq("provider_reference", provider_reference)
            .maybe_single()
            .execute()
        )
        return response.data if response else None

    async def update_state(
        self,
        attempt_id: UUID | str,
        current: CheckoutState,
        target: CheckoutState,
        **fields: Any,
    ) -> CheckoutAttempt | None:
        """Move an attempt from current to target.

        The update only matches while the row is still in current, so two
        requests racing on the same attempt cannot both move it.

        Returns:
            The updated row, or None if the attempt had already moved on.

        Raises:
            ValueError: If target is not reachable from current.
        """
        if not can_transition(current, target):
            raise ValueError(f"Illegal checkout transition {current.value} -> {target.value}")

        update_data = {
            "state": target.value,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            **fields,
        }
        response = (
            self.client.table("checkout_attempts")
            .update(update_data)
            .eq("id", str(attempt_id))
            .eq("state", current.value)
            .execute()
        )
        if not response.data:
            logger.info(
                "Checkout %s no longer %s; skipped move to %s",
                attempt_id,
                current.value,
                target.value,
            )
            return None
        return response.data[0]
