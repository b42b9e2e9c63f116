"""Email service using Resend for order notifications."""

import logging
from dataclasses import dataclass, field
from html import escape
from typing import Any

import resend

from glassworks.core.config import get_settings

logger = logging.getLogger(__name__)


def format_order_number(order_id: int) -> str:
    """Customer-facing order number, e.g. BTC-GLASS-000042."""
    return f"BTC-GLASS-{order_id:06d}"


@dataclass
class OrderEmailItem:
    """One product line shown in order emails."""

    title: str
    quantity: int
    unit_price: str


@dataclass
class OrderEmail:
    """Everything the order emails render."""

    order_id: int
    customer_name: str
    customer_email: str
    shipping_address: str
    product_title: str
    product_description: str
    product_image: str
    amount: str
    payment_method: str
    shipping_method: str | None = None
    shipping_rate: str | None = None
    notes: str | None = None
    items: list[OrderEmailItem] = field(default_factory=list)


def _address_html(address: str) -> str:
    return escape(address).replace("\n", "<br/>")


def _items_html(items: list[OrderEmailItem]) -> str:
    if len(items) <= 1:
        return ""
    rows = "".join(
        f'<p style="margin: 6px 0;">{escape(item.title)} &times; {item.quantity} &mdash; ${escape(item.unit_price)} each</p>'
        for item in items
    )
    return f"""
            <div style="background-color: #111111; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
                <h2 style="color: #00D4FF; margin-top: 0;">ITEMS</h2>
                {rows}
            </div>"""


class EmailService:
    """Service for sending order emails via Resend.

    Sends never raise. Each returns a result dict so the caller can log
    the outcome and carry on.
    """

    def __init__(self) -> None:
        """Initialize email service with Resend API key."""
        settings = get_settings()
        resend.api_key = settings.resend_api_key
        self.from_email = settings.email_from_address
        self.manufacturer_email = settings.manufacturer_email

    async def send_order_notification(self, email: OrderEmail) -> dict[str, Any]:
        """Tell the manufacturer to start crafting a new order.

        Args:
            email: Order details to render.

        Returns:
            dict: success flag plus email_id or error.
        """
        order_number = format_order_number(email.order_id)
        notes_html = (
            f'<p><strong style="color: #00FF88;">Special Instructions:</strong><br/>{escape(email.notes)}</p>'
            if email.notes
            else ""
        )
        shipping_html = (
            f'<p><strong style="color: #00FF88;">Shipping:</strong> {escape(email.shipping_method)} (${escape(email.shipping_rate or "0.00")})</p>'
            if email.shipping_method
            else ""
        )

        html_content = f"""
<div style="font-family: 'JetBrains Mono', monospace; background-color: #0A0A0A; color: #ffffff; padding: 20px;">
    <div style="max-width: 600px; margin: 0 auto; background-color: #1A1A1A; border: 1px solid #00FF88; border-radius: 12px; padding: 30px;">
        <h1 style="color: #00FF88; text-align: center; font-size: 28px; margin-bottom: 30px;">NEW ORDER RECEIVED</h1>

        <div style="background-color: #111111; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
            <h2 style="color: #00D4FF; margin-top: 0;">ORDER DETAILS</h2>
            <p><strong style="color: #00FF88;">Order ID:</strong> #{order_number}</p>
            <p><strong style="color: #00FF88;">Product:</strong> {escape(email.product_title)}</p>
            <p><strong style="color: #00FF88;">Amount:</strong> ${escape(email.amount)}</p>
            <p><strong style="color: #00FF88;">Paid With:</strong> {escape(email.payment_method)}</p>
            {shipping_html}
            <p><strong style="color: #00FF88;">Description:</strong> {escape(email.product_description)}</p>
        </div>
{_items_html(email.items)}
        <div style="background-color: #111111; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
            <h2 style="color: #FF0080; margin-top: 0;">CUSTOMER INFORMATION</h2>
            <p><strong style="color: #00FF88;">Name:</strong> {escape(email.customer_name)}</p>
            <p><strong style="color: #00FF88;">Email:</strong> {escape(email.customer_email)}</p>
            <p><strong style="color: #00FF88;">Shipping Address:</strong><br/>{_address_html(email.shipping_address)}</p>
            {notes_html}
        </div>

        <div style="text-align: center; margin: 20px 0;">
            <img src="{escape(email.product_image)}" alt="{escape(email.product_title)}" style="max-width: 100%; height: auto; border-radius: 8px; border: 1px solid #00FF88;">
        </div>

        <div style="background-color: #111111; padding: 20px; border-radius: 8px; text-align: center;">
            <p style="color: #00D4FF; font-size: 16px; margin: 0;">START CRAFTING THIS PIECE IMMEDIATELY</p>
        </div>
    </div>
</div>
"""

        try:
            response = resend.Emails.send({
                "from": self.from_email,
                "to": [self.manufacturer_email],
                "subject": f"New BTC Glass Order #{email.order_id} - {email.product_title}",
                "html": html_content,
            })

            logger.info("Order notification sent for order %s, id: %s", email.order_id, response.get("id"))
            return {"success": True, "email_id": response.get("id")}

        except Exception as e:
            logger.error("Failed to send order notification for order %s: %s", email.order_id, str(e))
            return {"success": False, "error": str(e)}

    async def send_customer_confirmation(self, email: OrderEmail) -> dict[str, Any]:
        """Send the customer their order confirmation.

        Args:
            email: Order details to render.

        Returns:
            dict: success flag plus email_id or error.
        """
        order_number = format_order_number(email.order_id)
        notes_html = (
            f'<p><strong style="color: #00FF88;">Your Instructions:</strong><br/>{escape(email.notes)}</p>'
            if email.notes
            else ""
        )

        html_content = f"""
<div style="font-family: 'JetBrains Mono', monospace; background-color: #0A0A0A; color: #ffffff; padding: 20px;">
    <div style="max-width: 600px; margin: 0 auto; background-color: #1A1A1A; border: 1px solid #00FF88; border-radius: 12px; padding: 30px;">
        <h1 style="color: #00FF88; text-align: center; font-size: 28px; margin-bottom: 10px;">ORDER CONFIRMED</h1>
        <p style="color: #00D4FF; text-align: center; font-size: 16px; margin-bottom: 30px;">
            Thanks {escape(email.customer_name)}! Your custom glass art is now in production.
        </p>

        <div style="background-color: #111111; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
            <h2 style="color: #00D4FF; margin-top: 0;">YOUR ORDER</h2>
            <p><strong style="color: #00FF88;">Order Number:</strong> #{order_number}</p>
            <p><strong style="color: #00FF88;">Product:</strong> {escape(email.product_title)}</p>
            <p><strong style="color: #00FF88;">Total Paid:</strong> ${escape(email.amount)} USD</p>
            <p><strong style="color: #00FF88;">Status:</strong> <span style="color: #00FF88;">IN PRODUCTION</span></p>
        </div>
{_items_html(email.items)}
        <div style="text-align: center; margin: 20px 0;">
            <img src="{escape(email.product_image)}" alt="{escape(email.product_title)}" style="max-width: 100%; height: auto; border-radius: 8px; border: 1px solid #00FF88;">
        </div>

        <div style="background-color: #111111; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
            <h2 style="color: #FF0080; margin-top: 0;">SHIPPING DETAILS</h2>
            <p><strong style="color: #00FF88;">Shipping To:</strong><br/>{_address_html(email.shipping_address)}</p>
            {notes_html}
        </div>

        <div style="background-color: #111111; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
            <h2 style="color: #00D4FF; margin-top: 0;">WHAT HAPPENS NEXT?</h2>
            <p style="margin: 10px 0;"><strong>Week 1-2:</strong> Our artisan begins crafting your custom piece</p>
            <p style="margin: 10px 0;"><strong>Week 2-3:</strong> Quality check and secure packaging</p>
            <p style="margin: 10px 0;"><strong>Week 3:</strong> Shipped with tracking information</p>
        </div>

        <div style="background-color: #111111; padding: 20px; border-radius: 8px; text-align: center;">
            <p style="color: #00FF88; font-size: 16px; margin-bottom: 15px;">Questions about your order?</p>
            <p style="color: #ffffff; margin: 5px 0;">{escape(self.manufacturer_email)}</p>
            <p style="color: #ffffff; margin: 5px 0;">Reference Order #{order_number}</p>
        </div>
    </div>
</div>
"""

        text_content = f"""
Order Confirmed #{order_number}

Thanks {email.customer_name}! Your custom glass art is now in production.

Product: {email.product_title}
Total Paid: ${email.amount} USD

Shipping To:
{email.shipping_address}

Questions? Email {self.manufacturer_email} and reference order #{order_number}.
"""

        try:
            response = resend.Emails.send({
                "from": self.from_email,
                "to": [email.customer_email],
                "subject": f"Order Confirmed #{email.order_id} - {email.product_title} | BTC Glass",
                "html": html_content,
                "text": text_content,
            })

            logger.info("Order confirmation sent to %s, id: %s", email.customer_email, response.get("id"))
            return {"success": True, "email_id": response.get("id")}

        except Exception as e:
            logger.error("Failed to send order confirmation to %s: %s", email.customer_email, str(e))
            return {"success": False, "error": str(e)}
