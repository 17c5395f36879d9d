from __future__ import annotations

from html import escape
from typing import Any

from storefront.core.config import StorefrontSettings

_WRAPPER = (
    '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
    "{body}"
    '<p style="color: #666; font-size: 12px; margin-top: 30px;">{footer}</p>'
    "</div>"
)
_BUTTON = (
    '<a href="{href}" style="display: inline-block; background: #0891b2; color: white; '
    'padding: 12px 24px; text-decoration: none; border-radius: 6px; margin: 20px 0;">{label}</a>'
)


def format_cents(amount_cents: int) -> str:
    return f"${int(amount_cents or 0) / 100:.2f}"


def _items_summary(cart_data: Any) -> str:
    items = (cart_data or {}).get("items") if isinstance(cart_data, dict) else None
    parts = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        parts.append(f"{item.get('name', 'Item')} x {item.get('quantity', 1)}")
    return ", ".join(parts)


def abandoned_cart_email(
    settings: StorefrontSettings,
    *,
    session_id: str,
    cart_data: Any,
    cart_value: int,
    attempt: int,
) -> tuple[str, str]:
    if attempt == 0:
        subject = f"Don't forget your items at {settings.site_name}!"
    else:
        subject = "We miss you! Your cart is still waiting"

    items = escape(_items_summary(cart_data) or "Your selected items")
    body = (
        '<h2 style="color: #1a1a2e;">You left something behind!</h2>'
        "<p>Hi there,</p>"
        f"<p>We noticed you left some great items in your cart at {escape(settings.site_name)}. Don't miss out!</p>"
        '<div style="background: #f5f5f5; padding: 15px; border-radius: 8px; margin: 20px 0;">'
        f"<p><strong>Your Cart:</strong></p><p>{items}</p>"
        f"<p><strong>Total: {format_cents(cart_value)}</strong></p>"
        "</div>"
        + _BUTTON.format(
            href=escape(f"{settings.public_base_url}/checkout?session={session_id}"),
            label="Complete Your Order",
        )
    )
    return subject, _WRAPPER.format(body=body, footer="If you have any questions, just reply to this email.")


def failed_payment_email(
    settings: StorefrontSettings,
    *,
    amount: int,
    failure_reason: str | None,
) -> tuple[str, str]:
    reason = f'<p style="color: #dc2626;">Reason: {escape(failure_reason)}</p>' if failure_reason else ""
    body = (
        '<h2 style="color: #1a1a2e;">Payment Issue</h2>'
        "<p>Hi there,</p>"
        f"<p>We noticed there was an issue processing your payment of <strong>{format_cents(amount)}</strong>"
        f" at {escape(settings.site_name)}.</p>"
        f"{reason}"
        "<p>Your order is still saved. Please try again with a different payment method.</p>"
        + _BUTTON.format(href=escape(f"{settings.public_base_url}/checkout"), label="Complete Payment")
    )
    return (
        "There was an issue with your payment",
        _WRAPPER.format(body=body, footer="If you have questions about this charge, please contact us."),
    )
