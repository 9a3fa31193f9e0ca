"""Recovery email subject ladder and message bodies."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from html import escape
from typing import Any

from app.core.config import settings

IST = timezone(timedelta(hours=5, minutes=30), "IST")

DISCOUNT_SUBJECTS = (
    "A little treat for you: {percent}% OFF on your saved cart",
    "Your favourites now come with {percent}% OFF",
    "Good news: unlock {percent}% OFF before your cart expires",
    "Your saved picks now have {percent}% OFF waiting",
    "Before it is gone: enjoy {percent}% OFF on your cart",
    "Final reminder: claim {percent}% OFF on your cart",
)

REGULAR_SUBJECTS = (
    "You left something beautiful behind",
    "Your favourites are still waiting for you",
    "Still thinking it over? Your cart is ready",
    "Your saved picks are waiting for checkout",
    "A quick reminder: your cart is still live",
    "Last chance to complete your saved cart",
)

MAX_LISTED_ITEMS = 4


@dataclass
class RecoveryMessage:
    subject: str
    html: str
    text: str
    cta_url: str


def format_money(subunits: int | None, currency: str = "INR") -> str:
    value = int(subunits or 0) / 100
    code = (currency or "INR").upper()
    if code == "INR":
        return f"₹{value:,.2f}"
    return f"{code} {value:,.2f}"


def format_expiry_ist(value: datetime | None) -> str | None:
    if value is None:
        return None
    local = value.astimezone(IST)
    hour = local.hour % 12 or 12
    meridiem = "am" if local.hour < 12 else "pm"
    return f"{local:%d %b %Y}, {hour}:{local:%M} {meridiem} IST"


def build_subject(attempt_no: int, discount_percent: int = 0) -> str:
    index = max(0, int(attempt_no or 1) - 1)
    if int(discount_percent or 0) > 0:
        template = DISCOUNT_SUBJECTS[min(index, len(DISCOUNT_SUBJECTS) - 1)]
        return template.format(percent=int(discount_percent))
    return REGULAR_SUBJECTS[min(index, len(REGULAR_SUBJECTS) - 1)]


def _item_row(item: dict[str, Any], currency: str) -> str:
    title = escape(str(item.get("title") or "Item"))
    quantity = int(item.get("quantity") or 0)
    price = format_money(item.get("price_subunits"), currency)
    image = str(item.get("image_url") or "").strip()
    if image and not image.startswith(("http://", "https://")):
        image = f"{settings.API_BASE_URL.rstrip('/')}/{image.lstrip('/')}"
    thumb = (
        f'<img src="{escape(image)}" alt="{title}" width="56" height="56" '
        f'style="display:block;border-radius:8px;object-fit:cover;" />'
        if image
        else '<div style="width:56px;height:56px;border-radius:8px;background:#f3f4f6;"></div>'
    )
    return (
        f"<tr><td width=\"64\" valign=\"top\">{thumb}</td>"
        f"<td valign=\"top\" style=\"padding-left:10px;\">"
        f"<div style=\"font-size:14px;font-weight:600;\">{title}</div>"
        f"<div style=\"font-size:12px;color:#6b7280;\">Qty: {quantity} &bull; {price}</div>"
        f"</td></tr>"
    )


def build_recovery_message(
    *,
    customer_name: str | None,
    items: list[dict[str, Any]],
    cart_total_subunits: int,
    currency: str,
    attempt_no: int,
    discount_code: str | None = None,
    discount_percent: int = 0,
    payment_link_url: str | None = None,
    checkout_url: str | None = None,
    shipping_fee_subunits: int | None = None,
    total_with_shipping_subunits: int | None = None,
    link_expiry: datetime | None = None,
) -> RecoveryMessage:
    """Render the subject, HTML and plain-text body for one recovery attempt.

    The call to action is the payment link when there is one, otherwise the
    checkout deep link, otherwise the cart page.
    """
    client_base = settings.CLIENT_BASE_URL.rstrip("/")
    name = customer_name or "there"
    discounted = bool(discount_code) and int(discount_percent or 0) > 0

    cart_value = format_money(cart_total_subunits, currency)
    shipping_value = (
        format_money(shipping_fee_subunits, currency) if shipping_fee_subunits is not None else None
    )
    total_value = (
        format_money(total_with_shipping_subunits, currency)
        if total_with_shipping_subunits is not None
        else None
    )
    expiry = format_expiry_ist(link_expiry)
    expiry_text = f"Pay before {expiry}." if expiry else ""

    cta_url = payment_link_url or checkout_url or f"{client_base}/cart"
    if payment_link_url:
        cta_label = "Pay Now"
    elif discounted:
        cta_label = "Apply Coupon & Checkout"
    else:
        cta_label = "Restore Cart"

    if discounted:
        offer_html = (
            f"Use code <strong>{escape(str(discount_code))}</strong> for "
            f"<strong>{int(discount_percent)}% OFF</strong>."
        )
        offer_text = f"Use code {discount_code} for {int(discount_percent)}% OFF."
    else:
        offer_html = offer_text = "Complete your purchase before items go out of stock."

    rows = "".join(_item_row(item, currency) for item in items[:MAX_LISTED_ITEMS])
    totals = f"<p>Cart value: <strong>{cart_value}</strong></p>"
    if shipping_value:
        totals += f"<p>Shipping: <strong>{shipping_value}</strong></p>"
    if total_value:
        totals += f"<p>Total to pay: <strong>{total_value}</strong></p>"
    if expiry_text:
        totals += f"<p style=\"font-size:12px;color:#6b7280;\">{expiry_text}</p>"

    html = (
        f"<h2>Your cart is still waiting</h2>"
        f"<p>Hi {escape(name)}, we saved your items so you can complete checkout in one click.</p>"
        f"{totals}"
        f"<p>{offer_html}</p>"
        f"<table role=\"presentation\" width=\"100%\">{rows}</table>"
        f"<p><a href=\"{escape(cta_url)}\">{cta_label}</a> &nbsp; "
        f"<a href=\"{escape(client_base)}/shop\">Explore</a></p>"
        f"<p>Need help? Reply to this email and our team will assist you.</p>"
        f"<p>Regards,<br/><strong>{escape(settings.SMTP_FROM_NAME)}</strong></p>"
    )

    lines = [
        f"Hi {name},",
        f"Your cart ({cart_value}) is waiting.",
        f"Shipping: {shipping_value}" if shipping_value else None,
        f"Total to pay: {total_value}" if total_value else None,
        expiry_text or None,
        offer_text,
        f"Continue here: {cta_url}",
    ]
    text = "\n".join(line for line in lines if line)

    return RecoveryMessage(
        subject=build_subject(attempt_no, discount_percent if discounted else 0),
        html=html,
        text=text,
        cta_url=cta_url,
    )
