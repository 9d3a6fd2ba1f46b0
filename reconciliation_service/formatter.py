"""
formatter.py — Notification Formatter for Order Messages

Renders an order snapshot and a notification kind into the HTML message body sent to
the staff chat. The renderer is a pure function: the message is the concatenation of
an ordered table of section builders, each of which returns its lines. All
user-supplied text is escaped in one place (`_text`), so buyer input can never
change the message markup.

Section order:
    header, order line, items, failure reason, buyer, recipient, options,
    delivery, promo code, awaiting-payment status
"""

import html
import re
from typing import Callable, List, Optional, Tuple

from . import config
from .domain import Customer, LineItem, NotificationKind, Order

SEPARATOR = "----------------------------------"
PLACEHOLDER = "—"
CHECK = "✅"
CROSS = "❌"

HEADERS = {
    NotificationKind.ORDER_CREATED: "🧾 <b>Order placed</b>",
    NotificationKind.PAYMENT_SUCCESS: "✅ <b>Payment successful</b>",
    NotificationKind.PAYMENT_FAILED: "❌ <b>Payment failed</b>",
}

CURRENCY_SYMBOLS = {"RUB": "₽", "EUR": "€", "USD": "$"}

# Escaped length of one interpolated value; keeps the whole message under the API limit
MAX_FIELD_LENGTH = 1000

_LOCAL_HOST = re.compile(r"localhost|127\.0\.0\.1", re.IGNORECASE)


def _text(value, limit: int = MAX_FIELD_LENGTH) -> str:
    """
    Escaped, stripped text or an empty string for missing values.

    Values whose escaped form exceeds `limit` are clipped on a character boundary
    before escaping, so an entity is never split.
    """
    if value is None:
        return ""
    escaped = html.escape(str(value).strip(), quote=True)
    if len(escaped) <= limit:
        return escaped
    parts, size = [], 0
    for char in str(value).strip():
        piece = html.escape(char, quote=True)
        if size + len(piece) > limit - 1:
            break
        parts.append(piece)
        size += len(piece)
    return "".join(parts).rstrip() + "…"


def _group_digits(value: int) -> str:
    return f"{value:,}".replace(",", " ")


def format_money(amount: int, currency: str, subunit: int = config.CURRENCY_SUBUNIT) -> str:
    """
    Renders an amount in minor units as whole major units with thousands separators.

    Rounding is half-up on integers, e.g. 123450 kopeks → "1 235 ₽".
    """
    major = (amount + subunit // 2) // subunit
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    return f"{_group_digits(major)} {symbol}"


def product_url(path: Optional[str], site_url: str) -> str:
    if not path or not path.strip():
        return ""
    base = (site_url or "").strip().rstrip("/")
    if not base or _LOCAL_HOST.search(base):
        base = config.PRODUCTION_SITE_URL
    path = path.strip()
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{base}{path}"


def _item_line(item: LineItem, site_url: str) -> str:
    name = _text(item.name) or PLACEHOLDER
    if item.variant and item.variant.strip():
        name = f"{name} (variant: {_text(item.variant)})"
    if item.quantity > 1:
        name = f"{name} × {item.quantity}"
    url = product_url(item.path, site_url)
    if url:
        return f'Item: {name} — <a href="{_text(url)}">{_text(url)}</a>'
    return f"Item: {name}"


# --- Section builders ---
# Each builder receives (order, kind, reason, site_url) and returns its lines.

def _header(order, kind, reason, site_url):
    return [HEADERS[kind], ""]


def _order_line(order, kind, reason, site_url):
    lines = [
        f"Order: #{_text(order.short_id)}",
        f"Amount: {format_money(order.amount, order.currency)}",
    ]
    if kind is NotificationKind.PAYMENT_SUCCESS and _text(order.payment_id):
        lines.append(f"Payment: {_text(order.payment_id)}")
    return lines


def _items(order, kind, reason, site_url):
    return [_item_line(item, site_url) for item in order.items]


def _reason(order, kind, reason, site_url):
    if kind is NotificationKind.PAYMENT_FAILED and _text(reason):
        return [f"Reason: {_text(reason)}"]
    return []


def _buyer(order, kind, reason, site_url):
    c: Customer = order.customer
    parts = [p for p in (_text(c.name), _text(c.phone), _text(c.telegram), _text(c.email)) if p]
    return [SEPARATOR, "<b>Buyer</b>", f"Customer: {' / '.join(parts) if parts else PLACEHOLDER}"]


def _recipient(order, kind, reason, site_url):
    c: Customer = order.customer
    parts = [p for p in (_text(c.recipient_name), _text(c.recipient_phone)) if p]
    return [SEPARATOR, "<b>Recipient</b>", " / ".join(parts) if parts else "- not specified"]


def _options(order, kind, reason, site_url):
    c: Customer = order.customer
    flags = [
        ("Recipient is another person", not c.is_recipient_self),
        ("Deliver anonymously", c.deliver_anonymously),
        ("Ask recipient for address/time", c.ask_recipient_for_details),
        ("Receive mailings", c.receive_mailings),
    ]
    return ["<b>Options</b>"] + [f"- {label}: {CHECK if value else CROSS}" for label, value in flags]


def _delivery(order, kind, reason, site_url):
    c: Customer = order.customer
    lines = [SEPARATOR, "<b>Delivery</b>"]
    if c.is_pickup:
        lines.append(f"Pickup {CHECK}")
    else:
        zone = _text(c.delivery_zone_title or c.delivery_zone)
        price = format_money(c.delivery_price, order.currency) if c.delivery_price is not None else ""
        if zone or price:
            lines.append(f"Zone: {' / '.join(p for p in (zone, price) if p)}")
        if _text(c.delivery_address):
            lines.append(f"Address: {_text(c.delivery_address)}")
    when = [p for p in (_text(c.delivery_date), _text(c.delivery_time)) if p]
    if when:
        lines.append(f"Date: {' / '.join(when)}")
    if _text(c.card_text):
        lines.append(f"Card text: {_text(c.card_text)}")
    if _text(c.notes):
        lines.append(f"Order note: {_text(c.notes)}")
    return lines


def _promocode(order, kind, reason, site_url):
    return [f"Promo code: {_text(order.customer.promocode) or PLACEHOLDER}"]


def _awaiting_payment(order, kind, reason, site_url):
    if kind is NotificationKind.ORDER_CREATED:
        return ["", "<b>Status: awaiting payment</b>"]
    return []


SECTIONS: Tuple[Callable[..., List[str]], ...] = (
    _header,
    _order_line,
    _items,
    _reason,
    _buyer,
    _recipient,
    _options,
    _delivery,
    _promocode,
    _awaiting_payment,
)


def format_notification(
        order: Order,
        kind: NotificationKind,
        reason: Optional[str] = None,
        site_url: str = config.SITE_URL
) -> str:
    """
    Renders the staff notification for an order event.

    Args:
        order (Order): Immutable order snapshot.
        kind (NotificationKind): Which event the message reports.
        reason (str | None): Human-readable failure reason, only shown for payment_failed.
        site_url (str): Storefront base URL used for item deep links.

    Returns:
        str: HTML message body (Telegram `parse_mode=HTML` subset).
    """
    kind = NotificationKind(kind)
    lines: List[str] = []
    for section in SECTIONS:
        lines.extend(section(order, kind, reason, site_url))
    return "\n".join(lines)
