"""
checkout.py — Order Builder for Checkout Submissions

Turns a validated checkout submission into an Order snapshot in status `created`.
Names, prices and links are taken from the catalog, never from the client, and the
amount (line items plus delivery surcharge) is computed exactly once, here.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from . import config
from .domain import Customer, LineItem, Order, OrderStatus
from .errors import ValidationError
from .models import NewOrderRequest
from .surcharge import DeliveryZone, compute_surcharge

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: int
    path: Optional[str] = None


class Catalog:
    """Read-only product lookup. Prices are in minor currency units."""

    def __init__(self, products: Iterable[Product]):
        self._products = {product.id: product for product in products}

    def get_products(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        return {pid: self._products[pid] for pid in product_ids if pid in self._products}

    @classmethod
    def from_json(cls, path: str = config.CATALOG_PATH) -> "Catalog":
        """Loads a catalog from a JSON list of `{id, name, price, path}` objects."""
        with open(path, encoding="utf-8") as fh:
            rows = json.load(fh)
        products = [
            Product(id=str(row["id"]), name=row["name"], price=int(row["price"]), path=row.get("path"))
            for row in rows
        ]
        log.info(f"Catalog with {len(products)} products loaded from {path}.")
        return cls(products)


def build_order(
        request: NewOrderRequest,
        catalog: Catalog,
        zones: Dict[str, DeliveryZone],
        currency: str = config.CURRENCY
) -> Order:
    """
    Builds a new order from a checkout submission.

    Args:
        request (NewOrderRequest): Validated checkout payload.
        catalog (Catalog): Product lookup used for names, prices and deep links.
        zones (dict): Delivery zone table keyed by zone id.
        currency (str): ISO currency code of the deployment.

    Returns:
        Order: Snapshot in status `created` with the final amount.

    Raises:
        ValidationError: If the cart is empty, references unknown products,
            or asks for delivery without a zone or to an unknown zone.
    """
    if not request.items:
        raise ValidationError("Cart is empty")

    products = catalog.get_products(item.productId for item in request.items)
    line_items = []
    for item in request.items:
        if item.quantity < 1:
            raise ValidationError(f"Invalid quantity for product {item.productId}")
        product = products.get(item.productId)
        if product is None:
            raise ValidationError(f"Product not found: {item.productId}")
        line_items.append(LineItem(
            product_id=product.id,
            name=product.name,
            price=product.price,
            quantity=item.quantity,
            variant=item.variant,
            path=product.path,
        ))

    c = request.customer
    if not c.name.strip() or not c.phone.strip():
        raise ValidationError("Name and phone are required")

    if not c.isPickup and not (c.deliveryZone or "").strip():
        raise ValidationError("Delivery zone is required")

    zone = None
    if not c.isPickup:
        zone = zones.get(c.deliveryZone)
        if zone is None:
            raise ValidationError(f"Unknown delivery zone: {c.deliveryZone}")

    subtotal = sum(item.total for item in line_items)
    surcharge = compute_surcharge(subtotal, zone, c.isPickup, c.deliveryTime)

    customer = Customer(
        name=c.name.strip(),
        phone=c.phone.strip(),
        email=c.email,
        telegram=c.telegram,
        recipient_name=c.recipientName,
        recipient_phone=c.recipientPhone,
        is_recipient_self=c.isRecipientSelf,
        is_pickup=c.isPickup,
        delivery_zone=zone.id if zone else None,
        delivery_zone_title=zone.title if zone else None,
        delivery_address=None if c.isPickup else c.deliveryAddress,
        delivery_date=c.deliveryDate,
        delivery_time=c.deliveryTime,
        delivery_price=None if c.isPickup else surcharge,
        card_text=c.cardText,
        notes=c.notes,
        promocode=c.promocode,
        ask_recipient_for_details=c.askRecipientForDetails,
        deliver_anonymously=c.deliverAnonymously,
        receive_mailings=c.receiveMailings,
    )

    now = datetime.now(timezone.utc)
    return Order(
        id=str(uuid.uuid4()),
        items=tuple(line_items),
        amount=subtotal + surcharge,
        currency=currency,
        customer=customer,
        status=OrderStatus.CREATED,
        created_at=now,
        updated_at=now,
    )
