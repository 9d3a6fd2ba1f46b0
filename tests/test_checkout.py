import json

import pydantic
import pytest

from reconciliation_service.checkout import Catalog, Product, build_order
from reconciliation_service.domain import OrderStatus
from reconciliation_service.errors import ValidationError
from reconciliation_service.models import NewOrderRequest


def checkout_request(items=None, **customer):
    data = {
        "name": "Anna",
        "phone": "+7 900 000-00-00",
        "deliveryZone": "dagomys_matsesta",
        "deliveryAddress": "Kurortny pr. 1",
        "deliveryTime": "10:00-12:00",
    }
    data.update(customer)
    return NewOrderRequest(
        items=items or [{"productId": "peony", "quantity": 1}, {"productId": "card", "quantity": 2}],
        customer=data,
    )


def test_amount_is_items_plus_surcharge(catalog, zones):
    order = build_order(checkout_request(), catalog, zones, currency="RUB")

    # 3500 + 150 * 2 + 500 in major units
    assert order.amount == 430000
    assert order.status is OrderStatus.CREATED
    assert order.currency == "RUB"
    assert order.customer.delivery_price == 50000
    assert order.customer.delivery_zone_title == "Dagomys, Matsesta"
    assert [(item.product_id, item.price, item.quantity) for item in order.items] == [
        ("peony", 350000, 1),
        ("card", 15000, 2),
    ]


def test_pickup_ignores_zone_and_address(catalog, zones):
    order = build_order(checkout_request(isPickup=True), catalog, zones)

    assert order.amount == 380000
    assert order.customer.is_pickup
    assert order.customer.delivery_address is None
    assert order.customer.delivery_price is None


def test_prices_come_from_catalog_snapshot(catalog, zones):
    order = build_order(checkout_request(), catalog, zones)
    repriced = Catalog([Product(id="peony", name="Peony bouquet", price=999900)])

    assert repriced.get_products(["peony"])["peony"].price == 999900
    assert order.items[0].price == 350000
    assert order.amount == 430000


def test_empty_cart_is_rejected(catalog, zones):
    request = NewOrderRequest.model_construct(items=[], customer=checkout_request().customer)
    with pytest.raises(ValidationError):
        build_order(request, catalog, zones)


def test_unknown_product_is_rejected(catalog, zones):
    with pytest.raises(ValidationError, match="Product not found"):
        build_order(checkout_request(items=[{"productId": "tulip", "quantity": 1}]), catalog, zones)


def test_unknown_zone_is_rejected(catalog, zones):
    with pytest.raises(ValidationError, match="Unknown delivery zone"):
        build_order(checkout_request(deliveryZone="mars"), catalog, zones)


def test_blank_name_is_rejected(catalog, zones):
    with pytest.raises(ValidationError):
        build_order(checkout_request(name="   "), catalog, zones)


def test_catalog_from_json(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps([{"id": "peony", "name": "Peony bouquet", "price": 350000, "path": "/catalog/peony"}]))

    catalog = Catalog.from_json(str(path))

    assert catalog.get_products(["peony", "missing"]) == {
        "peony": Product(id="peony", name="Peony bouquet", price=350000, path="/catalog/peony"),
    }


@pytest.mark.parametrize("zone", [None, "", "   "])
def test_delivery_without_zone_is_rejected(catalog, zones, zone):
    request = checkout_request(deliveryZone=zone)

    with pytest.raises(ValidationError, match="Delivery zone is required"):
        build_order(request, catalog, zones)


def test_pickup_needs_no_zone(catalog, zones):
    order = build_order(checkout_request(isPickup=True, deliveryZone=None), catalog, zones)

    assert order.customer.delivery_zone is None
    assert order.amount == 380000


def test_oversized_card_text_is_rejected_at_the_boundary():
    with pytest.raises(pydantic.ValidationError):
        checkout_request(cardText="x" * 1001)
