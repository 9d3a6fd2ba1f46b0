from datetime import datetime, timezone

import pytest
from sqlalchemy.pool import StaticPool

from reconciliation_service.checkout import Catalog, Product
from reconciliation_service.clients import PaymentSession
from reconciliation_service.domain import Customer, LineItem, Order, OrderStatus
from reconciliation_service.errors import DeliveryError, GatewayUnavailableError
from reconciliation_service.reconciliation import ReconciliationController
from reconciliation_service.store import OrderStore
from reconciliation_service.surcharge import DeliveryZone


class RecordingNotifier:
    """Notification transport double that records every message."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send(self, text, order_id=None):
        self.sent.append((order_id, text))
        if self.fail:
            raise DeliveryError("simulated outage", attempts=2, status_code=502)


class FakeGateway:
    """Payment gateway double; `state` is what GetState reports."""
    provider = "fake"

    def __init__(self):
        self.state = "NEW"
        self.unavailable = False
        self.initiated = []

    def initiate(self, order):
        if self.unavailable:
            raise GatewayUnavailableError("gateway down")
        self.initiated.append(order.id)
        payment_id = f"pay-{len(self.initiated)}"
        return PaymentSession(payment_id=payment_id, payment_url=f"https://pay.example/{payment_id}")

    def get_state(self, payment_id, order_id=None):
        if self.unavailable:
            raise GatewayUnavailableError("gateway down")
        return self.state

    def verify_notification(self, payload):
        return payload.get("Token") == "valid-token"


CREATED_AT = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
ZONE = DeliveryZone("dagomys_matsesta", "Dagomys, Matsesta", 50000, 500000)


@pytest.fixture
def store():
    return OrderStore.from_url(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def paid_orders():
    return []


@pytest.fixture
def controller(store, gateway, notifier, paid_orders):
    return ReconciliationController(
        store=store,
        gateway=gateway,
        notifier=notifier,
        on_paid=paid_orders.append,
        site_url="https://shop.example",
    )


@pytest.fixture
def catalog():
    return Catalog([
        Product(id="peony", name="Peony bouquet", price=350000, path="/catalog/peony"),
        Product(id="card", name="Greeting card", price=15000),
    ])


@pytest.fixture
def zones():
    return {ZONE.id: ZONE}


def build_test_order(order_id="3f2a9c1e-7b4d-4e8a-9f10-2c3d4e5f6a7b", status=OrderStatus.CREATED, **customer):
    fields = dict(
        name="Anna",
        phone="+7 900 000-00-00",
        delivery_zone=ZONE.id,
        delivery_zone_title=ZONE.title,
        delivery_address="Kurortny pr. 1",
        delivery_price=50000,
    )
    fields.update(customer)
    return Order(
        id=order_id,
        items=(
            LineItem("peony", "Peony bouquet", 350000, 1, path="/catalog/peony"),
            LineItem("card", "Greeting card", 15000, 2, variant="red"),
        ),
        amount=430000,
        currency="RUB",
        customer=Customer(**fields),
        status=status,
        created_at=CREATED_AT,
        updated_at=CREATED_AT,
    )


@pytest.fixture
def make_order():
    return build_test_order


@pytest.fixture
def created_order(controller, make_order):
    return controller.create_order(make_order())


@pytest.fixture
def pending_order(controller, created_order, notifier):
    controller.initiate_payment(created_order.id)
    notifier.sent.clear()
    return controller.get_order(created_order.id)
