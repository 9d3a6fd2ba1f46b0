import json

import httpx
import pytest
from fastapi.testclient import TestClient

from mock_services import mock_payment_gateway
from reconciliation_service.clients import PaymentGatewayClient, build_token, classify_gateway_state
from reconciliation_service.errors import GatewayUnavailableError


@pytest.fixture(autouse=True)
def reset_mock():
    mock_payment_gateway.reset()
    yield
    mock_payment_gateway.reset()


@pytest.fixture
def gateway():
    return PaymentGatewayClient(
        terminal_key=mock_payment_gateway.MOCK_TERMINAL_KEY,
        password=mock_payment_gateway.MOCK_PASSWORD,
        success_url="https://shop.example/checkout/success",
        fail_url="https://shop.example/checkout/fail?src=gw",
        notification_url="https://api.shop.example/v1/payments/notification",
        client=TestClient(mock_payment_gateway.app),
    )


def test_token_ignores_nested_values_and_order():
    params = {"TerminalKey": "T", "Amount": 100, "OrderId": "o-1", "Receipt": {"Items": []}, "Token": "x"}
    reordered = {"OrderId": "o-1", "Amount": 100, "TerminalKey": "T"}

    assert build_token(params, "secret") == build_token(reordered, "secret")
    assert build_token(params, "secret") != build_token(params, "other")


def test_token_renders_booleans_lowercase():
    assert build_token({"Success": True}, "p") == build_token({"Success": "true"}, "p")


def test_initiate_returns_payment_session(gateway, make_order):
    order = make_order()

    session = gateway.initiate(order)

    stored = mock_payment_gateway.payments[session.payment_id]
    assert session.payment_url == f"https://pay.mock.local/{session.payment_id}"
    assert stored["OrderId"] == order.id
    assert stored["Amount"] == 430000
    assert stored["NotificationURL"] == "https://api.shop.example/v1/payments/notification"


def test_return_urls_carry_order_id(make_order):
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.read()))
        return httpx.Response(200, json={"Success": True, "PaymentId": 1, "PaymentURL": "https://pay/1"})

    client = httpx.Client(base_url="https://gw.test", transport=httpx.MockTransport(handler))
    gateway = PaymentGatewayClient("T", "p", "https://s.example/ok", "https://s.example/fail?x=1", "", client=client)
    order = make_order()

    session = gateway.initiate(order)

    body = bodies[0]
    assert session.payment_id == "1"
    assert body["SuccessURL"] == f"https://s.example/ok?orderId={order.id}"
    assert body["FailURL"] == f"https://s.example/fail?x=1&orderId={order.id}"
    assert "NotificationURL" not in body
    assert body["Token"] == build_token(body, "p")


@pytest.mark.parametrize("scenario", ["refuse", "outage"])
def test_initiate_failures_raise_gateway_unavailable(gateway, make_order, scenario):
    mock_payment_gateway.scenario["init"] = scenario

    with pytest.raises(GatewayUnavailableError):
        gateway.initiate(make_order())

    assert mock_payment_gateway.payments == {}


def test_wrong_password_is_refused(make_order):
    gateway = PaymentGatewayClient(
        terminal_key=mock_payment_gateway.MOCK_TERMINAL_KEY,
        password="wrong",
        client=TestClient(mock_payment_gateway.app),
    )

    with pytest.raises(GatewayUnavailableError, match="Invalid token"):
        gateway.initiate(make_order())


def test_timeout_raises_gateway_unavailable(make_order):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = httpx.Client(base_url="https://gw.test", transport=httpx.MockTransport(handler))
    gateway = PaymentGatewayClient("T", "p", client=client)

    with pytest.raises(GatewayUnavailableError):
        gateway.initiate(make_order())


def test_get_state_follows_payment_lifecycle(gateway, make_order):
    session = gateway.initiate(make_order())
    assert gateway.get_state(session.payment_id) == "NEW"

    mock_payment_gateway.complete_payment(session.payment_id, outcome="failure", webhook=False)

    assert gateway.get_state(session.payment_id) == "REJECTED"


def test_get_state_of_unknown_payment(gateway):
    with pytest.raises(GatewayUnavailableError):
        gateway.get_state("0000000000")


def test_verify_notification(gateway, make_order):
    session = gateway.initiate(make_order())
    payload = mock_payment_gateway.complete_payment(session.payment_id, outcome="success", webhook=False)

    assert gateway.verify_notification(payload)
    assert not gateway.verify_notification(dict(payload, Amount=1))
    assert not gateway.verify_notification({key: value for key, value in payload.items() if key != "Token"})


@pytest.mark.parametrize("state, expected", [
    ("CONFIRMED", "success"),
    ("AUTHORIZED", "success"),
    ("REJECTED", "failure"),
    ("DEADLINE_EXPIRED", "failure"),
    ("NEW", None),
    ("FORM_SHOWED", None),
    (None, None),
])
def test_classify_gateway_state(state, expected):
    assert classify_gateway_state(state) == expected


def test_sign_uses_the_terminal_password(gateway):
    params = {"TerminalKey": "MockTerminal", "PaymentId": "42"}

    assert gateway.sign(params) == build_token(params, mock_payment_gateway.MOCK_PASSWORD)
    assert gateway.verify_notification(dict(params, Token=gateway.sign(params)))
