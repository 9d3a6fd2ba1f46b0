import json

import httpx
import pytest
from fastapi.testclient import TestClient

from mock_services import mock_telegram_api
from reconciliation_service.clients import TelegramClient
from reconciliation_service.errors import DeliveryError


def scripted_client(responses):
    """httpx client whose transport answers with `responses` in order (status codes or exceptions)."""
    calls = []

    def handler(request):
        calls.append(request)
        outcome = responses[len(calls) - 1]
        if isinstance(outcome, type) and issubclass(outcome, Exception):
            raise outcome("simulated", request=request)
        if outcome < 300:
            return httpx.Response(outcome, json={"ok": True, "result": {"message_id": len(calls)}})
        return httpx.Response(outcome, json={"ok": False, "error_code": outcome, "description": f"error {outcome}"})

    client = httpx.Client(base_url="https://api.telegram.test", transport=httpx.MockTransport(handler))
    return client, calls


def telegram(client, thread_id=None):
    return TelegramClient(token="123:abc", chat_id="-100500", thread_id=thread_id, client=client)


def test_server_error_then_success_is_retried_once():
    client, calls = scripted_client([500, 200])

    telegram(client).send("hello")

    assert len(calls) == 2


def test_client_error_is_terminal():
    client, calls = scripted_client([400, 200])

    with pytest.raises(DeliveryError) as excinfo:
        telegram(client).send("hello")

    assert len(calls) == 1
    assert excinfo.value.attempts == 1
    assert excinfo.value.status_code == 400


def test_two_server_errors_exhaust_the_retry():
    client, calls = scripted_client([503, 502, 200])

    with pytest.raises(DeliveryError) as excinfo:
        telegram(client).send("hello")

    assert len(calls) == 2
    assert excinfo.value.status_code == 502


def test_timeouts_are_retryable():
    client, calls = scripted_client([httpx.ReadTimeout, 200])

    telegram(client).send("hello")

    assert len(calls) == 2


def test_network_errors_exhaust_the_retry():
    client, calls = scripted_client([httpx.ConnectError, httpx.ConnectTimeout])

    with pytest.raises(DeliveryError) as excinfo:
        telegram(client).send("hello")

    assert len(calls) == 2
    assert excinfo.value.status_code is None


def test_ok_false_on_success_status_is_retried():
    replies = iter([
        httpx.Response(200, json={"ok": False, "description": "flood"}),
        httpx.Response(200, json={"ok": True, "result": {}}),
    ])
    calls = []

    def handler(request):
        calls.append(request)
        return next(replies)

    client = httpx.Client(base_url="https://api.telegram.test", transport=httpx.MockTransport(handler))
    telegram(client).send("hello")

    assert len(calls) == 2


def test_request_payload():
    client, calls = scripted_client([200])

    telegram(client, thread_id=42).send("x" * 5000)

    request = calls[0]
    assert request.url.path == "/bot123:abc/sendMessage"
    payload = json.loads(request.read())
    assert payload["chat_id"] == "-100500"
    assert payload["parse_mode"] == "HTML"
    assert payload["message_thread_id"] == 42
    assert len(payload["text"]) == TelegramClient.MAX_MESSAGE_LENGTH
    assert payload["text"].endswith("…")


def test_missing_configuration_fails_without_request():
    client, calls = scripted_client([200])

    with pytest.raises(DeliveryError):
        TelegramClient(token="", chat_id="-100500", client=client).send("hello")

    assert calls == []


class TestAgainstMockTelegramApi:

    @pytest.fixture(autouse=True)
    def reset_mock(self):
        mock_telegram_api.reset()
        yield
        mock_telegram_api.reset()

    @pytest.fixture
    def client(self):
        return TelegramClient(
            token=mock_telegram_api.MOCK_BOT_TOKEN,
            chat_id="-100500",
            client=TestClient(mock_telegram_api.app),
        )

    def test_delivers_after_transient_outage(self, client):
        mock_telegram_api.state["fail_next"] = 1

        client.send("<b>Order placed</b>")

        assert mock_telegram_api.state["calls"] == 2
        assert [m["text"] for m in mock_telegram_api.messages] == ["<b>Order placed</b>"]

    def test_rejection_is_not_retried(self, client):
        mock_telegram_api.state["reject"] = True

        with pytest.raises(DeliveryError):
            client.send("hello")

        assert mock_telegram_api.state["calls"] == 1
        assert mock_telegram_api.messages == []

    def test_wrong_token_is_terminal(self):
        client = TelegramClient(token="wrong", chat_id="-100500", client=TestClient(mock_telegram_api.app))

        with pytest.raises(DeliveryError) as excinfo:
            client.send("hello")

        assert excinfo.value.status_code == 401
        assert mock_telegram_api.state["calls"] == 1


def test_truncation_cuts_at_a_line_boundary_and_keeps_the_status_line():
    body = "\n".join(["🧾 <b>Order placed</b>"] + [f"Item: Rose &amp; peony № {n}" for n in range(400)])
    text = body + "\n<b>Status: awaiting payment</b>"

    truncated = TelegramClient.truncate(text)

    assert len(truncated) <= TelegramClient.MAX_MESSAGE_LENGTH
    lines = truncated.splitlines()
    assert lines[-2:] == ["…", "<b>Status: awaiting payment</b>"]
    assert all(line in text.splitlines() for line in lines[:-2])


def test_single_oversized_line_is_not_cut_inside_an_entity():
    text = "a" * 4092 + "&amp;&amp;"

    truncated = TelegramClient.truncate(text)

    assert len(truncated) <= TelegramClient.MAX_MESSAGE_LENGTH
    assert truncated == "a" * 4092 + "…"
