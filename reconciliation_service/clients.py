"""
This module provides communication clients for external systems used by the reconciliation service:
- Messaging API (Telegram Bot API, REST) — staff notifications
- Payment Gateway (Tinkoff-style acquiring API, REST) — payment initiation and status lookup
- Paid-order events (RabbitMQ) — cart clearing and inventory consumers
Each class encapsulates its protocol logic, error handling, and connection management.
"""

import hashlib
import json
import logging
import re
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import httpx
import pika

from . import config
from .domain import Order
from .errors import DeliveryError, GatewayUnavailableError

log = logging.getLogger(__name__)

_PARTIAL_MARKUP = re.compile(r"&[#\w]*$|<[^>]*$")


# --- Messaging Client (REST) ---
class TelegramClient:
    """
    Notification transport for the staff chat (Telegram Bot API).

    Delivery policy:
        - every request is bounded by a timeout
        - HTTP 4xx is terminal and never retried (bad token, bad chat, malformed request)
        - HTTP 5xx, network errors and timeouts are retryable: exactly one more attempt
        - exhaustion raises DeliveryError
    """
    MAX_ATTEMPTS = 2
    MAX_MESSAGE_LENGTH = 4096

    def __init__(
            self,
            token: str = config.TELEGRAM_BOT_TOKEN,
            chat_id: str = config.TELEGRAM_ORDERS_CHAT_ID,
            thread_id: Optional[int] = config.TELEGRAM_ORDERS_THREAD_ID,
            client: Optional[httpx.Client] = None
    ):
        """
        Initializes the HTTP client with a bounded timeout.
        Args:
            token (str): Bot token. Never logged.
            chat_id (str): Target chat.
            thread_id (int | None): Optional forum topic inside the chat.
            client (httpx.Client | None): Preconfigured client, e.g. for tests.
        """
        self.token = token
        self.chat_id = chat_id
        self.thread_id = thread_id
        self._owns_client = client is None
        if client is None:
            timeout_config = httpx.Timeout(config.TELEGRAM_TIMEOUT_SECONDS)
            client = httpx.Client(base_url=config.TELEGRAM_API_URL, timeout=timeout_config)
        self.client = client

    def close(self):
        if self._owns_client:
            self.client.close()

    @classmethod
    def truncate(cls, text: str) -> str:
        """
        Shortens a message to the API limit.

        Whole lines are dropped from the end of the body while the last line (the
        status line) is kept, so a cut never splits an HTML entity or tag.
        """
        if len(text) <= cls.MAX_MESSAGE_LENGTH:
            return text

        lines = text.split("\n")
        tail = lines[-1]
        budget = cls.MAX_MESSAGE_LENGTH - len(tail) - len("\n…\n")
        kept, size = [], 0
        for line in lines[:-1]:
            if size + len(line) + 1 > budget:
                break
            kept.append(line)
            size += len(line) + 1
        if kept:
            return "\n".join(kept + ["…", tail])

        # A single oversized line: cut it, but not inside an entity or tag
        cut = _PARTIAL_MARKUP.sub("", text[:cls.MAX_MESSAGE_LENGTH - 1])
        return cut.rstrip() + "…"

    def send(self, text: str, order_id: Optional[str] = None) -> None:
        """
        Sends one message to the configured chat.
        Args:
            text (str): HTML message body.
            order_id (str | None): Only used for log context.
        Raises:
            DeliveryError: On a terminal failure or after the retry is exhausted.
        """
        log_prefix = f"[Order: {order_id}]" if order_id else "[Telegram]"
        if not self.token or not self.chat_id:
            raise DeliveryError("Telegram bot token or chat id not configured", attempts=0)

        payload = {
            "chat_id": self.chat_id,
            "text": self.truncate(text),
            "parse_mode": "HTML",
        }
        if self.thread_id is not None:
            payload["message_thread_id"] = self.thread_id

        last_error = None
        last_status = None
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            try:
                response = self.client.post(f"/bot{self.token}/sendMessage", json=payload)
            except httpx.TimeoutException:
                last_status, last_error = None, "request timed out"
            except httpx.TransportError as e:
                last_status, last_error = None, f"network error ({type(e).__name__})"
            else:
                last_status = response.status_code
                if 400 <= response.status_code < 500:
                    description = self._description(response)
                    log.error(f"{log_prefix} Telegram rejected the message (HTTP {response.status_code}): {description}")
                    raise DeliveryError(
                        f"Telegram: {description} (HTTP {response.status_code})",
                        attempts=attempt,
                        status_code=response.status_code,
                    )
                if response.status_code < 300 and self._is_ok(response):
                    log.info(f"{log_prefix} Notification delivered (attempt {attempt}).")
                    return
                last_error = self._description(response)

            if attempt < self.MAX_ATTEMPTS:
                log.warning(f"{log_prefix} Telegram attempt {attempt} failed ({last_error}). Retrying once.")

        status_info = f" (HTTP {last_status})" if last_status is not None else ""
        raise DeliveryError(
            f"Telegram: {last_error}{status_info}",
            attempts=self.MAX_ATTEMPTS,
            status_code=last_status,
        )

    @staticmethod
    def _is_ok(response: httpx.Response) -> bool:
        try:
            return response.json().get("ok") is True
        except ValueError:
            return False

    @staticmethod
    def _description(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text[:200] or f"HTTP {response.status_code}"
        return data.get("description") or f"error code {data.get('error_code', 'unknown')}"


# --- Payment Gateway Client (REST) ---
GATEWAY_SUCCESS_STATES = frozenset({"CONFIRMED", "AUTHORIZED"})
GATEWAY_FAILURE_STATES = frozenset({"CANCELED", "REJECTED", "DEADLINE_EXPIRED", "REFUNDED"})


def classify_gateway_state(state: Optional[str]) -> Optional[str]:
    """Maps a gateway payment state to "success", "failure" or None (still pending)."""
    if state in GATEWAY_SUCCESS_STATES:
        return "success"
    if state in GATEWAY_FAILURE_STATES:
        return "failure"
    return None


def _token_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_token(params: dict, password: str) -> str:
    """
    Signs request or notification parameters the way the gateway does:
    root-level scalar values plus the password, sorted by key, values concatenated,
    SHA-256 hex digest.
    """
    signed = {
        key: _token_value(value)
        for key, value in params.items()
        if key != "Token" and value is not None and value != "" and not isinstance(value, (dict, list))
    }
    signed["Password"] = password
    concatenated = "".join(signed[key] for key in sorted(signed))
    return hashlib.sha256(concatenated.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class PaymentSession:
    payment_id: str
    payment_url: str


class PaymentGatewayClient:
    """
    Client for the payment gateway (REST API).
    Handles payment initiation, payment state lookup and webhook authenticity checks.
    """
    provider = "tinkoff"

    def __init__(
            self,
            terminal_key: str = config.PAYMENT_TERMINAL_KEY,
            password: str = config.PAYMENT_PASSWORD,
            success_url: str = config.PAYMENT_SUCCESS_URL,
            fail_url: str = config.PAYMENT_FAIL_URL,
            notification_url: str = config.PAYMENT_NOTIFICATION_URL,
            client: Optional[httpx.Client] = None
    ):
        """
        Initializes the HTTP client with proper timeout configuration.
        """
        self.terminal_key = terminal_key
        self.password = password
        self.success_url = success_url
        self.fail_url = fail_url
        self.notification_url = notification_url
        self._owns_client = client is None
        if client is None:
            timeout_config = httpx.Timeout(config.PAYMENT_TIMEOUT_SECONDS)
            client = httpx.Client(base_url=config.PAYMENT_GATEWAY_URL, timeout=timeout_config)
        self.client = client

    def close(self):
        if self._owns_client:
            self.client.close()

    @staticmethod
    def _with_order_id(url: str, order_id: str) -> str:
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}orderId={order_id}"

    def _post(self, path: str, params: dict, log_prefix: str) -> dict:
        body = dict(params, TerminalKey=self.terminal_key)
        body["Token"] = self.sign(body)
        try:
            response = self.client.post(path, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            log.error(f"{log_prefix} Payment gateway timeout on {path}.")
            raise GatewayUnavailableError(f"Payment gateway timeout on {path}") from e
        except httpx.HTTPStatusError as e:
            log.error(f"{log_prefix} HTTP error from payment gateway on {path}: {e.response.status_code}")
            raise GatewayUnavailableError(f"Payment gateway returned HTTP {e.response.status_code}") from e
        except (httpx.TransportError, ValueError) as e:
            log.error(f"{log_prefix} Payment gateway unreachable on {path}: {e}")
            raise GatewayUnavailableError(f"Payment gateway unreachable on {path}") from e

        if not data.get("Success"):
            log.warning(
                f"{log_prefix} Payment gateway refused {path}: "
                f"ErrorCode={data.get('ErrorCode')} Message={data.get('Message')}"
            )
            raise GatewayUnavailableError(data.get("Message") or f"Payment gateway refused {path}")
        return data

    def initiate(self, order: Order) -> PaymentSession:
        """
        Creates a payment session for an order.
        Args:
            order (Order): Order in status `created`; its amount is charged as-is.
        Returns:
            PaymentSession: Gateway payment id and the URL the buyer is redirected to.
        Raises:
            GatewayUnavailableError: On timeout, transport error, HTTP error or refusal.
        """
        params = {
            "Amount": order.amount,
            "OrderId": order.id,
            "Description": f"Payment for order #{order.short_id}",
            "SuccessURL": self._with_order_id(self.success_url, order.id),
            "FailURL": self._with_order_id(self.fail_url, order.id),
        }
        if self.notification_url:
            params["NotificationURL"] = self.notification_url

        data = self._post("/v2/Init", params, f"[Order: {order.id}]")
        if data.get("PaymentId") is None or not data.get("PaymentURL"):
            raise GatewayUnavailableError("Payment gateway response without PaymentId/PaymentURL")
        return PaymentSession(payment_id=str(data["PaymentId"]), payment_url=data["PaymentURL"])

    def get_state(self, payment_id: str, order_id: Optional[str] = None) -> str:
        """
        Looks up the gateway's own view of a payment.
        Returns:
            str: Gateway state such as NEW, AUTHORIZED, CONFIRMED, REJECTED.
        Raises:
            GatewayUnavailableError: If the state cannot be obtained.
        """
        log_prefix = f"[Order: {order_id}]" if order_id else f"[Payment: {payment_id}]"
        data = self._post("/v2/GetState", {"PaymentId": payment_id}, log_prefix)
        return str(data.get("Status", ""))

    def sign(self, params: dict) -> str:
        """Token for request or notification parameters under this terminal's password."""
        return build_token(params, self.password)

    def verify_notification(self, payload: dict) -> bool:
        """Checks the Token of an inbound webhook against the shared password."""
        received = payload.get("Token")
        if not received or not self.password:
            return False
        return self.sign(payload) == received


# --- Paid-Order Publisher (MQ) ---
class PaidOrderPublisher:
    """
    Publishes paid orders to RabbitMQ so that cart-clearing and inventory
    consumers can react. Connects lazily and reconnects on a closed connection.
    One instance is shared by all request threads; a lock serialises access to
    the connection because pika's BlockingConnection is not thread-safe.
    """
    def __init__(self, host: str = config.RABBITMQ_HOST, queue: str = config.PAID_ORDERS_QUEUE):
        self.host = host
        self.queue = queue
        self.connection = None
        self.channel = None
        self._lock = threading.Lock()

    def _connect(self):
        """
        Establishes a RabbitMQ connection and declares the target queue.
        Raises:
            pika.exceptions.AMQPConnectionError: If the connection fails.
        """
        try:
            credentials = pika.PlainCredentials(config.RABBITMQ_USER, config.RABBITMQ_PASSWORD)
            self.connection = pika.BlockingConnection(
                pika.ConnectionParameters(host=self.host, credentials=credentials, heartbeat=60)
            )
            self.channel = self.connection.channel()
            self.channel.queue_declare(queue=self.queue, durable=True)
            log.info("Paid-order publisher connected to RabbitMQ.")
        except pika.exceptions.AMQPConnectionError as e:
            log.critical(f"Cannot connect to RabbitMQ for paid-order events: {e}")
            raise

    def publish_paid_order(self, order: Order):
        """
        Sends a persistent `order.paid` message.
        Args:
            order (Order): Order that has just been committed as paid.
        Raises:
            pika.exceptions.AMQPError: If publishing fails.
        """
        message = {
            "eventId": str(uuid.uuid4()),
            "orderId": order.id,
            "paymentId": order.payment_id,
            "publishedAt": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "items": [{"productId": item.product_id, "quantity": item.quantity} for item in order.items],
        }
        with self._lock:
            if not self.connection or self.connection.is_closed:
                self._connect()

            self.channel.basic_publish(
                exchange='',
                routing_key=self.queue,
                body=json.dumps(message),
                properties=pika.BasicProperties(delivery_mode=2)  # persistent
            )
        log.info(f"[Order: {order.id}] Paid-order event published to '{self.queue}'.")

    def close(self):
        with self._lock:
            if self.connection and self.connection.is_open:
                self.connection.close()
