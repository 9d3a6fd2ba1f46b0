"""
config.py — Environment Configuration for the Reconciliation Service

All settings are read once from environment variables when the module is imported.
Secrets (bot token, gateway password) are only ever read here and are never logged.
"""

import os


def _int_or_none(value):
    if value is None or value.strip() == "":
        return None
    return int(value)


# Order Store
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./orders.db")

# Money
CURRENCY = os.environ.get("CURRENCY", "RUB")
CURRENCY_SUBUNIT = int(os.environ.get("CURRENCY_SUBUNIT", "100"))

# Storefront (used for deep links in notifications)
PRODUCTION_SITE_URL = "https://theame.ru"
SITE_URL = os.environ.get("SITE_URL", PRODUCTION_SITE_URL)

# Messaging API (Telegram Bot API)
TELEGRAM_API_URL = os.environ.get("TELEGRAM_API_URL", "https://api.telegram.org")
TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_ORDERS_CHAT_ID = os.environ.get("TELEGRAM_ORDERS_CHAT_ID", "")
TELEGRAM_ORDERS_THREAD_ID = _int_or_none(os.environ.get("TELEGRAM_ORDERS_THREAD_ID"))
TELEGRAM_TIMEOUT_SECONDS = float(os.environ.get("TELEGRAM_TIMEOUT_SECONDS", "10"))

# Payment Gateway (Tinkoff-style acquiring API)
PAYMENT_GATEWAY_URL = os.environ.get("PAYMENT_GATEWAY_URL", "https://securepay.tinkoff.ru")
PAYMENT_TERMINAL_KEY = os.environ.get("PAYMENT_TERMINAL_KEY", "")
PAYMENT_PASSWORD = os.environ.get("PAYMENT_PASSWORD", "")
PAYMENT_SUCCESS_URL = os.environ.get("PAYMENT_SUCCESS_URL", f"{SITE_URL}/payment/success")
PAYMENT_FAIL_URL = os.environ.get("PAYMENT_FAIL_URL", f"{SITE_URL}/payment/fail")
PAYMENT_NOTIFICATION_URL = os.environ.get("PAYMENT_NOTIFICATION_URL", "")
PAYMENT_TIMEOUT_SECONDS = float(os.environ.get("PAYMENT_TIMEOUT_SECONDS", "10"))

# Paid-order events (RabbitMQ). Unset host disables the publisher.
RABBITMQ_HOST = os.environ.get("RABBITMQ_HOST", "")
RABBITMQ_USER = os.environ.get("RABBITMQ_USER", "guest")
RABBITMQ_PASSWORD = os.environ.get("RABBITMQ_PASSWORD", "guest")
PAID_ORDERS_QUEUE = os.environ.get("PAID_ORDERS_QUEUE", "orders.paid")

# Catalog and delivery zones
CATALOG_PATH = os.environ.get("CATALOG_PATH", "catalog.json")
DELIVERY_ZONES_PATH = os.environ.get("DELIVERY_ZONES_PATH", "")
NIGHT_DELIVERY_SLOT = os.environ.get("NIGHT_DELIVERY_SLOT", "night")

# Client reconciliation poller
POLL_INTERVAL_SECONDS = float(os.environ.get("POLL_INTERVAL_SECONDS", "2"))
POLL_MAX_ATTEMPTS = int(os.environ.get("POLL_MAX_ATTEMPTS", "10"))

# Logging
LOG_FILE = os.environ.get("LOG_FILE", "reconciliation.log")
