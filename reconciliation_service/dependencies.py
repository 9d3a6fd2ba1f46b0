"""
dependencies.py — Wiring of the Reconciliation Core for the HTTP API

Builds the long-lived collaborators once per process from the environment
configuration. Tests replace these providers through `app.dependency_overrides`.
"""

from functools import lru_cache

from . import config
from .checkout import Catalog
from .clients import PaidOrderPublisher, PaymentGatewayClient, TelegramClient
from .logging_config import get_logger
from .reconciliation import ReconciliationController
from .store import OrderStore
from .surcharge import load_zones

log = get_logger(__name__)


@lru_cache
def get_store() -> OrderStore:
    connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}
    return OrderStore.from_url(config.DATABASE_URL, connect_args=connect_args)


@lru_cache
def get_controller() -> ReconciliationController:
    on_paid = None
    if config.RABBITMQ_HOST:
        on_paid = PaidOrderPublisher().publish_paid_order
    else:
        log.warning("RABBITMQ_HOST not set: paid-order events are not published.")

    return ReconciliationController(
        store=get_store(),
        gateway=PaymentGatewayClient(),
        notifier=TelegramClient(),
        on_paid=on_paid,
    )


@lru_cache
def get_catalog() -> Catalog:
    return Catalog.from_json(config.CATALOG_PATH)


@lru_cache
def get_zones() -> dict:
    return load_zones(config.DELIVERY_ZONES_PATH)
