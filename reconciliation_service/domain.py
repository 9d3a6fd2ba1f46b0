"""
domain.py — Order Aggregate and State Machine Definitions

This module defines the immutable order snapshot that flows through the service and
the transition table of the order lifecycle.

State machine:
    created → payment_pending → paid | failed
    created | payment_pending → canceled   (explicit buyer/staff action only)

Duplicate gateway deliveries (success on a paid order, failure on a failed order)
are recognised and answered with a no-op instead of an error.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class OrderStatus(str, Enum):
    CREATED = "created"
    PAYMENT_PENDING = "payment_pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELED})


class OrderEvent(str, Enum):
    INITIATED = "initiated"
    GATEWAY_SUCCESS = "gateway_success"
    GATEWAY_FAILURE = "gateway_failure"
    CANCEL = "cancel"


class NotificationKind(str, Enum):
    ORDER_CREATED = "order_created"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"


@dataclass(frozen=True)
class Transition:
    """
    One row of the transition table.

    Attributes:
        allowed_from: Statuses from which the event moves the order.
        target: Status the order ends up in.
        duplicate_of: Status that means "this event was already applied".
        notification: Notification to send after a successful transition, if any.
    """
    allowed_from: frozenset
    target: OrderStatus
    duplicate_of: Optional[OrderStatus] = None
    notification: Optional[NotificationKind] = None


TRANSITIONS = {
    OrderEvent.INITIATED: Transition(
        allowed_from=frozenset({OrderStatus.CREATED}),
        target=OrderStatus.PAYMENT_PENDING,
        notification=NotificationKind.ORDER_CREATED,
    ),
    OrderEvent.GATEWAY_SUCCESS: Transition(
        allowed_from=frozenset({OrderStatus.PAYMENT_PENDING}),
        target=OrderStatus.PAID,
        duplicate_of=OrderStatus.PAID,
        notification=NotificationKind.PAYMENT_SUCCESS,
    ),
    OrderEvent.GATEWAY_FAILURE: Transition(
        allowed_from=frozenset({OrderStatus.PAYMENT_PENDING}),
        target=OrderStatus.FAILED,
        duplicate_of=OrderStatus.FAILED,
        notification=NotificationKind.PAYMENT_FAILED,
    ),
    OrderEvent.CANCEL: Transition(
        allowed_from=frozenset({OrderStatus.CREATED, OrderStatus.PAYMENT_PENDING}),
        target=OrderStatus.CANCELED,
        duplicate_of=OrderStatus.CANCELED,
    ),
}


@dataclass(frozen=True)
class LineItem:
    """A cart line captured at order creation. `price` is in minor currency units."""
    product_id: str
    name: str
    price: int
    quantity: int
    variant: Optional[str] = None
    path: Optional[str] = None

    @property
    def total(self) -> int:
        return self.price * self.quantity


@dataclass(frozen=True)
class Customer:
    """Buyer contact, recipient, delivery selection and checkout options."""
    name: str
    phone: str
    email: Optional[str] = None
    telegram: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    is_recipient_self: bool = True
    is_pickup: bool = False
    delivery_zone: Optional[str] = None
    delivery_zone_title: Optional[str] = None
    delivery_address: Optional[str] = None
    delivery_date: Optional[str] = None
    delivery_time: Optional[str] = None
    delivery_price: Optional[int] = None
    card_text: Optional[str] = None
    notes: Optional[str] = None
    promocode: Optional[str] = None
    ask_recipient_for_details: bool = False
    deliver_anonymously: bool = False
    receive_mailings: bool = False


@dataclass(frozen=True)
class Order:
    id: str
    items: Tuple[LineItem, ...]
    amount: int
    currency: str
    customer: Customer
    status: OrderStatus = OrderStatus.CREATED
    payment_id: Optional[str] = None
    payment_provider: Optional[str] = None
    payment_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    notified_at: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of `ReconciliationController.apply()`: `applied` is False for no-ops."""
    applied: bool
    order: Order
