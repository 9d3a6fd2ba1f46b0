"""
reconciliation.py — Core Reconciliation Logic for the Order Lifecycle

This module owns the order state machine. It decides which transitions are legal,
commits them through the Order Store and reports them to the staff chat.

Two independent, unsynchronised callers reach `apply()`:
1. the payment gateway webhook (server-driven path)
2. the fallback confirmation endpoint polled from the buyer's browser (client-driven path)

Guarantees:
    - A transition is committed by one conditional UPDATE; of two concurrent callers
      at most one observes `applied=True`.
    - Notifications are sent only after the commit and only by the caller that applied
      the transition. A failed notification is logged, never rolled back into the order.
    - Duplicate and out-of-order gateway events are expected races: they are logged
      and answered with `applied=False`, never raised to the caller.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from . import config
from .clients import PaymentGatewayClient, PaymentSession, TelegramClient, classify_gateway_state
from .domain import TRANSITIONS, Order, OrderEvent, OrderStatus, Transition, TransitionResult
from .errors import DeliveryError, GatewayUnavailableError, IllegalTransitionError
from .formatter import format_notification
from .store import OrderStore

log = logging.getLogger(__name__)


def classify_notification(payload: dict):
    """
    Translates an (already authenticated) gateway webhook payload into a state machine event.

    Returns:
        tuple | None: (event, payment_id, reason) or None for intermediate gateway states
        that do not end the payment (NEW, FORM_SHOWED, AUTHORIZING, ...).
    """
    status = payload.get("Status")
    success = payload.get("Success") in (True, "true")
    payment_id = str(payload["PaymentId"]) if payload.get("PaymentId") is not None else None

    if status == "CONFIRMED" or (status == "AUTHORIZED" and success):
        return OrderEvent.GATEWAY_SUCCESS, payment_id, None

    if classify_gateway_state(status) == "failure" or not success:
        details = payload.get("Message") or payload.get("Details") or payload.get("ErrorCode")
        reason = f"{status}: {details}" if details else f"Gateway status {status}"
        return OrderEvent.GATEWAY_FAILURE, payment_id, reason

    return None


class ReconciliationController:
    """
    Applies order events and dispatches the matching notifications.

    Args:
        store (OrderStore): Source of truth for order status.
        gateway (PaymentGatewayClient): Payment initiation and state lookup.
        notifier (TelegramClient): Notification transport (anything with `send(text, order_id)`).
        on_paid (callable | None): Side-effect hook called with the order after it was committed as paid.
        site_url (str): Storefront base URL for item links in notifications.
    """

    def __init__(
            self,
            store: OrderStore,
            gateway: PaymentGatewayClient,
            notifier: TelegramClient,
            on_paid: Optional[Callable[[Order], None]] = None,
            site_url: str = config.SITE_URL
    ):
        self.store = store
        self.gateway = gateway
        self.notifier = notifier
        self.on_paid = on_paid
        self.site_url = site_url

    # --- State machine ---

    def apply(
            self,
            order_id: str,
            event,
            payment_id: Optional[str] = None,
            reason: Optional[str] = None,
            payment_url: Optional[str] = None
    ) -> TransitionResult:
        """
        Applies one event to an order, idempotently.

        Args:
            order_id (str): Order to transition.
            event (OrderEvent | str): initiated, gateway_success, gateway_failure or cancel.
            payment_id (str | None): Gateway reference, recorded on `initiated`.
            reason (str | None): Human-readable failure reason for `gateway_failure`.
            payment_url (str | None): Gateway redirect URL, recorded on `initiated`.

        Returns:
            TransitionResult: `applied=True` only for the caller whose update changed the order.

        Raises:
            OrderNotFoundError: If the order does not exist.
        """
        event = OrderEvent(event)
        transition = TRANSITIONS[event]
        log_prefix = f"[Order: {order_id}]"

        order = self.store.get(order_id)
        try:
            self._check(order, event, transition)
        except IllegalTransitionError as e:
            log.warning(f"{log_prefix} Ignored: {e}")
            return TransitionResult(applied=False, order=order)

        if order.status == transition.duplicate_of:
            log.info(f"{log_prefix} Duplicate '{event.value}' ignored, order already '{order.status.value}'.")
            return TransitionResult(applied=False, order=order)

        if event is OrderEvent.GATEWAY_SUCCESS and payment_id and order.payment_id and payment_id != order.payment_id:
            log.warning(f"{log_prefix} Payment id mismatch: stored {order.payment_id}, event carries {payment_id}.")

        applied = self.store.transition(
            order_id,
            transition.allowed_from,
            transition.target,
            payment_id=payment_id if event is OrderEvent.INITIATED else None,
            payment_provider=self.gateway.provider if event is OrderEvent.INITIATED else None,
            payment_url=payment_url if event is OrderEvent.INITIATED else None,
        )
        current = self.store.get(order_id)

        if not applied:
            if current.status == transition.duplicate_of:
                log.info(f"{log_prefix} '{event.value}' already applied by a concurrent caller.")
            else:
                log.warning(
                    f"{log_prefix} Ignored: status changed to '{current.status.value}' "
                    f"before '{event.value}' could be applied."
                )
            return TransitionResult(applied=False, order=current)

        log.info(f"{log_prefix} {order.status.value} → {current.status.value} ({event.value}).")
        self._after_commit(current, transition, reason)
        return TransitionResult(applied=True, order=current)

    @staticmethod
    def _check(order: Order, event: OrderEvent, transition: Transition):
        if order.status in transition.allowed_from or order.status == transition.duplicate_of:
            return
        raise IllegalTransitionError(order.id, order.status.value, event.value)

    def _after_commit(self, order: Order, transition: Transition, reason: Optional[str]):
        """Side effects of a committed transition. None of them may fail the caller."""
        if transition.notification is not None:
            self._notify(order, transition.notification, reason)

        if transition.target is OrderStatus.PAID and self.on_paid is not None:
            try:
                self.on_paid(order)
            except Exception as e:
                log.critical(f"[Order: {order.id}] Paid-order hook failed: {e}. MANUAL ACTION REQUIRED (cart/inventory).")

    def _notify(self, order: Order, kind, reason: Optional[str]):
        log_prefix = f"[Order: {order.id}]"
        text = format_notification(order, kind, reason=reason, site_url=self.site_url)
        try:
            self.notifier.send(text, order_id=order.id)
        except DeliveryError as e:
            log.error(
                f"{log_prefix} ALERT: '{kind.value}' notification lost after {e.attempts} attempt(s): {e}. "
                f"Order status '{order.status.value}' is unaffected."
            )
            return

        try:
            self.store.mark_notified(order.id, kind)
        except SQLAlchemyError as e:
            log.error(f"{log_prefix} Could not record '{kind.value}' notification timestamp: {e}")

    # --- Entry points ---

    def create_order(self, order: Order) -> Order:
        """Stores a freshly built checkout order in status `created`."""
        if order.status is not OrderStatus.CREATED:
            raise IllegalTransitionError(order.id, order.status.value, "create")
        return self.store.insert(order)

    def get_order(self, order_id: str) -> Order:
        return self.store.get(order_id)

    def initiate_payment(self, order_id: str) -> PaymentSession:
        """
        Hands an order to the payment gateway and moves it to `payment_pending`.

        A repeated call for an order that is already pending returns the stored session
        instead of initiating a second payment.

        Raises:
            GatewayUnavailableError: If the gateway call fails. The order stays `created`.
            IllegalTransitionError: If the order is no longer payable (paid, failed, canceled).
        """
        log_prefix = f"[Order: {order_id}]"
        order = self.store.get(order_id)

        if order.status is OrderStatus.PAYMENT_PENDING and order.payment_url:
            log.info(f"{log_prefix} Payment already initiated, returning existing session.")
            return PaymentSession(payment_id=order.payment_id, payment_url=order.payment_url)

        if order.status is not OrderStatus.CREATED:
            raise IllegalTransitionError(order.id, order.status.value, OrderEvent.INITIATED.value)

        log.info(f"{log_prefix} Initiating payment of {order.amount} {order.currency}...")
        session = self.gateway.initiate(order)

        result = self.apply(
            order_id,
            OrderEvent.INITIATED,
            payment_id=session.payment_id,
            payment_url=session.payment_url,
        )
        if result.applied:
            return session

        # A concurrent initiation won; hand out its session
        winner = result.order
        if winner.status is OrderStatus.PAYMENT_PENDING and winner.payment_url:
            return PaymentSession(payment_id=winner.payment_id, payment_url=winner.payment_url)
        raise IllegalTransitionError(order.id, winner.status.value, OrderEvent.INITIATED.value)

    def handle_notification(self, payload: dict) -> Optional[TransitionResult]:
        """
        Applies an authenticated gateway webhook. Verification is the caller's job.

        Returns:
            TransitionResult | None: None if the payload reports no final outcome.
        """
        order_id = payload.get("OrderId")
        classified = classify_notification(payload)
        if classified is None:
            log.info(f"[Order: {order_id}] Gateway status '{payload.get('Status')}' is not final, nothing to apply.")
            return None

        event, payment_id, reason = classified
        log.info(f"[Order: {order_id}] Gateway webhook: {payload.get('Status')} → {event.value}.")
        return self.apply(order_id, event, payment_id=payment_id, reason=reason)

    def confirm_fallback(self, order_id: str, claimed_outcome: str) -> TransitionResult:
        """
        Fallback confirmation used by the buyer's browser when the webhook may be lost.

        The claimed outcome is only compared and logged: the real outcome is re-derived
        from the gateway's payment state. If that state is unknown or unreachable, nothing
        is applied.
        """
        log_prefix = f"[Order: {order_id}]"
        order = self.store.get(order_id)
        log.info(f"{log_prefix} Fallback confirmation requested (claimed: {claimed_outcome}, status: {order.status.value}).")

        if order.is_terminal:
            return TransitionResult(applied=False, order=order)

        if order.status is OrderStatus.CREATED or not order.payment_id:
            log.warning(f"{log_prefix} Fallback confirmation for an order without an initiated payment.")
            return TransitionResult(applied=False, order=order)

        try:
            state = self.gateway.get_state(order.payment_id, order_id=order.id)
        except GatewayUnavailableError as e:
            log.warning(f"{log_prefix} Gateway state unavailable ({e}); leaving confirmation to the webhook.")
            return TransitionResult(applied=False, order=order)

        outcome = classify_gateway_state(state)
        if outcome is not None and outcome != claimed_outcome:
            log.warning(f"{log_prefix} Client claimed '{claimed_outcome}' but gateway reports {state}.")

        if outcome == "success":
            return self.apply(order_id, OrderEvent.GATEWAY_SUCCESS, payment_id=order.payment_id)
        if outcome == "failure":
            return self.apply(order_id, OrderEvent.GATEWAY_FAILURE, reason=f"Gateway status {state}")

        log.info(f"{log_prefix} Gateway state {state} is not final yet.")
        return TransitionResult(applied=False, order=order)

    def cancel(self, order_id: str) -> TransitionResult:
        """Explicit buyer/staff cancellation of an unpaid order."""
        return self.apply(order_id, OrderEvent.CANCEL)
