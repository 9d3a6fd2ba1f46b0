"""
errors.py — Error Taxonomy of the Reconciliation Service

Propagation policy:
    • ValidationError, GatewayUnavailableError → propagate to the buyer-facing flow
    • IllegalTransitionError → absorbed by the controller (logged as warning)
    • DeliveryError → absorbed by the controller (logged as error, order status untouched)
"""


class ReconciliationError(Exception):
    """Base class for all errors raised by this service."""


class ValidationError(ReconciliationError):
    """A checkout submission cannot become an order (empty cart, unknown product, ...)."""


class OrderNotFoundError(ReconciliationError):
    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class IllegalTransitionError(ReconciliationError):
    """An event arrived that the order state machine rejects."""

    def __init__(self, order_id: str, status: str, event: str):
        super().__init__(f"Event '{event}' is not allowed for order {order_id} in status '{status}'")
        self.order_id = order_id
        self.status = status
        self.event = event


class DeliveryError(ReconciliationError):
    """The messaging API did not accept a notification after all attempts."""

    def __init__(self, message: str, attempts: int, status_code=None):
        super().__init__(message)
        self.attempts = attempts
        self.status_code = status_code


class GatewayUnavailableError(ReconciliationError):
    """The payment gateway could not be reached or refused the request."""
