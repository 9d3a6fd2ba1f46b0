"""
main.py — FastAPI Entry Point for the Reconciliation Service

This module provides the REST API of the order lifecycle: checkout submission,
payment initiation, the gateway webhook and the endpoints used by the buyer's
browser after the gateway redirect (status polling and fallback confirmation).

Responsibilities:
    • Accept checkout submissions and create orders with a server-computed amount
    • Hand orders to the payment gateway
    • Receive and authenticate gateway webhooks
    • Serve order status and the fallback confirmation to the client poller
    • Provide health and diagnostics information

Buyers never see internal failure detail; it is written to the log instead.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from . import config
from .checkout import Catalog, build_order
from .dependencies import get_catalog, get_controller, get_zones
from .domain import NotificationKind, OrderStatus
from .errors import GatewayUnavailableError, IllegalTransitionError, OrderNotFoundError, ValidationError
from .logging_config import get_logger, setup_logging
from .models import ConfirmPaymentRequest, NewOrderRequest, OrderView
from .reconciliation import ReconciliationController

# Initialization
# Configure logging and initialize FastAPI app
setup_logging()
log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("Reconciliation service starting...")
    yield
    log.info("Reconciliation service stopped.")


app = FastAPI(title="Storefront Order Reconciliation", lifespan=lifespan)


@app.exception_handler(OrderNotFoundError)
async def order_not_found_handler(request: Request, exc: OrderNotFoundError):
    log.warning(f"[Order: {exc.order_id}] Not found ({request.method} {request.url.path}).")
    return JSONResponse(status_code=404, content={"detail": "Order not found"})


# API Endpoint: Storefront → Checkout
@app.post("/v1/orders", status_code=201)
def submit_order(
        order_request: NewOrderRequest,
        controller: ReconciliationController = Depends(get_controller),
        catalog: Catalog = Depends(get_catalog),
        zones: dict = Depends(get_zones)
):
    """
    Receives a checkout submission and creates an order in status `created`.

    Prices come from the catalog and the delivery surcharge is computed here, once;
    any amount the client might believe in is irrelevant.

    Returns:
        dict: orderId, amount (minor units), currency and status.

    Raises:
        HTTPException(400): If the submission cannot become an order.
        HTTPException(500): If an internal error occurs while storing the order.
    """
    try:
        order = build_order(order_request, catalog, zones)
    except ValidationError as e:
        log.warning(f"Checkout rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    try:
        order = controller.create_order(order)
    except Exception as e:
        log.critical(f"[Order: {order.id}] Could not store new order: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error while accepting order.")

    return {
        "orderId": order.id,
        "amount": order.amount,
        "currency": order.currency,
        "status": order.status.value,
    }


# API Endpoint: Storefront → Payment Gateway
@app.post("/v1/orders/{order_id}/payment")
def start_payment(order_id: str, controller: ReconciliationController = Depends(get_controller)):
    """
    Initiates the payment and returns the gateway URL the buyer is redirected to.

    Raises:
        HTTPException(409): If the order is already paid, failed or canceled.
        HTTPException(502): If the payment gateway is unavailable (order stays `created`).
    """
    try:
        session = controller.initiate_payment(order_id)
    except IllegalTransitionError as e:
        log.warning(f"[Order: {order_id}] Payment not started: {e}")
        raise HTTPException(status_code=409, detail="This order can no longer be paid.")
    except GatewayUnavailableError as e:
        log.error(f"[Order: {order_id}] Payment initiation failed: {e}")
        raise HTTPException(status_code=502, detail="Payment could not be started. Please try again.")

    return {"orderId": order_id, "paymentUrl": session.payment_url}


# API Endpoint: Client Poller → Order Status
@app.get("/v1/orders/{order_id}", response_model=OrderView)
def get_order(order_id: str, controller: ReconciliationController = Depends(get_controller)):
    """Read-only order status for the success/fail pages. No side effects."""
    return OrderView.from_order(controller.get_order(order_id))


# API Endpoint: Client Poller → Fallback Confirmation
@app.post("/v1/orders/{order_id}/confirm")
def confirm_payment(
        order_id: str,
        confirmation: ConfirmPaymentRequest,
        controller: ReconciliationController = Depends(get_controller)
):
    """
    Fallback confirmation in case the gateway webhook never arrives.

    The claimed outcome is not trusted; the outcome is re-derived from the gateway.
    """
    result = controller.confirm_fallback(order_id, confirmation.outcome)
    return {"orderId": order_id, "applied": result.applied, "status": result.order.status.value}


@app.post("/v1/orders/{order_id}/cancel")
def cancel_order(order_id: str, controller: ReconciliationController = Depends(get_controller)):
    """Explicit cancellation by buyer or staff; only unpaid orders can be canceled."""
    result = controller.cancel(order_id)
    if not result.applied and result.order.status is not OrderStatus.CANCELED:
        raise HTTPException(status_code=409, detail="This order can no longer be canceled.")
    return {"orderId": order_id, "applied": result.applied, "status": result.order.status.value}


# API Endpoint: Payment Gateway → Webhook
@app.post("/v1/payments/notification")
def payment_notification(
        payload: dict = Body(...),
        controller: ReconciliationController = Depends(get_controller)
):
    """
    Inbound gateway callback. The payload signature is verified before anything is applied.

    Answers plain "OK" once the notification has been processed (including duplicates and
    rejected out-of-order events) so that the gateway stops redelivering it.

    Raises:
        HTTPException(403): If the payload signature is invalid.
    """
    order_id = payload.get("OrderId")
    if not controller.gateway.verify_notification(payload):
        log.warning(f"[Order: {order_id}] Gateway notification with invalid token rejected.")
        raise HTTPException(status_code=403, detail="Invalid token")

    try:
        controller.handle_notification(payload)
    except OrderNotFoundError:
        log.warning(f"[Order: {order_id}] Gateway notification for unknown order ignored.")
    return PlainTextResponse("OK")


@app.get("/v1/orders/{order_id}/diagnostics")
def order_diagnostics(order_id: str, controller: ReconciliationController = Depends(get_controller)):
    """
    Operational view of one order: which integrations are configured (booleans only),
    the order's payment state and when each notification was delivered.
    """
    order = controller.get_order(order_id)
    env = {
        "TELEGRAM_BOT_TOKEN": bool(config.TELEGRAM_BOT_TOKEN),
        "TELEGRAM_ORDERS_CHAT_ID": bool(config.TELEGRAM_ORDERS_CHAT_ID),
        "TELEGRAM_ORDERS_THREAD_ID": config.TELEGRAM_ORDERS_THREAD_ID is not None,
        "PAYMENT_TERMINAL_KEY": bool(config.PAYMENT_TERMINAL_KEY),
        "PAYMENT_PASSWORD": bool(config.PAYMENT_PASSWORD),
        "RABBITMQ_HOST": bool(config.RABBITMQ_HOST),
    }

    def notified(kind: NotificationKind) -> Optional[str]:
        value = order.notified_at.get(kind)
        return value.isoformat() if value else None

    recommendations = []
    if not env["TELEGRAM_BOT_TOKEN"] or not env["TELEGRAM_ORDERS_CHAT_ID"]:
        recommendations.append("Telegram bot token or chat id is not configured.")
    if not order.payment_id:
        recommendations.append("Order has no payment id: payment was probably never initiated.")
    if order.status is OrderStatus.PAYMENT_PENDING:
        recommendations.append("Order is still awaiting payment: neither webhook nor fallback has confirmed it.")
    if order.status is OrderStatus.PAID and not notified(NotificationKind.PAYMENT_SUCCESS):
        recommendations.append("Order is paid but the success notification was not delivered.")
    if order.status is OrderStatus.FAILED and not notified(NotificationKind.PAYMENT_FAILED):
        recommendations.append("Order failed but the failure notification was not delivered.")

    return {
        "env": env,
        "envAllSet": all(env.values()),
        "order": {
            "id": order.id,
            "status": order.status.value,
            "paymentId": order.payment_id,
            "paymentProvider": order.payment_provider,
            "amount": order.amount,
        },
        "notifications": {kind.value: notified(kind) for kind in NotificationKind},
        "recommendations": recommendations,
    }


# Health Check Endpoint
@app.get("/health")
def health_check():
    """
    Simple health check endpoint.

    Can be used by monitoring systems or container orchestrators
    (e.g., Docker, Kubernetes) to verify that the service is running.

    Returns:
        dict: A basic JSON object indicating service availability.
    """
    return {"status": "ok"}
