"""
mock_payment_gateway.py — Mock Implementation of the Payment Gateway (REST API)

This module provides a simulated acquiring gateway for testing the reconciliation flow.
It exposes a simple FastAPI application that mimics the gateway's payment lifecycle.

Simulation Scenarios:
    • Successful payment initiation (returns PaymentId and PaymentURL)
    • Refused initiation (Success: false) and gateway outage (HTTP 503)
    • Completing a payment as CONFIRMED or REJECTED, with or without webhook
      delivery (without webhook only the client fallback path can confirm it)

Endpoints:
    POST /v2/Init                               — Creates a payment session.
    POST /v2/GetState                           — Returns the current payment state.
    POST /dev/payments/{payment_id}/complete    — Finishes a payment (buyer action).
    POST /dev/scenario                          — Switches the Init behaviour.

Port:
    Default: 8001 (HTTP)
"""

import logging
import os
import uuid

import httpx
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from reconciliation_service.clients import build_token

app = FastAPI(title="Mock Payment Gateway")
logging.basicConfig(level=logging.INFO)

MOCK_PASSWORD = os.environ.get("MOCK_PAYMENT_PASSWORD", "mock-password")
MOCK_TERMINAL_KEY = os.environ.get("MOCK_TERMINAL_KEY", "MockTerminal")

# payment_id -> {"OrderId", "Amount", "Status", "NotificationURL"}
payments = {}
scenario = {"init": "ok"}


class ScenarioRequest(BaseModel):
    """
    Attributes:
        init (str): "ok", "refuse" (Success: false) or "outage" (HTTP 503).
    """
    init: str = "ok"


def _check_token(body: dict):
    if body.get("TerminalKey") != MOCK_TERMINAL_KEY or body.get("Token") != build_token(body, MOCK_PASSWORD):
        return {"Success": False, "ErrorCode": "204", "Message": "Invalid token"}
    return None


def reset():
    payments.clear()
    scenario["init"] = "ok"


@app.post("/v2/Init")
def init_payment(body: dict):
    """
    Creates a payment session in status NEW.

    Returns:
        dict: Success flag, PaymentId and PaymentURL on success; ErrorCode and Message otherwise.

    Raises:
        HTTPException(503): If the outage scenario is active.
    """
    logging.info(f"[GW] Init for order {body.get('OrderId')} (amount {body.get('Amount')})")
    if scenario["init"] == "outage":
        raise HTTPException(status_code=503, detail="Service temporarily unavailable")

    error = _check_token(body)
    if error:
        return error
    if scenario["init"] == "refuse":
        logging.warning(f"[GW] Init for order {body.get('OrderId')} refused.")
        return {"Success": False, "ErrorCode": "99", "Message": "Terminal blocked"}

    payment_id = str(uuid.uuid4().int)[:10]
    payments[payment_id] = {
        "OrderId": body["OrderId"],
        "Amount": body["Amount"],
        "Status": "NEW",
        "NotificationURL": body.get("NotificationURL"),
    }
    return {
        "Success": True,
        "ErrorCode": "0",
        "TerminalKey": MOCK_TERMINAL_KEY,
        "Status": "NEW",
        "PaymentId": payment_id,
        "OrderId": body["OrderId"],
        "Amount": body["Amount"],
        "PaymentURL": f"https://pay.mock.local/{payment_id}",
    }


@app.post("/v2/GetState")
def get_state(body: dict):
    """Returns the gateway's view of a payment."""
    error = _check_token(body)
    if error:
        return error
    payment = payments.get(str(body.get("PaymentId")))
    if payment is None:
        return {"Success": False, "ErrorCode": "7", "Message": "Payment not found"}
    return {
        "Success": True,
        "ErrorCode": "0",
        "TerminalKey": MOCK_TERMINAL_KEY,
        "Status": payment["Status"],
        "PaymentId": str(body["PaymentId"]),
        "OrderId": payment["OrderId"],
        "Amount": payment["Amount"],
    }


def build_notification(payment_id: str) -> dict:
    """Builds the signed webhook payload the gateway sends for a payment."""
    payment = payments[payment_id]
    confirmed = payment["Status"] == "CONFIRMED"
    payload = {
        "TerminalKey": MOCK_TERMINAL_KEY,
        "OrderId": payment["OrderId"],
        "Success": confirmed,
        "Status": payment["Status"],
        "PaymentId": int(payment_id),
        "ErrorCode": "0" if confirmed else "1051",
        "Amount": payment["Amount"],
    }
    if not confirmed:
        payload["Message"] = "Insufficient funds"
    payload["Token"] = build_token(payload, MOCK_PASSWORD)
    return payload


@app.post("/dev/payments/{payment_id}/complete")
def complete_payment(payment_id: str, outcome: str = "success", webhook: bool = True):
    """
    Simulates the buyer finishing (or abandoning) the payment form.

    Args:
        outcome (str): "success" → CONFIRMED, anything else → REJECTED.
        webhook (bool): Deliver the webhook to the NotificationURL. False simulates a lost webhook.
    """
    payment = payments.get(payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment not found")

    payment["Status"] = "CONFIRMED" if outcome == "success" else "REJECTED"
    payload = build_notification(payment_id)
    logging.info(f"[GW] Payment {payment_id} → {payment['Status']} (webhook: {webhook})")

    if webhook and payment["NotificationURL"]:
        try:
            httpx.post(payment["NotificationURL"], json=payload, timeout=5.0)
        except httpx.HTTPError as e:
            logging.error(f"[GW] Webhook delivery for {payment_id} failed: {e}")
    return payload


@app.post("/dev/scenario")
def set_scenario(request: ScenarioRequest):
    scenario["init"] = request.init
    return scenario


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8001)
