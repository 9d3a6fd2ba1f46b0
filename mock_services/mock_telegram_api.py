"""
mock_telegram_api.py — Mock Implementation of the Messaging API (Telegram Bot API)

This module simulates the `sendMessage` method of a bot-style messaging API so that
the notification transport can be exercised against a flaky third party.

Simulation Scenarios:
    • Successful delivery (message is recorded)
    • Transient outage: the next N calls answer HTTP 502
    • Permanent rejection: every call answers HTTP 400 (e.g. chat not found)
    • Wrong bot token: HTTP 401

Endpoints:
    POST /bot{token}/sendMessage — Receives a message.
    POST /dev/fail-next          — Makes the next N calls fail with 502.
    POST /dev/reject             — Toggles permanent 400 rejections.
    GET  /dev/messages           — Lists delivered messages.

Port:
    Default: 8002 (HTTP)
"""

import logging
import os

from fastapi import FastAPI
from fastapi.responses import JSONResponse

app = FastAPI(title="Mock Telegram Bot API")
logging.basicConfig(level=logging.INFO)

MOCK_BOT_TOKEN = os.environ.get("MOCK_BOT_TOKEN", "123456:mock-token")

state = {"fail_next": 0, "reject": False, "calls": 0}
messages = []


def reset():
    state.update(fail_next=0, reject=False, calls=0)
    messages.clear()


def _error(status_code: int, description: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error_code": status_code, "description": description},
    )


@app.post("/bot{token}/sendMessage")
def send_message(token: str, body: dict):
    """
    Accepts a message for a chat.

    Returns:
        JSONResponse: `{"ok": true, "result": {...}}` on delivery, a Bot API error object otherwise.
    """
    state["calls"] += 1
    if token != MOCK_BOT_TOKEN:
        return _error(401, "Unauthorized")

    if state["fail_next"] > 0:
        state["fail_next"] -= 1
        logging.warning("[TG] Simulated outage, answering 502.")
        return _error(502, "Bad Gateway")

    if state["reject"] or not body.get("chat_id") or not body.get("text"):
        return _error(400, "Bad Request: chat not found")

    message = {
        "message_id": len(messages) + 1,
        "chat": {"id": body["chat_id"]},
        "message_thread_id": body.get("message_thread_id"),
        "text": body["text"],
        "parse_mode": body.get("parse_mode"),
    }
    messages.append(message)
    logging.info(f"[TG] Message {message['message_id']} delivered to chat {body['chat_id']}.")
    return {"ok": True, "result": message}


@app.post("/dev/fail-next")
def fail_next(count: int = 1):
    state["fail_next"] = count
    return state


@app.post("/dev/reject")
def reject(enabled: bool = True):
    state["reject"] = enabled
    return state


@app.get("/dev/messages")
def list_messages():
    return messages


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8002)
