"""
poller.py — Client Reconciliation Poller

Runs on the buyer's side after the gateway redirect. It polls the order status and,
while the order is still open, calls the fallback confirmation endpoint so that a
lost gateway webhook cannot leave the order pending forever.

The poller only reads and re-renders what the server reports; it never decides a
status itself. After a bounded number of attempts it gives up silently: server-side
confirmation through the webhook continues regardless.
"""

import logging
import time
from typing import Callable, Optional

import httpx

from . import config

log = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"paid", "failed", "canceled"})


class ReconciliationPoller:
    """
    Args:
        order_id (str): Order shown on the success/fail page.
        claimed_outcome (str): "success" on the success page, "failure" on the fail page.
        client (httpx.Client): Client whose base_url points at the reconciliation API.
        interval (float): Seconds between attempts.
        max_attempts (int): Attempts before giving up.
        sleep (callable): Sleep function, replaceable in tests.
        on_status (callable | None): Called with every status read, e.g. to re-render a page.
    """

    def __init__(
            self,
            order_id: str,
            claimed_outcome: str,
            client: httpx.Client,
            interval: float = config.POLL_INTERVAL_SECONDS,
            max_attempts: int = config.POLL_MAX_ATTEMPTS,
            sleep: Callable[[float], None] = time.sleep,
            on_status: Optional[Callable[[str], None]] = None
    ):
        self.order_id = order_id
        self.claimed_outcome = claimed_outcome
        self.client = client
        self.interval = interval
        self.max_attempts = max_attempts
        self.sleep = sleep
        self.on_status = on_status
        self.attempts = 0
        self.last_status: Optional[str] = None

    def _seen(self, status: Optional[str]):
        if status is None:
            return
        self.last_status = status
        if self.on_status is not None:
            self.on_status(status)

    def poll_once(self) -> Optional[str]:
        """
        One plain request/response round: read the status, then ask for fallback
        confirmation if the order is still open.

        Returns:
            str | None: The latest status the server reported, None if it could not be read.
        """
        log_prefix = f"[Order: {self.order_id}]"
        try:
            response = self.client.get(f"/v1/orders/{self.order_id}")
            response.raise_for_status()
            status = response.json().get("status")
            self._seen(status)
            if status in TERMINAL_STATUSES:
                return status

            response = self.client.post(
                f"/v1/orders/{self.order_id}/confirm",
                json={"outcome": self.claimed_outcome},
            )
            response.raise_for_status()
            status = response.json().get("status")
            self._seen(status)
            return status
        except (httpx.HTTPError, ValueError) as e:
            log.debug(f"{log_prefix} Poll attempt failed: {e}")
            return None

    def run(self) -> Optional[str]:
        """
        Polls until the order reaches a terminal status or the attempts are used up.

        Returns:
            str | None: Terminal status, or the last status seen when giving up.
        """
        while self.attempts < self.max_attempts:
            self.attempts += 1
            status = self.poll_once()
            if status in TERMINAL_STATUSES:
                log.info(f"[Order: {self.order_id}] Poller finished with status '{status}'.")
                return status
            if self.attempts < self.max_attempts:
                self.sleep(self.interval)

        log.info(f"[Order: {self.order_id}] Poller gave up after {self.attempts} attempts (last status: {self.last_status}).")
        return self.last_status
