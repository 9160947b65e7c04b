"""
Client-side status polling.

A checkout starts ``pending`` and ends in exactly one of ``success``,
``failed`` or ``cancelled``. The poller asks for the status every
``interval`` seconds and gives up with ``failed`` once ``timeout`` seconds
have passed without a final answer.
"""
import logging
import math
import threading
import time

from .client import CheckoutError
from .serializers import parse_code

logger = logging.getLogger(__name__)

PENDING = "pending"
SUCCESS = "success"
FAILED = "failed"
CANCELLED = "cancelled"
TERMINAL_STATES = (SUCCESS, FAILED, CANCELLED)

DEFAULT_INTERVAL = 5
DEFAULT_TIMEOUT = 120
DEFAULT_CANCELLATION_CODES = frozenset({1031, 1032})
SUCCESS_CODES = (0, 200)

TIMEOUT_MESSAGE = "Transaction timeout. Please try again."


def interpret_status(payload, cancellation_codes=DEFAULT_CANCELLATION_CODES):
    """
    Reads a status payload and returns ``(state, message)``.

    Understands both this service's payload (status / result_code /
    description) and the gateway's raw one (TransactionStatus / ResultCode /
    ResultDesc). Codes may be strings or numbers.
    """
    label = str(payload.get("status") or payload.get("TransactionStatus") or "").strip().lower()
    raw_code = payload.get("result_code")
    if raw_code is None:
        raw_code = payload.get("ResultCode", payload.get("TransactionCode"))
    code = parse_code(raw_code)
    description = str(payload.get("description") or payload.get("ResultDesc") or "")

    looks_cancelled = code in cancellation_codes or "cancel" in description.lower()

    if label in ("success", "completed"):
        return SUCCESS, "Payment completed successfully!"
    if label == CANCELLED:
        return CANCELLED, description or "Payment was cancelled"
    if label == FAILED:
        if looks_cancelled:
            return CANCELLED, description or "Payment was cancelled"
        return FAILED, description or "Payment failed"
    if label == PENDING or code is None:
        return PENDING, None

    if code in SUCCESS_CODES:
        return SUCCESS, "Payment completed successfully!"
    if looks_cancelled:
        return CANCELLED, description or "Payment was cancelled"
    return FAILED, description or "Payment failed"


class PaymentPoller:
    def __init__(
        self,
        fetch_status,
        request_id,
        interval=DEFAULT_INTERVAL,
        timeout=DEFAULT_TIMEOUT,
        cancellation_codes=DEFAULT_CANCELLATION_CODES,
        on_update=None,
        clock=time.monotonic,
        sleep=None,
    ):
        self.request_id = request_id
        self.interval = interval
        self.timeout = timeout
        self.cancellation_codes = cancellation_codes
        self.state = PENDING
        self.message = "Check your phone for the M-Pesa prompt"
        self.receipt = None
        self.last_payload = None
        self.polls = 0

        self._fetch_status = fetch_status
        self._on_update = on_update
        self._clock = clock
        self._stopped = threading.Event()
        # Waiting on the event lets stop() cut a sleep short
        self._sleep = sleep or self._stopped.wait
        self._deadline = None

    @property
    def is_terminal(self):
        return self.state in TERMINAL_STATES

    @property
    def remaining(self):
        """Whole seconds left on the countdown."""
        if self._deadline is None:
            return int(self.timeout)
        return max(0, math.ceil(self._deadline - self._clock()))

    def stop(self):
        self._stopped.set()

    def poll_once(self):
        self.polls += 1
        try:
            payload = self._fetch_status(self.request_id)
        except CheckoutError as e:
            logger.warning(f"Status check failed for {self.request_id}: {e.message}")
            return self.state

        self.last_payload = payload
        state, message = interpret_status(payload, self.cancellation_codes)
        if state != PENDING:
            self._transition(state, message, payload)
        elif self._on_update:
            self._on_update(self)
        return self.state

    def run(self):
        """
        Polls until a final state, the timeout, or stop(). Returns the state.
        """
        self._deadline = self._clock() + self.timeout

        while self.state == PENDING:
            remaining = self._deadline - self._clock()
            if remaining <= 0:
                logger.info(f"Gave up waiting on {self.request_id} after {self.timeout}s")
                self._transition(FAILED, TIMEOUT_MESSAGE)
                break

            if self._sleep(min(self.interval, remaining)) or self._stopped.is_set():
                logger.info(f"Polling for {self.request_id} stopped")
                break

            if self._clock() >= self._deadline:
                continue

            self.poll_once()

        return self.state

    def _transition(self, state, message, payload=None):
        self.state = state
        self.message = message
        if payload:
            receipt = payload.get("receipt") or payload.get("TransactionReceipt")
            if receipt and receipt != "N/A":
                self.receipt = receipt
        self._stopped.set()
        logger.info(f"Checkout {self.request_id} finished: {state} ({message})")
        if self._on_update:
            self._on_update(self)
