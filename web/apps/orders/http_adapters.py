"""HTTP client for the payments service with retries and a circuit breaker.

``HttpPaymentsClient`` implements ``PaymentsPort`` over ``httpx``:

- Request correlation: forwards ``X-Request-ID`` from the gateway ContextVar.
- Idempotency: forwards the caller's ``Idempotency-Key`` so a retried
  confirmation is charged at most once downstream.
- Retries with exponential backoff on transport errors and 5xx.
- A process-wide circuit breaker that stops calling the payments service
  after repeated failures and probes it again after a cool-down.

Business outcomes (approved, declined with 402, key conflict with 409, a
refund rejected with 404 or 409) are never counted as circuit failures.
"""

import threading
import time
import uuid
from typing import Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX
from .domain import PaymentsPort


class CircuitOpen(RuntimeError):
    """Raised instead of calling a dependency whose circuit is open."""


class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED -> OPEN when consecutive failures reach ``fail_threshold``.
    - OPEN -> HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN -> CLOSED on a successful probe, back to OPEN on failure.
      Only one probe is allowed in flight.

    Thread-safe via an internal lock (gunicorn runs gthread workers).
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise CircuitOpen(f"{self.name}: CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._probe_in_flight:
                    raise CircuitOpen(f"{self.name}: CIRCUIT_HALF_OPEN_BUSY")
                self._probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (
                self._failures >= self.fail_threshold and self._state != "OPEN"
            ):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
            self._probe_in_flight = False

    def reset(self):
        self.on_success()


payments_breaker = CircuitBreaker(
    "payments",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


def _request_headers(extra: Optional[dict] = None) -> dict:
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return ``(max_attempts, backoff_base_seconds, max_sleep_seconds)``."""
    return (
        max(1, getattr(settings, "HTTP_RETRY_MAX", 3)),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
        getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5),
    )


class HttpPaymentsClient(PaymentsPort):
    """Payments port backed by the payments service's HTTP API."""

    BUSINESS_DECLINES = (402, 409)
    # Unknown or never-paid transaction: nothing to give back.
    REFUND_REJECTIONS = (404, 409)

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        idempotency_key: str | None = None,
        breaker: CircuitBreaker | None = None,
    ):
        self.base_url = (base_url or settings.PAYMENTS_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS
        self.idempotency_key = idempotency_key
        self.breaker = breaker or payments_breaker

    def _post(self, path: str, payload: dict, business: tuple, extras: Optional[dict] = None) -> httpx.Response:
        """POST with retries on transport errors and 5xx.

        Returns the response for 200 and for any status in ``business``;
        those never count as circuit failures.

        Raises:
            CircuitOpen: The breaker refused the call.
            httpx.RequestError: Transport errors after the last retry.
            httpx.HTTPStatusError: Non-retriable or exhausted error responses.
        """
        max_attempts, backoff, cap = _retry_policy()
        state = self.breaker.before_call()
        headers = _request_headers({**(extras or {}), "X-Circuit-State": state, "X-Retry-Count": "0"})
        attempt = 0
        with httpx.Client(timeout=self.timeout) as client:
            while True:
                try:
                    resp = client.post(f"{self.base_url}{path}", json=payload, headers=headers)
                except httpx.RequestError:
                    if attempt + 1 >= max_attempts:
                        self.breaker.on_failure()
                        raise
                else:
                    if resp.status_code == 200 or resp.status_code in business:
                        self.breaker.on_success()
                        return resp
                    if resp.status_code < 500 or attempt + 1 >= max_attempts:
                        self.breaker.on_failure()
                        resp.raise_for_status()
                        raise httpx.HTTPStatusError(
                            f"unexpected status {resp.status_code}", request=None, response=resp
                        )

                attempt += 1
                headers["X-Retry-Count"] = str(attempt)
                time.sleep(min(backoff * (2 ** (attempt - 1)), cap))

    def charge(self, amount_cents: int, currency: str) -> tuple[bool, Optional[uuid.UUID]]:
        """Charge ``amount_cents`` in ``currency`` via ``POST /charge``.

        Returns:
            ``(True, transaction_id)`` on 200, ``(False, None)`` on 402/409.
        """
        extras = {"Idempotency-Key": self.idempotency_key} if self.idempotency_key else None
        resp = self._post(
            "/charge", {"amount_cents": amount_cents, "currency": currency}, self.BUSINESS_DECLINES, extras
        )
        if resp.status_code != 200:
            return False, None
        tx = resp.json().get("transaction_id")
        return True, (uuid.UUID(str(tx)) if tx else None)

    def refund(self, transaction_id: uuid.UUID) -> bool:
        """Refund a captured charge; repeating it for the same transaction is harmless."""
        resp = self._post(f"/transactions/{transaction_id}/refund", {}, self.REFUND_REJECTIONS)
        return resp.status_code == 200 and bool(resp.json().get("refunded"))
