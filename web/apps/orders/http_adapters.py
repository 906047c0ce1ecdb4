"""Resilient HTTP access to the stock service.

``HttpInventoryClient`` is the remote ``InventoryPort``. Every logical call
goes through:

- a per-dependency ``CircuitBreaker`` (the card provider adapter in
  ``payments.py`` shares ``PROVIDER_BREAKER`` from here);
- a ``RetryPolicy`` that retries transport errors and 5xx answers with
  capped exponential backoff;
- correlation headers: ``X-Request-ID`` from the gateway ContextVar plus the
  breaker state and retry count, so the stock service logs can be joined
  with ours.

``release`` never raises: when ``/release`` fails it reads the stock level
and writes back the incremented value.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from .domain import InventoryPort
from .errors import CircuitOpenError, ExternalDependencyError, InsufficientStockError, NotFoundError

REQUEST_ID_CTX = import_string("gateway.middleware.REQUEST_ID_CTX")

logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Counts consecutive failures of one dependency and sheds load when it is down.

    ``CLOSED`` admits everything. ``fail_threshold`` consecutive failures
    open the circuit; after ``reset_timeout`` seconds it turns ``HALF_OPEN``
    and admits exactly one probe. The probe's outcome closes or reopens it.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._mutex = threading.RLock()
        self._state = BreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._probing = False

    def _refresh(self) -> BreakerState:
        cooled = time.monotonic() - self._opened_at >= self.reset_timeout
        if self._state is BreakerState.OPEN and cooled:
            self._state = BreakerState.HALF_OPEN
            self._probing = False
        return self._state

    @property
    def state(self) -> str:
        with self._mutex:
            return self._refresh().value

    def acquire(self) -> str:
        """Admit one call or raise ``CircuitOpenError``; returns the state it was admitted in."""
        with self._mutex:
            current = self._refresh()
            if current is BreakerState.OPEN:
                raise CircuitOpenError(f"{self.name} circuit is open")
            if current is BreakerState.HALF_OPEN:
                if self._probing:
                    raise CircuitOpenError(f"{self.name} circuit is probing")
                self._probing = True
            return current.value

    def record_success(self) -> None:
        with self._mutex:
            self._state = BreakerState.CLOSED
            self._consecutive_failures = 0
            self._probing = False

    def record_failure(self) -> None:
        with self._mutex:
            self._consecutive_failures += 1
            tripped = self._consecutive_failures >= self.fail_threshold
            if self._state is BreakerState.HALF_OPEN or (tripped and self._state is BreakerState.CLOSED):
                self._state = BreakerState.OPEN
                self._opened_at = time.monotonic()
                self._probing = False
                logger.warning("circuit opened", extra={"dependency": self.name,
                                                        "failures": self._consecutive_failures})

    def release(self) -> None:
        """End of a call: a probe that neither succeeded nor failed frees the slot."""
        with self._mutex:
            if self._state is BreakerState.HALF_OPEN:
                self._probing = False

    def snapshot(self) -> dict:
        with self._mutex:
            return {"state": self._refresh().value, "failures": self._consecutive_failures}


def _breaker(name: str) -> CircuitBreaker:
    return CircuitBreaker(
        name,
        fail_threshold=getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
        reset_timeout=getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
    )


INVENTORY_BREAKER = _breaker("inventory")
PROVIDER_BREAKER = _breaker("payment_provider")


def breaker_states() -> dict:
    return {b.name: b.snapshot() for b in (INVENTORY_BREAKER, PROVIDER_BREAKER)}


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    backoff_base: float
    max_sleep: float

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            attempts=max(1, getattr(settings, "HTTP_RETRY_MAX", 3)),
            backoff_base=getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
            max_sleep=getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5),
        )

    def delay(self, retry: int) -> float:
        return min(self.backoff_base * 2 ** (retry - 1), self.max_sleep)

    @staticmethod
    def retryable(response: httpx.Response | None) -> bool:
        """Transport errors (no response) and 5xx are worth another try."""
        return response is None or response.status_code >= 500


def correlation_headers(**extra: str) -> dict:
    headers = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    headers.update(extra)
    return headers


class HttpInventoryClient(InventoryPort):
    """Stock service client.

    Answers below 500 (including 404 and 422) count as breaker successes;
    only exhausted retries count as a failure.
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None,
                 breaker: CircuitBreaker | None = None):
        self.base_url = (base_url or settings.INVENTORY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS
        self.breaker = breaker or INVENTORY_BREAKER

    def _send(self, method: str, path: str, payload: dict | None = None) -> httpx.Response:
        """One logical call: breaker admission, retries and failure accounting.

        Raises:
            CircuitOpenError: The breaker refused the call.
            ExternalDependencyError: Every attempt failed.
        """
        policy = RetryPolicy.from_settings()
        admitted_as = self.breaker.acquire()
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout) as http:
                for attempt in range(policy.attempts):
                    headers = correlation_headers(**{"X-Circuit-State": admitted_as, "X-Retry-Count": str(attempt)})
                    response, error = None, None
                    try:
                        response = http.request(method, url, json=payload, headers=headers)
                    except httpx.RequestError as exc:
                        error = exc
                    if not policy.retryable(response):
                        self.breaker.record_success()
                        return response
                    if attempt + 1 < policy.attempts:
                        time.sleep(policy.delay(attempt + 1))

            self.breaker.record_failure()
            detail = str(error) if error is not None else f"HTTP {response.status_code}"
            raise ExternalDependencyError(f"stock service {method} {path} failed: {detail}") from error
        finally:
            self.breaker.release()

    def reserve(self, product_id: str, quantity: int) -> None:
        """Raises ``InsufficientStockError`` on 422 and ``NotFoundError`` on 404."""
        resp = self._send("POST", "/reserve", {"product_id": str(product_id), "quantity": quantity})
        if resp.status_code == 200:
            return
        if resp.status_code == 422:
            raise InsufficientStockError(product_id)
        if resp.status_code == 404:
            raise NotFoundError(f"Product {product_id} not found")
        raise ExternalDependencyError(f"unexpected stock service response {resp.status_code}")

    def release(self, product_id: str, quantity: int) -> bool:
        pid = str(product_id)
        try:
            resp = self._send("POST", "/release", {"product_id": pid, "quantity": quantity})
            if resp.status_code == 200:
                return True
            logger.warning("stock release rejected", extra={"product_id": pid, "status_code": resp.status_code})
        except ExternalDependencyError:
            logger.warning("stock release call failed, trying fallback", extra={"product_id": pid}, exc_info=True)

        try:
            level = self.available(pid)
            resp = self._send("PUT", f"/stock/{pid}", {"quantity": level + quantity})
            if resp.status_code == 200:
                return True
            logger.error("stock fallback write rejected", extra={"product_id": pid, "status_code": resp.status_code})
        except (ExternalDependencyError, NotFoundError):
            logger.error("stock release failed", extra={"product_id": pid, "quantity": quantity}, exc_info=True)
        return False

    def available(self, product_id: str) -> int:
        resp = self._send("GET", f"/stock/{product_id}")
        if resp.status_code == 404:
            raise NotFoundError(f"Product {product_id} not found")
        if resp.status_code != 200:
            raise ExternalDependencyError(f"unexpected stock service response {resp.status_code}")
        return int(resp.json()["quantity"])
