"""HTTP client for the inventory service with retries, circuit breaker and context headers.

``HttpProductRepository`` implements the ``ProductRepository`` port against
the standalone inventory service (``services/inventory``) using ``httpx``.
It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set by
    the gateway middleware.
- A circuit breaker for the inventory service to avoid hammering it while it
    is unhealthy, with HALF_OPEN probing after a timeout.
- A retry policy with exponential backoff. Reads are retried on transport
    errors and 5xx; stock writes only when the connection was never
    established, so a decrement is never applied twice.
"""

import threading
import time
from decimal import Decimal
from typing import Optional
from urllib.parse import quote

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import (
    InsufficientStock,
    Product,
    ProductNotFound,
    ProductRepository,
    StaleProduct,
)

CLOSED, OPEN, HALF_OPEN = "CLOSED", "OPEN", "HALF_OPEN"


class CircuitOpenError(RuntimeError):
    pass


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED -> OPEN when consecutive failures reach ``fail_threshold``.
    - OPEN -> HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN -> CLOSED on a successful probe, back to OPEN on failure.
      Only one probe may be in flight at a time.

    Thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = CLOSED
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == OPEN and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = HALF_OPEN
                self._probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Return the state at call time.

        Raises:
            CircuitOpenError: If the circuit is OPEN or a HALF_OPEN probe is
                already running.
        """
        with self._lock:
            st = self.state
            if st == OPEN:
                raise CircuitOpenError(f"{self.name}: CIRCUIT_OPEN")
            if st == HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitOpenError(f"{self.name}: CIRCUIT_HALF_OPEN_BUSY")
                self._probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = CLOSED
            self._probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == HALF_OPEN or (self._failures >= self.fail_threshold and self._state != OPEN):
                self._state = OPEN
                self._opened_at = time.monotonic()
                self._probe_in_flight = False

    def on_finish(self):
        with self._lock:
            if self._state == HALF_OPEN:
                self._probe_in_flight = False

    def reset(self):
        self.on_success()


inventory_breaker = CircuitBreaker(
    "inventory",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build outgoing headers: ``X-Request-ID`` when known, plus ``extra``."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_attempts, backoff_base_seconds, max_sleep)."""
    return (
        max(1, getattr(settings, "HTTP_RETRY_MAX", 3)),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
        getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5),
    )


def _should_retry(method: str, resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    # Writes are only safe to resend when the request never reached the server
    if method != "GET":
        return isinstance(exc, httpx.ConnectError)
    if exc is not None:
        return True
    return resp is not None and 500 <= resp.status_code < 600


def _product_path(product_id: str, action: str = "") -> str:
    # ids are opaque; quoting keeps them inside their own path segment
    path = f"/products/{quote(str(product_id), safe='')}"
    return f"{path}/{action}" if action else path


def _product_from_json(data: dict) -> Product:
    return Product(
        id=str(data["id"]),
        name=data["name"],
        price=Decimal(str(data["price"])),
        stock=int(data["stock"]),
        version=int(data.get("version", 0)),
    )


def _error_detail(resp: httpx.Response) -> dict:
    try:
        detail = resp.json().get("detail")
    except ValueError:
        return {}
    return detail if isinstance(detail, dict) else {}


# ---------------- Inventory Adapter ---------------- #

class HttpProductRepository(ProductRepository):
    """``ProductRepository`` backed by the inventory service's REST API.

    Business responses map to domain errors (404 -> ``ProductNotFound``,
    409 -> ``StaleProduct``, 422 -> ``InsufficientStock``) and do not count
    as circuit failures. Transport errors and 5xx are retried per
    ``_should_retry`` and, once exhausted, propagate as ``httpx`` errors.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.INVENTORY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self.transport)

    def get(self, product_id: str) -> Product:
        resp = self._send("GET", _product_path(product_id))
        if resp.status_code == 404:
            raise ProductNotFound(product_id)
        resp.raise_for_status()
        return _product_from_json(resp.json())

    def update_stock(self, product_id, new_stock, expected_version=None) -> Product:
        payload = {"stock": new_stock}
        if expected_version is not None:
            payload["expected_version"] = expected_version
        resp = self._send("PUT", _product_path(product_id, "stock"), payload)
        if resp.status_code == 404:
            raise ProductNotFound(product_id)
        if resp.status_code == 409:
            raise StaleProduct(product_id, expected_version, _error_detail(resp).get("version"))
        resp.raise_for_status()
        return _product_from_json(resp.json())

    def decrement_stock(self, product_id, quantity) -> Product:
        resp = self._send("POST", _product_path(product_id, "decrement"), {"quantity": quantity})
        if resp.status_code == 404:
            raise ProductNotFound(product_id)
        if resp.status_code == 422:
            detail = _error_detail(resp)
            if "available" in detail:
                raise InsufficientStock(
                    detail.get("name", product_id), int(detail["available"]), quantity, product_id=product_id
                )
        resp.raise_for_status()
        return _product_from_json(resp.json())

    def ping(self) -> bool:
        try:
            with self._client() as client:
                return client.get(f"{self.base_url}/health", headers=_request_headers()).status_code == 200
        except httpx.HTTPError:
            return False

    def _send(self, method: str, path: str, payload: Optional[dict] = None) -> httpx.Response:
        """Send one logical request with circuit breaker and retries.

        Returns the first response below 500, or the last 5xx response when
        it is not retriable.

        Raises:
            CircuitOpenError: When the breaker rejects the call.
            httpx.RequestError: For transport errors after the last attempt.
        """
        max_attempts, backoff, cap = _retry_policy()
        tries = 0

        state = inventory_breaker.before_call()
        headers = _request_headers({"X-Circuit-State": state, "X-Retry-Count": "0"})
        try:
            with self._client() as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.request(method, f"{self.base_url}{path}", json=payload, headers=headers)
                        if resp.status_code < 500:
                            inventory_breaker.on_success()
                            return resp
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries >= max_attempts or not _should_retry(method, resp, exc):
                        inventory_breaker.on_failure()
                        if exc is not None:
                            raise exc
                        return resp

                    time.sleep(min(backoff * (2 ** (tries - 1)), cap))  # exponential backoff
        finally:
            inventory_breaker.on_finish()
