"""
Shared outbound HTTP gateway machinery.

The audit tool service, issue tracker, deploy control plane and HTTP
agents are all reached through a BaseGateway subclass; pipeline code
never calls `requests` directly.

    Retries          2 extra attempts after 5xx / 408 / 429 / network errors,
                     sleeping 1 s then 4 s; other 4xx fail immediately
    Circuit breaker  5 failures inside 60 s suspend the gateway for 30 s
    Result           GatewayResult; request() never raises

Tests inject a mock ``session`` instead of a real requests.Session.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any

import requests

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30
_RETRYABLE_CLIENT_STATUSES = (408, 429)


@dataclass
class GatewayResult:
    """Outcome of one logical gateway call (all attempts included).

    ``status_code`` is None when no HTTP response was received.
    """

    ok: bool
    status_code: int | None = None
    data: Any = None
    error: str | None = None
    duration_ms: int = 0


class CircuitBreaker:
    """Failure-rate breaker shared by every thread using one gateway."""

    def __init__(self, name: str, threshold: int = 5, window_seconds: float = 60,
                 open_seconds: float = 30) -> None:
        self.name = name
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.open_seconds = open_seconds
        self._failures: deque[float] = deque()
        self._open_until = 0.0
        self._lock = threading.Lock()

    def allow(self) -> bool:
        now = time.monotonic()
        with self._lock:
            if now < self._open_until:
                return False
            while self._failures and self._failures[0] < now - self.window_seconds:
                self._failures.popleft()
            if len(self._failures) < self.threshold:
                return True
            self._open_until = now + self.open_seconds
            self._failures.clear()
        logger.error("Circuit opened for %s: %d failures within %ss; paused %ss",
                     self.name, self.threshold, self.window_seconds, self.open_seconds)
        return False

    def failure(self) -> None:
        with self._lock:
            self._failures.append(time.monotonic())

    def success(self) -> None:
        with self._lock:
            self._failures.clear()
            self._open_until = 0.0


class BaseGateway:
    """JSON-over-HTTP client with retries and a circuit breaker.

    Subclasses set ``name`` for logs, may lower ``retry_max`` for calls
    that must not repeat, and add auth by overriding ``build_headers``.
    """

    name = "gateway"
    retry_max = 2
    retry_backoff_seconds = (1, 4)

    def __init__(self, base_url: str, *, session: requests.Session | None = None,
                 timeout: float = _DEFAULT_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self.breaker = CircuitBreaker(self.name)

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def build_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "Accept": "application/json"}

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _backoff(self, attempt: int) -> float:
        delays = self.retry_backoff_seconds
        return delays[min(attempt, len(delays) - 1)]

    def _send_once(self, method: str, url: str, kwargs: dict) -> tuple[GatewayResult, bool]:
        """One HTTP attempt. Returns the result and whether a retry may help."""
        started = time.perf_counter()
        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.Timeout:
            return GatewayResult(False, error=f"Request timed out after {kwargs['timeout']}s",
                                 duration_ms=int(kwargs["timeout"] * 1000)), True
        except requests.RequestException as exc:
            return GatewayResult(False, error=str(exc)[:500],
                                 duration_ms=int((time.perf_counter() - started) * 1000)), True

        elapsed = int((time.perf_counter() - started) * 1000)
        if resp.ok:
            try:
                data = resp.json() if resp.content else {}
            except ValueError:
                data = {}
            return GatewayResult(True, resp.status_code, data, duration_ms=elapsed), False

        retryable = resp.status_code >= 500 or resp.status_code in _RETRYABLE_CLIENT_STATUSES
        error = f"HTTP {resp.status_code}: {resp.text[:500]}"
        return GatewayResult(False, resp.status_code, error=error, duration_ms=elapsed), retryable

    def request(self, method: str, path: str, *, json_body: Any = None,
                params: dict | None = None, timeout: float | None = None) -> GatewayResult:
        if not self.breaker.allow():
            return GatewayResult(
                False, error=f"Circuit breaker is open; {self.name} calls suspended")

        url = self.url(path)
        kwargs: dict[str, Any] = {"headers": self.build_headers(),
                                  "timeout": timeout or self.timeout}
        if json_body is not None:
            kwargs["json"] = json_body
        if params:
            kwargs["params"] = params

        total_ms = 0
        attempts = self.retry_max + 1
        for attempt in range(attempts):
            result, retryable = self._send_once(method, url, kwargs)
            total_ms += result.duration_ms
            result.duration_ms = total_ms
            if result.ok:
                self.breaker.success()
                return result

            self.breaker.failure()
            logger.warning("%s %s %s failed (attempt %d/%d): %s",
                           self.name, method, url, attempt + 1, attempts, result.error)
            if not retryable or attempt == attempts - 1:
                return result
            delay = self._backoff(attempt)
            logger.info("Retrying %s in %ss", self.name, delay)
            time.sleep(delay)
        return result
