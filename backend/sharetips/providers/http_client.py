"""
backend/sharetips/providers/http_client.py

Purpose:
    Outbound HTTP for the engine (score provider, email API). Wraps
    httpx.AsyncClient with bounded retries on transient failures and a
    per-client circuit breaker that the callers consult before spending
    provider quota.

Dependencies:
    - httpx
"""

import asyncio
import logging
import time
from typing import Iterable, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger("sharetips.http_client")

# 429 is not here: for a metered API it means quota, and the caller decides
DEFAULT_RETRY_STATUSES = frozenset({500, 502, 503, 504})
_MAX_BACKOFF_SECONDS = 30.0

CIRCUIT_CLOSED = "closed"
CIRCUIT_OPEN = "open"
CIRCUIT_HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure breaker.

    Opens after ``failure_threshold`` failures in a row. Once
    ``recovery_seconds`` have passed it lets one trial request through (half-open);
    a success closes it again, a failure restarts the cooldown.
    """

    def __init__(self, name: str, failure_threshold: int = 3, recovery_seconds: float = 300.0):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_seconds = recovery_seconds
        self.consecutive_failures = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> str:
        if self._opened_at is None:
            return CIRCUIT_CLOSED
        if time.monotonic() - self._opened_at >= self.recovery_seconds:
            return CIRCUIT_HALF_OPEN
        return CIRCUIT_OPEN

    @property
    def is_open(self) -> bool:
        return self.state == CIRCUIT_OPEN

    def allow_request(self) -> bool:
        state = self.state
        if state == CIRCUIT_HALF_OPEN:
            logger.info("[%s] Circuit half-open, allowing a trial request", self.name)
        return state != CIRCUIT_OPEN

    def record_success(self) -> None:
        if self._opened_at is not None:
            logger.info("[%s] Circuit closed after a successful trial request", self.name)
        self.consecutive_failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.failure_threshold:
            if self._opened_at is None:
                logger.warning(
                    "[%s] Circuit OPEN after %d consecutive failures (cooldown %ss)",
                    self.name, self.consecutive_failures, self.recovery_seconds,
                )
            self._opened_at = time.monotonic()


def redact_url(url) -> str:
    """URL without its query string, which carries the API key."""
    parsed = urlparse(str(url))
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


class ResilientClient:
    """httpx.AsyncClient with retries on network errors and selected 5xx."""

    def __init__(
        self,
        name: str,
        timeout: float = 15.0,
        max_retries: int = 1,
        base_delay: float = 2.0,
        retry_statuses: Iterable[int] = DEFAULT_RETRY_STATUSES,
        failure_threshold: int = 3,
        recovery_seconds: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.name = name
        self.max_retries = max(0, max_retries)
        self.base_delay = base_delay
        self.retry_statuses = frozenset(retry_statuses)
        self.circuit = CircuitBreaker(name, failure_threshold, recovery_seconds)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def _backoff(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), _MAX_BACKOFF_SECONDS)

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, retrying transient failures.

        Returns the last response when every attempt hit a retryable
        status, and re-raises the last transport error when none got
        through. Circuit bookkeeping is left to the caller, which knows
        whether a response counts as a failure.
        """
        attempts = self.max_retries + 1
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = await self._client.request(method, url, **kwargs)
            except (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError) as exc:
                logger.warning(
                    "[%s] %s %s failed (attempt %d/%d): %s",
                    self.name, method, redact_url(url), attempt, attempts, exc,
                )
                if attempt >= attempts:
                    raise
                await asyncio.sleep(self._backoff(attempt - 1))
                continue

            if resp.status_code not in self.retry_statuses:
                return resp
            if attempt >= attempts:
                logger.error(
                    "[%s] %s %s still failing after %d attempts (HTTP %d)",
                    self.name, method, redact_url(url), attempts, resp.status_code,
                )
                return resp

            logger.warning(
                "[%s] HTTP %d on %s %s (attempt %d/%d), retrying",
                self.name, resp.status_code, method, redact_url(url), attempt, attempts,
            )
            await asyncio.sleep(self._backoff(attempt - 1))

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()
