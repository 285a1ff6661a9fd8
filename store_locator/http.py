"""HTTP client with retry/backoff and request budgeting."""
from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

REQUEST_KINDS = ("search", "details", "geocode")
RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


class BudgetExceededError(RuntimeError):
    pass


@dataclass
class RequestMetrics:
    network_search: int = 0
    network_details: int = 0
    network_geocode: int = 0

    def inc_network(self, kind: str) -> None:
        if kind not in REQUEST_KINDS:
            raise ValueError(f"Unknown request kind: {kind}")
        attr = f"network_{kind}"
        setattr(self, attr, getattr(self, attr) + 1)

    def as_dict(self) -> Dict[str, int]:
        return {kind: int(getattr(self, f"network_{kind}")) for kind in REQUEST_KINDS}


class RequestBudget:
    """Caps provider requests within one orchestrated call.

    Geocoding is counted in the metrics but never capped.
    """

    def __init__(
        self,
        max_search: int,
        max_details: int,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.max_search = max_search
        self.max_details = max_details
        self.metrics = metrics if metrics is not None else RequestMetrics()
        self._lock = threading.Lock()

    @property
    def search_count(self) -> int:
        return int(self.metrics.network_search)

    @property
    def details_count(self) -> int:
        return int(self.metrics.network_details)

    def consume(self, kind: str) -> None:
        with self._lock:
            self._consume(kind)

    def _consume(self, kind: str) -> None:
        if kind == "search":
            if self.search_count >= self.max_search:
                raise BudgetExceededError(
                    f"Search request budget exceeded: {self.search_count} >= {self.max_search}"
                )
        elif kind == "details":
            if self.details_count >= self.max_details:
                raise BudgetExceededError(
                    f"Details request budget exceeded: {self.details_count} >= {self.max_details}"
                )
        elif kind != "geocode":
            raise ValueError(f"Unknown budget kind: {kind}")
        self.metrics.inc_network(kind)


class HttpClient:
    """GET-only JSON client for the Maps web services.

    The API key travels as the ``key`` query parameter. Transport errors and
    429/5xx answers are retried up to ``retry_max`` attempts in total.
    """

    def __init__(
        self,
        api_key: str,
        timeout: int = 20,
        retry_max: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.retry_max = max(1, retry_max)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.sleep = sleep
        self.session = requests.Session()

    def get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        query = {**params, "key": self.api_key}
        attempt = 0
        while True:
            attempt += 1
            last_try = attempt >= self.retry_max
            try:
                resp = self.session.get(url, params=query, timeout=self.timeout)
            except requests.RequestException as exc:
                if last_try:
                    raise
                logger.warning("Request to %s failed (attempt %s): %s", url, attempt, exc)
                self._wait(attempt)
                continue

            if resp.status_code == 200:
                try:
                    return resp.json()
                except ValueError:
                    logger.error("Non-JSON response from %s", url)
                    raise
            if resp.status_code not in RETRYABLE_STATUSES or last_try:
                logger.error("HTTP %s from %s", resp.status_code, url)
                resp.raise_for_status()
                raise requests.HTTPError(f"HTTP {resp.status_code} from {url}", response=resp)
            logger.warning("HTTP %s from %s (attempt %s)", resp.status_code, url, attempt)
            self._wait(attempt, resp.headers.get("Retry-After"))

    def _wait(self, attempt: int, retry_after: Optional[str] = None) -> None:
        """Honour a numeric ``Retry-After``; otherwise exponential backoff with jitter."""
        try:
            delay = float(retry_after) if retry_after else None
        except ValueError:
            delay = None
        if delay is not None:
            self.sleep(max(0.0, min(delay, self.backoff_max)))
            return
        delay = min(self.backoff_base * 2 ** (attempt - 1), self.backoff_max)
        self.sleep(delay + random.uniform(0, self.backoff_base))
