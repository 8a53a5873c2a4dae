from __future__ import annotations

import json
import logging
import random
import threading
import time
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

import requests
from bs4 import BeautifulSoup
from curl_cffi import requests as curl_requests

from .errors import MalformedResponseError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64; rv:128.0) Gecko/20100101 Firefox/128.0",
    "Accept-Language": "en-US,en;q=0.8",
}

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class HostRateLimiter:
    """Thread-safe per-host throttle based on queries per second.

    Each host gets its own schedule, so a slow source never delays requests
    to another one. ``qps <= 0`` disables throttling.
    """

    def __init__(self, qps: float) -> None:
        self._interval = 1.0 / qps if qps > 0 else 0.0
        self._lock = threading.Lock()
        self._next_allowed: Dict[str, float] = {}

    def acquire(self, url: str) -> None:
        """Block until the next request to ``url``'s host is permitted."""
        if self._interval <= 0:
            return
        host = urlsplit(url).netloc
        with self._lock:
            now = time.monotonic()
            slot = max(self._next_allowed.get(host, 0.0), now)
            self._next_allowed[host] = slot + self._interval
        if slot > now:
            time.sleep(slot - now)


class RetryPolicy:
    """Exponential backoff with jitter: base * 2^(attempt-1), capped at max."""

    def __init__(self, max_retries: int = 3, base_seconds: float = 0.5, max_seconds: float = 10.0) -> None:
        self.max_retries = max(1, max_retries)
        self._base = base_seconds
        self._max = max_seconds

    def get_sleep(self, attempt: int, retry_after: Optional[str] = None) -> float:
        if retry_after:
            try:
                return min(self._max, float(retry_after))
            except ValueError:
                pass
        exp = min(self._max, self._base * (2 ** max(attempt - 1, 0)))
        return exp + random.uniform(0, exp * 0.1)


class HttpFetcher:
    """GET-only transport shared by every source.

    Uses a plain requests session, or a curl_cffi session impersonating a
    browser when ``impersonate`` is set. Connection errors, 429 and 5xx are
    retried; anything still failing surfaces as TransportError.
    """

    def __init__(
        self,
        rate_limiter: Optional[HostRateLimiter] = None,
        retry: Optional[RetryPolicy] = None,
        timeout: float = 20,
        headers: Optional[Mapping[str, str]] = None,
        impersonate: Optional[str] = None,
        session: Any = None,
    ) -> None:
        self._rate_limiter = rate_limiter or HostRateLimiter(qps=0)
        self._retry = retry or RetryPolicy()
        self._timeout = timeout
        self._headers = {**DEFAULT_HEADERS, **(headers or {})}
        self._impersonate = impersonate
        if session is not None:
            self._session = session
        elif impersonate:
            self._session = curl_requests.Session(impersonate=impersonate)
        else:
            self._session = requests.Session()

    def get(self, url: str, headers: Optional[Mapping[str, str]] = None) -> Any:
        merged = {**self._headers, **(headers or {})}
        attempt = 0
        while True:
            attempt += 1
            self._rate_limiter.acquire(url)
            try:
                response = self._session.request("GET", url, headers=merged, timeout=self._timeout)
            except Exception as exc:  # noqa: BLE001
                if attempt >= self._retry.max_retries:
                    raise TransportError(f"{type(exc).__name__}: {exc}", url=url) from exc
                sleep_s = self._retry.get_sleep(attempt)
                logger.debug("GET %s failed (%s), retry %d in %.2fs", url, type(exc).__name__, attempt, sleep_s)
                time.sleep(sleep_s)
                continue

            status = int(getattr(response, "status_code", 0) or 0)
            if 200 <= status < 300:
                return response
            if status in RETRYABLE_STATUS and attempt < self._retry.max_retries:
                retry_after = (getattr(response, "headers", None) or {}).get("Retry-After")
                sleep_s = self._retry.get_sleep(attempt, retry_after)
                logger.debug("GET %s -> HTTP %d, retry %d in %.2fs", url, status, attempt, sleep_s)
                time.sleep(sleep_s)
                continue
            raise TransportError(f"HTTP {status}", url=url, status_code=status)

    def get_text(self, url: str, headers: Optional[Mapping[str, str]] = None) -> str:
        return self.get(url, headers).text

    def get_json(self, url: str, headers: Optional[Mapping[str, str]] = None) -> Any:
        text = self.get_text(url, headers)
        try:
            return json.loads(text)
        except ValueError as exc:
            raise MalformedResponseError(f"invalid JSON: {exc}", url=url) from exc

    def get_html(self, url: str, headers: Optional[Mapping[str, str]] = None) -> BeautifulSoup:
        return BeautifulSoup(self.get_text(url, headers), "html.parser")
