from __future__ import annotations

from typing import Dict, List, Optional

from .base import BaseSource
from .config import Settings
from .http import HostRateLimiter, HttpFetcher, RetryPolicy
from .sources import SOURCES


class SourceFactory:
    """Creates source instances by id from the SOURCES registry.

    Instances are cached: sources hold no per-request state, so one instance
    per id is shared. All sources share one per-host rate limiter.
    """

    def __init__(self, settings: Optional[Settings] = None, cache: bool = True) -> None:
        self._settings = settings or Settings()
        self._rate_limiter = HostRateLimiter(qps=self._settings.qps)
        self._cache_enabled = cache
        self._cache: Dict[str, BaseSource] = {}

    @staticmethod
    def available() -> List[str]:
        return sorted(SOURCES)

    def create_source(self, source_id: str) -> BaseSource:
        if self._cache_enabled and source_id in self._cache:
            return self._cache[source_id]
        try:
            cls, config = SOURCES[source_id]
        except KeyError:
            raise ValueError(f"Unknown source_id: {source_id}") from None

        fetcher = HttpFetcher(
            rate_limiter=self._rate_limiter,
            retry=RetryPolicy(max_retries=self._settings.max_retries),
            timeout=self._settings.timeout,
            headers=config.headers,
            impersonate=config.impersonate,
        )
        source = cls(config, fetcher)
        if self._cache_enabled:
            self._cache[source_id] = source
        return source
