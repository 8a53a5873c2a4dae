from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import List, Optional

from .aggregator import collect_pages
from .config import SourceConfig
from .controller import fork_join
from .errors import SourceError
from .http import HttpFetcher
from .models import CatalogEntry, ChapterRecord, FetchResult, ListFilter, ListPage, PageRecord, SortOrder, Tag

logger = logging.getLogger(__name__)


class BaseSource(ABC):
    """Abstract base class for one catalog source.

    Concrete sources implement the four operations (list page, details,
    chapters, pages); everything built on top of them lives here:
    - get_catalog() walks every list page through the listing aggregator.
    - get_full_details() fetches details and chapters concurrently.
    - run() wraps get_full_details() into a per-entry FetchResult.
    """

    def __init__(self, config: SourceConfig, fetcher: Optional[HttpFetcher] = None) -> None:
        self.config = config
        self._fetcher = fetcher or HttpFetcher(headers=config.headers, impersonate=config.impersonate)

    @property
    def source_id(self) -> str:
        return self.config.source_id

    @abstractmethod
    def get_list_page(self, page: int, order: Optional[SortOrder] = None, filter: Optional[ListFilter] = None) -> ListPage:
        ...

    @abstractmethod
    def get_details(self, entry: CatalogEntry) -> CatalogEntry:
        ...

    @abstractmethod
    def get_chapters(self, entry: CatalogEntry) -> List[ChapterRecord]:
        ...

    @abstractmethod
    def get_pages(self, chapter: ChapterRecord) -> List[PageRecord]:
        ...

    @abstractmethod
    def entry_for(self, key: str) -> CatalogEntry:
        """Build a bare entry from its identity key, for detail lookups."""
        ...

    def get_catalog(self, order: Optional[SortOrder] = None, filter: Optional[ListFilter] = None) -> List[CatalogEntry]:
        return collect_pages(lambda page: self.get_list_page(page, order, filter))

    def get_full_details(self, entry: CatalogEntry, timeout: Optional[float] = None) -> CatalogEntry:
        details, chapters = fork_join(
            lambda: self.get_details(entry),
            lambda: self.get_chapters(entry),
            timeout=timeout,
        )
        return replace(entry.enrich(details), chapters=tuple(chapters))

    def get_filter_options(self) -> List[Tag]:
        return list(self.config.tags)

    def resolve_order(self, order: Optional[SortOrder]) -> SortOrder:
        if order is None:
            return self.config.default_order
        if order not in self.config.sort_orders:
            raise ValueError(f"{self.source_id} does not support sort order {order.value!r}")
        return order

    def run(self, entry: CatalogEntry, timeout: Optional[float] = None) -> FetchResult:
        start_ms = self._now_ms()
        try:
            full = self.get_full_details(entry, timeout=timeout)
        except SourceError as exc:
            logger.warning("%s %s failed: %s", self.source_id, entry.key, exc)
            return self._failed(entry, exc, start_ms)
        except Exception as exc:  # noqa: BLE001
            logger.exception("%s %s failed unexpectedly", self.source_id, entry.key)
            return self._failed(entry, exc, start_ms)
        return FetchResult(
            source_id=self.source_id,
            key=entry.key,
            success=True,
            latency_ms=self._now_ms() - start_ms,
            data=full,
            error_type=None,
        )

    def _failed(self, entry: CatalogEntry, exc: Exception, start_ms: int) -> FetchResult:
        return FetchResult(
            source_id=self.source_id,
            key=entry.key,
            success=False,
            latency_ms=self._now_ms() - start_ms,
            data=None,
            error_type=type(exc).__name__,
            error=str(exc),
        )

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)
