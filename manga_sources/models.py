from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, List, Optional, Tuple

RATING_UNKNOWN = -1.0


class MangaState(str, Enum):
    ONGOING = "ongoing"
    FINISHED = "finished"
    PAUSED = "paused"
    UNKNOWN = "unknown"


class SortOrder(str, Enum):
    UPDATED = "updated"
    POPULARITY = "popularity"
    NEWEST = "newest"
    ALPHABETICAL = "alphabetical"
    RELEVANCE = "relevance"


@dataclass(frozen=True)
class Tag:
    title: str
    key: str


@dataclass(frozen=True)
class ListFilter:
    query: Optional[str] = None
    tags: Tuple[Tag, ...] = ()
    tags_exclude: Tuple[Tag, ...] = ()
    author: Optional[str] = None


@dataclass(frozen=True)
class ChapterRecord:
    key: str
    number: float
    name: str
    created_at: int
    url: str
    scanlator: Optional[str] = None


@dataclass(frozen=True)
class PageRecord:
    index: int
    url: str


@dataclass(frozen=True)
class CatalogEntry:
    key: str
    title: str
    url: str
    public_url: str
    cover_url: Optional[str] = None
    state: MangaState = MangaState.UNKNOWN
    rating: float = RATING_UNKNOWN
    description: Optional[str] = None
    tags: Tuple[Tag, ...] = ()
    authors: Tuple[str, ...] = ()
    alt_titles: Tuple[str, ...] = ()
    nsfw: bool = False
    chapters: Optional[Tuple[ChapterRecord, ...]] = None

    @property
    def has_rating(self) -> bool:
        return self.rating != RATING_UNKNOWN

    def enrich(self, other: CatalogEntry) -> CatalogEntry:
        """Return a copy where every field ``other`` actually carries wins.

        Empty values (None, "", (), UNKNOWN state/rating, False) on ``other``
        never overwrite what this entry already knows. The identity key is
        always kept.
        """
        changes = {}
        for f in fields(self):
            if f.name == "key":
                continue
            value = getattr(other, f.name)
            if _is_blank(value):
                continue
            changes[f.name] = value
        return replace(self, **changes)


def _is_blank(value: Any) -> bool:
    if value is None or value is False:
        return True
    if value == RATING_UNKNOWN or value is MangaState.UNKNOWN:
        return True
    if isinstance(value, (str, tuple)) and not value:
        return True
    return False


@dataclass(frozen=True)
class ListPage:
    """One fetched page of a paginated listing.

    ``current_page``/``last_page`` are only set when the source reports
    pagination metadata."""

    items: List[Any] = field(default_factory=list)
    current_page: Optional[int] = None
    last_page: Optional[int] = None

    @property
    def is_last(self) -> bool:
        if not self.items:
            return True
        if self.current_page is None or self.last_page is None:
            return False
        return self.current_page >= self.last_page


@dataclass(frozen=True)
class FetchResult:
    source_id: str
    key: str
    success: bool
    latency_ms: int
    data: Optional[Any]
    error_type: Optional[str]
    error: Optional[str] = None
