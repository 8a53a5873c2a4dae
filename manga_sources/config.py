from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from .dates import ENGLISH_UNITS
from .models import MangaState, SortOrder, Tag
from .normalizer import RecordSchema


@dataclass(frozen=True)
class Settings:
    """Runtime knobs for the transport and the job runner."""

    timeout: float = 20.0
    max_retries: int = 3
    qps: float = 2.0
    workers: int = 4
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Settings:
        env = os.environ if environ is None else environ
        return cls(
            timeout=float(env.get("MANGA_TIMEOUT", cls.timeout)),
            max_retries=int(env.get("MANGA_MAX_RETRIES", cls.max_retries)),
            qps=float(env.get("MANGA_QPS", cls.qps)),
            workers=int(env.get("MANGA_WORKERS", cls.workers)),
            log_level=env.get("MANGA_LOG_LEVEL", cls.log_level).upper(),
        )


@dataclass(frozen=True)
class FilterCapabilities:
    search: bool = False
    search_with_filters: bool = False
    multiple_tags: bool = False
    tags_exclusion: bool = False
    author_search: bool = False


@dataclass(frozen=True)
class SourceConfig:
    """Read-only description of one source; never mutated by the sources."""

    source_id: str
    title: str
    domain: str
    locale: str = "en"
    page_size: int = 20
    sort_orders: Tuple[SortOrder, ...] = (SortOrder.UPDATED,)
    capabilities: FilterCapabilities = FilterCapabilities()
    tags: Tuple[Tag, ...] = ()
    headers: Dict[str, str] = field(default_factory=dict)
    impersonate: Optional[str] = None
    status_table: Dict[str, MangaState] = field(default_factory=dict)

    @property
    def base_url(self) -> str:
        return f"https://{self.domain}"

    @property
    def default_order(self) -> SortOrder:
        return self.sort_orders[0]


@dataclass(frozen=True)
class ChapterSchema:
    """Dotted paths locating chapter fields inside one raw chapter record."""

    key: str = "id"
    number: str = "number"
    name: str = "name"
    created_at: str = "created_at"
    scanlator: Optional[str] = None
    # multiplier turning the native timestamp into milliseconds
    created_at_scale: int = 1000


@dataclass(frozen=True)
class JsonApiConfig(SourceConfig):
    """Descriptor for sources that expose a JSON catalog API.

    URL templates are formatted with ``base`` (scheme + domain) and, where
    relevant, ``key``/``chapter_key``/``number``/``url``.
    """

    list_url: str = "{base}/api/manga"
    detail_url: str = "{base}/api/manga/{key}"
    chapters_url: str = "{base}/api/manga/{key}/chapters"
    chapter_url: str = "/title/{key}/{chapter_key}-chapter-{number}"
    reader_url: str = "{base}{url}"
    entry_url: str = "/title/{key}"
    sort_params: Dict[SortOrder, Tuple[str, str]] = field(default_factory=dict)
    fixed_params: Tuple[Tuple[str, str], ...] = ()
    query_param: str = "keyword"
    tag_param: str = "genres[]"
    chapter_sort_param: Tuple[str, str] = ("order[number]", "desc")
    chapter_page_size: int = 100
    result_key: str = "result"
    items_key: str = "items"
    pagination_key: str = "pagination"
    record_schema: RecordSchema = RecordSchema()
    chapter_schema: ChapterSchema = ChapterSchema()
    rating_scale: float = 10.0
    images_field: str = "images"


@dataclass(frozen=True)
class HtmlConfig(SourceConfig):
    """Descriptor for sources scraped from server-rendered HTML."""

    list_path: str = "/manga"
    paginated: bool = True
    page_param: str = "page"
    query_param: str = "q"
    tag_param: str = "include"
    exclude_tag_param: str = "exclude"
    author_param: str = "q"
    card_selector: str = "article"
    card_link_selector: str = "a"
    card_title_selector: str = "h3"
    card_cover_selector: str = "img"
    card_status_selector: Optional[str] = None
    title_selector: Optional[str] = None
    cover_selector: Optional[str] = None
    author_selector: Optional[str] = None
    alt_title_selector: Optional[str] = None
    alt_title_prefix: str = ""
    description_selector: Optional[str] = None
    tag_selector: Optional[str] = None
    nsfw_tags: Tuple[str, ...] = ()
    chapter_selector: str = "li.chapter"
    chapter_link_selector: str = "a"
    chapter_number_selector: Optional[str] = None
    chapter_number_prefix: str = ""
    chapter_title_selector: Optional[str] = None
    chapter_scanlator_selector: Optional[str] = None
    chapter_date_selector: Optional[str] = None
    # chapter lists are rendered newest first
    chapters_newest_first: bool = True
    page_image_selector: str = "img"
    tag_separators: str = ""
    filter_tags_path: Optional[str] = None
    filter_tag_selector: Optional[str] = None
    date_units: Dict[str, int] = field(default_factory=lambda: dict(ENGLISH_UNITS))
    date_suffix: str = "ago"
    date_format: str = "%d-%m-%Y"
