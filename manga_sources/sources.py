from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type
from urllib.parse import parse_qs, quote, unquote, urlencode, urljoin, urlsplit

from bs4 import BeautifulSoup
from bs4.element import Tag as HtmlTag

from .base import BaseSource
from .config import ChapterSchema, FilterCapabilities, HtmlConfig, JsonApiConfig, SourceConfig
from .dates import VIETNAMESE_UNITS, RelativeDateResolver
from .dedup import deduplicate_chapters
from .aggregator import collect_pages
from .errors import ExtractionFailure, MalformedResponseError
from .extractor import extract_embedded_array, script_texts
from .http import HttpFetcher
from .models import CatalogEntry, ChapterRecord, ListFilter, ListPage, MangaState, PageRecord, SortOrder, Tag
from .normalizer import EntryNormalizer, RecordSchema, dig
from .strategies import FallbackChain, FunctionStrategy

logger = logging.getLogger(__name__)


class JsonApiSource(BaseSource):
    """Source backed by a paginated JSON API, with reader pages that inline
    their image list as escaped JSON inside a script block."""

    config: JsonApiConfig

    def __init__(self, config: JsonApiConfig, fetcher: Optional[HttpFetcher] = None) -> None:
        super().__init__(config, fetcher)
        self._normalizer = EntryNormalizer(
            config.record_schema,
            config.status_table,
            rating_scale=config.rating_scale,
            url_template=config.entry_url,
            public_url_template=config.base_url + config.entry_url,
        )

    def entry_for(self, key: str) -> CatalogEntry:
        return CatalogEntry(
            key=key,
            title="",
            url=self.config.entry_url.format(key=key),
            public_url=self.config.base_url + self.config.entry_url.format(key=key),
        )

    def get_list_page(self, page: int, order: Optional[SortOrder] = None, filter: Optional[ListFilter] = None) -> ListPage:
        cfg = self.config
        filter = filter or ListFilter()
        params: List[Tuple[str, Any]] = []
        if filter.query:
            params.append((cfg.query_param, filter.query))
        sort = cfg.sort_params.get(self.resolve_order(order))
        if sort:
            params.append(sort)
        params.extend((cfg.tag_param, tag.key) for tag in filter.tags)
        params.extend(cfg.fixed_params)
        params.extend([("limit", cfg.page_size), ("page", page)])

        url = _with_query(cfg.list_url.format(base=cfg.base_url), params)
        result = self._result(self._fetcher.get_json(url), url)
        items = [self._normalizer.normalize(raw) for raw in self._items(result, url)]
        current, last = self._pagination(result)
        return ListPage(items=items, current_page=current, last_page=last)

    def get_details(self, entry: CatalogEntry) -> CatalogEntry:
        cfg = self.config
        url = cfg.detail_url.format(base=cfg.base_url, key=entry.key)
        payload = self._fetcher.get_json(url)
        result = payload.get(cfg.result_key) if isinstance(payload, Mapping) else None
        if not isinstance(result, Mapping):
            return entry
        return entry.enrich(self._normalizer.normalize(result))

    def get_chapters(self, entry: CatalogEntry) -> List[ChapterRecord]:
        cfg = self.config

        def fetch_page(page: int) -> ListPage:
            url = _with_query(
                cfg.chapters_url.format(base=cfg.base_url, key=entry.key),
                [cfg.chapter_sort_param, ("limit", cfg.chapter_page_size), ("page", page)],
            )
            result = self._result(self._fetcher.get_json(url), url)
            current, last = self._pagination(result)
            return ListPage(items=self._items(result, url), current_page=current, last_page=last)

        raw = collect_pages(fetch_page)
        chapters = deduplicate_chapters(self._chapter(entry, item) for item in raw)
        logger.debug("%s %s: %d releases, %d chapters", self.source_id, entry.key, len(raw), len(chapters))
        return chapters

    def get_pages(self, chapter: ChapterRecord) -> List[PageRecord]:
        cfg = self.config
        url = cfg.reader_url.format(base=cfg.base_url, url=chapter.url)
        document = self._fetcher.get_html(url)
        try:
            images = extract_embedded_array(script_texts(document), cfg.images_field)
        except ExtractionFailure as exc:
            raise ExtractionFailure(f"unable to find chapter images: {exc}", url=url) from exc

        pages: List[PageRecord] = []
        for index, image in enumerate(images):
            image_url = image.get("url") if isinstance(image, Mapping) else image
            if not isinstance(image_url, str) or not image_url:
                raise MalformedResponseError(f"image #{index} has no url", url=url)
            pages.append(PageRecord(index=index, url=image_url))
        return pages

    def _chapter(self, entry: CatalogEntry, item: Any) -> ChapterRecord:
        schema = self.config.chapter_schema
        key = dig(item, schema.key)
        try:
            number = float(dig(item, schema.number))
        except (TypeError, ValueError):
            raise MalformedResponseError(f"chapter {key!r} has no usable number")
        if not math.isfinite(number):
            raise MalformedResponseError(f"chapter {key!r} has no usable number")
        if key is None:
            raise MalformedResponseError(f"chapter {_format_number(number)} has no id")
        name = dig(item, schema.name)
        label = f"Chapter {_format_number(number)}"
        if name:
            label = f"{label}: {name}"
        try:
            created_at = int(dig(item, schema.created_at)) * schema.created_at_scale
        except (TypeError, ValueError):
            created_at = 0
        scanlator = dig(item, schema.scanlator)
        return ChapterRecord(
            key=str(key),
            number=number,
            name=label,
            created_at=created_at,
            url=self.config.chapter_url.format(key=entry.key, chapter_key=key, number=int(number)),
            scanlator=str(scanlator) if scanlator else None,
        )

    def _result(self, payload: Any, url: str) -> Mapping[str, Any]:
        result = payload.get(self.config.result_key) if isinstance(payload, Mapping) else None
        if not isinstance(result, Mapping):
            raise MalformedResponseError(f"response has no {self.config.result_key!r} object", url=url)
        return result

    def _items(self, result: Mapping[str, Any], url: str) -> List[Any]:
        items = result.get(self.config.items_key)
        if not isinstance(items, list):
            raise MalformedResponseError(f"response has no {self.config.items_key!r} array", url=url)
        return items

    def _pagination(self, result: Mapping[str, Any]) -> Tuple[Optional[int], Optional[int]]:
        pagination = result.get(self.config.pagination_key)
        if not isinstance(pagination, Mapping):
            return None, None
        try:
            return int(pagination["current_page"]), int(pagination["last_page"])
        except (KeyError, TypeError, ValueError):
            return None, None


class HtmlSource(BaseSource):
    """Source scraped from server-rendered HTML using the descriptor's selectors."""

    config: HtmlConfig

    def __init__(self, config: HtmlConfig, fetcher: Optional[HttpFetcher] = None) -> None:
        super().__init__(config, fetcher)
        self._normalizer = EntryNormalizer(
            RecordSchema(key="url", title="title", cover="cover", status="status"),
            config.status_table,
            public_url_template=config.base_url + "{key}",
        )
        self._dates = RelativeDateResolver(config.date_units, config.date_suffix, config.date_format)

    def entry_for(self, key: str) -> CatalogEntry:
        url = self._relative(key)
        return CatalogEntry(key=url, title="", url=url, public_url=self.config.base_url + url)

    def get_list_page(self, page: int, order: Optional[SortOrder] = None, filter: Optional[ListFilter] = None) -> ListPage:
        cfg = self.config
        self.resolve_order(order)
        if not cfg.paginated and page > 1:
            return ListPage(items=[])
        filter = filter or ListFilter()
        params: List[Tuple[str, Any]] = []
        if filter.query:
            params.append((cfg.query_param, filter.query))
        params.extend((cfg.tag_param, tag.key) for tag in filter.tags)
        params.extend((cfg.exclude_tag_param, tag.key) for tag in filter.tags_exclude)
        if filter.author:
            params.append((cfg.author_param, filter.author))
        if cfg.paginated and page > 1:
            params.append((cfg.page_param, page))

        document = self._fetcher.get_html(_with_query(cfg.base_url + cfg.list_path, params))
        items = [e for e in (self._parse_card(card) for card in document.select(cfg.card_selector)) if e]
        if not cfg.paginated:
            return ListPage(items=items, current_page=1, last_page=1)
        return ListPage(items=items)

    def get_details(self, entry: CatalogEntry) -> CatalogEntry:
        cfg = self.config
        document = self._fetcher.get_html(entry.public_url)
        tag_titles = self._split_tags(_texts(document, cfg.tag_selector))
        alt_titles = [t[len(cfg.alt_title_prefix):] if t.startswith(cfg.alt_title_prefix) else t
                      for t in _texts(document, cfg.alt_title_selector)]
        cover = _attr(document, cfg.cover_selector, "src")
        details = CatalogEntry(
            key=entry.key,
            title=self._clean_title(_text(document, cfg.title_selector) or ""),
            url=entry.url,
            public_url=entry.public_url,
            cover_url=urljoin(entry.public_url, cover) if cover else None,
            description=_text(document, cfg.description_selector),
            tags=tuple(Tag(title=t, key=t) for t in tag_titles),
            authors=tuple(_texts(document, cfg.author_selector)),
            alt_titles=tuple(t for t in alt_titles if t),
            nsfw=any(t in cfg.nsfw_tags for t in tag_titles),
        )
        return entry.enrich(details)

    def get_chapters(self, entry: CatalogEntry) -> List[ChapterRecord]:
        cfg = self.config
        document = self._fetcher.get_html(entry.public_url)
        items = document.select(cfg.chapter_selector)
        if cfg.chapters_newest_first:
            items.reverse()
        numbered: List[ChapterRecord] = []
        # rows without a readable number keep their position and skip dedup
        unnumbered: List[ChapterRecord] = []
        for index, item in enumerate(items):
            link = item.select_one(cfg.chapter_link_selector)
            href = link.get("href") if link is not None else None
            if not href:
                continue
            parsed = self._chapter_number(_text(item, cfg.chapter_number_selector))
            number = parsed if parsed is not None else float(index + 1)
            (numbered if parsed is not None else unnumbered).append(
                ChapterRecord(
                    key=self._relative(href),
                    number=number,
                    name=_text(item, cfg.chapter_title_selector) or f"Chapter {_format_number(number)}",
                    created_at=self._dates.resolve(_text(item, cfg.chapter_date_selector)),
                    url=urljoin(cfg.base_url + "/", href),
                    scanlator=_text(item, cfg.chapter_scanlator_selector),
                )
            )
        return sorted(deduplicate_chapters(numbered) + unnumbered, key=lambda c: c.number)

    def get_pages(self, chapter: ChapterRecord) -> List[PageRecord]:
        page_url = urljoin(self.config.base_url + "/", chapter.url)
        document = self._fetcher.get_html(page_url)
        urls: List[str] = []
        for img in document.select(self.config.page_image_selector):
            src = img.get("src") or img.get("data-src")
            if src and src.strip():
                urls.append(urljoin(page_url, src.strip()))
        return [PageRecord(index=i, url=u) for i, u in enumerate(urls)]

    def get_filter_options(self) -> List[Tag]:
        cfg = self.config
        if cfg.tags or not cfg.filter_tag_selector:
            return list(cfg.tags)
        document = self._fetcher.get_html(cfg.base_url + (cfg.filter_tags_path or cfg.list_path))
        seen: Dict[str, Tag] = {}
        for title in _texts(document, cfg.filter_tag_selector):
            seen.setdefault(title, Tag(title=title, key=title))
        return list(seen.values())

    def _parse_card(self, card: HtmlTag) -> Optional[CatalogEntry]:
        cfg = self.config
        link = card.select_one(cfg.card_link_selector)
        title = _text(card, cfg.card_title_selector)
        href = link.get("href") if link is not None else None
        if not href or not title:
            return None
        cover = _attr(card, cfg.card_cover_selector, "src") or _attr(card, cfg.card_cover_selector, "data-src")
        raw = {
            "url": self._relative(href),
            "title": self._clean_title(title),
            "cover": urljoin(cfg.base_url + "/", cover) if cover else None,
            "status": _text(card, cfg.card_status_selector),
        }
        return self._normalizer.normalize(raw)

    def _chapter_number(self, text: Optional[str]) -> Optional[float]:
        if not text:
            return None
        prefix = self.config.chapter_number_prefix
        if prefix and prefix in text:
            text = text.split(prefix, 1)[1]
        try:
            number = float(text.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None

    def _split_tags(self, texts: Sequence[str]) -> List[str]:
        separators = self.config.tag_separators
        if not separators:
            return list(texts)
        pattern = "[" + re.escape(separators) + "]"
        titles: List[str] = []
        for text in texts:
            titles.extend(part.strip() for part in re.split(pattern, text) if part.strip())
        return titles

    def _relative(self, href: str) -> str:
        parts = urlsplit(href.strip())
        path = parts.path.rstrip("/") or "/"
        return f"{path}?{parts.query}" if parts.query else path

    def _clean_title(self, title: str) -> str:
        return title


class AnimeSamaSource(HtmlSource):
    """AnimeSama lists chapters through a generated episodes.js file and,
    failing that, through a JSON endpoint mapping chapter numbers to page
    counts. Pages are served from a CDN by title/chapter/index."""

    def __init__(self, config: HtmlConfig, fetcher: Optional[HttpFetcher] = None) -> None:
        super().__init__(config, fetcher)
        self._scans_url = config.base_url + "/s2/scans/"

    def get_chapters(self, entry: CatalogEntry) -> List[ChapterRecord]:
        chain = FallbackChain([
            FunctionStrategy("episodes-script", lambda: self._chapters_from_script(entry)),
            FunctionStrategy("chapter-count-api", lambda: self._chapters_from_api(entry)),
        ])
        return deduplicate_chapters(chain.run())

    def get_pages(self, chapter: ChapterRecord) -> List[PageRecord]:
        title = self._title_from_chapter_url(chapter.url)
        if not title:
            raise ExtractionFailure("chapter url carries no title", url=chapter.url)
        counts = self._chapter_counts(title)
        chapter_key = str(int(chapter.number))
        try:
            count = int(counts.get(chapter_key) or 0)
        except (TypeError, ValueError):
            raise MalformedResponseError(f"page count for chapter {chapter_key} is not a number")
        return [
            PageRecord(index=i, url=f"{self._scans_url}{quote(title)}/{chapter_key}/{i + 1}.jpg")
            for i in range(count)
        ]

    def _chapters_from_script(self, entry: CatalogEntry) -> List[ChapterRecord]:
        scan_path = f"{entry.url}/scan/vf"
        document = self._fetcher.get_html(self.config.base_url + scan_path)
        title = _text(document, self.config.title_selector) or ""
        script_path = f"{scan_path}/episodes.js?title={quote(title)}"
        script = self._fetcher.get_text(self.config.base_url + script_path)
        numbers = sorted({int(n) for n in re.findall(r"eps(\d+)", script)})
        return [
            ChapterRecord(
                key=f"{script_path}&id={index}",
                number=float(number),
                name=f"Chapitre {number}",
                created_at=0,
                url=f"{script_path}&id={index}",
            )
            for index, number in enumerate(numbers, 1)
        ]

    def _chapters_from_api(self, entry: CatalogEntry) -> List[ChapterRecord]:
        # the count endpoint wants the title exactly as the page prints it
        title = _text(self._fetcher.get_html(entry.public_url), self.config.title_selector) or ""
        if not title:
            return []
        numbers = sorted(int(k) for k in self._chapter_counts(title) if str(k).isdigit())
        chapters: List[ChapterRecord] = []
        for number in numbers:
            url = f"{entry.url}#{quote(title)}#{number}"
            chapters.append(ChapterRecord(key=url, number=float(number), name=f"Chapitre {number}", created_at=0, url=url))
        return chapters

    def _chapter_counts(self, title: str) -> Mapping[str, Any]:
        url = f"{self._scans_url}get_nb_chap_et_img.php?oeuvre={quote(title)}"
        payload = self._fetcher.get_json(url)
        if not isinstance(payload, Mapping):
            raise MalformedResponseError("chapter counts are not an object", url=url)
        return payload

    @staticmethod
    def _title_from_chapter_url(url: str) -> Optional[str]:
        if "#" in url:
            parts = url.split("#")
            return unquote(parts[1]) if len(parts) > 1 and parts[1] else None
        values = parse_qs(urlsplit(url).query).get("title")
        return values[0] if values else None

    def _clean_title(self, title: str) -> str:
        return title.replace("’", "'")


def _with_query(url: str, params: Sequence[Tuple[str, Any]]) -> str:
    if not params:
        return url
    return url + ("&" if "?" in url else "?") + urlencode(list(params))


def _format_number(number: float) -> str:
    return str(int(number)) if float(number).is_integer() else str(number)


def _texts(node: BeautifulSoup, selector: Optional[str]) -> List[str]:
    if not selector:
        return []
    texts = (el.get_text(" ", strip=True) for el in node.select(selector))
    return [t for t in texts if t]


def _text(node: BeautifulSoup, selector: Optional[str]) -> Optional[str]:
    joined = " ".join(_texts(node, selector))
    return joined or None


def _attr(node: BeautifulSoup, selector: Optional[str], name: str) -> Optional[str]:
    if not selector:
        return None
    el = node.select_one(selector)
    if el is None:
        return None
    value = el.get(name)
    return value.strip() if isinstance(value, str) and value.strip() else None


COMIX = JsonApiConfig(
    source_id="comix",
    title="Comix",
    domain="comix.to",
    locale="en",
    page_size=28,
    impersonate="chrome120",
    sort_orders=(
        SortOrder.RELEVANCE,
        SortOrder.UPDATED,
        SortOrder.POPULARITY,
        SortOrder.NEWEST,
        SortOrder.ALPHABETICAL,
    ),
    capabilities=FilterCapabilities(search=True, search_with_filters=True, multiple_tags=True),
    tags=tuple(
        Tag(title=title, key=key)
        for title, key in (
            ("Action", "6"), ("Adventure", "7"), ("Boys Love", "8"), ("Comedy", "9"),
            ("Crime", "10"), ("Drama", "11"), ("Fantasy", "12"), ("Girls Love", "13"),
            ("Historical", "14"), ("Horror", "15"), ("Isekai", "16"), ("Magical Girls", "17"),
            ("Mecha", "18"), ("Medical", "19"), ("Mystery", "20"), ("Philosophical", "21"),
            ("Psychological", "22"), ("Romance", "23"), ("Sci-Fi", "24"), ("Slice of Life", "25"),
            ("Sports", "26"), ("Superhero", "27"), ("Thriller", "28"), ("Tragedy", "29"),
            ("Wuxia", "30"), ("Aliens", "31"), ("Animals", "32"), ("Cooking", "33"),
            ("Crossdressing", "34"), ("Delinquents", "35"), ("Demons", "36"), ("Genderswap", "37"),
            ("Ghosts", "38"), ("Gyaru", "39"), ("Harem", "40"), ("Mafia", "43"), ("Magic", "44"),
            ("Martial Arts", "45"), ("Military", "46"), ("Monster Girls", "47"), ("Monsters", "48"),
            ("Music", "49"), ("Ninja", "50"), ("Office Workers", "51"), ("Police", "52"),
            ("Post-Apocalyptic", "53"), ("Reincarnation", "54"), ("Reverse Harem", "55"),
            ("Samurai", "56"), ("School Life", "57"), ("Supernatural", "59"), ("Survival", "60"),
            ("Time Travel", "61"), ("Traditional Games", "62"), ("Vampires", "63"),
            ("Video Games", "64"), ("Villainess", "65"), ("Virtual Reality", "66"), ("Zombies", "67"),
        )
    ),
    status_table={
        "finished": MangaState.FINISHED,
        "releasing": MangaState.ONGOING,
        "on_hiatus": MangaState.PAUSED,
    },
    list_url="{base}/api/v2/manga",
    detail_url="{base}/api/v2/manga/{key}",
    chapters_url="{base}/api/v2/manga/{key}/chapters",
    sort_params={
        SortOrder.RELEVANCE: ("order[relevance]", "desc"),
        SortOrder.UPDATED: ("order[chapter_updated_at]", "desc"),
        SortOrder.POPULARITY: ("order[views_30d]", "desc"),
        SortOrder.NEWEST: ("order[created_at]", "desc"),
        SortOrder.ALPHABETICAL: ("order[title]", "asc"),
    },
    # adult, hentai, smut and ecchi are excluded from every listing
    fixed_params=(
        ("genres[]", "-87264"),
        ("genres[]", "-87266"),
        ("genres[]", "-87268"),
        ("genres[]", "-87265"),
    ),
    record_schema=RecordSchema(
        key="hash_id",
        title="title",
        cover="poster.large",
        status="status",
        rating="rated_avg",
        description="synopsis",
    ),
    chapter_schema=ChapterSchema(
        key="chapter_id",
        number="number",
        name="name",
        created_at="created_at",
        scanlator="scanlation_group.name",
    ),
)

MOETRUYEN = HtmlConfig(
    source_id="moetruyen",
    title="BFANG Team (Động Mòe)",
    domain="moetruyen.net",
    locale="vi",
    sort_orders=(SortOrder.UPDATED,),
    capabilities=FilterCapabilities(
        search=True,
        search_with_filters=True,
        multiple_tags=True,
        tags_exclusion=True,
        author_search=True,
    ),
    status_table={
        "Hoàn thành": MangaState.FINISHED,
        "Còn tiếp": MangaState.ONGOING,
        "Tạm dừng": MangaState.PAUSED,
    },
    list_path="/manga",
    paginated=False,
    card_selector="article.manga-card.reveal",
    card_title_selector=".manga-body h3",
    card_cover_selector=".cover img",
    card_status_selector=".meta-row span.tag",
    author_selector=".detail-info.reveal p.manga-author a.inline-link",
    alt_title_selector=".detail-info.reveal p.note",
    alt_title_prefix="Tên khác: ",
    description_selector=".detail-info.reveal .manga-description p span",
    tag_selector=".detail-info.reveal .chips a.chip",
    nsfw_tags=("Adult",),
    chapter_selector="li.chapter",
    chapter_number_selector="a .chapter-main .chapter-title-row span.chapter-num",
    chapter_number_prefix="Ch. ",
    chapter_title_selector="a .chapter-main .chapter-title-row span.chapter-title",
    chapter_scanlator_selector="span.chapter-sub-text",
    chapter_date_selector="span.chapter-time",
    page_image_selector=".page-card img",
    filter_tags_path="/manga",
    filter_tag_selector=".filter-options button span.filter-name",
    date_units=dict(VIETNAMESE_UNITS),
    date_suffix="trước",
    date_format="%d-%m-%Y",
)

ANIMESAMA = HtmlConfig(
    source_id="animesama",
    title="AnimeSama",
    domain="anime-sama.org",
    locale="fr",
    page_size=48,
    sort_orders=(SortOrder.ALPHABETICAL,),
    capabilities=FilterCapabilities(search=True, search_with_filters=True, multiple_tags=True),
    headers={"Referer": "https://anime-sama.org"},
    list_path="/catalogue",
    paginated=True,
    query_param="search",
    tag_param="genres[]",
    card_selector="div.shrink-0.catalog-card.card-base",
    card_title_selector="h2",
    card_cover_selector="img",
    title_selector="#titreOeuvre",
    cover_selector="#coverOeuvre",
    description_selector='#sousBlocMiddle > div h2:-soup-contains("Synopsis") + p',
    tag_selector='#sousBlocMiddle > div h2:-soup-contains("Genres") + a',
    tag_separators="-,",
    filter_tags_path="/catalogue",
    filter_tag_selector="div#genreList span",
)

SOURCES: Dict[str, Tuple[Type[BaseSource], SourceConfig]] = {
    COMIX.source_id: (JsonApiSource, COMIX),
    MOETRUYEN.source_id: (HtmlSource, MOETRUYEN),
    ANIMESAMA.source_id: (AnimeSamaSource, ANIMESAMA),
}
