"""Tests for the bundled sources against canned responses."""

import json
import time
import unittest
from dataclasses import replace
from urllib.parse import parse_qs, urlsplit

from manga_sources.dates import DAY_MS
from manga_sources.errors import ExtractionFailure, MalformedResponseError, TransportError
from manga_sources.models import ChapterRecord, ListFilter, MangaState, SortOrder, Tag
from manga_sources.sources import (
    ANIMESAMA,
    COMIX,
    MOETRUYEN,
    AnimeSamaSource,
    HtmlSource,
    JsonApiSource,
)
from tests.fakes import FakeFetcher


def _api_page(items, current=None, last=None):
    result = {"items": items}
    if current is not None:
        result["pagination"] = {"current_page": current, "last_page": last}
    return {"status": 200, "result": result}


def _reader_html(state):
    inner = json.dumps(state, separators=(",", ":"))
    return (
        "<html><head><script src='/_next/app.js'></script></head><body>"
        f"<script>self.__next_f.push([1,{json.dumps(inner)}])</script></body></html>"
    )


def _query(url):
    return parse_qs(urlsplit(url).query)


COMIX_ITEMS = [
    {"hash_id": "k1", "title": "Alpha", "poster": {"large": "https://cdn/k1.jpg"}, "status": "releasing", "rated_avg": 8.0},
    {"hash_id": "k2", "title": "Beta", "status": "on_hiatus", "rated_avg": 0},
]

COMIX_CHAPTERS = {
    1: _api_page(
        [
            {"chapter_id": 104, "number": 2.5, "name": None, "created_at": 1700000300},
            {"chapter_id": 103, "number": 2, "name": "Return", "created_at": 1700000200,
             "scanlation_group": {"name": "Group B"}},
        ],
        current=1,
        last=2,
    ),
    2: _api_page(
        [
            {"chapter_id": 102, "number": 2, "name": "Return", "created_at": 1700000100,
             "scanlation_group": {"name": "Group A"}},
            {"chapter_id": 101, "number": 1, "name": "Start", "created_at": 1700000000},
        ],
        current=2,
        last=2,
    ),
}


class TestJsonApiSource(unittest.TestCase):
    """Verify the JSON catalog API source."""

    def _source(self, routes):
        fetcher = FakeFetcher(routes)
        return JsonApiSource(COMIX, fetcher), fetcher

    def test_list_page_normalizes_entries(self):
        """Listing records become normalised catalog entries."""
        source, _ = self._source([("/api/v2/manga?", _api_page(COMIX_ITEMS, current=1, last=3))])
        page = source.get_list_page(1)
        self.assertEqual([e.key for e in page.items], ["k1", "k2"])
        first, second = page.items
        self.assertEqual(first.url, "/title/k1")
        self.assertEqual(first.public_url, "https://comix.to/title/k1")
        self.assertEqual(first.state, MangaState.ONGOING)
        self.assertAlmostEqual(first.rating, 0.8)
        self.assertEqual(first.cover_url, "https://cdn/k1.jpg")
        self.assertFalse(second.has_rating)
        self.assertEqual(second.state, MangaState.PAUSED)
        self.assertEqual((page.current_page, page.last_page), (1, 3))

    def test_list_page_query_parameters(self):
        """Sort, search, tag, exclusion and paging parameters are sent."""
        source, fetcher = self._source([("/api/v2/manga?", _api_page([]))])
        source.get_list_page(
            3,
            SortOrder.POPULARITY,
            ListFilter(query="solo", tags=(Tag(title="Action", key="6"),)),
        )
        params = _query(fetcher.calls[0])
        self.assertEqual(params["keyword"], ["solo"])
        self.assertEqual(params["order[views_30d]"], ["desc"])
        self.assertEqual(params["genres[]"], ["6", "-87264", "-87266", "-87268", "-87265"])
        self.assertEqual(params["limit"], ["28"])
        self.assertEqual(params["page"], ["3"])

    def test_default_order_is_relevance(self):
        """Without an explicit order the first supported one is used."""
        source, fetcher = self._source([("/api/v2/manga?", _api_page([]))])
        source.get_list_page(1)
        self.assertEqual(_query(fetcher.calls[0])["order[relevance]"], ["desc"])

    def test_missing_result_is_malformed(self):
        """A listing without a result object is a parse failure."""
        source, _ = self._source([("/api/v2/manga?", {"status": 500, "message": "oops"})])
        with self.assertRaises(MalformedResponseError):
            source.get_list_page(1)

    def test_catalog_follows_pagination(self):
        """get_catalog() stops when the current page reaches the last page."""

        def listing(url):
            page = int(_query(url)["page"][0])
            return _api_page([{"hash_id": f"p{page}", "title": "x"}], current=page, last=2)

        source, fetcher = self._source([("/api/v2/manga?", listing)])
        self.assertEqual([e.key for e in source.get_catalog()], ["p1", "p2"])
        self.assertEqual(len(fetcher.calls), 2)

    def test_chapters_are_paged_deduplicated_and_ascending(self):
        """All chapter pages are read, duplicates collapse to the newest release."""
        source, fetcher = self._source([
            ("/chapters", lambda url: COMIX_CHAPTERS[int(_query(url)["page"][0])]),
        ])
        chapters = source.get_chapters(source.entry_for("k1"))
        self.assertEqual([c.number for c in chapters], [1.0, 2.0, 2.5])
        self.assertEqual(fetcher.count("/chapters"), 2)

        second = chapters[1]
        self.assertEqual(second.key, "103")
        self.assertEqual(second.scanlator, "Group B")
        self.assertEqual(second.name, "Chapter 2: Return")
        self.assertEqual(second.created_at, 1700000200 * 1000)
        self.assertEqual(second.url, "/title/k1/103-chapter-2")
        self.assertEqual(chapters[2].name, "Chapter 2.5")

    def test_chapter_without_number_is_malformed(self):
        """A chapter record lacking its ordinal cannot be used."""
        source, _ = self._source([("/chapters", _api_page([{"chapter_id": 1, "name": "?"}], current=1, last=1))])
        with self.assertRaises(MalformedResponseError):
            source.get_chapters(source.entry_for("k1"))

    def test_non_finite_chapter_number_is_malformed(self):
        """NaN and Infinity ordinals are rejected as malformed, not crashed on."""
        for raw in ("NaN", "Infinity", "-inf"):
            source, _ = self._source([("/chapters", _api_page([{"chapter_id": 1, "number": raw, "created_at": 1}], current=1, last=1))])
            with self.assertRaises(MalformedResponseError):
                source.get_chapters(source.entry_for("k1"))

    def test_run_reports_non_finite_chapter_number(self):
        """A NaN ordinal fails only its own entry, as a typed result."""
        source, _ = self._source([
            ("/chapters", _api_page([{"chapter_id": 1, "number": "NaN", "created_at": 1}], current=1, last=1)),
            ("/api/v2/manga/k1", {"result": {"hash_id": "k1", "title": "Alpha"}}),
        ])
        result = source.run(source.entry_for("k1"))
        self.assertFalse(result.success)
        self.assertEqual(result.error_type, "MalformedResponseError")

    def test_pages_from_embedded_script(self):
        """Reader pages yield ordered page records from the inlined state."""
        state = {"chapter": {"id": 103, "images": [{"url": "https://cdn/1.webp"}, {"url": "https://cdn/2.webp"}]}}
        source, fetcher = self._source([("/title/k1/103-chapter-2", _reader_html(state))])
        chapter = ChapterRecord(key="103", number=2, name="", created_at=0, url="/title/k1/103-chapter-2")
        pages = source.get_pages(chapter)
        self.assertEqual([(p.index, p.url) for p in pages], [(0, "https://cdn/1.webp"), (1, "https://cdn/2.webp")])
        self.assertEqual(fetcher.calls, ["https://comix.to/title/k1/103-chapter-2"])

    def test_pages_without_images_fail_distinctly(self):
        """A reader page with no image array raises ExtractionFailure."""
        source, _ = self._source([("/title/k1/1-chapter-1", _reader_html({"chapter": {"id": 1}}))])
        chapter = ChapterRecord(key="1", number=1, name="", created_at=0, url="/title/k1/1-chapter-1")
        with self.assertRaises(ExtractionFailure) as ctx:
            source.get_pages(chapter)
        self.assertEqual(ctx.exception.url, "https://comix.to/title/k1/1-chapter-1")

    def test_full_details_merges_details_and_chapters(self):
        """run() returns the detailed entry with its chapters attached."""
        source, _ = self._source([
            ("/chapters", lambda url: COMIX_CHAPTERS[int(_query(url)["page"][0])]),
            ("/api/v2/manga/k1", {"result": {"hash_id": "k1", "title": "Alpha", "synopsis": "Story", "status": "finished"}}),
        ])
        result = source.run(source.entry_for("k1"))
        self.assertTrue(result.success)
        self.assertEqual(result.data.title, "Alpha")
        self.assertEqual(result.data.description, "Story")
        self.assertEqual(result.data.state, MangaState.FINISHED)
        self.assertEqual(len(result.data.chapters), 3)

    def test_run_reports_transport_failure(self):
        """An unreachable detail endpoint yields a failed result, not an exception."""
        source, _ = self._source([("/chapters", _api_page([]))])
        result = source.run(source.entry_for("k1"))
        self.assertFalse(result.success)
        self.assertEqual(result.error_type, "TransportError")


MOE_LISTING = """
<html><body>
<article class="manga-card reveal">
  <a href="/manga/abc/"><div class="cover"><img src="/covers/abc.jpg"></div>
  <div class="manga-body"><h3>Truyện ABC</h3><div class="meta-row"><span class="tag">Còn tiếp</span></div></div></a>
</article>
<article class="manga-card reveal">
  <a href="/manga/xyz"><div class="cover"><img data-src="https://img.example/xyz.jpg"></div>
  <div class="manga-body"><h3>Truyện XYZ</h3><div class="meta-row"><span class="tag">Hoàn thành</span></div></div></a>
</article>
<article class="manga-card reveal"><a href="/manga/broken"></a></article>
</body></html>
"""

MOE_DETAILS = """
<html><body>
<div class="detail-info reveal">
  <p class="manga-author"><a class="inline-link">Tác giả A</a></p>
  <p class="note">Tên khác: ABC Story</p>
  <div class="manga-description"><p><span>Một câu chuyện.</span></p></div>
  <div class="chips"><a class="chip">Hành động</a><a class="chip">Adult</a></div>
</div>
<ul>
  <li class="chapter"><a href="/manga/abc/chapters/3"><div class="chapter-main"><div class="chapter-title-row">
    <span class="chapter-num">Ch. 3</span><span class="chapter-title">Ba</span></div></div></a>
    <span class="chapter-sub-text">Nhóm B</span><span class="chapter-time">2 ngày trước</span></li>
  <li class="chapter"><a href="/manga/abc/chapters/2-b"><div class="chapter-main"><div class="chapter-title-row">
    <span class="chapter-num">Ch. 2</span><span class="chapter-title">Hai</span></div></div></a>
    <span class="chapter-sub-text">Nhóm B</span><span class="chapter-time">05-01-2024</span></li>
  <li class="chapter"><a href="/manga/abc/chapters/2"><div class="chapter-main"><div class="chapter-title-row">
    <span class="chapter-num">Ch. 2</span><span class="chapter-title">Hai</span></div></div></a>
    <span class="chapter-sub-text">Nhóm A</span><span class="chapter-time">01-01-2024</span></li>
  <li class="chapter"><a href="/manga/abc/chapters/1"><div class="chapter-main"><div class="chapter-title-row">
    <span class="chapter-num">Ch. 1</span></div></div></a>
    <span class="chapter-time">hôm qua</span></li>
</ul>
</body></html>
"""


class TestHtmlSource(unittest.TestCase):
    """Verify the selector-driven HTML source."""

    def _source(self, routes):
        fetcher = FakeFetcher(routes)
        return HtmlSource(MOETRUYEN, fetcher), fetcher

    def test_list_page_parses_cards(self):
        """Cards become entries keyed by their relative url; broken cards are skipped."""
        source, _ = self._source([("/manga", MOE_LISTING)])
        page = source.get_list_page(1)
        self.assertEqual([e.key for e in page.items], ["/manga/abc", "/manga/xyz"])
        abc, xyz = page.items
        self.assertEqual(abc.title, "Truyện ABC")
        self.assertEqual(abc.public_url, "https://moetruyen.net/manga/abc")
        self.assertEqual(abc.cover_url, "https://moetruyen.net/covers/abc.jpg")
        self.assertEqual(abc.state, MangaState.ONGOING)
        self.assertEqual(xyz.cover_url, "https://img.example/xyz.jpg")
        self.assertEqual(xyz.state, MangaState.FINISHED)

    def test_unpaginated_listing_is_single_page(self):
        """Only page 1 exists; the catalog needs one request."""
        source, fetcher = self._source([("/manga", MOE_LISTING)])
        self.assertEqual(source.get_list_page(2).items, [])
        self.assertEqual(fetcher.calls, [])
        self.assertEqual(len(source.get_catalog()), 2)
        self.assertEqual(len(fetcher.calls), 1)

    def test_filter_parameters(self):
        """Search, tag, exclusion and author filters become query parameters."""
        source, fetcher = self._source([("/manga", MOE_LISTING)])
        source.get_list_page(1, filter=ListFilter(
            query="abc",
            tags=(Tag(title="Hành động", key="Hành động"),),
            tags_exclude=(Tag(title="Adult", key="Adult"),),
        ))
        params = _query(fetcher.calls[0])
        self.assertEqual(params["q"], ["abc"])
        self.assertEqual(params["include"], ["Hành động"])
        self.assertEqual(params["exclude"], ["Adult"])

    def test_unsupported_order_raises(self):
        """An order the source does not offer is rejected before fetching."""
        source, fetcher = self._source([("/manga", MOE_LISTING)])
        with self.assertRaises(ValueError):
            source.get_list_page(1, SortOrder.POPULARITY)
        self.assertEqual(fetcher.calls, [])

    def test_details(self):
        """Detail selectors fill authors, alt titles, description and tags."""
        source, _ = self._source([("/manga/abc", MOE_DETAILS)])
        entry = source.entry_for("https://moetruyen.net/manga/abc/")
        self.assertEqual(entry.key, "/manga/abc")
        details = source.get_details(entry)
        self.assertEqual(details.authors, ("Tác giả A",))
        self.assertEqual(details.alt_titles, ("ABC Story",))
        self.assertEqual(details.description, "Một câu chuyện.")
        self.assertEqual([t.title for t in details.tags], ["Hành động", "Adult"])
        self.assertTrue(details.nsfw)

    def test_chapters(self):
        """Chapters are reversed to ascending, deduplicated and dated."""
        source, _ = self._source([("/manga/abc", MOE_DETAILS)])
        before = int(time.time() * 1000)
        chapters = source.get_chapters(source.entry_for("/manga/abc"))
        after = int(time.time() * 1000)

        self.assertEqual([c.number for c in chapters], [1.0, 2.0, 3.0])
        first, second, third = chapters
        self.assertEqual(first.created_at, 0)
        self.assertEqual(first.name, "Chapter 1")
        self.assertEqual(second.key, "/manga/abc/chapters/2-b")
        self.assertEqual(second.scanlator, "Nhóm B")
        self.assertEqual(second.created_at, 1704412800000)
        self.assertEqual(second.url, "https://moetruyen.net/manga/abc/chapters/2-b")
        self.assertEqual(third.name, "Ba")
        self.assertGreaterEqual(third.created_at, before - 2 * DAY_MS)
        self.assertLessEqual(third.created_at, after - 2 * DAY_MS)

    def test_unnumbered_chapter_never_replaces_a_numbered_one(self):
        """A row without a readable number keeps its slot even when its position matches a real number."""
        rows = [("Ch. 3", "/m/c/3"), ("Extra", "/m/c/extra"), ("Ch. 2", "/m/c/2"), ("Ch. 1", "/m/c/1")]
        html = "<ul>" + "".join(
            f'<li class="chapter"><a href="{href}"><div class="chapter-main"><div class="chapter-title-row">'
            f'<span class="chapter-num">{label}</span></div></div></a></li>'
            for label, href in rows
        ) + "</ul>"
        source, _ = self._source([("/manga/abc", html)])
        chapters = source.get_chapters(source.entry_for("/manga/abc"))
        self.assertEqual(len(chapters), 4)
        self.assertEqual(
            [(c.number, c.key) for c in chapters],
            [(1.0, "/m/c/1"), (2.0, "/m/c/2"), (3.0, "/m/c/3"), (3.0, "/m/c/extra")],
        )

    def test_non_finite_label_is_treated_as_unnumbered(self):
        """A "Ch. nan" label falls back to the row position."""
        html = (
            '<li class="chapter"><a href="/m/c/x"><div class="chapter-main"><div class="chapter-title-row">'
            '<span class="chapter-num">Ch. nan</span></div></div></a></li>'
        )
        source, _ = self._source([("/manga/abc", html)])
        self.assertEqual([c.number for c in source.get_chapters(source.entry_for("/manga/abc"))], [1.0])

    def test_pages(self):
        """Page images are read from src or data-src and made absolute."""
        html = (
            "<div class='page-card'><img src='/img/1.jpg'></div>"
            "<div class='page-card'><img data-src='https://cdn.example/2.jpg'></div>"
            "<div class='page-card'><img></div>"
        )
        source, _ = self._source([("/chapters/3", html)])
        chapter = ChapterRecord(key="/manga/abc/chapters/3", number=3, name="", created_at=0,
                                url="https://moetruyen.net/manga/abc/chapters/3")
        pages = source.get_pages(chapter)
        self.assertEqual(
            [(p.index, p.url) for p in pages],
            [(0, "https://moetruyen.net/img/1.jpg"), (1, "https://cdn.example/2.jpg")],
        )

    def test_filter_options_fetched_when_not_bundled(self):
        """Tag options are scraped from the filter panel, without duplicates."""
        html = (
            "<div class='filter-options'><button><span class='filter-name'>Hành động</span></button>"
            "<button><span class='filter-name'>Hài hước</span></button>"
            "<button><span class='filter-name'>Hành động</span></button></div>"
        )
        source, _ = self._source([("/manga", html)])
        self.assertEqual([t.title for t in source.get_filter_options()], ["Hành động", "Hài hước"])


AS_SCAN_PAGE = "<html><body><h4 id='titreOeuvre'>One Piece</h4></body></html>"


class TestAnimeSamaSource(unittest.TestCase):
    """Verify chapter discovery fallbacks and CDN page urls."""

    def _source(self, routes):
        fetcher = FakeFetcher(routes)
        return AnimeSamaSource(ANIMESAMA, fetcher), fetcher

    def _entry(self):
        source, _ = self._source([])
        return source.entry_for("/catalogue/one-piece")

    def test_chapters_from_episodes_script(self):
        """The episodes script is the primary source of chapter numbers."""
        source, fetcher = self._source([
            ("episodes.js", "var eps1 = ['a'];\nvar eps2 = ['b'];\nvar eps3 = ['c'];"),
            ("/scan/vf", AS_SCAN_PAGE),
        ])
        chapters = source.get_chapters(self._entry())
        self.assertEqual([c.number for c in chapters], [1.0, 2.0, 3.0])
        self.assertEqual(
            chapters[0].url,
            "/catalogue/one-piece/scan/vf/episodes.js?title=One%20Piece&id=1",
        )
        self.assertEqual(fetcher.count("get_nb_chap_et_img"), 0)

    def test_chapters_fall_back_to_count_api(self):
        """When the script is unavailable the chapter count endpoint is used."""
        source, _ = self._source([
            ("episodes.js", TransportError("HTTP 404", status_code=404)),
            ("/scan/vf", AS_SCAN_PAGE),
            ("get_nb_chap_et_img", {"2": 18, "1": 20}),
            ("/catalogue/one-piece", AS_SCAN_PAGE),
        ])
        chapters = source.get_chapters(self._entry())
        self.assertEqual([c.number for c in chapters], [1.0, 2.0])
        self.assertEqual(chapters[1].url, "/catalogue/one-piece#One%20Piece#2")

    def test_count_api_uses_title_as_printed(self):
        """The count endpoint is queried with the page's raw title, curly apostrophe included."""
        raw_page = "<html><body><h4 id='titreOeuvre'>L’Attaque</h4></body></html>"
        source, fetcher = self._source([
            ("episodes.js", TransportError("HTTP 404", status_code=404)),
            ("/scan/vf", raw_page),
            ("get_nb_chap_et_img", {"1": 12}),
            ("/catalogue/snk", raw_page),
        ])
        entry = replace(source.entry_for("/catalogue/snk"), title="L'Attaque")
        chapters = source.get_chapters(entry)
        counts_calls = [url for url in fetcher.calls if "get_nb_chap_et_img" in url]
        self.assertEqual(counts_calls, ["https://anime-sama.org/s2/scans/get_nb_chap_et_img.php?oeuvre=L%E2%80%99Attaque"])
        self.assertEqual(chapters[0].url, "/catalogue/snk#L%E2%80%99Attaque#1")

    def test_no_strategy_yields_empty_chapters(self):
        """A title with neither script nor counts has no chapters."""
        source, _ = self._source([
            ("episodes.js", "// nothing yet"),
            ("/scan/vf", AS_SCAN_PAGE),
            ("get_nb_chap_et_img", {}),
            ("/catalogue/one-piece", AS_SCAN_PAGE),
        ])
        self.assertEqual(source.get_chapters(self._entry()), [])

    def test_pages_from_fragment_url(self):
        """Page urls are built from the title and chapter number."""
        source, fetcher = self._source([("get_nb_chap_et_img", {"2": 3})])
        chapter = ChapterRecord(key="k", number=2, name="", created_at=0, url="/catalogue/one-piece#One%20Piece#2")
        pages = source.get_pages(chapter)
        self.assertEqual(
            [p.url for p in pages],
            [f"https://anime-sama.org/s2/scans/One%20Piece/2/{i}.jpg" for i in (1, 2, 3)],
        )
        self.assertIn("oeuvre=One%20Piece", fetcher.calls[0])

    def test_pages_from_script_url(self):
        """Chapter urls produced by the episodes script carry the title as a parameter."""
        source, _ = self._source([("get_nb_chap_et_img", {"1": 1})])
        url = "/catalogue/one-piece/scan/vf/episodes.js?title=One%20Piece&id=1"
        pages = source.get_pages(ChapterRecord(key=url, number=1, name="", created_at=0, url=url))
        self.assertEqual([p.url for p in pages], ["https://anime-sama.org/s2/scans/One%20Piece/1/1.jpg"])

    def test_pages_without_title_fail(self):
        """A chapter url without a title cannot be resolved."""
        source, _ = self._source([])
        chapter = ChapterRecord(key="k", number=1, name="", created_at=0, url="/catalogue/one-piece")
        with self.assertRaises(ExtractionFailure):
            source.get_pages(chapter)

    def test_details_split_tags_and_clean_title(self):
        """Genres are split on separators and curly apostrophes normalised."""
        html = (
            "<h4 id='titreOeuvre'>L’Attaque</h4><img id='coverOeuvre' src='/img/cover.jpg'>"
            "<div id='sousBlocMiddle'><div><h2>Synopsis</h2><p>Des titans.</p>"
            "<h2>Genres</h2><a>Action - Drame, Fantastique</a></div></div>"
        )
        source, _ = self._source([("/catalogue/snk", html)])
        details = source.get_details(source.entry_for("/catalogue/snk"))
        self.assertEqual(details.title, "L'Attaque")
        self.assertEqual(details.description, "Des titans.")
        self.assertEqual([t.title for t in details.tags], ["Action", "Drame", "Fantastique"])
        self.assertEqual(details.cover_url, "https://anime-sama.org/img/cover.jpg")


if __name__ == "__main__":
    unittest.main()
