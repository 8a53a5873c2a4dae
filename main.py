from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, List, Optional

from manga_sources.base import BaseSource
from manga_sources.config import Settings
from manga_sources.controller import ThreadPoolController
from manga_sources.errors import SourceError
from manga_sources.factory import SourceFactory
from manga_sources.models import ChapterRecord, ListFilter, SortOrder, Tag
from manga_sources.storage import JsonlStorage, StorageBase, to_jsonable


def _emit(kind: str, record: Any, storage: Optional[StorageBase]) -> None:
    print(json.dumps({"kind": kind, "record": to_jsonable(record)}, ensure_ascii=False))
    if storage is not None:
        storage.write(kind, record)


def _resolve_tags(source: BaseSource, names: List[str]) -> tuple[Tag, ...]:
    if not names:
        return ()
    known = {t.title.lower(): t for t in source.get_filter_options()}
    return tuple(known.get(name.lower(), Tag(title=name, key=name)) for name in names)


def cmd_sources(args: argparse.Namespace, factory: SourceFactory, storage: Optional[StorageBase]) -> int:
    for source_id in factory.available():
        config = factory.create_source(source_id).config
        _emit(
            "source",
            {
                "id": config.source_id,
                "title": config.title,
                "locale": config.locale,
                "domain": config.domain,
                "sort_orders": config.sort_orders,
                "capabilities": config.capabilities,
            },
            storage,
        )
    return 0


def cmd_list(args: argparse.Namespace, factory: SourceFactory, storage: Optional[StorageBase]) -> int:
    source = factory.create_source(args.source)
    order = SortOrder(args.order) if args.order else None
    filter = ListFilter(query=args.query, tags=_resolve_tags(source, args.tag or []))
    if args.all:
        entries = source.get_catalog(order, filter)
    else:
        entries = source.get_list_page(args.page, order, filter).items
    for entry in entries:
        _emit("entry", entry, storage)
    print(f"\nDONE: entries={len(entries)}", file=sys.stderr)
    return 0


def cmd_details(args: argparse.Namespace, factory: SourceFactory, storage: Optional[StorageBase]) -> int:
    source = factory.create_source(args.source)
    controller = ThreadPoolController(max_workers=args.workers)
    controller.start()
    try:
        entries = [source.entry_for(key) for key in args.keys]
        results = controller.map(lambda e: source.run(e, timeout=args.entry_timeout), entries, source_id=source.source_id)
    finally:
        controller.stop(wait=True)

    ok = 0
    for result in results:
        _emit("result", result, storage)
        ok += int(result.success)
    print(f"\nDONE: success={ok} fail={len(results) - ok} total={len(results)}", file=sys.stderr)
    return 0 if ok == len(results) else 1


def cmd_pages(args: argparse.Namespace, factory: SourceFactory, storage: Optional[StorageBase]) -> int:
    source = factory.create_source(args.source)
    chapter = ChapterRecord(key=args.chapter_url, number=args.number, name="", created_at=0, url=args.chapter_url)
    for page in source.get_pages(chapter):
        _emit("page", page, storage)
    return 0


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Query manga catalog sources")
    parser.add_argument("--results", default=None, help="Also append records to this JSONL file")
    parser.add_argument("--timeout", type=float, default=settings.timeout, help="Per-request timeout seconds")
    parser.add_argument("--max-retries", type=int, default=settings.max_retries, help="Transport retry attempts")
    parser.add_argument("--qps", type=float, default=settings.qps, help="Per-host QPS rate limit")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")

    sub = parser.add_subparsers(dest="command", required=True)

    p_sources = sub.add_parser("sources", help="List available sources")
    p_sources.set_defaults(func=cmd_sources)

    p_list = sub.add_parser("list", help="List catalog entries")
    p_list.add_argument("source")
    p_list.add_argument("--page", type=int, default=1, help="Page to fetch")
    p_list.add_argument("--all", action="store_true", help="Walk every page until the listing ends")
    p_list.add_argument("--query", default=None, help="Search keyword")
    p_list.add_argument("--tag", action="append", help="Tag title or key (repeatable)")
    p_list.add_argument("--order", choices=[o.value for o in SortOrder], default=None)
    p_list.set_defaults(func=cmd_list)

    p_details = sub.add_parser("details", help="Fetch details and chapters for entries")
    p_details.add_argument("source")
    p_details.add_argument("keys", nargs="+", help="Entry keys (or relative urls for HTML sources)")
    p_details.add_argument("--workers", type=int, default=settings.workers, help="Concurrent entries")
    p_details.add_argument("--entry-timeout", type=float, default=None, help="Caller-level timeout per entry")
    p_details.set_defaults(func=cmd_details)

    p_pages = sub.add_parser("pages", help="List page images of one chapter")
    p_pages.add_argument("source")
    p_pages.add_argument("chapter_url")
    p_pages.add_argument("--number", type=float, default=0.0, help="Chapter number, for sources keyed by it")
    p_pages.set_defaults(func=cmd_pages)
    return parser


def _dispatch(args: argparse.Namespace, factory: SourceFactory, storage: Optional[StorageBase]) -> int:
    try:
        return args.func(args, factory, storage)
    except (SourceError, ValueError) as exc:
        print(json.dumps({"error": type(exc).__name__, "message": str(exc)}, ensure_ascii=False))
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    env_settings = Settings.from_env()
    args = build_parser(env_settings).parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    settings = Settings(
        timeout=args.timeout,
        max_retries=args.max_retries,
        qps=args.qps,
        workers=getattr(args, "workers", env_settings.workers),
        log_level=args.log_level,
    )
    factory = SourceFactory(settings)
    if not args.results:
        return _dispatch(args, factory, None)
    with JsonlStorage(args.results) as storage:
        return _dispatch(args, factory, storage)


if __name__ == "__main__":
    sys.exit(main())
