from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .errors import MalformedResponseError
from .models import RATING_UNKNOWN, CatalogEntry, MangaState


@dataclass(frozen=True)
class RecordSchema:
    """Dotted paths locating catalog fields inside one raw record."""

    key: str = "id"
    title: str = "title"
    cover: Optional[str] = None
    status: Optional[str] = None
    rating: Optional[str] = None
    description: Optional[str] = None


def dig(record: Any, path: Optional[str]) -> Any:
    """Follow a dotted path through nested mappings; None if any hop is missing."""
    if not path:
        return None
    node = record
    for part in path.split("."):
        if not isinstance(node, Mapping):
            return None
        node = node.get(part)
        if node is None:
            return None
    return node


def map_status(value: Any, table: Mapping[str, MangaState]) -> MangaState:
    if value is None:
        return MangaState.UNKNOWN
    return table.get(str(value).strip(), MangaState.UNKNOWN)


def normalize_rating(value: Any, scale: float) -> float:
    """Rescale a native rating to [0, 1]; missing or non-positive is RATING_UNKNOWN."""
    if value is None or isinstance(value, bool):
        return RATING_UNKNOWN
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return RATING_UNKNOWN
    if not rating > 0 or scale <= 0:
        return RATING_UNKNOWN
    return min(rating / scale, 1.0)


def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class EntryNormalizer:
    """Maps raw catalog records onto CatalogEntry using a per-source schema.

    ``url_template`` and ``public_url_template`` are formatted with ``key``.
    """

    def __init__(
        self,
        schema: RecordSchema,
        status_table: Mapping[str, MangaState],
        rating_scale: float = 10.0,
        url_template: str = "{key}",
        public_url_template: str = "{key}",
    ) -> None:
        self._schema = schema
        self._status_table = status_table
        self._rating_scale = rating_scale
        self._url_template = url_template
        self._public_url_template = public_url_template

    def normalize(self, raw: Mapping[str, Any]) -> CatalogEntry:
        key = _text_or_none(dig(raw, self._schema.key))
        if key is None:
            raise MalformedResponseError(f"record has no {self._schema.key!r} field")
        return CatalogEntry(
            key=key,
            title=_text_or_none(dig(raw, self._schema.title)) or "",
            url=self._url_template.format(key=key),
            public_url=self._public_url_template.format(key=key),
            cover_url=_text_or_none(dig(raw, self._schema.cover)),
            state=map_status(dig(raw, self._schema.status), self._status_table),
            rating=normalize_rating(dig(raw, self._schema.rating), self._rating_scale),
            description=_text_or_none(dig(raw, self._schema.description)),
        )
