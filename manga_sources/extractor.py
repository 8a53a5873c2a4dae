"""Recovery of JSON arrays that pages inline as escaped script strings.

Many reader pages ship their client state as a JSON document serialised into a
JavaScript string literal, e.g.::

    self.__next_f.push([1,"...{\\"images\\":[\\"https://cdn/1.webp\\"]}..."])

Only one level of escaping separates us from the real JSON, so the scan below
decodes that level on the fly and matches brackets on the decoded characters,
ignoring brackets and quotes that sit inside JSON string values.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, Iterator, List, Optional

from bs4 import BeautifulSoup

from .errors import ExtractionFailure

logger = logging.getLogger(__name__)

_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
}


def script_texts(document: BeautifulSoup) -> List[str]:
    """Return the bodies of every inline <script> block in document order."""
    texts: List[str] = []
    for script in document.find_all("script"):
        if script.get("src"):
            continue
        body = script.string if script.string is not None else script.get_text()
        if body:
            texts.append(body)
    return texts


def extract_embedded_array(scripts: Iterable[str], field: str) -> List[Any]:
    """Find ``\\"<field>\\":[ ... ]`` inside the scripts and parse the array.

    Raises ExtractionFailure when no script yields a non-empty array.
    """
    marker = re.compile(re.escape('\\"' + field + '\\"') + r"\s*:\s*\[")
    reason = f"marker for {field!r} not found"
    for index, text in enumerate(scripts):
        match = marker.search(text)
        if match is None:
            continue
        payload = balanced_span(text, match.end() - 1)
        if payload is None:
            reason = f"array for {field!r} is never closed"
            logger.debug("script #%d: unbalanced %r array", index, field)
            continue
        try:
            parsed = json.loads(payload)
        except ValueError as exc:
            reason = f"array for {field!r} is not valid JSON: {exc}"
            logger.debug("script #%d: %s", index, reason)
            continue
        if not isinstance(parsed, list) or not parsed:
            reason = f"array for {field!r} is empty"
            continue
        return parsed
    raise ExtractionFailure(reason)


def balanced_span(text: str, start: int) -> Optional[str]:
    """Decode and return the bracketed value opening at ``text[start]``.

    ``text`` holds the value with one level of string escaping (``\\"`` for a
    quote, ``\\\\`` for a backslash). Returns the unescaped span from the
    opening to the matching closing bracket, inclusive, or None when the
    brackets never balance.
    """
    depth = 0
    in_string = False
    escape_pending = False
    out: List[str] = []
    for char in _unescape(text, start):
        out.append(char)
        if escape_pending:
            escape_pending = False
            continue
        if char == "\\":
            escape_pending = True
        elif char == '"':
            in_string = not in_string
        elif in_string:
            continue
        elif char in "[{":
            depth += 1
        elif char in "]}":
            depth -= 1
            if depth == 0:
                return _join_surrogates("".join(out))
    return None


def _unescape(text: str, start: int) -> Iterator[str]:
    i = start
    end = len(text)
    while i < end:
        char = text[i]
        if char != "\\":
            yield char
            i += 1
            continue
        if i + 1 >= end:
            return
        nxt = text[i + 1]
        if nxt == "u" and i + 6 <= end:
            try:
                yield chr(int(text[i + 2:i + 6], 16))
            except ValueError:
                yield nxt
                i += 2
                continue
            i += 6
            continue
        yield _SIMPLE_ESCAPES.get(nxt, nxt)
        i += 2


def _join_surrogates(value: str) -> str:
    try:
        return value.encode("utf-16", "surrogatepass").decode("utf-16")
    except UnicodeError:
        return value
