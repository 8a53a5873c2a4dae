from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS
WEEK_MS = 7 * DAY_MS

ENGLISH_UNITS: Dict[str, int] = {
    "minute": MINUTE_MS,
    "hour": HOUR_MS,
    "day": DAY_MS,
    "week": WEEK_MS,
}

VIETNAMESE_UNITS: Dict[str, int] = {
    "phút": MINUTE_MS,
    "giờ": HOUR_MS,
    "ngày": DAY_MS,
    "tuần": WEEK_MS,
}


class RelativeDateResolver:
    """Turns chapter date labels into epoch milliseconds.

    Accepts "<N> <unit> <suffix>" phrases (e.g. "5 minutes ago") or an
    absolute date in ``date_format``. Anything else resolves to 0 so that a
    bad date never fails the surrounding chapter record.
    """

    def __init__(
        self,
        units: Mapping[str, int] = ENGLISH_UNITS,
        suffix: str = "ago",
        date_format: str = "%d-%m-%Y",
    ) -> None:
        self._units = {name.lower(): ms for name, ms in units.items()}
        self._date_format = date_format
        # longest unit first so "minute" is never shadowed by a shorter prefix
        alternatives = "|".join(re.escape(u) for u in sorted(self._units, key=len, reverse=True))
        self._relative = re.compile(
            rf"^\s*(\S+?)\s*({alternatives})s?\s+{re.escape(suffix)}\s*$",
            re.IGNORECASE,
        )

    def resolve(self, text: Optional[str], now_ms: Optional[int] = None) -> int:
        if not text:
            return 0
        match = self._relative.match(text)
        if match:
            try:
                count = int(match.group(1))
            except ValueError:
                return 0
            if now_ms is None:
                now_ms = _now_ms()
            return now_ms - count * self._units[match.group(2).lower()]
        return self._parse_absolute(text.strip())

    def _parse_absolute(self, text: str) -> int:
        try:
            parsed = datetime.strptime(text, self._date_format)
        except ValueError:
            return 0
        return int(parsed.replace(tzinfo=timezone.utc).timestamp() * 1000)


_DEFAULT = RelativeDateResolver()


def resolve_date(text: Optional[str], now_ms: Optional[int] = None) -> int:
    """Resolve an English relative phrase or a dd-mm-yyyy date."""
    return _DEFAULT.resolve(text, now_ms)


def _now_ms() -> int:
    return int(time.time() * 1000)
