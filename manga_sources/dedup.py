from __future__ import annotations

from typing import Dict, Iterable, List

from .models import ChapterRecord


def deduplicate_chapters(records: Iterable[ChapterRecord]) -> List[ChapterRecord]:
    """Collapse several releases of the same chapter number into one.

    For each number the newest release (greatest ``created_at``) is kept; on
    equal timestamps the first one seen wins. The result is sorted by
    ascending number regardless of the order the records arrived in.
    """
    best: Dict[float, ChapterRecord] = {}
    for record in records:
        current = best.get(record.number)
        if current is None or record.created_at > current.created_at:
            best[record.number] = record
    return sorted(best.values(), key=lambda r: r.number)
