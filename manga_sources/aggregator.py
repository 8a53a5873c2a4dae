from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Tuple

from .models import ListPage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FoldState:
    items: Tuple[Any, ...]
    cursor: int


def advance(state: FoldState, page: ListPage) -> Tuple[FoldState, bool]:
    """Fold one fetched page into the state.

    Returns the new state and whether another page should be fetched. An
    empty page stops without touching the state; pagination metadata stops
    once the current page reaches the last one.
    """
    if not page.items:
        return state, False
    new_state = FoldState(items=state.items + tuple(page.items), cursor=state.cursor + 1)
    return new_state, not page.is_last


def collect_pages(fetch_page: Callable[[int], ListPage], start: int = 1) -> List[Any]:
    """Fetch pages sequentially from ``start`` and return every item.

    Any exception raised by ``fetch_page`` propagates and the items collected
    so far are discarded.
    """
    state = FoldState(items=(), cursor=start)
    more = True
    while more:
        page = fetch_page(state.cursor)
        logger.debug(
            "page %d: %d items (current=%s, last=%s)",
            state.cursor,
            len(page.items),
            page.current_page,
            page.last_page,
        )
        state, more = advance(state, page)
    return list(state.items)
