from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, List, Sequence, Tuple, Union

from .errors import ExtractionFailure

logger = logging.getLogger(__name__)


class ExtractionStrategy(ABC):
    """One self-contained way of obtaining a sequence of records.

    A strategy either returns a (possibly empty) sequence or raises; the
    FallbackChain decides what happens next."""

    name: str = "strategy"

    @abstractmethod
    def extract(self) -> Sequence[Any]:
        """Produce the records, raising on any structural failure."""
        raise NotImplementedError


class FunctionStrategy(ExtractionStrategy):
    """Wraps a zero-argument callable as a named strategy."""

    def __init__(self, name: str, fn: Callable[[], Sequence[Any]]) -> None:
        self.name = name
        self._fn = fn

    def extract(self) -> Sequence[Any]:
        return self._fn()


StrategyLike = Union[ExtractionStrategy, Callable[[], Sequence[Any]]]


class FallbackChain:
    """Evaluates strategies in priority order; the first non-empty success wins.

    A strategy that raises is logged and skipped, so one broken extraction
    path never prevents the ones after it from running. Strategies after the
    winner are not invoked.
    """

    def __init__(self, strategies: Iterable[StrategyLike]) -> None:
        self._strategies: List[ExtractionStrategy] = [_as_strategy(s) for s in strategies]

    def run(self) -> List[Any]:
        """Return the winning strategy's records, or [] if none produced any."""
        items, _ = self._evaluate()
        return items

    def require(self, what: str) -> List[Any]:
        """Like run(), but raise ExtractionFailure when nothing was found."""
        items, errors = self._evaluate()
        if items:
            return items
        detail = "; ".join(f"{name}: {err}" for name, err in errors) or "all strategies returned nothing"
        raise ExtractionFailure(f"unable to find {what} ({detail})")

    def _evaluate(self) -> Tuple[List[Any], List[Tuple[str, str]]]:
        errors: List[Tuple[str, str]] = []
        for strat in self._strategies:
            try:
                items = list(strat.extract())
            except Exception as exc:  # noqa: BLE001
                logger.warning("strategy %s failed: %s: %s", strat.name, type(exc).__name__, exc)
                errors.append((strat.name, f"{type(exc).__name__}: {exc}"))
                continue
            if items:
                logger.debug("strategy %s produced %d items", strat.name, len(items))
                return items, errors
            logger.debug("strategy %s produced nothing", strat.name)
        return [], errors


def _as_strategy(candidate: StrategyLike) -> ExtractionStrategy:
    if isinstance(candidate, ExtractionStrategy):
        return candidate
    name = getattr(candidate, "__name__", None) or type(candidate).__name__
    return FunctionStrategy(name, candidate)
