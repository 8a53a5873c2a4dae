from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Iterable, List, Optional, Sequence

from .errors import TransportError
from .models import FetchResult


def fork_join(*calls: Callable[[], Any], timeout: Optional[float] = None) -> List[Any]:
    """Run independent calls concurrently and return their results in order.

    Without a timeout every call finishes before this returns. The first exception (in call
    order) is re-raised; a caller-level timeout surfaces as TransportError.

    On timeout this returns without waiting for the calls still running:
    Python threads cannot be interrupted, so a call already in flight keeps
    going in the background until its own request ends. Its result is
    discarded. HttpFetcher's per-request timeout bounds how long that takes.
    """
    executor = ThreadPoolExecutor(max_workers=max(1, len(calls)))
    try:
        futures = [executor.submit(call) for call in calls]
        _, not_done = wait(futures, timeout=timeout)
        if not_done:
            for fut in not_done:
                fut.cancel()
            raise TransportError(f"timed out after {timeout}s")
        return [fut.result() for fut in futures]
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


class ThreadPoolController:
    """Runs per-entry jobs on a bounded thread pool.

    Each job yields its own FetchResult, so one failing entry never affects
    the others. Results are returned in submission order.
    """

    def __init__(self, max_workers: int) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers))
        self._lock = threading.Lock()
        self._running = False

    def start(self) -> None:
        with self._lock:
            self._running = True

    def stop(self, wait: bool = True) -> None:
        with self._lock:
            self._running = False
        self._executor.shutdown(wait=wait, cancel_futures=False)

    def submit(self, fn: Callable[[Any], FetchResult], item: Any, source_id: str = "", key: str = "") -> Future:
        with self._lock:
            running = self._running
        if not running:
            return self._executor.submit(self._stopped_result, source_id, key)
        return self._executor.submit(fn, item)

    def map(self, fn: Callable[[Any], FetchResult], items: Iterable[Any], source_id: str = "") -> List[FetchResult]:
        """Submit ``fn`` for every item and wait for all results."""
        futures: Sequence[Future] = [
            self.submit(fn, item, source_id=source_id, key=str(getattr(item, "key", item))) for item in items
        ]
        return [fut.result() for fut in futures]

    @staticmethod
    def _stopped_result(source_id: str, key: str) -> FetchResult:
        return FetchResult(
            source_id=source_id,
            key=key,
            success=False,
            latency_ms=0,
            data=None,
            error_type="ControllerStopped",
        )
