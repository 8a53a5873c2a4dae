"""Tests for fork/join and the thread pool controller."""

import threading
import time
import unittest

from manga_sources.controller import ThreadPoolController, fork_join
from manga_sources.errors import TransportError
from manga_sources.models import FetchResult


def _ok(item):
    return FetchResult(source_id="s", key=str(item), success=True, latency_ms=0, data=item, error_type=None)


class TestForkJoin(unittest.TestCase):
    """Verify concurrent execution with ordered results."""

    def test_results_keep_call_order(self):
        """Results follow call order, not completion order."""
        results = fork_join(lambda: (time.sleep(0.05), "slow")[1], lambda: "fast")
        self.assertEqual(results, ["slow", "fast"])

    def test_exception_propagates(self):
        """A raising call fails the join."""

        def boom():
            raise KeyError("items")

        with self.assertRaises(KeyError):
            fork_join(lambda: 1, boom)

    def test_timeout(self):
        """A call outliving the timeout raises TransportError."""
        with self.assertRaises(TransportError) as ctx:
            fork_join(lambda: time.sleep(0.5), timeout=0.05)
        self.assertIn("timed out", str(ctx.exception))

    def test_timeout_returns_without_waiting_for_stragglers(self):
        """A timed-out join returns promptly while the slow call keeps running."""
        release = threading.Event()
        finished = threading.Event()

        def slow():
            release.wait(timeout=2)
            finished.set()

        start = time.monotonic()
        with self.assertRaises(TransportError):
            fork_join(slow, timeout=0.05)
        self.assertLess(time.monotonic() - start, 1.0)
        self.assertFalse(finished.is_set())
        release.set()
        self.assertTrue(finished.wait(timeout=2))


class TestThreadPoolController(unittest.TestCase):
    """Verify per-item job execution."""

    def test_map_returns_results_in_order(self):
        """Every item produces one result, in submission order."""
        controller = ThreadPoolController(max_workers=3)
        controller.start()
        try:
            results = controller.map(_ok, [3, 1, 2], source_id="s")
        finally:
            controller.stop()
        self.assertEqual([r.key for r in results], ["3", "1", "2"])
        self.assertTrue(all(r.success for r in results))

    def test_not_started_yields_stopped_results(self):
        """Jobs submitted to a stopped controller are reported, not run."""
        controller = ThreadPoolController(max_workers=1)
        calls = []
        try:
            result = controller.submit(calls.append, "x", source_id="s", key="x").result()
        finally:
            controller.stop()
        self.assertEqual(calls, [])
        self.assertFalse(result.success)
        self.assertEqual(result.error_type, "ControllerStopped")
        self.assertEqual(result.key, "x")


if __name__ == "__main__":
    unittest.main()
