"""Tests for the command-line entry point."""

import contextlib
import io
import json
import os
import tempfile
import unittest

import main


def _run(argv):
    out = io.StringIO()
    err = io.StringIO()
    with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
        code = main.main(argv)
    return code, [json.loads(line) for line in out.getvalue().splitlines() if line.strip()]


class TestMain(unittest.TestCase):
    """Verify sub-command dispatch and error reporting."""

    def test_sources_lists_registry(self):
        """'sources' prints one JSON line per registered source."""
        code, lines = _run(["sources"])
        self.assertEqual(code, 0)
        self.assertEqual([line["record"]["id"] for line in lines], ["animesama", "comix", "moetruyen"])
        comix = lines[1]["record"]
        self.assertEqual(comix["sort_orders"][0], "relevance")
        self.assertTrue(comix["capabilities"]["search"])

    def test_unknown_source_reports_error(self):
        """An unknown source id yields an error object and exit code 1."""
        code, lines = _run(["list", "nope"])
        self.assertEqual(code, 1)
        self.assertEqual(lines, [{"error": "ValueError", "message": "Unknown source_id: nope"}])

    def test_results_file_receives_every_record(self):
        """--results appends the printed records to a JSONL file."""
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "out.jsonl")
            code, _ = _run(["--results", path, "sources"])
            with open(path, encoding="utf-8") as f:
                saved = [json.loads(line) for line in f]
        self.assertEqual(code, 0)
        self.assertEqual([line["kind"] for line in saved], ["source"] * 3)
        self.assertEqual(saved[0]["record"]["id"], "animesama")


if __name__ == "__main__":
    unittest.main()
