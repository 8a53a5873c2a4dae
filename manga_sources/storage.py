from __future__ import annotations

import json
import queue
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Dict, Optional


class StorageBase(ABC):
    """Sink for the records a command produces (entries, chapters, pages, results).

    Usable as a context manager; leaving the block closes the sink.
    """

    @abstractmethod
    def write(self, kind: str, record: Any) -> None:
        """Persist one record tagged with its ``kind``."""

    @abstractmethod
    def close(self) -> None:
        """Flush pending writes and release resources."""

    def __enter__(self) -> StorageBase:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, enums and tuples into plain JSON-compatible values."""
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k.value if isinstance(k, Enum) else k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def encode_line(kind: str, record: Any, timestamp: Optional[float] = None) -> str:
    """One JSONL line: ``{"timestamp", "kind", "record"}`` plus a trailing newline."""
    line = {
        "timestamp": time.time() if timestamp is None else timestamp,
        "kind": kind,
        "record": to_jsonable(record),
    }
    return json.dumps(line, ensure_ascii=False) + "\n"


class JsonlStorage(StorageBase):
    """Appends records to a .jsonl file from a background writer thread.

    Records are encoded in write(), so a record that cannot be serialised
    fails the caller instead of the writer thread. ``counts`` tracks how many
    lines of each kind were queued.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._lines: queue.Queue[Optional[str]] = queue.Queue()
        self._closed = False
        self.counts: Dict[str, int] = {}
        self._thread = threading.Thread(target=self._drain, daemon=True)
        self._thread.start()

    def write(self, kind: str, record: Any) -> None:
        if self._closed:
            raise RuntimeError(f"{self._path} is closed")
        self._lines.put(encode_line(kind, record))
        self.counts[kind] = self.counts.get(kind, 0) + 1

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._lines.put(None)
        self._thread.join(timeout=5)

    def _drain(self) -> None:
        with open(self._path, "a", encoding="utf-8") as f:
            for line in iter(self._lines.get, None):
                f.write(line)
                f.flush()
