from __future__ import annotations

from typing import Optional


class SourceError(Exception):
    """Base class for every failure a source operation can surface."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url

    def __str__(self) -> str:
        message = super().__str__()
        if self.url:
            return f"{message} ({self.url})"
        return message


class TransportError(SourceError):
    """Network failure, timeout, or a non-2xx response after retries."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message, url)
        self.status_code = status_code


class MalformedResponseError(SourceError):
    """A body was received but could not be parsed into the expected shape."""


class ExtractionFailure(SourceError):
    """Structured content was expected but no strategy could locate it.

    Distinct from an empty result: a source that legitimately has zero items
    returns an empty list instead of raising this."""
