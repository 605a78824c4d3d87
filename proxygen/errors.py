"""Error taxonomy for the conversion pipeline.

Every error carries a human-readable message that starts with
"could not fetch", "could not parse" or "could not convert" so callers
can render an actionable message instead of a traceback.
"""

from __future__ import annotations


class ProxygenError(Exception):
    """Base class for all pipeline errors."""


class FetchError(ProxygenError):
    """A spec or endpoint could not be retrieved (non-2xx or network failure)."""

    def __init__(self, url: str, reason: str, status: int | None = None) -> None:
        self.url = url
        self.status = status
        super().__init__(f"could not fetch {url}: {reason}")


class ParseError(ProxygenError):
    """Input text is not a valid JSON document."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        super().__init__(f"could not parse {source}: {reason}")


class ConversionError(ProxygenError):
    """Assembly or generation failed; no partial config is produced."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"could not convert: {reason}")
