"""Errors raised by the cache itself.

Fetcher failures are never wrapped: callers receive the fetcher's own
exception object.
"""


class CacheError(Exception):
    """Base class for cache errors."""


class MissingFetcherError(CacheError):
    """get() was called without a configured or per-call fetcher."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"No fetcher defined for key '{key}'")
