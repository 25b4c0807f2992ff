"""
In-process async cache with TTL expiry, request coalescing, and stale-while-revalidate.
"""
from .core import CacheEntry, CacheSource, Fetcher
from .ttl_policies import compute_expire_at, resolve_ttl, should_serve_cached
from .coalescer import abandon, settle
from .cleaner import PeriodicCleaner
from .config.settings import CacheSettings
from .errors import CacheError, MissingFetcherError
from .manager import CachedFetcher

__all__ = [
    # Core types
    "CacheEntry",
    "CacheSource",
    "Fetcher",
    # TTL policies
    "compute_expire_at",
    "resolve_ttl",
    "should_serve_cached",
    # Coalescing
    "settle",
    "abandon",
    # Cleaner
    "PeriodicCleaner",
    # Config
    "CacheSettings",
    # Errors
    "CacheError",
    "MissingFetcherError",
    # Manager
    "CachedFetcher",
]
