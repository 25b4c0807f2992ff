"""
Main cache orchestration: TTL expiry, request coalescing and stale-while-revalidate.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .cleaner import PeriodicCleaner
from .coalescer import abandon, settle
from .config.settings import CacheSettings
from .core import CacheEntry, CacheSource, Fetcher
from .errors import MissingFetcherError
from .ttl_policies import compute_expire_at, resolve_ttl, should_serve_cached

logger = logging.getLogger("cached_fetcher.manager")

_STAT_BY_SOURCE = {
    CacheSource.FRESH: "hits_fresh",
    CacheSource.STALE: "hits_stale",
    CacheSource.JOINED: "joined",
    CacheSource.UPSTREAM: "misses",
}


class CachedFetcher:
    """
    Memoizes an async fetcher per key with:
    - TTL expiry (per instance default, per call override)
    - Request coalescing: at most one fetcher call in flight per key
    - Optional error caching
    - Stale-while-revalidate (double buffering)
    - Periodic sweep of expired entries

    All state lives on the instance and is driven by one asyncio event loop;
    the instance is not thread-safe.

    Usage:
        async def load_post(key, params, cache):
            return await api.get_post(key)

        cache = CachedFetcher(load_post, default_ttl=30)
        post = await cache.get("123")

    A fetcher receives the cache itself and may call get() for other keys.
    Calling get() for its own key from inside its fetch is not supported:
    the inner call joins the outer fetch and both wait forever.
    """

    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        settings: Optional[CacheSettings] = None,
        *,
        default_ttl: Optional[float] = None,
        clean_interval: Optional[float] = None,
        cache_errors: Optional[bool] = None,
        double_buffer: Optional[bool] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            fetcher: Default fetcher, called as fetcher(key, params, cache)
            settings: Base configuration, read from the environment if omitted
            default_ttl: Override settings.default_ttl (seconds, <= 0 = never expire)
            clean_interval: Override settings.clean_interval (seconds, 0 = disabled)
            cache_errors: Override settings.cache_errors
            double_buffer: Override settings.double_buffer
            clock: Wall-clock source in seconds
        """
        if settings is None:
            settings = CacheSettings()
        overrides = {
            name: value
            for name, value in (
                ("default_ttl", default_ttl),
                ("clean_interval", clean_interval),
                ("cache_errors", cache_errors),
                ("double_buffer", double_buffer),
            )
            if value is not None
        }
        if overrides:
            settings = CacheSettings(**{**settings.model_dump(), **overrides})

        self.settings = settings
        self._fetcher = fetcher
        self._clock = clock

        self._entries: Dict[str, CacheEntry] = {}
        # Detached double-buffer refreshes, keyed like _entries
        self._refreshing: Dict[str, CacheEntry] = {}
        self._tasks: Set[asyncio.Task] = set()

        self._cleaner: Optional[PeriodicCleaner] = None
        self._cleaner_pending = False

        # Stats tracking
        self._stats = {
            "hits_fresh": 0,
            "hits_stale": 0,
            "joined": 0,
            "misses": 0,
            "fetch_errors": 0,
            "revalidations": 0,
        }

        self.start_cleaner()

    async def get(
        self,
        key: str,
        *,
        ttl: Optional[float] = None,
        double_buffer: Optional[bool] = None,
        params: Any = None,
        fetcher: Optional[Fetcher] = None,
    ) -> Any:
        """
        Get the cached value for a key, fetching it if needed.

        Args:
            key: Cache key, also passed to the fetcher
            ttl: TTL override in seconds for the value fetched by this call
            double_buffer: Serve stale values while refreshing; None uses the default
            params: Opaque value passed through to the fetcher
            fetcher: Fetcher override for this call

        Returns:
            The fetched (or cached) value

        Raises:
            MissingFetcherError: A fetch is needed but no fetcher is available
            Exception: The fetcher's error, shared by every coalesced caller
        """
        self._start_deferred_cleaner()
        if double_buffer is None:
            double_buffer = self.settings.double_buffer

        entry = self._entries.get(key)
        if entry is not None:
            # Join the in-flight fetch
            if entry.is_fetching:
                self._record(CacheSource.JOINED)
                logger.debug(f"Coalescing request for {key} (waiters: {len(entry.waiters) + 1})")
                return await entry.add_waiter()

            source = should_serve_cached(entry, self._clock(), double_buffer)
            if source is CacheSource.FRESH:
                self._record(CacheSource.FRESH)
                logger.debug(f"CACHE HIT (fresh): {key}")
                return entry.result()

            if source is CacheSource.STALE:
                self._record(CacheSource.STALE)
                if key in self._refreshing:
                    logger.debug(f"CACHE HIT (stale, refresh pending): {key}")
                else:
                    logger.info(f"CACHE HIT (stale, revalidating): {key}")
                    self._start_refresh(key, self._resolve_fetcher(key, fetcher), params, ttl, entry)
                return entry.result()

        # A background refresh is already fetching this key
        refreshing = self._refreshing.get(key)
        if refreshing is not None:
            self._record(CacheSource.JOINED)
            logger.debug(f"Joining background refresh for {key}")
            return await refreshing.add_waiter()

        fetch_fn = self._resolve_fetcher(key, fetcher)
        logger.info(f"CACHE {'EXPIRED' if entry is not None else 'MISS'}: {key}")
        self._record(CacheSource.UPSTREAM)

        new_entry = CacheEntry(is_fetching=True)
        self._entries[key] = new_entry
        waiter = new_entry.add_waiter()
        self._launch(key, new_entry, fetch_fn, params, ttl)
        return await waiter

    def _resolve_fetcher(self, key: str, fetcher: Optional[Fetcher]) -> Fetcher:
        fetch_fn = fetcher or self._fetcher
        if fetch_fn is None:
            raise MissingFetcherError(key)
        return fetch_fn

    def _record(self, source: CacheSource) -> None:
        self._stats[_STAT_BY_SOURCE[source]] += 1

    def _start_refresh(
        self,
        key: str,
        fetch_fn: Fetcher,
        params: Any,
        ttl: Optional[float],
        stale: CacheEntry,
    ) -> None:
        """Fetch a replacement for a stale entry without blocking readers."""
        entry = CacheEntry(is_fetching=True)
        self._refreshing[key] = entry
        self._stats["revalidations"] += 1
        self._launch(key, entry, fetch_fn, params, ttl, replacing=stale)

    def _launch(
        self,
        key: str,
        entry: CacheEntry,
        fetch_fn: Fetcher,
        params: Any,
        ttl: Optional[float],
        replacing: Optional[CacheEntry] = None,
    ) -> None:
        """Call the fetcher and commit its outcome from a task owned by the cache."""
        try:
            pending = fetch_fn(key, params, self)
        except Exception as e:
            self._commit(key, entry, error=e, ttl=ttl, replacing=replacing)
            return
        except BaseException as e:
            self._commit(key, entry, error=e, ttl=ttl, replacing=replacing)
            raise

        task = asyncio.get_running_loop().create_task(
            self._await_fetch(key, entry, pending, ttl, replacing)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _await_fetch(
        self,
        key: str,
        entry: CacheEntry,
        pending: Awaitable[Any],
        ttl: Optional[float],
        replacing: Optional[CacheEntry],
    ) -> None:
        try:
            value = await pending
        except asyncio.CancelledError:
            logger.warning(f"Fetch cancelled for {key}")
            abandon(entry)
            entry.is_fetching = False
            if self._entries.get(key) is entry:
                del self._entries[key]
            if self._refreshing.get(key) is entry:
                del self._refreshing[key]
            raise
        except Exception as e:
            self._commit(key, entry, error=e, ttl=ttl, replacing=replacing)
        except BaseException as e:
            self._commit(key, entry, error=e, ttl=ttl, replacing=replacing)
            raise
        else:
            self._commit(key, entry, value=value, ttl=ttl, replacing=replacing)

    def _commit(
        self,
        key: str,
        entry: CacheEntry,
        value: Any = None,
        error: Optional[BaseException] = None,
        ttl: Optional[float] = None,
        replacing: Optional[CacheEntry] = None,
    ) -> None:
        """Deliver a fetch outcome to its waiters and apply the caching policy."""
        delivered = settle(entry, value, error)

        if error is not None:
            self._stats["fetch_errors"] += 1
            if replacing is not None:
                logger.warning(f"Background revalidation failed: {key} - {error!r}")
            else:
                logger.warning(f"Fetch failed for {key} ({delivered} waiters): {error!r}")

        current = self._entries.get(key)
        if error is None or self.settings.cache_errors:
            entry.expire_at = compute_expire_at(
                resolve_ttl(ttl, self.settings.default_ttl), self._clock()
            )
            # Never clobber a newer fetch started after an invalidation
            if current is None or current is entry or not current.is_fetching:
                self._entries[key] = entry
        elif current is entry or (replacing is not None and current is replacing):
            del self._entries[key]

        entry.is_fetching = False
        if self._refreshing.get(key) is entry:
            del self._refreshing[key]

    def clean(self) -> int:
        """
        Remove every entry whose TTL has passed.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items()
            if not entry.is_fetching and entry.is_expired(now)
        ]
        for key in expired:
            del self._entries[key]
        logger.debug(f"Cleaned {len(expired)} expired entries ({len(self._entries)} left)")
        return len(expired)

    def invalidate(self, key: str) -> bool:
        """
        Remove a cache entry, whatever its state.

        A fetch already running for the key still delivers to its waiters
        and stores its result when it completes.

        Returns:
            True if entry was found and removed
        """
        if key in self._entries:
            del self._entries[key]
            logger.info(f"Invalidated cache: {key}")
            return True
        return False

    def invalidate_all(self) -> int:
        """
        Drop all cache entries.

        Returns:
            Number of entries dropped
        """
        count = len(self._entries)
        self._entries = {}
        logger.info(f"Cleared {count} cache entries")
        return count

    def start_cleaner(self, interval: Optional[float] = None) -> None:
        """
        (Re)start the periodic sweep of expired entries.

        Args:
            interval: Seconds between sweeps, defaults to settings.clean_interval.
                Nothing is started when the resulting interval is not positive.

        Without a running event loop the cleaner starts on the next get().
        """
        self.stop_cleaner()
        real_interval = interval or self.settings.clean_interval
        if not real_interval or real_interval <= 0:
            return

        self._cleaner = PeriodicCleaner(self.clean, real_interval)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._cleaner_pending = True
            logger.debug(f"No running event loop, cleaner start deferred ({real_interval}s)")
            return
        self._cleaner.start()

    def stop_cleaner(self) -> None:
        """Stop the periodic sweep; no-op when it is not running."""
        if self._cleaner is not None:
            self._cleaner.stop()
            self._cleaner = None
        self._cleaner_pending = False

    def _start_deferred_cleaner(self) -> None:
        if self._cleaner_pending and self._cleaner is not None:
            self._cleaner_pending = False
            self._cleaner.start()

    @property
    def cleaner_running(self) -> bool:
        return self._cleaner is not None and self._cleaner.running

    @property
    def cleaner_interval(self) -> Optional[float]:
        """Seconds between sweeps of the configured cleaner, None when there is none."""
        return self._cleaner.interval if self._cleaner is not None else None

    def close(self) -> None:
        """Stop background work owned by the cache."""
        self.stop_cleaner()

    async def aclose(self) -> None:
        """Stop the cleaner and wait for outstanding fetches to settle."""
        self.close()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def __aenter__(self) -> "CachedFetcher":
        self._start_deferred_cleaner()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_hits = self._stats["hits_fresh"] + self._stats["hits_stale"]
        total_requests = total_hits + self._stats["joined"] + self._stats["misses"]
        hit_rate = (total_hits / total_requests * 100) if total_requests > 0 else 0

        return {
            "entries": len(self._entries),
            "in_flight": sum(1 for e in self._entries.values() if e.is_fetching),
            "refreshing": len(self._refreshing),
            "hits_fresh": self._stats["hits_fresh"],
            "hits_stale": self._stats["hits_stale"],
            "joined": self._stats["joined"],
            "misses": self._stats["misses"],
            "fetch_errors": self._stats["fetch_errors"],
            "revalidations": self._stats["revalidations"],
            "hit_rate_percent": round(hit_rate, 1),
            "cleaner_running": self.cleaner_running,
        }
