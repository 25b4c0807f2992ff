"""
Core cache data structures.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional

if TYPE_CHECKING:
    from .manager import CachedFetcher


# fetcher(key, params, cache) -> awaitable result
Fetcher = Callable[[str, Any, "CachedFetcher"], Awaitable[Any]]


class CacheSource(Enum):
    """How a get() call was served."""
    FRESH = "fresh"         # Within TTL (or no TTL)
    STALE = "stale"         # Past TTL, served while a refresh runs
    JOINED = "joined"       # Waited on an in-flight fetch
    UPSTREAM = "upstream"   # Started a new fetch


def _consume_exception(fut: asyncio.Future) -> None:
    """Avoid 'Future exception was never retrieved' for abandoned waiters."""
    if not fut.cancelled():
        fut.exception()


@dataclass
class CacheEntry:
    """
    Per-key cache state: the committed result, its expiry and in-flight status.

    A committed entry is either a success (value, no error) or a cached
    failure (error, no value). waiters is only non-empty while is_fetching.
    """
    value: Any = None
    has_error: bool = False
    error: Optional[BaseException] = None
    expire_at: Optional[float] = None  # Absolute time.time() deadline, None = never
    is_fetching: bool = False
    waiters: List[asyncio.Future] = field(default_factory=list)

    def add_waiter(self) -> asyncio.Future:
        """Queue a pending result for a caller of the in-flight fetch."""
        waiter = asyncio.get_running_loop().create_future()
        waiter.add_done_callback(_consume_exception)
        self.waiters.append(waiter)
        return waiter

    def is_fresh(self, now: float) -> bool:
        """Entries without a deadline never go stale."""
        return self.expire_at is None or self.expire_at >= now

    def is_expired(self, now: float) -> bool:
        return self.expire_at is not None and self.expire_at < now

    def result(self) -> Any:
        """Return the committed value, or raise the cached error."""
        if self.has_error:
            raise self.error
        return self.value
