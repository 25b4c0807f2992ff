"""
Fan-out of a fetch outcome to every caller waiting on it.

When multiple concurrent requests ask for the same key, only one fetch
runs and every requester is queued on the entry as a waiter. Once the
fetch settles, all waiters receive the same result (or the same error
object), in the order they called get().
"""
import logging
from typing import Any, Optional

from .core import CacheEntry

logger = logging.getLogger("cached_fetcher.coalescer")


def settle(
    entry: CacheEntry,
    value: Any = None,
    error: Optional[BaseException] = None,
) -> int:
    """
    Record a fetch outcome on the entry and release its waiters.

    Args:
        entry: The entry whose fetch just completed
        value: The fetched data (ignored when error is set)
        error: The exception raised by the fetcher, if any

    Returns:
        Number of waiters that received the outcome
    """
    if error is not None:
        entry.has_error = True
        entry.error = error
        entry.value = None
    else:
        entry.has_error = False
        entry.error = None
        entry.value = value

    waiters, entry.waiters = entry.waiters, []
    delivered = 0
    for waiter in waiters:
        # Callers cancelled while waiting are skipped
        if waiter.done():
            continue
        if entry.has_error:
            waiter.set_exception(entry.error)
        else:
            waiter.set_result(entry.value)
        delivered += 1

    logger.debug(
        f"Settled fetch ({'error' if entry.has_error else 'ok'}) "
        f"for {delivered}/{len(waiters)} waiters"
    )
    return delivered


def abandon(entry: CacheEntry) -> int:
    """
    Cancel every pending waiter of an entry whose fetch was itself cancelled.

    Returns:
        Number of waiters cancelled
    """
    waiters, entry.waiters = entry.waiters, []
    cancelled = 0
    for waiter in waiters:
        if waiter.cancel():
            cancelled += 1
    if cancelled:
        logger.debug(f"Cancelled {cancelled} waiters of an abandoned fetch")
    return cancelled
