"""
TTL resolution and the serve-or-fetch decision for committed entries.
"""
from typing import Optional

from .core import CacheEntry, CacheSource


def resolve_ttl(override: Optional[float], default: Optional[float]) -> float:
    """
    Pick the TTL for a fetch.

    Args:
        override: Per-call TTL in seconds, None to use the default
        default: Engine-wide TTL in seconds

    Returns:
        TTL in seconds; <= 0 means the entry never expires
    """
    if override is not None:
        return override
    return default or 0


def compute_expire_at(ttl: float, now: float) -> Optional[float]:
    """Absolute deadline for an entry committed at `now`, None if immortal."""
    if ttl > 0:
        return now + ttl
    return None


def should_serve_cached(
    entry: CacheEntry,
    now: float,
    double_buffer: bool,
) -> Optional[CacheSource]:
    """
    Decide whether a committed (non-fetching) entry can answer a get().

    Returns:
        FRESH if the entry is within its TTL,
        STALE if it has expired but double buffering lets us serve it anyway,
        None if a new fetch must start
    """
    if entry.is_fresh(now):
        return CacheSource.FRESH
    if double_buffer:
        return CacheSource.STALE
    return None
