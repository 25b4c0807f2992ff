"""
Shared fixtures: a controllable clock and a call-recording fetcher.
"""
import asyncio
from typing import Any, List, Optional, Tuple

import pytest


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingFetcher:
    """
    Async fetcher that records every call.

    Set `gate` to an asyncio.Event to hold fetches open until it is set,
    or `delay` to sleep before returning.
    """

    def __init__(self, result: Any = "value", error: Optional[BaseException] = None, delay: float = 0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[Tuple[str, Any, Any]] = []

    async def __call__(self, key, params, cache):
        self.calls.append((key, params, cache))
        if self.gate is not None:
            await self.gate.wait()
        elif self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result

    @property
    def call_count(self) -> int:
        return len(self.calls)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fetcher():
    return CountingFetcher()
