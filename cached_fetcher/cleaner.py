"""
Background task that sweeps expired cache entries at a fixed interval.
"""
import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger("cached_fetcher.cleaner")


class PeriodicCleaner:
    """
    Calls a sweep callback every `interval` seconds on the running event loop.

    Sweeps never overlap: the next interval only starts once the previous
    sweep has returned.
    """

    def __init__(
        self,
        callback: Callable[[], object],
        interval: float,
        name: str = "cache-cleaner",
    ):
        if interval <= 0:
            raise ValueError(f"Cleaner interval must be positive, got {interval}")
        self._callback = callback
        self.interval = interval
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start sweeping. Requires a running event loop."""
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name=self.name)
        logger.info(f"Started {self.name} (every {self.interval}s)")

    def stop(self) -> None:
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
            logger.info(f"Stopped {self.name}")
        self._task = None

    async def _run(self) -> None:
        while True:
            # Wait a full interval before the first sweep
            await asyncio.sleep(self.interval)
            try:
                self._callback()
            except Exception:
                # A failed sweep must not kill the cleaner
                logger.exception(f"Sweep failed in {self.name}")
