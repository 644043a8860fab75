"""
Base class for the scheduler's periodic tasks.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Runs ``run_once`` on a fixed interval until stopped.

    Every tick is an independent unit of work against the database. Ticks
    of different tasks, and of the same task in other processes, may
    overlap; nothing is shared between ticks except the database.
    """

    name: str = "task"

    def __init__(self, interval_seconds: float):
        """
        Initialize the task.

        Args:
            interval_seconds: Seconds between the end of one tick and the next.
        """
        self.interval = interval_seconds
        self._running = False
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Run ticks until ``stop`` is called."""
        logger.info(f"{self.name} starting with interval {self.interval}s")
        self._running = True
        self._stopped.clear()

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in {self.name} loop: {e}")

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.info(f"{self.name} stopped")

    async def stop(self) -> None:
        """Stop after the current tick."""
        logger.info(f"{self.name} stopping")
        self._running = False
        self._stopped.set()

    async def run_once(self) -> int:
        """
        Run a single tick.

        Returns:
            Number of items the tick acted on.
        """
        raise NotImplementedError
