"""
Unit tests for the periodic task loop.
"""

import asyncio

from jobrelay.scheduler.base import PeriodicTask


class CountingTask(PeriodicTask):
    name = "Counting"

    def __init__(self, fail_first: bool = False):
        super().__init__(interval_seconds=0.01)
        self.runs = 0
        self.fail_first = fail_first

    async def run_once(self) -> int:
        self.runs += 1
        if self.fail_first and self.runs == 1:
            raise RuntimeError("first tick fails")
        if self.runs >= 3:
            await self.stop()
        return 0


class TestPeriodicTask:
    """Tests for PeriodicTask.start and stop."""

    async def test_runs_until_stopped(self):
        """Test that ticks repeat until stop is called."""
        task = CountingTask()

        await asyncio.wait_for(task.start(), timeout=5)

        assert task.runs == 3

    async def test_error_does_not_stop_loop(self):
        """Test that a failing tick is logged and the loop continues."""
        task = CountingTask(fail_first=True)

        await asyncio.wait_for(task.start(), timeout=5)

        assert task.runs == 3

    async def test_stop_interrupts_wait(self):
        """Test that stop wakes a task sleeping between ticks."""
        task = CountingTask()
        task.interval = 60
        runner = asyncio.create_task(task.start())
        await asyncio.sleep(0.05)

        await task.stop()

        await asyncio.wait_for(runner, timeout=5)
        assert task.runs == 1
