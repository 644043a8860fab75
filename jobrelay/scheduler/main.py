"""
Scheduler host process.

Runs the dispatcher, correlator and reclaimer side by side on one event
loop. Any number of hosts may run against the same database; they
coordinate only through row locks.
"""

import asyncio
import logging
import signal

from jobrelay.db import close_db, get_engine, init_db
from jobrelay.observability.logging import setup_logging
from jobrelay.observability.metrics import setup_metrics
from jobrelay.observability.tracing import instrument_sqlalchemy, setup_tracing
from jobrelay.scheduler.base import PeriodicTask
from jobrelay.scheduler.correlator import Correlator
from jobrelay.scheduler.dispatcher import Dispatcher
from jobrelay.scheduler.reclaimer import Reclaimer
from jobrelay.transport.http import HttpTransport

logger = logging.getLogger(__name__)


class Scheduler:
    """Owns the periodic tasks and the transport they share."""

    def __init__(self, transport: HttpTransport | None = None):
        self.transport = transport or HttpTransport()
        self.tasks: list[PeriodicTask] = [
            Dispatcher(self.transport),
            Correlator(),
            Reclaimer(),
        ]

    async def start(self) -> None:
        """Run all tasks until they are stopped."""
        logger.info("Scheduler starting", extra={"tasks": [t.name for t in self.tasks]})
        try:
            await asyncio.gather(*(task.start() for task in self.tasks))
        finally:
            await self.transport.aclose()
        logger.info("Scheduler stopped")

    async def stop(self) -> None:
        """Ask every task to stop after its current tick."""
        for task in self.tasks:
            await task.stop()


async def run_async() -> None:
    """Run the scheduler asynchronously."""
    setup_logging(component="scheduler")
    setup_metrics()
    setup_tracing(component="scheduler")
    await init_db()
    instrument_sqlalchemy(get_engine().sync_engine)

    scheduler = Scheduler()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(scheduler.stop())
        )

    try:
        await scheduler.start()
    finally:
        await close_db()


def run() -> None:
    """Run the scheduler."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
