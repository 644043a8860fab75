"""
Scheduler module.
Contains the dispatcher, correlator, reclaimer and retry engine.
"""

from jobrelay.scheduler.correlator import Correlator
from jobrelay.scheduler.dispatcher import Dispatcher
from jobrelay.scheduler.main import Scheduler, run
from jobrelay.scheduler.reclaimer import Reclaimer
from jobrelay.scheduler.retry import RetryEngine, compute_backoff

__all__ = [
    "Dispatcher",
    "Correlator",
    "Reclaimer",
    "RetryEngine",
    "compute_backoff",
    "Scheduler",
    "run",
]
