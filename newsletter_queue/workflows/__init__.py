"""Queue worker for the AI newsletter generation queue."""

from .worker import IterationOutcome, QueueWorker, WorkerStats

__all__ = [
    "IterationOutcome",
    "QueueWorker",
    "WorkerStats",
]
