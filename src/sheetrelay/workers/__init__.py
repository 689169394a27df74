"""Worker contract for external conversational services."""

from sheetrelay.workers.base import PollingWorker, Worker, WorkerFactory, WorkerResult

__all__ = ["PollingWorker", "Worker", "WorkerFactory", "WorkerResult"]
