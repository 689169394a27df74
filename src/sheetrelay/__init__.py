"""sheetrelay: column-major batch dispatch of long-running jobs to a worker pool."""

from __future__ import annotations

from collections.abc import Sequence

from sheetrelay.core.config import RelayConfig
from sheetrelay.core.errors import (
    FailureCategory,
    RelayError,
    SchedulerAbortedError,
    StoreError,
    WorkerError,
)
from sheetrelay.core.logging import configure_logging
from sheetrelay.core.models import RunSummary, Task, TaskGroup, TaskOutcome, TaskStatus
from sheetrelay.execution.scheduler import ColumnScheduler, TaskLoader
from sheetrelay.store import JsonFileStore, MemoryStore, ResultStore
from sheetrelay.workers import PollingWorker, Worker, WorkerFactory, WorkerResult

__version__ = "0.1.0"


async def run_tasks(
    tasks: Sequence[Task],
    store: ResultStore,
    worker_factory: WorkerFactory,
    config: RelayConfig | None = None,
    task_loader: TaskLoader | None = None,
) -> RunSummary:
    """Run tasks once with a fresh scheduler, closing its workers afterwards.

    Logging is configured from ``config.logging``.
    """
    config = config or RelayConfig()
    log = config.logging
    configure_logging(
        level=log.level,
        format=log.format,
        file_path=log.file_path,
        max_file_size_mb=log.max_file_size_mb,
        backup_count=log.backup_count,
        include_timestamps=log.include_timestamps,
        include_context=log.include_context,
    )
    scheduler = ColumnScheduler(store, worker_factory, config, task_loader=task_loader)
    try:
        return await scheduler.run(tasks)
    finally:
        await scheduler.close()


__all__ = [
    "ColumnScheduler",
    "FailureCategory",
    "JsonFileStore",
    "MemoryStore",
    "PollingWorker",
    "RelayConfig",
    "RelayError",
    "ResultStore",
    "RunSummary",
    "SchedulerAbortedError",
    "StoreError",
    "Task",
    "TaskGroup",
    "TaskOutcome",
    "TaskStatus",
    "Worker",
    "WorkerError",
    "WorkerFactory",
    "WorkerResult",
    "__version__",
    "run_tasks",
]
