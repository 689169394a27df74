"""Core domain models, configuration, errors and logging."""

from sheetrelay.core.models import (
    Batch,
    RetryMetrics,
    RunContext,
    RunSummary,
    Task,
    TaskGroup,
    TaskOutcome,
    TaskStatus,
)

__all__ = [
    "Batch",
    "RetryMetrics",
    "RunContext",
    "RunSummary",
    "Task",
    "TaskGroup",
    "TaskOutcome",
    "TaskStatus",
]
