"""Exception hierarchy for sheetrelay.

Only store faults and scheduler aborts propagate to callers; worker
failures are classified and retried inside the executor.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .codes import FailureCategory

if TYPE_CHECKING:
    from sheetrelay.core.models import RunSummary


class RelayError(Exception):
    """Base class for sheetrelay errors."""


class StoreError(RelayError):
    """The external store could not be read or written.

    Attributes:
        location: Location being accessed when the fault occurred.
    """

    def __init__(self, message: str, location: str | None = None) -> None:
        self.location = location
        super().__init__(message if location is None else f"{message} (location={location})")


class WorkerError(RelayError):
    """A worker reported a failed attempt.

    Workers may attach a category hint when they already know what went
    wrong (e.g. the target UI did not respond); the classifier honours it
    without pattern matching.

    Attributes:
        category: Optional category hint from the worker.
    """

    def __init__(self, message: str, category: FailureCategory | None = None) -> None:
        self.category = category
        super().__init__(message)


class SchedulerAbortedError(RelayError):
    """The scheduler itself failed and aborted the run.

    Attributes:
        summary: Partial-completion summary at the time of the abort.
        cause: The underlying error.
    """

    def __init__(self, summary: RunSummary, cause: BaseException) -> None:
        self.summary = summary
        self.cause = cause
        super().__init__(
            f"Scheduler aborted after {summary.completed}/{summary.total} tasks completed: {cause}"
        )
