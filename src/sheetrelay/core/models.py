"""Task, outcome and run-level data models.

Tasks are immutable descriptions of one job; outcomes and summaries are
what the executor and scheduler report back. Nothing here is persisted.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sheetrelay.core.errors.codes import FailureCategory


class TaskStatus(str, Enum):
    """Terminal status of one task invocation."""

    COMPLETED = "completed"
    FAILED = "failed"
    BUSY = "busy"
    """Another dispatcher holds a fresh marker on the output location."""
    SKIPPED = "skipped"
    """Already answered, or nothing to send."""


@dataclass(frozen=True)
class TaskGroup:
    """Membership of a task in a fan-out group.

    Attributes:
        id: Group identifier shared by all siblings.
        position: 0-based index of this sibling.
        size: Number of siblings in the group.
    """

    id: str
    position: int
    size: int


@dataclass(frozen=True)
class Task:
    """One unit of work: send assembled inputs to one worker, store the answer.

    Attributes:
        id: Unique task identifier.
        row: Row of the task within its stage.
        stage: Stage label (a spreadsheet column such as ``"B"`` or ``"AA"``,
            or an ordinal string).
        output_ref: Location the result (and the marker) is written to.
        job_type: Vendor identifier selecting the classification profile.
        variant: Model variant requested from the worker.
        capability: Requested feature, e.g. ``"deep-research"``.
        input_refs: Ordered locations whose contents form the payload.
        group: Fan-out membership, if any.
        log_refs: Locations that receive a metadata block on success.
    """

    id: str
    row: int
    stage: str
    output_ref: str
    job_type: str = "generic"
    variant: str | None = None
    capability: str | None = None
    input_refs: tuple[str, ...] = ()
    group: TaskGroup | None = None
    log_refs: tuple[str, ...] = ()

    @property
    def position(self) -> str:
        """Human-readable position such as ``B5``."""
        return f"{self.stage}{self.row}"


@dataclass(frozen=True)
class Batch:
    """An ordered, bounded group of same-stage tasks launched together."""

    stage: str
    index: int
    tasks: tuple[Task, ...]

    @property
    def task_ids(self) -> list[str]:
        return [t.id for t in self.tasks]


@dataclass
class RetryMetrics:
    """Counters for attempts, failures per category and escalations per tier.

    Attributes:
        total_attempts: Attempts made (successful or not).
        successful_attempts: Attempts that produced a result.
        category_counts: Failures per category value.
        tier_counts: Escalation decisions per tier value.
    """

    total_attempts: int = 0
    successful_attempts: int = 0
    category_counts: dict[str, int] = field(default_factory=dict)
    tier_counts: dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        """Successful attempts as a percentage (0.0 when nothing ran)."""
        if self.total_attempts == 0:
            return 0.0
        return self.successful_attempts / self.total_attempts * 100

    def merge(self, other: RetryMetrics) -> None:
        """Add another set of counters into this one."""
        self.total_attempts += other.total_attempts
        self.successful_attempts += other.successful_attempts
        for key, count in other.category_counts.items():
            self.category_counts[key] = self.category_counts.get(key, 0) + count
        for key, count in other.tier_counts.items():
            self.tier_counts[key] = self.tier_counts.get(key, 0) + count

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_attempts": self.total_attempts,
            "successful_attempts": self.successful_attempts,
            "success_rate": round(self.success_rate, 2),
            "category_counts": dict(self.category_counts),
            "tier_counts": dict(self.tier_counts),
        }


@dataclass
class TaskOutcome:
    """Result of one TaskExecutor invocation.

    Attributes:
        task: The task that ran.
        status: Terminal status.
        attempts: Attempts consumed (0 for busy/skipped).
        category: Last classified failure category, ``timeout`` on deadline expiry.
        message: Last failure message or skip/busy reason.
        response: Worker response on success.
        launched_at: Monotonic launch time.
        finished_at: Monotonic finish time.
        diagnostics: Serialized failure history.
    """

    task: Task
    status: TaskStatus
    attempts: int = 0
    category: FailureCategory | None = None
    message: str | None = None
    response: str | None = None
    launched_at: float | None = None
    finished_at: float | None = None
    diagnostics: list[dict[str, Any]] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float | None:
        if self.launched_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.launched_at

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "task_id": self.task.id,
            "position": self.task.position,
            "status": self.status.value,
            "attempts": self.attempts,
            "category": self.category.value if self.category else None,
            "message": self.message,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class RunSummary:
    """Aggregate result of a scheduler run.

    Outcomes are keyed by task id; a later outcome for the same task (busy
    re-dispatch, failed-task reprocessing) replaces the earlier one.

    Attributes:
        total: Number of tasks the run was asked to process.
        elapsed_seconds: Wall time of the run.
        metrics: Retry metrics aggregated over every invocation.
        aborted: Whether the run stopped on a scheduler-level fault.
        abort_reason: Description of that fault.
    """

    total: int = 0
    elapsed_seconds: float = 0.0
    metrics: RetryMetrics = field(default_factory=RetryMetrics)
    aborted: bool = False
    abort_reason: str | None = None
    _outcomes: dict[str, TaskOutcome] = field(default_factory=dict, repr=False)

    def record(self, outcome: TaskOutcome) -> None:
        """Record (or replace) the outcome for a task."""
        self._outcomes[outcome.task.id] = outcome

    @property
    def outcomes(self) -> list[TaskOutcome]:
        return list(self._outcomes.values())

    def _count(self, status: TaskStatus) -> int:
        return sum(1 for o in self._outcomes.values() if o.status is status)

    @property
    def completed(self) -> int:
        return self._count(TaskStatus.COMPLETED)

    @property
    def failed(self) -> int:
        return self._count(TaskStatus.FAILED)

    @property
    def busy(self) -> int:
        return self._count(TaskStatus.BUSY)

    @property
    def skipped(self) -> int:
        return self._count(TaskStatus.SKIPPED)

    def outcome_for(self, task_id: str) -> TaskOutcome | None:
        return self._outcomes.get(task_id)

    def failures(self) -> dict[str, dict[str, Any]]:
        """Last category and attempt count for every failed task."""
        return {
            o.task.id: {
                "category": o.category.value if o.category else None,
                "attempts": o.attempts,
                "message": o.message,
            }
            for o in self._outcomes.values()
            if o.status is TaskStatus.FAILED
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "busy": self.busy,
            "skipped": self.skipped,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "failures": self.failures(),
            "metrics": self.metrics.to_dict(),
        }


def new_owner_id() -> str:
    """Generate an owner id for one dispatching process."""
    return f"relay-{uuid.uuid4().hex[:8]}"


def sanitize_owner_id(raw: str) -> str:
    """Make an owner id safe to embed in a marker (no ``_`` separators)."""
    cleaned = raw.strip().replace("_", "-")
    return cleaned or "relay"


@dataclass
class RunContext:
    """Per-run state shared by the scheduler and every executor invocation.

    Attributes:
        owner_id: Owner id written into this run's markers.
        run_id: Unique run identifier for log correlation.
        metrics: Retry metrics aggregated over every invocation.
    """

    owner_id: str = field(default_factory=new_owner_id)
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metrics: RetryMetrics = field(default_factory=RetryMetrics)
    _active_outputs: set[str] = field(default_factory=set, repr=False)
    _log_locks: dict[str, asyncio.Lock] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self.owner_id = sanitize_owner_id(self.owner_id)

    def claim_output(self, location: str) -> bool:
        """Mark a location as being dispatched; False if it already is."""
        if location in self._active_outputs:
            return False
        self._active_outputs.add(location)
        return True

    def release_output(self, location: str) -> None:
        self._active_outputs.discard(location)

    def is_active(self, location: str) -> bool:
        return location in self._active_outputs

    def log_lock(self, location: str) -> asyncio.Lock:
        """Lock serializing appends to one shared log location."""
        lock = self._log_locks.get(location)
        if lock is None:
            lock = asyncio.Lock()
            self._log_locks[location] = lock
        return lock


__all__ = [
    "Batch",
    "RetryMetrics",
    "RunContext",
    "RunSummary",
    "Task",
    "TaskGroup",
    "TaskOutcome",
    "TaskStatus",
    "new_owner_id",
    "sanitize_owner_id",
]
