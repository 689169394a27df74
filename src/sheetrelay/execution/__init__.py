"""Scheduling, dispatch, retry escalation, locking and waiting."""

from sheetrelay.execution.escalation import (
    EscalationDecision,
    FailureRecord,
    RetryEscalationEngine,
    RetryState,
)
from sheetrelay.execution.executor import TaskExecutor
from sheetrelay.execution.locking import (
    ExclusivityGuard,
    ExclusivityMarker,
    LockAttempt,
    LockCheck,
    LockStatus,
    MarkerCodec,
    MarkerEncoding,
)
from sheetrelay.execution.payload import PayloadBuilder
from sheetrelay.execution.pool import WorkerPool, WorkerSlot
from sheetrelay.execution.scheduler import ColumnScheduler, plan_batches, stage_sort_key
from sheetrelay.execution.waiting import WaitPlan, WaitStrategy

__all__ = [
    "ColumnScheduler",
    "EscalationDecision",
    "ExclusivityGuard",
    "ExclusivityMarker",
    "FailureRecord",
    "LockAttempt",
    "LockCheck",
    "LockStatus",
    "MarkerCodec",
    "MarkerEncoding",
    "PayloadBuilder",
    "RetryEscalationEngine",
    "RetryState",
    "TaskExecutor",
    "WaitPlan",
    "WaitStrategy",
    "WorkerPool",
    "WorkerSlot",
    "plan_batches",
    "stage_sort_key",
]
