"""Column-major batch scheduler.

Tasks are processed one stage (column) at a time, in natural column
order. Within a stage, tasks are sorted by row and cut into batches of
at most ``batch_size``; a fan-out group always lands in a single batch.
Members of a batch are launched with a fixed stagger and then run
concurrently; the next batch starts only once every member settled.

Example usage:
    scheduler = ColumnScheduler(store, factory, RelayConfig())
    summary = await scheduler.run(tasks)
    print(summary.to_dict())
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import datetime
from typing import Any

from sheetrelay.core.config import RelayConfig
from sheetrelay.core.errors import FailureCategory, SchedulerAbortedError, StoreError
from sheetrelay.core.logging import ExecutionContext, get_logger, with_context
from sheetrelay.core.models import (
    Batch,
    RunContext,
    RunSummary,
    Task,
    TaskOutcome,
    TaskStatus,
    new_owner_id,
    sanitize_owner_id,
)
from sheetrelay.core.timeouts import TimeoutTable
from sheetrelay.execution.executor import TaskExecutor
from sheetrelay.execution.locking import ExclusivityGuard, LockStatus
from sheetrelay.execution.pool import WorkerPool
from sheetrelay.execution.waiting import WaitStrategy
from sheetrelay.store.base import ResultStore
from sheetrelay.workers.base import WorkerFactory

_logger = get_logger("scheduler")

TaskLoader = Callable[[str], Awaitable[Sequence[Task]]]
SleepFn = Callable[[float], Awaitable[Any]]


def stage_sort_key(stage: str) -> tuple[int, int, str]:
    """Natural ordering for stage labels.

    Letter-only labels sort as spreadsheet columns (``Z < AA``), numeric
    labels numerically, anything else alphabetically after both.
    """
    label = stage.strip()
    if label.isascii() and label.isalpha():
        return (0, len(label), label.upper())
    if label.isdigit():
        return (1, int(label), label)
    return (2, 0, label)


def _first_store_error(group: BaseExceptionGroup[StoreError]) -> StoreError:
    for exc in group.exceptions:
        if isinstance(exc, BaseExceptionGroup):
            return _first_store_error(exc)
        return exc
    raise AssertionError("empty exception group")


def _task_sort_key(task: Task) -> tuple[int, int, str]:
    return (task.row, task.group.position if task.group else 0, task.id)


def validate_groups(tasks: Iterable[Task]) -> None:
    """Ensure every fan-out group stays within one stage.

    Raises:
        ValueError: Members of one group carry different stages.
    """
    stages: dict[str, str] = {}
    for task in tasks:
        if task.group is None:
            continue
        seen = stages.setdefault(task.group.id, task.stage)
        if seen != task.stage:
            raise ValueError(
                f"group {task.group.id!r} spans stages {seen!r} and {task.stage!r}"
            )


def plan_batches(stage: str, tasks: Sequence[Task], batch_size: int) -> list[Batch]:
    """Cut a stage's tasks into batches, keeping fan-out groups whole.

    Tasks are taken in row order. A group is placed where its first member
    appears; a group larger than ``batch_size`` gets a batch of its own.
    """
    units: list[list[Task]] = []
    group_units: dict[str, list[Task]] = {}
    for task in sorted(tasks, key=_task_sort_key):
        if task.group is None:
            units.append([task])
            continue
        unit = group_units.get(task.group.id)
        if unit is None:
            unit = group_units[task.group.id] = []
            units.append(unit)
        unit.append(task)

    batches: list[Batch] = []
    current: list[Task] = []

    def flush() -> None:
        if current:
            batches.append(Batch(stage=stage, index=len(batches), tasks=tuple(current)))
            current.clear()

    for unit in units:
        if current and len(current) + len(unit) > batch_size:
            flush()
        current.extend(unit)
        if len(current) >= batch_size:
            flush()
    flush()
    return batches


class ColumnScheduler:
    """Drives tasks through a fixed worker pool, stage by stage.

    Attributes:
        store: Result store read for idempotency and written by executors.
        pool: Worker pool shared by every task of every run.
        owner_id: Owner id this scheduler writes into its markers.
    """

    def __init__(
        self,
        store: ResultStore,
        worker_factory: WorkerFactory,
        config: RelayConfig | None = None,
        task_loader: TaskLoader | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.config = config or RelayConfig()
        self.task_loader = task_loader
        self._sleep = sleep
        self._clock = clock

        self.pool = WorkerPool(worker_factory, self.config.scheduler.max_workers)
        timeouts = TimeoutTable(self.config.timeouts)
        self.guard = ExclusivityGuard(
            store, self.config.lock, timeouts, now=now, placeholders=self.config.input.placeholders
        )
        self.wait = WaitStrategy(self.guard, self.config.wait, sleep=sleep)
        self.executor = TaskExecutor(
            store,
            self.pool,
            self.config,
            guard=self.guard,
            wait=self.wait,
            sleep=sleep,
            clock=clock,
        )
        owner = self.config.scheduler.owner_id
        self.owner_id = sanitize_owner_id(owner) if owner else new_owner_id()

    async def run(self, tasks: Sequence[Task]) -> RunSummary:
        """Process every task, stage by stage.

        Args:
            tasks: Tasks to process

        Returns:
            RunSummary with one outcome per task

        Raises:
            ValueError: A fan-out group spans stages.
            SchedulerAbortedError: The store failed; carries the partial summary.
        """
        validate_groups(tasks)
        context = RunContext(owner_id=self.owner_id)
        summary = RunSummary(total=len(tasks), metrics=context.metrics)
        started = self._clock()

        by_stage: dict[str, list[Task]] = defaultdict(list)
        for task in tasks:
            by_stage[task.stage].append(task)
        stages = sorted(by_stage, key=stage_sort_key)

        run_ctx = ExecutionContext(run_id=context.run_id, component="scheduler")
        abort_cause: StoreError | None = None
        with with_context(run_ctx):
            _logger.info(
                "scheduler.run_start",
                tasks=len(tasks),
                stages=stages,
                owner_id=context.owner_id,
                batch_size=self.config.scheduler.batch_size,
            )
            try:
                for index, stage in enumerate(stages):
                    stage_tasks = by_stage[stage]
                    if index > 0 and self.task_loader is not None:
                        stage_tasks = await self._reload_stage(stage, stage_tasks, summary)
                    await self._run_stage(stage, stage_tasks, context, summary)
            except* StoreError as eg:
                abort_cause = _first_store_error(eg)

            summary.elapsed_seconds = self._clock() - started
            if abort_cause is not None:
                summary.aborted = True
                summary.abort_reason = str(abort_cause)
                _logger.error("scheduler.aborted", **summary.to_dict())
                raise SchedulerAbortedError(summary, abort_cause) from abort_cause

            _logger.info("scheduler.run_complete", **summary.to_dict())
        return summary

    async def close(self) -> None:
        """Close every worker the pool created."""
        await self.pool.close()

    async def _reload_stage(
        self,
        stage: str,
        previous: list[Task],
        summary: RunSummary,
    ) -> list[Task]:
        assert self.task_loader is not None
        fresh = list(await self.task_loader(stage))
        validate_groups(fresh)
        mismatched = [t.id for t in fresh if t.stage != stage]
        if mismatched:
            raise ValueError(f"task loader returned tasks outside stage {stage!r}: {mismatched}")
        summary.total += len(fresh) - len(previous)
        _logger.info("scheduler.stage_reloaded", stage=stage, before=len(previous), after=len(fresh))
        return fresh

    async def _run_stage(
        self,
        stage: str,
        tasks: list[Task],
        context: RunContext,
        summary: RunSummary,
    ) -> None:
        pending = await self._skip_answered(tasks, summary)
        batches = plan_batches(stage, pending, self.config.scheduler.batch_size)
        _logger.info(
            "scheduler.stage_start",
            stage=stage,
            tasks=len(tasks),
            pending=len(pending),
            batches=len(batches),
        )
        await self._run_batches(batches, context, summary)

        if self.config.wait.wait_for_busy:
            busy = self._with_status(pending, summary, TaskStatus.BUSY)
            if busy:
                _logger.info("scheduler.waiting_for_busy", stage=stage, busy=len(busy))
                ready = await self.wait.wait_for_release(busy)
                await self._run_batches(
                    plan_batches(stage, ready, self.config.scheduler.batch_size), context, summary
                )

        for round_num, delay in enumerate(self.config.scheduler.reprocess_failed_delays, 1):
            failed = self._with_status(pending, summary, TaskStatus.FAILED)
            if not failed:
                break
            _logger.info(
                "scheduler.reprocess_scheduled",
                stage=stage,
                round=round_num,
                failed=len(failed),
                delay_seconds=delay,
            )
            await self._sleep(delay)
            await self._run_batches(
                plan_batches(stage, failed, self.config.scheduler.batch_size), context, summary
            )

        _logger.info("scheduler.stage_complete", stage=stage, **self._stage_counts(tasks, summary))

    async def _skip_answered(self, tasks: list[Task], summary: RunSummary) -> list[Task]:
        """Record already-answered tasks as skipped and return the rest."""
        values = await self.store.read_many(t.output_ref for t in tasks)
        pending: list[Task] = []
        for task in tasks:
            if self.is_answered(values.get(task.output_ref)):
                now = self._clock()
                summary.record(
                    TaskOutcome(
                        task=task,
                        status=TaskStatus.SKIPPED,
                        message="already answered",
                        launched_at=now,
                        finished_at=now,
                    )
                )
            else:
                pending.append(task)
        return pending

    def is_answered(self, value: str | None) -> bool:
        """Whether a stored value is a real result (not empty, a marker or a placeholder)."""
        return self.guard.classify_value(value).status is LockStatus.ANSWERED

    async def _run_batches(
        self,
        batches: list[Batch],
        context: RunContext,
        summary: RunSummary,
    ) -> None:
        for batch in batches:
            await self._run_batch(batch, context, summary)

    async def _run_batch(self, batch: Batch, context: RunContext, summary: RunSummary) -> None:
        stagger = self.config.scheduler.stagger_delay_seconds
        _logger.info(
            "scheduler.batch_start",
            stage=batch.stage,
            batch=batch.index,
            tasks=batch.task_ids,
        )
        async with asyncio.TaskGroup() as tg:
            for position, task in enumerate(batch.tasks):
                if position > 0 and stagger > 0:
                    await self._sleep(stagger)
                tg.create_task(self._run_one(task, context, summary), name=f"task-{task.id}")
        _logger.info(
            "scheduler.batch_complete",
            stage=batch.stage,
            batch=batch.index,
            statuses={
                t.id: o.status.value
                for t in batch.tasks
                if (o := summary.outcome_for(t.id)) is not None
            },
        )

    async def _run_one(self, task: Task, context: RunContext, summary: RunSummary) -> None:
        try:
            outcome = await self.executor.execute(task, context)
        except StoreError:
            raise
        except Exception as exc:
            _logger.exception("scheduler.task_crashed", task_id=task.id, error=str(exc))
            now = self._clock()
            outcome = TaskOutcome(
                task=task,
                status=TaskStatus.FAILED,
                category=FailureCategory.GENERAL,
                message=f"{type(exc).__name__}: {exc}",
                launched_at=now,
                finished_at=now,
            )
        summary.record(outcome)

    @staticmethod
    def _with_status(tasks: list[Task], summary: RunSummary, status: TaskStatus) -> list[Task]:
        return [
            t for t in tasks
            if (o := summary.outcome_for(t.id)) is not None and o.status is status
        ]

    @staticmethod
    def _stage_counts(tasks: list[Task], summary: RunSummary) -> dict[str, int]:
        counts: dict[str, int] = {s.value: 0 for s in TaskStatus}
        for task in tasks:
            outcome = summary.outcome_for(task.id)
            if outcome is not None:
                counts[outcome.status.value] += 1
        return counts


__all__ = [
    "ColumnScheduler",
    "TaskLoader",
    "plan_batches",
    "stage_sort_key",
    "validate_groups",
]
