"""Single-task execution: lock, assemble, dispatch, escalate, write back.

One ``TaskExecutor.execute`` call takes a task from its marker check to
a terminal ``TaskOutcome``:

1. Place a marker on the output location (``busy`` if someone holds it).
2. Assemble the payload from the input locations (``skipped`` if empty).
3. Pick the attempt deadline from the requested capability.
4. Dispatch on a pool slot under ``asyncio.timeout``; on failure ask the
   escalation engine for a delay and recovery action and try again.
5. Write the answer over the marker (success) or clear the marker
   (exhaustion, deadline expiry, crash or cancellation).

Store faults are never retried; ``StoreError`` propagates to the scheduler.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from sheetrelay.core.config import RelayConfig
from sheetrelay.core.errors import (
    ClassifiedFailure,
    FailureCategory,
    RecoveryAction,
    StoreError,
)
from sheetrelay.core.logging import ExecutionContext, get_logger, with_context
from sheetrelay.core.models import RunContext, Task, TaskOutcome, TaskStatus
from sheetrelay.core.timeouts import TimeoutTable
from sheetrelay.execution.escalation import RetryEscalationEngine
from sheetrelay.execution.locking import ExclusivityGuard, LockStatus
from sheetrelay.execution.payload import PayloadBuilder
from sheetrelay.execution.pool import WorkerPool, WorkerSlot
from sheetrelay.execution.waiting import WaitPlan, WaitStrategy
from sheetrelay.store.base import ResultStore
from sheetrelay.workers.base import PollingWorker, Worker, WorkerResult

_logger = get_logger("executor")

SleepFn = Callable[[float], Awaitable[Any]]


class _PollDeadlineExpired(Exception):
    """A polled job did not finish within its deadline."""


class TaskExecutor:
    """Runs one task to a terminal outcome.

    Example:
        executor = TaskExecutor(store, pool)
        outcome = await executor.execute(task, RunContext())
    """

    def __init__(
        self,
        store: ResultStore,
        pool: WorkerPool,
        config: RelayConfig | None = None,
        guard: ExclusivityGuard | None = None,
        wait: WaitStrategy | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.pool = pool
        self.config = config or RelayConfig()
        self.timeouts = guard.timeouts if guard else TimeoutTable(self.config.timeouts)
        self.guard = guard or ExclusivityGuard(
            store, self.config.lock, self.timeouts, placeholders=self.config.input.placeholders
        )
        self.wait = wait or WaitStrategy(self.guard, self.config.wait, sleep=sleep)
        self.payloads = PayloadBuilder(self.config.input)
        self._sleep = sleep
        self._clock = clock

    async def execute(self, task: Task, context: RunContext) -> TaskOutcome:
        """Execute a task.

        Args:
            task: Task to run
            context: Run-wide state shared with the scheduler

        Returns:
            TaskOutcome with the terminal status

        Raises:
            StoreError: The store could not be read or written.
        """
        launched_at = self._clock()
        ctx = (
            ExecutionContext(run_id=context.run_id, component="executor")
            .with_task(task.id, task.stage, task.row)
        )
        with with_context(ctx):
            if not context.claim_output(task.output_ref):
                _logger.info("executor.already_dispatching", location=task.output_ref)
                return self._outcome(
                    task, TaskStatus.BUSY, launched_at,
                    message="location is already being dispatched by this run",
                )
            try:
                return await self._execute(task, context, launched_at)
            finally:
                context.release_output(task.output_ref)

    async def _execute(self, task: Task, context: RunContext, launched_at: float) -> TaskOutcome:
        lock = await self.guard.acquire(task.output_ref, context.owner_id, task.capability)
        if not lock.acquired:
            if lock.status is LockStatus.ANSWERED:
                return self._outcome(
                    task, TaskStatus.SKIPPED, launched_at, message="already answered"
                )
            return self._outcome(
                task, TaskStatus.BUSY, launched_at,
                message=f"{lock.reason} (holder={lock.holder})",
            )
        marker = lock.marker_text
        assert marker is not None

        try:
            return await self._run_locked(task, context, marker, launched_at)
        except (asyncio.CancelledError, Exception) as exc:
            await self._abandon(task, marker, exc)
            raise

    async def _run_locked(
        self,
        task: Task,
        context: RunContext,
        marker: str,
        launched_at: float,
    ) -> TaskOutcome:
        payload = await self.assemble_payload(task)
        if payload is None:
            await self.guard.release(task.output_ref, marker)
            _logger.info("executor.no_input", inputs=list(task.input_refs))
            return self._outcome(task, TaskStatus.SKIPPED, launched_at, message="no input")

        deadline = self.timeouts.dispatch_timeout(task.capability)
        engine = RetryEscalationEngine(self.config.escalation, vendor=task.job_type)
        _logger.info(
            "executor.dispatch",
            vendor=engine.vendor,
            capability=task.capability,
            deadline_seconds=deadline,
        )
        try:
            return await self._attempt_loop(
                task, context, marker, payload, deadline, engine, launched_at
            )
        finally:
            context.metrics.merge(engine.state.metrics)

    async def _attempt_loop(
        self,
        task: Task,
        context: RunContext,
        marker: str,
        payload: str,
        deadline: float,
        engine: RetryEscalationEngine,
        launched_at: float,
    ) -> TaskOutcome:
        log_ctx = {"task_id": task.id}
        async with self.pool.slot() as slot:
            pending: RecoveryAction | None = None
            attempt = 0
            while True:
                attempt += 1
                failure: BaseException | str
                expiry = asyncio.timeout(deadline)
                try:
                    async with expiry:
                        worker = (
                            await slot.recover(pending) if pending else await slot.ensure_worker()
                        )
                        result = await self._dispatch(worker, task, payload, deadline)
                except StoreError:
                    raise
                except _PollDeadlineExpired:
                    return await self._expire(
                        task, slot, marker, deadline, engine, attempt, launched_at
                    )
                except Exception as exc:
                    if expiry.expired():
                        return await self._expire(
                            task, slot, marker, deadline, engine, attempt, launched_at
                        )
                    failure = exc
                else:
                    if result.success and result.response and result.response.strip():
                        engine.on_success()
                        if not await self.guard.commit(task.output_ref, marker, result.response):
                            return self._outcome(
                                task, TaskStatus.BUSY, launched_at,
                                attempts=attempt,
                                message="marker was reclaimed by another owner; result discarded",
                                diagnostics=engine.state.diagnostics(),
                            )
                        await self.write_log_metadata(task, result, context, attempt)
                        _logger.info("executor.completed", attempt=attempt, slot=slot.index)
                        return self._outcome(
                            task, TaskStatus.COMPLETED, launched_at,
                            attempts=attempt, response=result.response,
                            diagnostics=engine.state.diagnostics(),
                        )
                    failure = result.error or (
                        "worker returned an empty response" if result.success else "worker failed"
                    )

                decision = engine.on_failure(failure, attempt, log_ctx)
                if decision.exhausted:
                    await self.guard.release(task.output_ref, marker)
                    _logger.error(
                        "executor.failed",
                        attempt=attempt,
                        category=decision.category.value if decision.category else None,
                        reason=decision.reason,
                    )
                    last = engine.state.history[-1] if engine.state.history else None
                    return self._outcome(
                        task, TaskStatus.FAILED, launched_at,
                        attempts=attempt, category=decision.category,
                        message=last.message if last else decision.reason,
                        diagnostics=engine.state.diagnostics(),
                    )
                _logger.warning(
                    "executor.attempt_failed",
                    attempt=attempt,
                    category=decision.category.value if decision.category else None,
                    delay_seconds=decision.delay_seconds,
                    action=decision.action.value,
                )
                await self._sleep(decision.delay_seconds)
                pending = decision.action

    async def _dispatch(
        self,
        worker: Worker,
        task: Task,
        payload: str,
        deadline: float,
    ) -> WorkerResult:
        if not isinstance(worker, PollingWorker):
            return await worker.execute(payload, task.variant, task.capability, deadline)

        await worker.start(payload, task.variant, task.capability, deadline)
        finished: list[WorkerResult] = []

        async def poll_done() -> bool:
            result = await worker.poll()
            if result is None:
                return False
            finished.append(result)
            return True

        plan = WaitPlan(
            max_wait_seconds=deadline,
            check_interval_seconds=self.config.wait.check_interval_seconds,
            detected_category=task.capability,
            long_running=self.timeouts.is_long_running(task.capability),
        )
        if not await self.wait.wait_until(poll_done, plan, label=task.output_ref):
            raise _PollDeadlineExpired(f"job did not finish within {deadline:.0f}s")
        return finished[0]

    async def _expire(
        self,
        task: Task,
        slot: WorkerSlot,
        marker: str,
        deadline: float,
        engine: RetryEscalationEngine,
        attempt: int,
        launched_at: float,
    ) -> TaskOutcome:
        message = f"attempt {attempt} exceeded the {deadline:.0f}s deadline"
        engine.on_failure(
            ClassifiedFailure(category=FailureCategory.TIMEOUT, message=message, vendor=engine.vendor),
            attempt,
            {"task_id": task.id},
        )
        slot.invalidate()
        await self.guard.release(task.output_ref, marker)
        _logger.error("executor.deadline_expired", attempt=attempt, deadline_seconds=deadline)
        return self._outcome(
            task, TaskStatus.FAILED, launched_at,
            attempts=attempt, category=FailureCategory.TIMEOUT, message=message,
            diagnostics=engine.state.diagnostics(),
        )

    async def _abandon(self, task: Task, marker: str, exc: BaseException) -> None:
        """Clear our marker after a crash or cancellation.

        The release is shielded so a cancelled batch still clears its
        markers. A store fault during the release is logged; the original
        exception is the one that propagates.
        """
        _logger.error(
            "executor.aborted",
            location=task.output_ref,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        try:
            await asyncio.shield(self.guard.release(task.output_ref, marker))
        except StoreError as release_exc:
            _logger.warning(
                "executor.marker_left",
                location=task.output_ref,
                error=str(release_exc),
            )

    async def assemble_payload(self, task: Task) -> str | None:
        """Concatenate the task's inputs under a position header.

        Returns:
            The payload, or None when every input is empty
        """
        values = await self.store.read_many(task.input_refs)
        return self.payloads.build(task, values)

    async def write_log_metadata(
        self,
        task: Task,
        result: WorkerResult,
        context: RunContext,
        attempts: int,
    ) -> None:
        """Append a metadata block for a completed task to each log location."""
        if not task.log_refs:
            return
        lines = [
            f"[{task.position}] {datetime.now(UTC).strftime('%Y-%m-%d %H:%M:%S')} UTC",
            f"vendor: {task.job_type}",
            f"variant: {result.displayed_variant or task.variant or '-'}",
            f"capability: {result.displayed_capability or task.capability or '-'}",
            f"attempts: {attempts}",
        ]
        if result.url:
            lines.append(f"url: {result.url}")
        block = "\n".join(lines)
        for ref in task.log_refs:
            async with context.log_lock(ref):
                await self.store.append(ref, block)

    def _outcome(
        self,
        task: Task,
        status: TaskStatus,
        launched_at: float,
        **fields: Any,
    ) -> TaskOutcome:
        return TaskOutcome(
            task=task,
            status=status,
            launched_at=launched_at,
            finished_at=self._clock(),
            **fields,
        )


__all__ = ["TaskExecutor"]
