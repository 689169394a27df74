"""Adaptive wait strategy.

Polls a completion predicate at a fixed interval until it holds or a
maximum wait elapses. The maximum wait grows when a long-running job
(deep research, agent mode) is detected among the markers being waited on.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from sheetrelay.core.config import WaitConfig
from sheetrelay.core.logging import get_logger
from sheetrelay.core.models import Task
from sheetrelay.execution.locking import ExclusivityGuard, ExclusivityMarker, LockStatus
from sheetrelay.store.base import ResultStore

_logger = get_logger("wait")

Predicate = Callable[[], bool | Awaitable[bool]]
SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class WaitPlan:
    """How long and how often to check for completion.

    Attributes:
        max_wait_seconds: Give up after this long.
        check_interval_seconds: Delay between checks.
        detected_category: Job category that selected the plan, if any.
        long_running: Whether the long-running wait applies.
    """

    max_wait_seconds: float
    check_interval_seconds: float
    detected_category: str | None = None
    long_running: bool = False


class WaitStrategy:
    """Chooses wait limits and drives completion polling."""

    def __init__(
        self,
        guard: ExclusivityGuard,
        config: WaitConfig | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.guard = guard
        self.config = config or WaitConfig()
        self._sleep = sleep

    def default_plan(self) -> WaitPlan:
        return WaitPlan(
            max_wait_seconds=self.config.default_max_wait_seconds,
            check_interval_seconds=self.config.check_interval_seconds,
        )

    def plan_for(self, category: str | None) -> WaitPlan:
        """Plan for a single job category."""
        if self.guard.timeouts.is_long_running(category):
            return WaitPlan(
                max_wait_seconds=self.config.long_max_wait_seconds,
                check_interval_seconds=self.config.check_interval_seconds,
                detected_category=category,
                long_running=True,
            )
        return WaitPlan(
            max_wait_seconds=self.config.default_max_wait_seconds,
            check_interval_seconds=self.config.check_interval_seconds,
            detected_category=category,
        )

    async def determine(
        self,
        tasks: Sequence[Task],
        store: ResultStore | None = None,
    ) -> WaitPlan:
        """Pick a wait plan from the markers at the tasks' output locations.

        A marker whose category is long-running selects the long plan;
        a task whose requested capability is long-running does too.
        """
        store = store or self.guard.store
        values = await store.read_many(t.output_ref for t in tasks)
        for task in tasks:
            marker = self.guard.codec.parse(values.get(task.output_ref))
            category = marker.job_category if marker else None
            if self.guard.timeouts.is_long_running(category):
                plan = self.plan_for(category)
                _logger.info(
                    "wait.long_running_detected",
                    location=task.output_ref,
                    category=category,
                    max_wait_seconds=plan.max_wait_seconds,
                )
                return plan
        for task in tasks:
            if self.guard.timeouts.is_long_running(task.capability):
                plan = self.plan_for(task.capability)
                _logger.info(
                    "wait.long_running_detected",
                    location=task.output_ref,
                    category=task.capability,
                    max_wait_seconds=plan.max_wait_seconds,
                )
                return plan
        return self.default_plan()

    def marker_age(self, marker: ExclusivityMarker | str | None) -> float | None:
        """Age of a marker in seconds (None when it has no usable timestamp)."""
        return self.guard.marker_age(marker)

    def is_marker_stale(self, marker: ExclusivityMarker | str | None) -> bool:
        return self.guard.is_stale(marker)

    async def wait_until(
        self,
        predicate: Predicate,
        plan: WaitPlan | None = None,
        label: str | None = None,
    ) -> bool:
        """Check ``predicate`` every interval until it holds or the plan's cap elapses.

        The predicate is checked once immediately, then after each interval.

        Args:
            predicate: Sync or async callable returning True when done
            plan: Wait limits (defaults to the ordinary plan)
            label: Name used in log entries

        Returns:
            True if the predicate held before the cap elapsed
        """
        plan = plan or self.default_plan()
        elapsed = 0.0
        checks = 0
        while True:
            checks += 1
            result = predicate()
            if inspect.isawaitable(result):
                result = await result
            if result:
                _logger.debug("wait.satisfied", label=label, checks=checks, elapsed_seconds=elapsed)
                return True
            if elapsed >= plan.max_wait_seconds:
                _logger.warning(
                    "wait.timed_out",
                    label=label,
                    checks=checks,
                    max_wait_seconds=plan.max_wait_seconds,
                )
                return False
            if checks % self.config.progress_every == 0:
                _logger.info(
                    "wait.progress",
                    label=label,
                    checks=checks,
                    elapsed_seconds=elapsed,
                    max_wait_seconds=plan.max_wait_seconds,
                    long_running=plan.long_running,
                )
            interval = min(plan.check_interval_seconds, plan.max_wait_seconds - elapsed)
            await self._sleep(interval)
            elapsed += interval

    async def wait_for_release(self, tasks: Sequence[Task]) -> list[Task]:
        """Wait until no task's output location holds a fresh marker.

        Returns:
            Tasks whose location is still unanswered afterwards (empty or
            holding a stale marker), ready to be dispatched again.
        """
        if not tasks:
            return []
        plan = await self.determine(tasks)

        async def released() -> bool:
            values = await self.guard.store.read_many(t.output_ref for t in tasks)
            return all(
                self.guard.classify_value(values.get(t.output_ref)).status is not LockStatus.HELD
                for t in tasks
            )

        await self.wait_until(released, plan, label="busy_locations")
        values = await self.guard.store.read_many(t.output_ref for t in tasks)
        return [
            t
            for t in tasks
            if self.guard.classify_value(values.get(t.output_ref)).acquirable
        ]


__all__ = ["WaitPlan", "WaitStrategy"]
