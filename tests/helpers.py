"""Shared test helpers for sheetrelay tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sheetrelay.core.errors import StoreError
from sheetrelay.core.models import Task, TaskGroup
from sheetrelay.store.memory import MemoryStore
from sheetrelay.workers.base import PollingWorker, Worker, WorkerResult

Outcome = WorkerResult | BaseException


def make_task(
    row: int,
    stage: str = "B",
    *,
    capability: str | None = None,
    job_type: str = "generic",
    group: TaskGroup | None = None,
    log_refs: tuple[str, ...] = (),
    input_stage: str = "A",
) -> Task:
    """Build a task reading ``{input_stage}{row}`` and writing ``{stage}{row}``."""
    return Task(
        id=f"{stage}{row}",
        row=row,
        stage=stage,
        output_ref=f"{stage}{row}",
        job_type=job_type,
        capability=capability,
        input_refs=(f"{input_stage}{row}",),
        group=group,
        log_refs=log_refs,
    )


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays and only yields."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FixedClock:
    """Settable wall clock for marker timestamps."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class ConcurrencyTracker:
    """Counts workers executing at the same time."""

    def __init__(self) -> None:
        self.active = 0
        self.max_active = 0
        self.started: list[str] = []
        self.finished: list[str] = []
        self.events: list[tuple[str, str]] = []

    def enter(self, label: str) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.started.append(label)
        self.events.append(("start", label))

    def exit(self, label: str) -> None:
        self.active -= 1
        self.finished.append(label)
        self.events.append(("end", label))


def _label(payload: str) -> str:
    """Position from the payload header, e.g. ``B5``."""
    first_line = payload.splitlines()[0] if payload else ""
    return first_line.rsplit(" ", 1)[-1]


class ScriptedWorker(Worker):
    """Worker that replays scripted outcomes.

    ``outcomes`` is shared between workers of one factory and consumed in
    order; once empty, every call succeeds with ``answer for <position>``.
    ``responder`` takes precedence and maps a payload to an outcome.
    """

    def __init__(
        self,
        slot_index: int,
        outcomes: list[Outcome] | None = None,
        responder: Callable[[str], Outcome] | None = None,
        delay: float = 0.0,
        tracker: ConcurrencyTracker | None = None,
    ) -> None:
        self.slot_index = slot_index
        self.outcomes = outcomes if outcomes is not None else []
        self.responder = responder
        self.delay = delay
        self.tracker = tracker
        self.calls: list[dict[str, Any]] = []
        self.refresh_count = 0
        self.closed = False

    def _next(self, payload: str) -> Outcome:
        if self.responder is not None:
            return self.responder(payload)
        if self.outcomes:
            return self.outcomes.pop(0)
        return WorkerResult(success=True, response=f"answer for {_label(payload)}")

    async def execute(
        self,
        payload: str,
        variant: str | None,
        capability: str | None,
        deadline: float,
    ) -> WorkerResult:
        label = _label(payload)
        self.calls.append(
            {"payload": payload, "variant": variant, "capability": capability, "deadline": deadline}
        )
        if self.tracker:
            self.tracker.enter(label)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            outcome = self._next(payload)
        finally:
            if self.tracker:
                self.tracker.exit(label)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def refresh(self) -> None:
        self.refresh_count += 1

    async def close(self) -> None:
        self.closed = True


class ScriptedFactory:
    """Worker factory building ``ScriptedWorker``s that share one script."""

    def __init__(
        self,
        outcomes: list[Outcome] | None = None,
        responder: Callable[[str], Outcome] | None = None,
        delay: float = 0.0,
        tracker: ConcurrencyTracker | None = None,
    ) -> None:
        self.outcomes = outcomes if outcomes is not None else []
        self.responder = responder
        self.delay = delay
        self.tracker = tracker
        self.created: list[ScriptedWorker] = []

    async def create(self, slot_index: int) -> ScriptedWorker:
        worker = ScriptedWorker(
            slot_index,
            outcomes=self.outcomes,
            responder=self.responder,
            delay=self.delay,
            tracker=self.tracker,
        )
        self.created.append(worker)
        return worker

    @property
    def calls(self) -> list[dict[str, Any]]:
        return [call for worker in self.created for call in worker.calls]


class HangingFactory(ScriptedFactory):
    """Factory whose ``create`` never returns once ``ready`` workers exist."""

    def __init__(self, ready: int = 0, outcomes: list[Outcome] | None = None) -> None:
        super().__init__(outcomes=outcomes)
        self.ready = ready
        self.hung = 0

    async def create(self, slot_index: int) -> ScriptedWorker:
        if len(self.created) >= self.ready:
            self.hung += 1
            await asyncio.sleep(3600)
        return await super().create(slot_index)


class ScriptedPollingWorker(PollingWorker):
    """Polling worker that reports its result after ``polls_needed`` polls."""

    def __init__(self, result: WorkerResult, polls_needed: int = 3) -> None:
        self.result = result
        self.polls_needed = polls_needed
        self.polls = 0
        self.started_with: str | None = None

    async def start(
        self,
        payload: str,
        variant: str | None,
        capability: str | None,
        deadline: float,
    ) -> None:
        self.started_with = payload

    async def poll(self) -> WorkerResult | None:
        self.polls += 1
        if self.polls >= self.polls_needed:
            return self.result
        return None


class SingleWorkerFactory:
    """Factory returning one prepared worker for every slot."""

    def __init__(self, worker: Worker) -> None:
        self.worker = worker
        self.created = 0

    async def create(self, slot_index: int) -> Worker:
        self.created += 1
        return self.worker


class FailingStore(MemoryStore):
    """Memory store raising ``StoreError`` for selected locations."""

    def __init__(
        self,
        values: dict[str, str] | None = None,
        fail_reads: set[str] | None = None,
        fail_writes: set[str] | None = None,
    ) -> None:
        super().__init__(values)
        self.fail_reads = fail_reads or set()
        self.fail_writes = fail_writes or set()

    async def read(self, location: str) -> str | None:
        if location in self.fail_reads:
            raise StoreError("read failed", location=location)
        return await super().read(location)

    async def write(self, location: str, value: str) -> None:
        if location in self.fail_writes:
            raise StoreError("write failed", location=location)
        await super().write(location, value)
