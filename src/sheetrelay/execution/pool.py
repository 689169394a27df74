"""Fixed-size worker pool.

Slots are handed out from an ``asyncio.Queue``; a slot is owned
exclusively by one task until its ``async with`` block exits, on every
exit path. Workers are created lazily by the factory on first use and
rebuilt on ``recreate-worker`` recovery.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sheetrelay.core.errors import RecoveryAction
from sheetrelay.core.logging import get_logger
from sheetrelay.workers.base import Worker, WorkerFactory

_logger = get_logger("pool")


class WorkerSlot:
    """One pool position holding at most one worker.

    Attributes:
        index: Slot position, 0..N-1.
        worker: Bound worker, created on first use.
        busy: Whether a task currently owns the slot.
    """

    def __init__(self, index: int, factory: WorkerFactory) -> None:
        self.index = index
        self.worker: Worker | None = None
        self.busy = False
        self.invalidated = False
        self._factory = factory

    def invalidate(self) -> None:
        """Mark the bound worker unusable; it is rebuilt on next use."""
        self.invalidated = True

    async def ensure_worker(self) -> Worker:
        """Return the bound worker, creating it if needed."""
        if self.invalidated:
            self.invalidated = False
            await self.close()
        if self.worker is None:
            self.worker = await self._factory.create(self.index)
            _logger.debug("pool.worker_created", slot=self.index)
        return self.worker

    async def refresh(self) -> Worker:
        worker = await self.ensure_worker()
        await worker.refresh()
        _logger.info("pool.worker_refreshed", slot=self.index)
        return worker

    async def recreate(self) -> Worker:
        """Close the bound worker and create a new one."""
        if self.worker is not None:
            old, self.worker = self.worker, None
            await old.close()
        worker = await self.ensure_worker()
        _logger.info("pool.worker_recreated", slot=self.index)
        return worker

    async def recover(self, action: RecoveryAction) -> Worker:
        """Apply a recovery action and return the worker to use next."""
        if action is RecoveryAction.REFRESH_WORKER:
            return await self.refresh()
        if action is RecoveryAction.RECREATE_WORKER:
            return await self.recreate()
        return await self.ensure_worker()

    async def close(self) -> None:
        if self.worker is not None:
            old, self.worker = self.worker, None
            await old.close()


class WorkerPool:
    """Hands out ``WorkerSlot``s to concurrently running tasks.

    Example:
        pool = WorkerPool(factory, size=3)
        async with pool.slot() as slot:
            worker = await slot.ensure_worker()
            result = await worker.execute(...)
        await pool.close()
    """

    def __init__(self, factory: WorkerFactory, size: int = 3) -> None:
        if size < 1:
            raise ValueError(f"pool size must be >= 1, got {size}")
        self.size = size
        self.slots = [WorkerSlot(i, factory) for i in range(size)]
        self._free: asyncio.Queue[WorkerSlot] = asyncio.Queue()
        for slot in self.slots:
            self._free.put_nowait(slot)

    @property
    def available(self) -> int:
        return self._free.qsize()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[WorkerSlot]:
        """Own a slot for the duration of the block."""
        slot = await self._free.get()
        slot.busy = True
        _logger.debug("pool.slot_acquired", slot=slot.index, available=self._free.qsize())
        try:
            yield slot
        finally:
            slot.busy = False
            self._free.put_nowait(slot)
            _logger.debug("pool.slot_released", slot=slot.index)

    async def close(self) -> None:
        """Close every bound worker."""
        for slot in self.slots:
            await slot.close()


__all__ = ["WorkerPool", "WorkerSlot"]
