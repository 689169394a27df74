"""Abstract base for workers.

A worker is one long-lived session against an external conversational
service. The executor hands it an assembled payload and waits for the
answer; everything vendor-specific lives behind this contract.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass
class WorkerResult:
    """Result of one worker attempt."""

    success: bool
    """Whether the worker produced an answer."""

    response: str | None = None
    """The answer text."""

    error: str | None = None
    """Failure description when ``success`` is False."""

    displayed_variant: str | None = None
    """Model variant the service reported actually using."""

    displayed_capability: str | None = None
    """Capability the service reported actually using."""

    url: str | None = None
    """Conversation URL, recorded in log metadata."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "displayed_variant": self.displayed_variant,
            "displayed_capability": self.displayed_capability,
            "url": self.url,
        }


class Worker(ABC):
    """Abstract base class for workers.

    Workers may raise any exception (or ``WorkerError`` with a category
    hint) to report a failed attempt; the executor classifies it.
    """

    @abstractmethod
    async def execute(
        self,
        payload: str,
        variant: str | None,
        capability: str | None,
        deadline: float,
    ) -> WorkerResult:
        """Send a payload and wait for the answer.

        Args:
            payload: Assembled input text
            variant: Requested model variant
            capability: Requested feature
            deadline: Seconds the attempt may take

        Returns:
            WorkerResult with the answer or a failure description
        """
        ...

    async def refresh(self) -> None:
        """Reset the worker's session in place (e.g. reload the page)."""
        return None

    async def close(self) -> None:
        """Release the worker's resources."""
        return None


class PollingWorker(Worker):
    """A worker whose jobs are started once and then polled for completion.

    ``execute`` is provided in terms of ``start`` and ``poll`` for callers
    that do not drive the polling themselves; the executor instead drives
    ``poll`` through the wait strategy.
    """

    @abstractmethod
    async def start(
        self,
        payload: str,
        variant: str | None,
        capability: str | None,
        deadline: float,
    ) -> None:
        """Submit a job without waiting for its answer."""
        ...

    @abstractmethod
    async def poll(self) -> WorkerResult | None:
        """Return the result once the job finished, None while it runs."""
        ...

    async def execute(
        self,
        payload: str,
        variant: str | None,
        capability: str | None,
        deadline: float,
    ) -> WorkerResult:
        await self.start(payload, variant, capability, deadline)
        while True:
            result = await self.poll()
            if result is not None:
                return result
            await asyncio.sleep(1.0)


class WorkerFactory(Protocol):
    """Creates the worker bound to one pool slot."""

    async def create(self, slot_index: int) -> Worker:
        ...
