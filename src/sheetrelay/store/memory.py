"""In-memory result store.

Keeps every value in a dict. Used by tests and by callers that drive
the scheduler against data they already hold in memory.
"""

import asyncio

from sheetrelay.store.base import ResultStore


class MemoryStore(ResultStore):
    """In-memory result store with atomic compare-and-set.

    Records every write in ``history`` so tests can assert on the sequence
    of values a location went through.
    """

    def __init__(self, values: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(values or {})
        self.history: list[tuple[str, str]] = []
        self._lock = asyncio.Lock()

    async def read(self, location: str) -> str | None:
        value = self.values.get(location)
        return value if value else None

    async def write(self, location: str, value: str) -> None:
        self.values[location] = value
        self.history.append((location, value))

    async def compare_and_set(
        self,
        location: str,
        expected: str | None,
        value: str,
    ) -> bool:
        async with self._lock:
            if (self.values.get(location) or "") != (expected or ""):
                return False
            await self.write(location, value)
            return True

    async def append(self, location: str, text: str) -> None:
        async with self._lock:
            current = self.values.get(location)
            await self.write(location, f"{current}\n{text}" if current else text)

    def writes_to(self, location: str) -> list[str]:
        """Every value written to one location, oldest first."""
        return [value for loc, value in self.history if loc == location]
