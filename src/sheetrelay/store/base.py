"""Abstract base for result stores."""

from abc import ABC, abstractmethod
from collections.abc import Iterable


class ResultStore(ABC):
    """Abstract base class for the external data store.

    A store maps opaque locations (cell addresses, keys) to string values.
    Implementations raise ``StoreError`` when a location cannot be read or
    written; the scheduler treats that as fatal for the run.
    """

    @abstractmethod
    async def read(self, location: str) -> str | None:
        """Read a location.

        Args:
            location: Location to read

        Returns:
            The stored value, or None when the location is empty
        """
        ...

    @abstractmethod
    async def write(self, location: str, value: str) -> None:
        """Write a value to a location, replacing what is there."""
        ...

    async def clear(self, location: str) -> None:
        """Empty a location."""
        await self.write(location, "")

    async def compare_and_set(
        self,
        location: str,
        expected: str | None,
        value: str,
    ) -> bool:
        """Write ``value`` only if the location still holds ``expected``.

        The default implementation reads, compares and writes without
        isolation. Stores that can do better (an in-process lock, a
        conditional update on the remote side) override it.

        Args:
            location: Location to update
            expected: Value the caller last read (None or "" for empty)
            value: New value

        Returns:
            True if the value was written, False if the location changed
        """
        current = await self.read(location)
        if (current or "") != (expected or ""):
            return False
        await self.write(location, value)
        return True

    async def append(self, location: str, text: str) -> None:
        """Append text to a location, separated from existing content by a newline."""
        current = await self.read(location)
        await self.write(location, f"{current}\n{text}" if current else text)

    async def read_many(self, locations: Iterable[str]) -> dict[str, str | None]:
        """Read several locations.

        Returns:
            Mapping of location to value, in the order requested
        """
        return {location: await self.read(location) for location in locations}
