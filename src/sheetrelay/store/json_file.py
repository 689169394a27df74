"""JSON file-based result store.

Stores all locations in a single JSON object. Every write rewrites the
file atomically using a temp file + rename.
"""

import asyncio
import json
from collections.abc import Iterable
from pathlib import Path

from sheetrelay.core.errors import StoreError
from sheetrelay.core.logging import get_logger
from sheetrelay.store.base import ResultStore

_logger = get_logger("store")


class JsonFileStore(ResultStore):
    """JSON file-based result store.

    File layout: ``{"B5": "answer", "C5": "..."}``. A missing file is an
    empty store; an unreadable or malformed file raises ``StoreError``.
    """

    def __init__(self, path: Path) -> None:
        """Initialize the store.

        Args:
            path: JSON file holding the location map
        """
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read store file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"Store file {self.path} does not contain a JSON object")
        return {str(k): "" if v is None else str(v) for k, v in data.items()}

    def _save(self, data: dict[str, str]) -> None:
        temp_file = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            temp_file.replace(self.path)
        except OSError as e:
            raise StoreError(f"Failed to write store file {self.path}: {e}") from e
        _logger.debug("store.saved", path=str(self.path), locations=len(data))

    async def read(self, location: str) -> str | None:
        async with self._lock:
            value = self._load().get(location)
        return value if value else None

    async def write(self, location: str, value: str) -> None:
        async with self._lock:
            data = self._load()
            data[location] = value
            self._save(data)

    async def compare_and_set(
        self,
        location: str,
        expected: str | None,
        value: str,
    ) -> bool:
        async with self._lock:
            data = self._load()
            if (data.get(location) or "") != (expected or ""):
                return False
            data[location] = value
            self._save(data)
            return True

    async def append(self, location: str, text: str) -> None:
        async with self._lock:
            data = self._load()
            current = data.get(location)
            data[location] = f"{current}\n{text}" if current else text
            self._save(data)

    async def read_many(self, locations: Iterable[str]) -> dict[str, str | None]:
        async with self._lock:
            data = self._load()
        return {location: data.get(location) or None for location in locations}
