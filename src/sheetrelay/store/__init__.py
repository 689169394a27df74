"""Result store adapters."""

from sheetrelay.store.base import ResultStore
from sheetrelay.store.json_file import JsonFileStore
from sheetrelay.store.memory import MemoryStore

__all__ = ["ResultStore", "JsonFileStore", "MemoryStore"]
