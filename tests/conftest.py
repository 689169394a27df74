"""Pytest fixtures for sheetrelay tests."""

import logging
from collections.abc import Generator
from datetime import UTC, datetime

import pytest
import structlog

from sheetrelay.core.config import RelayConfig
from sheetrelay.store import MemoryStore
from tests.helpers import FixedClock, RecordingSleep, ScriptedFactory


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging state before and after each test.

    This ensures test isolation for logging configuration.
    """
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def store() -> MemoryStore:
    """Empty in-memory result store."""
    return MemoryStore()


@pytest.fixture
def sleep() -> RecordingSleep:
    """Sleep replacement that records delays instead of waiting."""
    return RecordingSleep()


@pytest.fixture
def clock() -> FixedClock:
    """Wall clock pinned to 2024-06-01 12:00:00 UTC."""
    return FixedClock(datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC))


@pytest.fixture
def factory() -> ScriptedFactory:
    """Worker factory whose workers answer every payload successfully."""
    return ScriptedFactory()


@pytest.fixture
def config() -> RelayConfig:
    """Default relay configuration with a fixed owner id."""
    return RelayConfig.model_validate({"scheduler": {"owner_id": "test-owner"}})
