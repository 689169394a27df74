"""Tests for sheetrelay.core.logging module."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from sheetrelay.core.logging import (
    SENSITIVE_PATTERNS,
    ExecutionContext,
    RelayLogger,
    _add_context,
    _sanitize_event_dict,
    _sanitize_value,
    configure_logging,
    get_current_context,
    get_logger,
    with_context,
)


class TestSensitivePatterns:
    """Tests for sensitive field detection and sanitization."""

    def test_known_sensitive_patterns(self):
        """Test that common sensitive patterns are included."""
        assert "api_key" in SENSITIVE_PATTERNS
        assert "password" in SENSITIVE_PATTERNS
        assert "authorization" in SENSITIVE_PATTERNS

    def test_sanitize_value_redacts_compound_keys(self):
        """Test that key names containing a sensitive pattern are redacted."""
        assert _sanitize_value("OPENAI_API_KEY", "sk-1") == "[REDACTED]"
        assert _sanitize_value("session_cookie_secret", "x") == "[REDACTED]"

    def test_sanitize_value_preserves_safe_values(self):
        assert _sanitize_value("row", 5) == 5
        assert _sanitize_value("location", "B5") == "B5"

    def test_sanitize_event_dict_handles_nested_dicts(self):
        """Test that one level of nested dicts is sanitized."""
        event_dict = {
            "event": "worker.created",
            "headers": {"authorization": "Bearer abc", "accept": "json"},
            "password": "hunter2",
        }

        result = _sanitize_event_dict(None, "info", event_dict)

        assert result["event"] == "worker.created"
        assert result["headers"] == {"authorization": "[REDACTED]", "accept": "json"}
        assert result["password"] == "[REDACTED]"


class TestRelayLogger:
    """Tests for RelayLogger."""

    def test_get_logger_creates_relay_logger(self):
        logger = get_logger("scheduler")

        assert isinstance(logger, RelayLogger)
        assert logger._context == {"component": "scheduler"}

    def test_bind_returns_new_logger(self):
        """Test that bind leaves the original logger untouched."""
        logger = get_logger("executor", run_id="r-1")
        bound = logger.bind(task_id="B5")

        assert bound is not logger
        assert bound._context == {"component": "executor", "run_id": "r-1", "task_id": "B5"}
        assert "task_id" not in logger._context


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_configure_console_format(self):
        configure_logging(level="DEBUG", format="console")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1

    def test_configure_both_requires_file_path(self):
        with pytest.raises(ValueError, match="file_path is required"):
            configure_logging(format="both")

    def test_configure_both_adds_rotating_file(self, tmp_path: Path):
        configure_logging(format="both", file_path=tmp_path / "logs" / "relay.log")

        handlers = logging.getLogger().handlers
        assert len(handlers) == 2
        assert any(isinstance(h, RotatingFileHandler) for h in handlers)

    def test_configure_removes_existing_handlers(self):
        root = logging.getLogger()
        root.addHandler(logging.NullHandler())

        configure_logging(format="console")

        assert not any(isinstance(h, logging.NullHandler) for h in root.handlers)

    def test_json_file_includes_context(self, tmp_path: Path):
        """Test that JSON lines carry component and execution context fields."""
        log_file = tmp_path / "relay.log"
        configure_logging(level="INFO", format="json", file_path=log_file)
        logger = get_logger("executor")

        ctx = ExecutionContext(run_id="run-1", component="executor").with_task("B5", "B", 5)
        with with_context(ctx):
            logger.info("executor.dispatch", api_key="sk-1", vendor="claude")

        record = json.loads(log_file.read_text(encoding="utf-8").strip().splitlines()[-1])
        assert record["event"] == "executor.dispatch"
        assert record["component"] == "executor"
        assert record["run_id"] == "run-1"
        assert record["stage"] == "B"
        assert record["row"] == 5
        assert record["task_id"] == "B5"
        assert record["api_key"] == "[REDACTED]"
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_level_filters_lower_events(self, tmp_path: Path):
        log_file = tmp_path / "relay.log"
        configure_logging(level="WARNING", format="json", file_path=log_file)

        get_logger("pool").info("pool.slot_acquired")
        get_logger("pool").warning("pool.worker_recreated")

        lines = log_file.read_text(encoding="utf-8").strip().splitlines()
        assert [json.loads(line)["event"] for line in lines] == ["pool.worker_recreated"]


class TestExecutionContext:
    """Tests for ExecutionContext."""

    def test_create_minimal_context(self):
        ctx = ExecutionContext()

        assert ctx.run_id
        assert ctx.component == "unknown"
        assert ctx.to_dict() == {"run_id": ctx.run_id, "component": "unknown"}

    def test_with_task_creates_new_context(self):
        ctx = ExecutionContext(run_id="run-1", component="scheduler")

        scoped = ctx.with_task("C3", "C", 3)

        assert scoped is not ctx
        assert ctx.task_id is None
        assert scoped.to_dict() == {
            "run_id": "run-1",
            "component": "scheduler",
            "stage": "C",
            "row": 3,
            "task_id": "C3",
        }

    def test_with_component(self):
        ctx = ExecutionContext(run_id="run-1").with_component("lock")

        assert ctx.component == "lock"
        assert ctx.run_id == "run-1"

    def test_context_is_immutable(self):
        ctx = ExecutionContext()

        with pytest.raises(AttributeError):
            ctx.stage = "B"  # type: ignore[misc]


class TestContextVar:
    """Tests for with_context and the _add_context processor."""

    def test_no_context_by_default(self):
        assert get_current_context() is None

    def test_with_context_sets_and_restores(self):
        outer = ExecutionContext(run_id="outer")
        inner = ExecutionContext(run_id="inner")

        with with_context(outer):
            with with_context(inner) as yielded:
                assert yielded is inner
                assert get_current_context() is inner
            assert get_current_context() is outer
        assert get_current_context() is None

    def test_with_context_restores_on_exception(self):
        with pytest.raises(RuntimeError):
            with with_context(ExecutionContext()):
                raise RuntimeError("boom")

        assert get_current_context() is None

    def test_add_context_with_no_context(self):
        event_dict = {"event": "test", "foo": "bar"}

        assert _add_context(None, "info", event_dict) == {"event": "test", "foo": "bar"}

    def test_bound_keys_take_precedence(self):
        """Test that explicitly logged keys are not overwritten by context."""
        ctx = ExecutionContext(run_id="run-1", component="scheduler")

        with with_context(ctx):
            result = _add_context(None, "info", {"event": "x", "component": "lock"})

        assert result["component"] == "lock"
        assert result["run_id"] == "run-1"
