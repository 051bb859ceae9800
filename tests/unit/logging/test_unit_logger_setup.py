# tests/unit/logging/test_unit_logger_setup.py — v2
"""Tests for logging/context.py and logging/logger.py."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler

from factgraph.logging.context import (
    ContextFilter,
    RunLogContext,
    clear_context,
    get_context,
    set_run_context,
    set_stage_context,
)
from factgraph.logging.logger import JsonFormatter, TextFormatter, setup_logging


def _record(msg: str = "Hello") -> logging.LogRecord:
    record = logging.LogRecord(
        name="factgraph.test", level=logging.INFO, pathname="", lineno=0,
        msg=msg, args=(), exc_info=None,
    )
    ContextFilter().filter(record)
    return record


class TestRunLogContext:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_empty_by_default(self):
        assert get_context().as_dict() == {}

    def test_run_and_stage(self):
        set_run_context("doc1", "run1")
        set_stage_context("validation", endpoint="critic-agent")
        assert get_context().as_dict() == {
            "document_id": "doc1",
            "run_id": "run1",
            "stage": "validation",
            "endpoint": "critic-agent",
        }

    def test_new_run_drops_stage(self):
        set_run_context("doc1", "run1")
        set_stage_context("policy")
        set_run_context("doc2", "run2")
        assert get_context() == RunLogContext(document_id="doc2", run_id="run2")

    def test_clear(self):
        set_run_context("doc1", "run1")
        clear_context()
        assert get_context().run_id is None

    def test_filter_attaches_snapshot(self):
        set_run_context("doc1", "run1")
        record = _record()
        clear_context()
        assert record.run_context.run_id == "run1"


class TestJsonFormatter:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        parsed = json.loads(JsonFormatter().format(_record()))
        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Hello"
        assert parsed["logger"] == "factgraph.test"
        assert "context" not in parsed

    def test_format_with_context(self):
        set_run_context("doc1", "run1")
        parsed = json.loads(JsonFormatter().format(_record()))
        assert parsed["context"] == {"document_id": "doc1", "run_id": "run1"}

    def test_record_without_filter(self):
        record = logging.LogRecord("factgraph.x", logging.INFO, "", 0, "plain", (), None)
        assert "context" not in json.loads(JsonFormatter().format(record))


class TestTextFormatter:
    def teardown_method(self):
        clear_context()

    def test_includes_run_and_stage(self):
        set_run_context("doc1", "run1")
        set_stage_context("policy")
        line = TextFormatter().format(_record("Decision made"))
        assert "run=run1" in line
        assert "[policy]" in line
        assert line.endswith("- Decision made")


class TestSetupLogging:
    def teardown_method(self):
        for handler in list(logging.getLogger("factgraph").handlers):
            logging.getLogger("factgraph").removeHandler(handler)
            handler.close()

    def test_console_only(self):
        setup_logging(level="DEBUG", log_format="text")
        root = logging.getLogger("factgraph")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, TextFormatter)
        assert any(isinstance(f, ContextFilter) for f in root.handlers[0].filters)

    def test_repeat_setup_replaces_handlers(self):
        setup_logging()
        setup_logging()
        assert len(logging.getLogger("factgraph").handlers) == 1

    def test_file_handler_rotation(self, tmp_path):
        log_file = tmp_path / "logs" / "factgraph.log"
        setup_logging(log_file=log_file, max_bytes=1024**2, backup_count=3)
        handlers = logging.getLogger("factgraph").handlers
        rotating = [h for h in handlers if isinstance(h, RotatingFileHandler)]
        assert len(rotating) == 1
        assert rotating[0].maxBytes == 1024**2
        assert rotating[0].backupCount == 3
        assert log_file.parent.is_dir()

    def test_quiets_httpx(self):
        setup_logging()
        assert logging.getLogger("httpx").level == logging.WARNING
