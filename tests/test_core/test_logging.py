"""Tests for logging setup."""

import json
import logging

from warmline.core.logging import (
    ConsoleFormatter,
    JSONFormatter,
    get_logger,
    reset_logging,
    setup_logging,
)


def _record(context=None) -> logging.LogRecord:
    record = logging.LogRecord("warmline.test", logging.INFO, __file__, 1, "hello", None, None)
    if context is not None:
        record.context = context
    return record


class TestLogging:
    """Test logging configuration."""

    def test_get_logger_returns_logger(self):
        """get_logger returns a Logger instance."""
        logger = get_logger(__name__)
        assert isinstance(logger, logging.Logger)

    def test_get_logger_same_name_returns_same_logger(self):
        """Same name returns same logger instance."""
        assert get_logger("test.module") is get_logger("test.module")

    def test_loggers_live_under_warmline_root(self):
        """Foreign names are prefixed, package names are kept."""
        assert get_logger("main").name == "warmline.main"
        assert get_logger("warmline.engine.throttle").name == "warmline.engine.throttle"

    def test_setup_logging_creates_handlers(self, tmp_path):
        """setup_logging adds a console and a rotating file handler."""
        reset_logging()
        root_logger = logging.getLogger("warmline")
        before = len(root_logger.handlers)
        try:
            log_file = setup_logging(log_dir=tmp_path / "logs")
            assert log_file == tmp_path / "logs" / "warmline.log"
            assert log_file.exists()
            assert len(root_logger.handlers) == before + 2
        finally:
            reset_logging()

    def test_second_call_only_adjusts_console(self, tmp_path):
        """A later --debug call keeps the handlers and lowers the console level."""
        root_logger = logging.getLogger("warmline")
        reset_logging()
        try:
            first = setup_logging(log_dir=tmp_path / "a")
            count = len(root_logger.handlers)
            second = setup_logging(log_dir=tmp_path / "b", console_level=logging.DEBUG)
            assert second == first
            assert len(root_logger.handlers) == count
            assert not (tmp_path / "b").exists()
        finally:
            reset_logging()


class TestFormatters:
    """Test JSON and console formatting."""

    def test_json_includes_context(self):
        """Context passed via extra ends up in the JSON line."""
        line = JSONFormatter().format(_record({"user_id": "u-1"}))
        data = json.loads(line)
        assert data["message"] == "hello"
        assert data["context"] == {"user_id": "u-1"}

    def test_console_appends_context(self):
        """Console output lists context as key=value pairs."""
        line = ConsoleFormatter().format(_record({"user_id": "u-1"}))
        assert line.endswith("hello [user_id=u-1]")

    def test_json_records_thread(self):
        """Parallel decision units are identified by thread name."""
        record = _record()
        record.threadName = "warmline-unit_0"
        data = json.loads(JSONFormatter().format(record))
        assert data["thread"] == "warmline-unit_0"
        assert data["logger"] == "warmline.test"
        assert "context" not in data

    def test_console_short_name(self):
        record = _record()
        record.threadName = "warmline-unit_1"
        assert " test@warmline-unit_1: hello" in ConsoleFormatter().format(record)
