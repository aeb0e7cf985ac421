"""
Tests for monitor/logger.py -- structured logging and secret redaction.
"""

import json
import logging
import os
import sys

from monitor.logger import (
    ConsoleFormatter,
    JSONFormatter,
    RedactingFilter,
    redact,
    register_secrets,
    setup_logging,
)


def _record(msg: str, *args, level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord(
        name="test", level=level, pathname="test.py",
        lineno=1, msg=msg, args=args, exc_info=None,
    )


def _cleanup_handlers():
    """Close and remove handlers installed by setup_logging."""
    root = logging.getLogger()
    for h in root.handlers[:]:
        if isinstance(h, logging.FileHandler) or isinstance(h.formatter, (ConsoleFormatter, JSONFormatter)):
            h.close()
            root.removeHandler(h)


class TestRedact:
    def test_prefix_only(self):
        assert redact("abcdefghijklmnop") == "abcdefgh..."

    def test_custom_prefix(self):
        assert redact("abcdefghijklmnop", keep=4) == "abcd..."

    def test_short_value_fully_masked(self):
        assert redact("abc") == "***"

    def test_empty(self):
        assert redact("") == "<none>"
        assert redact(None) == "<none>"


class TestRedactingFilter:
    def test_masks_registered_secret_in_args(self):
        f = RedactingFilter()
        f.register("super-secret-value-123")
        record = _record("secret is %s", "super-secret-value-123")
        assert f.filter(record) is True
        assert "super-secret-value-123" not in record.getMessage()
        assert "supe..." in record.getMessage()

    def test_leaves_other_messages_alone(self):
        f = RedactingFilter()
        f.register("super-secret-value-123")
        record = _record("nothing to see %d", 5)
        f.filter(record)
        assert record.getMessage() == "nothing to see 5"
        assert record.args == (5,)

    def test_ignores_short_and_empty_values(self):
        f = RedactingFilter()
        f.register("", None, "abc")
        record = _record("abc def")
        f.filter(record)
        assert record.getMessage() == "abc def"


class TestJSONFormatter:
    def test_format_basic_message(self):
        output = JSONFormatter().format(_record("Hello %s", "world"))
        parsed = json.loads(output)
        assert parsed["level"] == "INFO"
        assert parsed["msg"] == "Hello world"
        assert "ts" in parsed

    def test_format_with_exception(self):
        try:
            raise ValueError("test error")
        except ValueError:
            record = logging.LogRecord(
                name="test", level=logging.ERROR, pathname="test.py",
                lineno=1, msg="Failed", args=(), exc_info=sys.exc_info(),
            )
        parsed = json.loads(JSONFormatter().format(record))
        assert parsed["level"] == "ERROR"
        assert "test error" in parsed["exception"]


class TestConsoleFormatter:
    def test_format_basic_message(self):
        output = ConsoleFormatter(use_color=False).format(_record("Hello %s", "world"))
        assert "INF" in output
        assert "Hello world" in output

    def test_format_warning(self):
        output = ConsoleFormatter(use_color=False).format(_record("Watch out", level=logging.WARNING))
        assert "WRN" in output


class TestSetupLogging:
    def teardown_method(self):
        _cleanup_handlers()

    def test_root_always_debug(self, tmp_path):
        setup_logging("WARNING", log_dir=str(tmp_path))
        assert logging.getLogger().level == logging.DEBUG

    def test_console_handler_respects_level(self, tmp_path):
        setup_logging("WARNING", log_dir=str(tmp_path))
        console_handlers = [
            h for h in logging.getLogger().handlers
            if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        ]
        assert len(console_handlers) == 1
        assert console_handlers[0].level == logging.WARNING

    def test_returns_log_path_in_log_dir(self, tmp_path):
        log_path = setup_logging("INFO", log_dir=str(tmp_path))
        assert log_path.startswith(str(tmp_path))
        assert os.path.basename(log_path).startswith("run_")
        assert os.path.exists(log_path)

    def test_json_handler_when_file_specified(self, tmp_path):
        path = tmp_path / "events.ndjson"
        setup_logging("INFO", json_log_file=str(path), log_dir=str(tmp_path))
        assert any(isinstance(h.formatter, JSONFormatter) for h in logging.getLogger().handlers)

    def test_secrets_never_reach_log_file(self, tmp_path):
        secret = "zz-registered-secret-zz"
        log_path = setup_logging("INFO", log_dir=str(tmp_path))
        register_secrets(secret)
        logging.getLogger("test.redaction").info("derived secret=%s", secret)
        for h in logging.getLogger().handlers:
            h.flush()
        content = open(log_path).read()
        assert "derived secret=" in content
        assert secret not in content

    def test_every_handler_filtered(self, tmp_path):
        setup_logging("INFO", json_log_file=str(tmp_path / "j.log"), log_dir=str(tmp_path))
        ours = [
            h for h in logging.getLogger().handlers
            if isinstance(h, logging.FileHandler) or isinstance(h.formatter, ConsoleFormatter)
        ]
        assert len(ours) == 3
        assert all(any(isinstance(f, RedactingFilter) for f in h.filters) for h in ours)
