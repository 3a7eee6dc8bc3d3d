"""
Tests for logging configuration.
"""

import json
import logging
from logging.handlers import RotatingFileHandler

import pytest

from codexrelay.config import Settings
from codexrelay.logging_config import JsonFormatter, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    """setup_logging replaces root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_console_handlers_split_by_level(self):
        root = setup_logging(config=Settings(_env_file=None, log_level="debug"))

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2
        stdout_handler, stderr_handler = root.handlers
        warning = logging.LogRecord("x", logging.WARNING, __file__, 1, "w", None, None)
        info = logging.LogRecord("x", logging.INFO, __file__, 1, "i", None, None)
        assert stdout_handler.filter(info)
        assert not stdout_handler.filter(warning)
        assert stderr_handler.level == logging.WARNING

    def test_file_handler(self, tmp_path):
        config = Settings(
            _env_file=None,
            log_console_enabled=False,
            log_file_enabled=True,
            log_dir=str(tmp_path / "logs"),
        )

        root = setup_logging(context="cli", config=config)

        assert len(root.handlers) == 1
        handler = root.handlers[0]
        assert isinstance(handler, RotatingFileHandler)
        assert handler.baseFilename == str(tmp_path / "logs" / "cli.log")

    def test_noisy_loggers_quieted(self):
        setup_logging(config=Settings(_env_file=None, log_level="DEBUG"))

        assert logging.getLogger("watchdog").level == logging.WARNING


class TestJsonFormatter:
    def test_renders_one_object_per_record(self):
        record = logging.LogRecord(
            "codexrelay.watch", logging.INFO, __file__, 1, "watching %s", ("dir",), None
        )

        payload = json.loads(JsonFormatter().format(record))

        assert payload["level"] == "INFO"
        assert payload["logger"] == "codexrelay.watch"
        assert payload["message"] == "watching dir"
        assert "timestamp" in payload
