"""
Logging configuration for codex-relay.

Configures the stdlib logging tree from Settings:
- INFO/DEBUG to stdout, WARNING and above to stderr
- Optional rotating log file under the XDG state directory
- "standard" or "json" line format
"""

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

from codexrelay.config import Settings, settings as default_settings

STANDARD_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"

# Noisy third-party loggers
QUIET_LOGGERS = ("watchdog", "sqlalchemy.engine", "asyncio")


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class _MaxLevelFilter(logging.Filter):
    """Only pass records strictly below a level (keeps stdout free of errors)."""

    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.level


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter()
    return logging.Formatter(STANDARD_FORMAT)


def setup_logging(
    context: str = "relay", config: Optional[Settings] = None
) -> logging.Logger:
    """
    Configure root logging for the given process context.

    Args:
        context: Name used for the log file (e.g. "relay", "cli")
        config: Settings to read from (defaults to the global settings)

    Returns:
        The configured root logger

    Raises:
        PermissionError: If file logging is enabled but the log directory
            cannot be created
    """
    config = config or default_settings
    root = logging.getLogger()
    root.setLevel(config.log_level.upper())

    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = _build_formatter(config.log_format)

    if config.log_console_enabled:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(logging.DEBUG)
        stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))
        stdout_handler.setFormatter(formatter)
        root.addHandler(stdout_handler)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    if config.log_file_enabled:
        log_dir = config.log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / f"{context}.log",
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root
