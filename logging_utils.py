"""Tagged logging shared by every Solo Leveller component.

Records read ``[LEVEL][Tag] message | key=value ...``. Field values are
rendered compactly: floats to three decimals, exceptions as ``Type: text``
and long strings shortened so a pasted data URL cannot flood the log.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

LOGGER_NAME = "sololeveller"
LOG_FORMAT = "[%(levelname)s][%(tag)s] %(message)s"
FILE_LOG_FORMAT = "%(asctime)s " + LOG_FORMAT
MAX_FIELD_CHARS = 120

_logger = logging.getLogger(LOGGER_NAME)
_console_handler: Optional[logging.Handler] = None
_file_handler: Optional[logging.Handler] = None


class _TagFilter(logging.Filter):
    """Supplies a default tag so records from plain logger calls still format."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "tag"):
            record.tag = "App"
        return True


def _ensure_console() -> None:
    global _console_handler
    if _console_handler is not None:
        return
    _console_handler = logging.StreamHandler()
    _console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    _console_handler.addFilter(_TagFilter())
    _logger.addHandler(_console_handler)
    _logger.setLevel(logging.INFO)


_ensure_console()


def _level_value(level: Optional[str]) -> int:
    value = logging.getLevelName((level or "INFO").upper())
    return value if isinstance(value, int) else logging.INFO


def format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.3f}"
    if isinstance(value, BaseException):
        text = f"{type(value).__name__}: {value}"
    else:
        text = str(value)
    if len(text) > MAX_FIELD_CHARS:
        text = text[:MAX_FIELD_CHARS - 3] + "..."
    return text


def get_logger() -> logging.Logger:
    return _logger


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    """Log ``message`` under ``tag``, appending key=value fields when provided."""
    level_val = _level_value(level)
    if not _logger.isEnabledFor(level_val):
        return
    if fields:
        extras = " ".join(f"{k}={format_value(v)}" for k, v in fields.items())
        message = f"{message} | {extras}"
    _logger.log(level_val, message, extra={"tag": tag})


def set_log_level(level: str) -> None:
    _logger.setLevel(_level_value(level))


def get_log_level() -> str:
    return logging.getLevelName(_logger.level)


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Apply the configured level and (re)attach the optional file handler."""
    global _file_handler
    _ensure_console()
    set_log_level(level)
    if _file_handler is not None:
        _logger.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
    if log_file is None:
        return
    try:
        handler = logging.FileHandler(log_file, encoding="utf-8")
    except OSError as e:
        log_event("WARN", "Log", "Log file unavailable, console only", path=log_file, error=e)
        return
    handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
    handler.addFilter(_TagFilter())
    _logger.addHandler(handler)
    _file_handler = handler
