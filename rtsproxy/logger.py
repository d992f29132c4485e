"""Timestamped console logging with a process-wide level."""

from __future__ import annotations

from datetime import datetime
from enum import IntEnum

_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class LogLevel(IntEnum):
    """Log levels; a message is shown when its level is at most the current one."""

    INFO = 0
    WARN = 1
    ERROR = 2
    DEBUG = 3


_current_level = LogLevel.INFO


def set_log_level(level: LogLevel) -> None:
    """Set the most verbose level that is still printed."""
    global _current_level
    _current_level = LogLevel(level)


def get_log_level() -> LogLevel:
    """Return the current log level."""
    return _current_level


def format_line(level: LogLevel, msg: str, when: datetime) -> str:
    """Render one log line as ``[timestamp] [LEVEL] message``."""
    return f"[{when.strftime(_TIME_FORMAT)}] [{LogLevel(level).name}] {msg}"


def log(level: LogLevel, msg: str) -> None:
    """Print ``msg`` to standard output if ``level`` is enabled."""
    if level > _current_level:
        return
    print(format_line(level, msg, datetime.now()), flush=True)


def info(msg: str) -> None:
    log(LogLevel.INFO, msg)


def warn(msg: str) -> None:
    log(LogLevel.WARN, msg)


def error(msg: str) -> None:
    log(LogLevel.ERROR, msg)


def debug(msg: str) -> None:
    log(LogLevel.DEBUG, msg)