"""Small levelled logger writing to stderr and, optionally, to a log file."""

from __future__ import annotations

import enum
import sys
import traceback
from dataclasses import dataclass
from datetime import datetime
from typing import IO, Optional


class Level(enum.IntEnum):
    """Logging levels; a message is written when its level is at most the current one."""

    PANIC = 0
    ERROR = 1
    VERBOSE = 2
    DEBUG = 3
    MAX = 4
    UNKNOWN = 5

    def __str__(self) -> str:
        if self in (Level.PANIC, Level.ERROR, Level.VERBOSE, Level.DEBUG):
            return self.name.lower()
        return "unknown"


@dataclass
class _State:
    stderr: bool = True
    file: Optional[IO[str]] = None
    level: Level = Level.DEBUG


_state = _State()


def _timestamp() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


def _format(fmt: str, args: tuple) -> str:
    return fmt % args if args else fmt


def printf(level: Level, fmt: str, *args) -> None:
    """Write a formatted message if ``level`` is enabled."""
    if level > _state.level:
        return
    line = f"{_timestamp()} [{level}] {_format(fmt, args)}\n"
    if _state.stderr:
        sys.stderr.write(line)
        sys.stderr.flush()
    if _state.file is not None:
        _state.file.write(line)
        _state.file.flush()


def debugf(fmt: str, *args) -> None:
    """Log at debug level."""
    printf(Level.DEBUG, fmt, *args)


def verbosef(fmt: str, *args) -> None:
    """Log at verbose level."""
    printf(Level.VERBOSE, fmt, *args)


def errorf(fmt: str, *args) -> RuntimeError:
    """Log at error level and return an exception carrying the same message."""
    printf(Level.ERROR, fmt, *args)
    return RuntimeError(_format(fmt, args))


def panicf(fmt: str, *args) -> None:
    """Log at panic level, followed by the current stack trace."""
    printf(Level.PANIC, fmt, *args)
    printf(Level.PANIC, "========= Stack trace output ========")
    printf(Level.PANIC, "%s", "".join(traceback.format_stack()).rstrip("\n"))
    printf(Level.PANIC, "========= Stack trace output end ========")


def get_logging_level() -> Level:
    """Return the current logging level."""
    return _state.level


def _parse_level(level_str: str) -> Level:
    try:
        level = Level[level_str.upper()]
    except KeyError:
        level = Level.UNKNOWN
    if level >= Level.MAX:
        sys.stderr.write(f"ipwhereabouts logging: cannot set logging level to {level_str}\n")
        return Level.UNKNOWN
    return level


def set_log_level(level_str: str) -> None:
    """Set the logging level by name (case-insensitive); unknown names are ignored."""
    level = _parse_level(level_str)
    if level < Level.MAX:
        _state.level = level


def set_log_stderr(enable: bool) -> None:
    """Enable or disable logging to stderr."""
    _state.stderr = bool(enable)


def set_log_file(filename: str) -> None:
    """Append log output to ``filename``; an empty name leaves the setting unchanged."""
    if not filename:
        return
    if _state.file is not None:
        _state.file.close()
    try:
        _state.file = open(filename, "a", encoding="utf-8")
    except OSError:
        _state.file = None
        sys.stderr.write(f"ipwhereabouts logging: cannot open {filename}")


def get_log_stderr() -> bool:
    """Return whether logging to stderr is enabled."""
    return _state.stderr


def get_log_file() -> Optional[IO[str]]:
    """Return the open log file, if any."""
    return _state.file


def reset(stderr: bool = True, level: Level = Level.DEBUG) -> None:
    """Close any log file and restore the given stderr flag and level."""
    if _state.file is not None:
        _state.file.close()
    _state.file = None
    _state.stderr = bool(stderr)
    _state.level = Level(level)