"""Leveled logging used by the replicated log."""

from __future__ import annotations

import abc
import sys
import threading
import time
from typing import Any, Optional, TextIO


class RaftPanic(RuntimeError):
    """Raised when an invariant of the log is violated."""


class Logger(abc.ABC):
    """Interface every logger handed to the log must provide."""

    @abc.abstractmethod
    def debug(self, msg: str, *args: Any) -> None:
        """Log a debug message."""

    @abc.abstractmethod
    def info(self, msg: str, *args: Any) -> None:
        """Log an informational message."""

    @abc.abstractmethod
    def warning(self, msg: str, *args: Any) -> None:
        """Log a warning."""

    @abc.abstractmethod
    def error(self, msg: str, *args: Any) -> None:
        """Log an error."""

    @abc.abstractmethod
    def fatal(self, msg: str, *args: Any) -> None:
        """Log a message and terminate the process."""

    @abc.abstractmethod
    def panic(self, msg: str, *args: Any) -> None:
        """Log a message and raise :class:`RaftPanic`."""


def _render(msg: Any, args: tuple) -> str:
    text = str(msg)
    return text % args if args else text


def _header(level: str, text: str) -> str:
    return f"{level}: {text}"


class DefaultLogger(Logger):
    """Writes plain lines to a text stream (standard error when none is given)."""

    def __init__(self, stream: Optional[TextIO] = None, prefix: str = "raft") -> None:
        self.stream = stream
        self.prefix = prefix
        self.timestamps = False
        self.debug_enabled = False
        self._lock = threading.Lock()

    def enable_timestamps(self) -> None:
        self.timestamps = True

    def enable_debug(self) -> None:
        self.debug_enabled = True

    def _output(self, text: str) -> None:
        stamp = time.strftime("%Y/%m/%d %H:%M:%S ") if self.timestamps else ""
        line = f"{self.prefix}{stamp}{text}"
        if not line.endswith("\n"):
            line += "\n"
        stream = self.stream if self.stream is not None else sys.stderr
        with self._lock:
            stream.write(line)
            flush = getattr(stream, "flush", None)
            if flush is not None:
                flush()

    def debug(self, msg: str, *args: Any) -> None:
        if self.debug_enabled:
            self._output(_header("DEBUG", _render(msg, args)))

    def info(self, msg: str, *args: Any) -> None:
        self._output(_header("INFO", _render(msg, args)))

    def warning(self, msg: str, *args: Any) -> None:
        self._output(_header("WARN", _render(msg, args)))

    def error(self, msg: str, *args: Any) -> None:
        self._output(_header("ERROR", _render(msg, args)))

    def fatal(self, msg: str, *args: Any) -> None:
        self._output(_header("FATAL", _render(msg, args)))
        raise SystemExit(1)

    def panic(self, msg: str, *args: Any) -> None:
        text = _render(msg, args)
        self._output(text)
        raise RaftPanic(text)


_default_logger = DefaultLogger(None, "raft")
_default_logger.enable_timestamps()
_logger_lock = threading.Lock()
_raft_logger: Logger = _default_logger


def set_logger(logger: Logger) -> None:
    """Replace the process-wide logger."""
    global _raft_logger
    with _logger_lock:
        _raft_logger = logger


def reset_default_logger() -> None:
    """Restore the built-in process-wide logger."""
    set_logger(_default_logger)


def get_logger() -> Logger:
    """Return the process-wide logger."""
    with _logger_lock:
        return _raft_logger