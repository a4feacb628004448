"""Pluggable logging used throughout the log and membership code."""

from __future__ import annotations

import sys
import threading
import time
from typing import Any, TextIO

from .types import RaftPanic


def _header(level: str, msg: str) -> str:
    return f"{level}: {msg}"


def _format(msg: Any, args: tuple) -> str:
    text = str(msg)
    return text % args if args else text


class DefaultLogger:
    """Writes leveled lines to a stream; panic raises, fatal exits."""

    def __init__(
        self,
        stream: TextIO | None = None,
        prefix: str = "",
        timestamps: bool = False,
    ) -> None:
        self._stream = stream
        self.prefix = prefix
        self._timestamps = timestamps
        self._debug = False
        self._lock = threading.Lock()

    def enable_timestamps(self) -> None:
        self._timestamps = True

    def enable_debug(self) -> None:
        self._debug = True

    def _output(self, text: str) -> None:
        stamp = time.strftime("%Y/%m/%d %H:%M:%S ") if self._timestamps else ""
        line = f"{self.prefix}{stamp}{text}\n"
        stream = self._stream if self._stream is not None else sys.stderr
        with self._lock:
            stream.write(line)
            flush = getattr(stream, "flush", None)
            if flush is not None:
                flush()

    def debug(self, msg: Any, *args: Any) -> None:
        if self._debug:
            self._output(_header("DEBUG", _format(msg, args)))

    def info(self, msg: Any, *args: Any) -> None:
        self._output(_header("INFO", _format(msg, args)))

    def warning(self, msg: Any, *args: Any) -> None:
        self._output(_header("WARN", _format(msg, args)))

    def error(self, msg: Any, *args: Any) -> None:
        self._output(_header("ERROR", _format(msg, args)))

    def fatal(self, msg: Any, *args: Any) -> None:
        self._output(_header("FATAL", _format(msg, args)))
        raise SystemExit(1)

    def panic(self, msg: Any, *args: Any) -> None:
        text = _format(msg, args)
        self._output(text)
        raise RaftPanic(text)


_default_logger = DefaultLogger(prefix="raft", timestamps=True)
_lock = threading.Lock()
_current: Any = _default_logger


def set_logger(logger: Any) -> None:
    """Install ``logger`` as the package-wide logger."""
    global _current
    with _lock:
        _current = logger


def reset_default_logger() -> None:
    """Restore the built-in stderr logger."""
    set_logger(_default_logger)


def get_logger() -> Any:
    """Return the package-wide logger."""
    with _lock:
        return _current