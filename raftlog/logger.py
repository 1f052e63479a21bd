"""Process-wide logger used by the raft log."""

from __future__ import annotations

import sys
import threading
import time
from typing import Any, TextIO


class RaftPanic(RuntimeError):
    """Raised when the raft log detects a broken invariant."""


class _NullStream:
    """A writable stream that drops everything written to it."""

    def write(self, text: str) -> int:
        return len(text)

    def flush(self) -> None:
        pass


def _format(msg: Any, args: tuple) -> str:
    text = str(msg)
    return text % args if args else text


class DefaultLogger:
    """Writes leveled messages to a stream, by default standard error."""

    def __init__(
        self,
        stream: TextIO | None = None,
        prefix: str = "raft",
        timestamps: bool = True,
    ) -> None:
        self._stream = stream
        self.prefix = prefix
        self.timestamps = timestamps
        self.debug_enabled = False

    def enable_timestamps(self) -> None:
        self.timestamps = True

    def enable_debug(self) -> None:
        self.debug_enabled = True

    def _output(self, text: str) -> None:
        stream = self._stream if self._stream is not None else sys.stderr
        stamp = time.strftime("%Y/%m/%d %H:%M:%S ") if self.timestamps else ""
        if not text.endswith("\n"):
            text += "\n"
        stream.write(f"{self.prefix}{stamp}{text}")
        flush = getattr(stream, "flush", None)
        if flush is not None:
            flush()

    def _log(self, level: str, msg: Any, args: tuple) -> None:
        self._output(f"{level}: {_format(msg, args)}")

    def debug(self, msg: Any, *args: Any) -> None:
        if self.debug_enabled:
            self._log("DEBUG", msg, args)

    def info(self, msg: Any, *args: Any) -> None:
        self._log("INFO", msg, args)

    def warning(self, msg: Any, *args: Any) -> None:
        self._log("WARN", msg, args)

    def error(self, msg: Any, *args: Any) -> None:
        self._log("ERROR", msg, args)

    def fatal(self, msg: Any, *args: Any) -> None:
        """Log the message and exit the process with status 1."""
        self._log("FATAL", msg, args)
        raise SystemExit(1)

    def panic(self, msg: Any, *args: Any) -> None:
        """Log the message and raise RaftPanic carrying it."""
        text = _format(msg, args)
        self._output(text)
        raise RaftPanic(text)


_default_logger = DefaultLogger()
_discard_logger = DefaultLogger(stream=_NullStream(), prefix="", timestamps=False)
_lock = threading.Lock()
_current: Any = _default_logger


def set_logger(logger: Any) -> None:
    """Install the logger used by newly created raft structures."""
    global _current
    with _lock:
        _current = logger


def reset_default_logger() -> None:
    set_logger(_default_logger)


def get_logger() -> Any:
    with _lock:
        return _current


def discard_logger() -> DefaultLogger:
    """Return a logger that drops all output but still raises on panic."""
    return _discard_logger