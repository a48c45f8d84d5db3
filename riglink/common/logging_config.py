from __future__ import annotations

import logging
import os
import sys
import threading
import weakref
from typing import Protocol

_LEVEL_COLORS = {
    "TRACE": "\033[32m",  # green
    "DEBUG": "\033[36m",  # cyan
    "INFO": "\033[37m",  # light gray
    "WARNING": "\033[33m",  # yellow
    "ERROR": "\033[31m",  # red
    "CRITICAL": "\033[41m",  # red background
}
_RESET = "\033[0m"
_DIM = "\033[2m"

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Wire traffic is only formatted when explicitly requested
TRACE_ENABLED = str(os.getenv("RIGLINK_TRACE", "0")).lower() in ("1", "true", "yes", "on")


def trace_wire(direction: str, payload: bytes | str) -> None:
    """Log raw rigctld traffic at TRACE level (no-op unless RIGLINK_TRACE is set)."""
    if not TRACE_ENABLED:
        return
    text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
    logging.log(TRACE, "%s %r", direction, text)


class AnsiColorFormatter(logging.Formatter):
    """Formatter that adds ANSI colors and a compact timestamp."""

    def __init__(self, colored: bool = True) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"
        )
        self.colored = colored and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.colored:
            return base
        level = record.levelname.upper()
        color = _LEVEL_COLORS.get(level, "")
        # Expect format "HH:MM:SS LEVEL logger: msg"
        try:
            ts, rest = base.split(" ", 1)
            if color:
                rest = rest.replace(level, f"{color}{level}{_RESET}", 1)
            return f"{_DIM}{ts}{_RESET} {rest}"
        except ValueError:
            return base


# ---- log sinks (e.g. a NiceGUI ui.log owned by the consuming UI) ----


class LogSink(Protocol):
    def push(self, line: str) -> None: ...


_sink_refs: set[weakref.ref] = set()
_sink_lock = threading.Lock()


class WidgetLogHandler(logging.Handler):
    """Mirror log records into every registered sink exposing ``push(str)``."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level=level)
        self.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s", "%H:%M:%S"
            )
        )

    def emit(self, record: logging.LogRecord) -> None:
        if not _sink_refs:
            return
        msg = self.format(record)
        stale: list[weakref.ref] = []
        with _sink_lock:
            for ref in list(_sink_refs):
                sink = ref()
                if sink is None:
                    stale.append(ref)
                    continue
                try:
                    sink.push(msg)
                except Exception:
                    # Sink was torn down by its owner
                    stale.append(ref)
            for ref in stale:
                _sink_refs.discard(ref)


def attach_log_sink(sink: LogSink) -> None:
    """Register a sink (held weakly) for mirrored log lines."""
    try:
        ref = weakref.ref(sink)
    except TypeError:
        return
    with _sink_lock:
        _sink_refs.add(ref)


def detach_log_sink(sink: LogSink) -> None:
    try:
        ref = weakref.ref(sink)
    except TypeError:
        return
    with _sink_lock:
        _sink_refs.discard(ref)


def _have_console_handler(logger: logging.Logger) -> bool:
    return any(isinstance(h, logging.StreamHandler) for h in logger.handlers)


def _have_widget_handler(logger: logging.Logger) -> bool:
    return any(isinstance(h, WidgetLogHandler) for h in logger.handlers)


def configure_logging(
    level: int = logging.INFO, use_color: bool = True, add_widget_handler: bool = False
) -> logging.Logger:
    """
    Configure root logger with:
      - ANSI-colored console handler (stderr) with timestamps and levels
      - Optional widget handler mirroring records into attached sinks
    Idempotent across multiple calls.
    """
    logger = logging.getLogger()
    logger.setLevel(level)

    if not _have_console_handler(logger):
        console = logging.StreamHandler(stream=sys.stderr)
        console.setLevel(level)
        console.setFormatter(AnsiColorFormatter(colored=use_color))
        logger.addHandler(console)

    if add_widget_handler and not _have_widget_handler(logger):
        logger.addHandler(WidgetLogHandler(level=level))

    return logger
