"""Structured logging with call-context propagation.

Every line carries the context scoped with `bind_context` (the executor
scopes `call_id` and `function_id` around each call), the logger's bound
context and the call-site keywords, merged in that order.

Quick Start:
    >>> from genflow.runtime.observability import get_logger, configure_logging
    >>>
    >>> configure_logging(format="json")
    >>> log = get_logger("genflow.calls")
    >>> with bind_context(call_id="c-1"):
    ...     log.info("call finished", duration_ms=412.5)  # includes call_id
"""

from __future__ import annotations

import logging
import sys
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol, TextIO, runtime_checkable

import orjson

from genflow.foundation.errors import JsonDict, JsonValue

# Context var for scoped context (persists across awaits within a task)
_log_context: ContextVar[JsonDict] = ContextVar("log_context", default={})

# Rendered ahead of the remaining keys so lines of one call line up
_IDENTITY_KEYS = ("function_id", "call_id")


@dataclass(slots=True)
class LogEntry:
    """Log entry with all merged context."""

    timestamp: float
    level: str
    event: str
    context: JsonDict

    def time(self, fmt: str | None = None) -> str:
        ts = datetime.fromtimestamp(self.timestamp, tz=UTC)
        return ts.isoformat() if fmt is None else ts.strftime(fmt)


@runtime_checkable
class LogRenderer(Protocol):
    def render(self, entry: LogEntry) -> None: ...


@dataclass(slots=True)
class BoundLogger:
    """Structured logger with bound context. bind() returns a new logger with merged context.

    Without an explicit renderer or level the globally configured ones apply
    at the time of each log call.
    """

    context: JsonDict = field(default_factory=dict)
    _renderer: LogRenderer | None = None
    _level: int | None = None

    def bind(self, **kw: JsonValue) -> BoundLogger:
        return BoundLogger(context={**self.context, **kw}, _renderer=self._renderer, _level=self._level)

    def _log(self, level: int, event: str, **kw: JsonValue) -> None:
        if level < (_config.level if self._level is None else self._level):
            return
        merged = {**_log_context.get(), **self.context, **kw}
        entry = LogEntry(time.time(), logging.getLevelName(level).lower(), event, merged)
        (self._renderer or _get_renderer()).render(entry)

    def debug(self, event: str, **kw: JsonValue) -> None: self._log(logging.DEBUG, event, **kw)
    def info(self, event: str, **kw: JsonValue) -> None: self._log(logging.INFO, event, **kw)
    def warning(self, event: str, **kw: JsonValue) -> None: self._log(logging.WARNING, event, **kw)
    def error(self, event: str, **kw: JsonValue) -> None: self._log(logging.ERROR, event, **kw)


class LogScope:
    """Context manager adding keys to the scoped log context."""

    __slots__ = ("_ctx", "_token")

    def __init__(self, ctx: JsonDict) -> None:
        self._ctx, self._token = ctx, None

    def __enter__(self) -> None:
        self._token = _log_context.set({**_log_context.get(), **self._ctx})

    def __exit__(self, *_: object) -> None:
        if self._token is not None:
            _log_context.reset(self._token)


def bind_context(**kw: JsonValue) -> LogScope:
    """Scope context for every structured logger in the current task."""
    return LogScope(kw)


# ─────────────────────────────────────────────────────────────────────────────
# Renderers
# ─────────────────────────────────────────────────────────────────────────────

_LEVEL_COLORS = {"debug": "\033[34m", "info": "\033[32m", "warning": "\033[33m", "error": "\033[31m"}
_RESET = "\033[0m"


def _format_value(v: object) -> str:
    if isinstance(v, str):
        return repr(v) if " " in v else v
    return str(v)


@dataclass(slots=True)
class ConsoleRenderer:
    """Human-readable output: ``HH:MM:SS.mmm [level] event function_id=.. call_id=.. key=value``."""

    output: TextIO = field(default_factory=lambda: sys.stderr)
    colors: bool | None = None  # None = auto-detect

    def __post_init__(self) -> None:
        if self.colors is None:
            self.colors = getattr(self.output, "isatty", lambda: False)()

    def render(self, entry: LogEntry) -> None:
        level = f"[{entry.level}]"
        if self.colors:
            level = f"{_LEVEL_COLORS.get(entry.level, '')}{level}{_RESET}"
        ctx = entry.context
        keys = [k for k in _IDENTITY_KEYS if ctx.get(k) is not None]
        keys += sorted(k for k in ctx if k not in _IDENTITY_KEYS)
        fields = " ".join(f"{k}={_format_value(ctx[k])}" for k in keys)
        line = f"{entry.time('%H:%M:%S.%f')[:-3]} {level} {entry.event}"
        print(f"{line} {fields}" if fields else line, file=self.output)


@dataclass(slots=True)
class JsonRenderer:
    """JSON Lines output for log aggregation."""

    output: TextIO = field(default_factory=lambda: sys.stdout)

    def render(self, entry: LogEntry) -> None:
        payload = {"timestamp": entry.time(), "level": entry.level, "event": entry.event, **entry.context}
        print(orjson.dumps(payload, option=orjson.OPT_NON_STR_KEYS, default=str).decode(), file=self.output)


@dataclass(slots=True)
class NoOpRenderer:
    """Silent renderer for GENFLOW_LOG_FORMAT=none."""

    def render(self, entry: LogEntry) -> None:
        pass


# ─────────────────────────────────────────────────────────────────────────────
# Global Configuration
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(slots=True)
class _LoggingConfig:
    renderer: LogRenderer | None = None
    level: int = logging.INFO


_config = _LoggingConfig()


def configure_logging(
    format: str = "console",  # noqa: A002
    level: str = "INFO",
    *,
    output: TextIO | None = None,
    colors: bool | None = None,
) -> LogRenderer:
    """Configure process-wide structured logging. Format: "console", "json" or "none"."""
    match format:
        case "console": renderer: LogRenderer = ConsoleRenderer(output=output or sys.stderr, colors=colors)
        case "json": renderer = JsonRenderer(output=output or sys.stdout)
        case "none": renderer = NoOpRenderer()
        case _: raise ValueError(f"Unknown log format {format!r}; expected console, json or none")
    _config.renderer = renderer
    _config.level = getattr(logging, level.upper(), logging.INFO)
    return renderer


def get_logger(name: str | None = None, **initial_context: JsonValue) -> BoundLogger:
    """Get a structured logger with optional initial context. Name is added to context as 'logger'."""
    return BoundLogger(context={**initial_context, **({"logger": name} if name else {})})


def _get_renderer() -> LogRenderer:
    if _config.renderer is None:
        _config.renderer = ConsoleRenderer()
    return _config.renderer
