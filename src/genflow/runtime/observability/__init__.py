"""Observability for model calls: lifecycle events, event sinks and structured logging."""

from .events import (
    AnyCallEvent,
    CallbackSink,
    CallEvent,
    CallEventKind,
    CallFailedEvent,
    CallFinishedEvent,
    CallStartedEvent,
    EventSink,
    LoggingEventSink,
    ModelInfo,
    emit,
)
from .logging import (
    BoundLogger,
    ConsoleRenderer,
    JsonRenderer,
    LogEntry,
    LogRenderer,
    NoOpRenderer,
    bind_context,
    configure_logging,
    get_logger,
)

__all__ = [
    # Events
    "CallEvent", "CallEventKind", "CallStartedEvent", "CallFinishedEvent", "CallFailedEvent",
    "AnyCallEvent", "ModelInfo",
    # Sinks
    "EventSink", "CallbackSink", "LoggingEventSink", "emit",
    # Logging
    "BoundLogger", "LogEntry", "LogRenderer", "ConsoleRenderer", "JsonRenderer", "NoOpRenderer",
    "configure_logging", "get_logger", "bind_context",
]
