"""Lifecycle events for model calls and event sinks.

Every logical call emits exactly one `CallStartedEvent` followed by either a
`CallFinishedEvent` or a `CallFailedEvent`. Sinks receive events synchronously
and fire-and-forget: an exception inside a sink is logged and dropped, it
never reaches the call's own result path.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Callable, ClassVar, Protocol, TypeAlias, runtime_checkable

from genflow.foundation.errors import JsonDict

from .logging import BoundLogger, get_logger

if TYPE_CHECKING:
    from genflow.model.usage import Usage

logger = logging.getLogger("genflow.observability")


class CallEventKind(StrEnum):
    """Event type classification."""
    STARTED = "started"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ModelInfo:
    """Provider identity and event-safe settings of the model used for a call."""

    provider: str
    model_name: str | None = None
    settings: JsonDict = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CallEvent:
    """Fields shared by all lifecycle events.

    Attributes:
        function_type: Kind of call ("text-generation", "json-generation", "execute-tool", ...)
        call_id: Run context call id, shared by all calls in one tree
        function_id: Caller-supplied label
        user_id: Run context user id
        model: Model identity, None for tool executions
        input: Prompt (or tool input) of the call
        started_at: Epoch seconds when the call started
    """

    kind: ClassVar[CallEventKind]

    function_type: str
    call_id: str
    function_id: str | None
    user_id: str | None
    model: ModelInfo | None
    input: object
    started_at: float

    def to_dict(self) -> JsonDict:
        """Serialize the identity part for logging/transport."""
        return {
            "event": self.kind.value,
            "function_type": self.function_type,
            "call_id": self.call_id,
            "function_id": self.function_id,
            "user_id": self.user_id,
            "provider": self.model.provider if self.model else None,
            "model_name": self.model.model_name if self.model else None,
        }


@dataclass(frozen=True, slots=True)
class CallStartedEvent(CallEvent):
    kind: ClassVar[CallEventKind] = CallEventKind.STARTED


@dataclass(frozen=True, slots=True)
class CallFinishedEvent(CallEvent):
    kind: ClassVar[CallEventKind] = CallEventKind.FINISHED

    finished_at: float
    duration_ms: float
    value: object
    usage: Usage | None
    response: object

    def to_dict(self) -> JsonDict:
        data = CallEvent.to_dict(self)
        data["duration_ms"] = round(self.duration_ms, 2)
        if self.usage is not None:
            data["usage"] = self.usage.model_dump()
        return data


@dataclass(frozen=True, slots=True)
class CallFailedEvent(CallEvent):
    kind: ClassVar[CallEventKind] = CallEventKind.FAILED

    finished_at: float
    duration_ms: float
    error: BaseException
    cancelled: bool = False

    def to_dict(self) -> JsonDict:
        data = CallEvent.to_dict(self)
        data.update(duration_ms=round(self.duration_ms, 2), error=str(self.error), cancelled=self.cancelled)
        return data


AnyCallEvent: TypeAlias = CallStartedEvent | CallFinishedEvent | CallFailedEvent


@runtime_checkable
class EventSink(Protocol):
    """Receiver of call lifecycle events."""

    def on_event(self, event: AnyCallEvent) -> None: ...


@dataclass(slots=True)
class CallbackSink:
    """Adapts a plain function into an EventSink."""

    callback: Callable[[AnyCallEvent], None]

    def on_event(self, event: AnyCallEvent) -> None:
        self.callback(event)


@dataclass(slots=True)
class LoggingEventSink:
    """Renders lifecycle events through the structured logger.

    Started/finished events log at info, failures at warning (cancellations at info).
    """

    log: BoundLogger = field(default_factory=lambda: get_logger("genflow.calls"))

    def on_event(self, event: AnyCallEvent) -> None:
        data = event.to_dict()
        name = f"call {data.pop('event')}"
        if isinstance(event, CallFailedEvent) and not event.cancelled:
            self.log.warning(name, **data)
        else:
            self.log.info(name, **data)


def emit(sinks: Iterable[EventSink], event: AnyCallEvent) -> None:
    """Deliver `event` to every sink. Sink failures are logged, never raised."""
    for sink in sinks:
        try:
            sink.on_event(event)
        except Exception:
            logger.warning("Event sink %r failed on %s event", sink, event.kind.value, exc_info=True)
