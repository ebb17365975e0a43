"""Model capabilities, settings and call options.

Providers do not subclass anything from this module. A provider class
implements one or more capability protocols (structural typing), and the
orchestration functions dispatch on the capability set explicitly:

    TEXT         generate_text_response / extract_text
    TEXT_STREAM  + generate_delta_stream_response / extract_text_delta
    JSON         generate_json_response / extract_json
    JSON_OR_TEXT generate_json_or_text_response / extract_json_or_text

`extract_usage(response)` and `classify_error(exc)` are optional extras that
any capability may provide.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, PositiveInt

from genflow.foundation.context import CancellationToken, RunContext
from genflow.foundation.errors import JsonDict, JsonValue
from genflow.runtime.observability import EventSink, ModelInfo
from genflow.runtime.retry import RetryPolicy
from genflow.runtime.throttle import ThrottlePolicy

if TYPE_CHECKING:
    from genflow.structured.schema import Schema


class ModelSettings(BaseModel):
    """Immutable settings shared by all models.

    Providers extend this with their own request fields. Derive modified
    copies with `merge_settings` or the model's `with_settings`; instances
    are never mutated.

    Attributes:
        retry: Retry policy for this model (None = configured default)
        throttle: Throttle policy for this model (None = configured default)
        trim_whitespace: Strip leading/trailing whitespace of generated text
        max_completion_tokens: Upper bound on generated tokens
        stop_sequences: Sequences that end generation
        user_id_forwarding: Forward the run's user id to the provider
        observers: Event sinks receiving this model's call events
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
        revalidate_instances="never",
    )

    retry: RetryPolicy | None = Field(default=None, exclude=True, repr=False)
    throttle: ThrottlePolicy | None = Field(default=None, exclude=True, repr=False)
    trim_whitespace: bool = True
    max_completion_tokens: PositiveInt | None = None
    stop_sequences: tuple[str, ...] | None = None
    user_id_forwarding: bool = False
    observers: tuple[EventSink, ...] = Field(default=(), exclude=True, repr=False)

    def for_event(self) -> JsonDict:
        """Settings safe to attach to lifecycle events (no policies, no secrets)."""
        return self.model_dump(exclude_none=True, mode="json")


@dataclass(frozen=True, slots=True)
class CallOptions:
    """Per-call options supplied by the caller.

    Attributes:
        settings: Overrides merged over the model's settings (later wins)
        run: Run context; a fresh one is created when omitted
        function_id: Label for this call (defaults to the run's function id)
        observers: Extra event sinks for this call only
    """

    settings: ModelSettings | Mapping[str, Any] | None = None
    run: RunContext | None = None
    function_id: str | None = None
    observers: Sequence[EventSink] = ()


@dataclass(frozen=True, slots=True)
class ProviderCallOptions:
    """What a provider receives for one attempt.

    `user_id` is only populated when the effective settings enable forwarding.
    """

    settings: ModelSettings
    run: RunContext
    function_id: str | None = None
    user_id: str | None = None

    @property
    def token(self) -> CancellationToken:
        return self.run.token


@dataclass(frozen=True, slots=True)
class JsonOrTextSelection:
    """Raw provider answer to a multi-schema request.

    Either `schema_name` names the chosen schema and `value` holds its
    unvalidated JSON, or `schema_name` is None and `text` holds free text.
    """

    schema_name: str | None
    value: JsonValue = None
    text: str | None = None


# ─────────────────────────────────────────────────────────────────────────────
# Capability Protocols
# ─────────────────────────────────────────────────────────────────────────────


@runtime_checkable
class Model(Protocol):
    """Identity and settings every capability shares."""

    provider: str
    model_name: str | None
    settings: ModelSettings

    def with_settings(self, **overrides: Any) -> Model:
        """Return a copy with merged settings; the original is unchanged."""
        ...


@runtime_checkable
class TextGenerationModel(Model, Protocol):
    async def generate_text_response(self, prompt: Any, options: ProviderCallOptions) -> Any: ...

    def extract_text(self, response: Any) -> str: ...


@runtime_checkable
class TextStreamingModel(TextGenerationModel, Protocol):
    async def generate_delta_stream_response(
        self, prompt: Any, options: ProviderCallOptions
    ) -> AsyncIterator[Any]:
        """Open the stream. Returning means the connection succeeded."""
        ...

    def extract_text_delta(self, delta: Any) -> str | None: ...


@runtime_checkable
class JsonGenerationModel(Model, Protocol):
    async def generate_json_response(self, prompt: Any, schema: Schema[Any], options: ProviderCallOptions) -> Any: ...

    def extract_json(self, response: Any) -> JsonValue: ...


@runtime_checkable
class JsonOrTextGenerationModel(Model, Protocol):
    async def generate_json_or_text_response(
        self, prompt: Any, schemas: Sequence[Schema[Any]], options: ProviderCallOptions
    ) -> Any: ...

    def extract_json_or_text(self, response: Any) -> JsonOrTextSelection: ...


class Capability(StrEnum):
    """Capability tags used for explicit dispatch."""
    TEXT = "text"
    TEXT_STREAM = "text-stream"
    JSON = "json"
    JSON_OR_TEXT = "json-or-text"


_CAPABILITY_PROTOCOLS: tuple[tuple[Capability, type], ...] = (
    (Capability.TEXT, TextGenerationModel),
    (Capability.TEXT_STREAM, TextStreamingModel),
    (Capability.JSON, JsonGenerationModel),
    (Capability.JSON_OR_TEXT, JsonOrTextGenerationModel),
)


def capabilities_of(model: object) -> frozenset[Capability]:
    """The capability set a model implements."""
    return frozenset(cap for cap, proto in _CAPABILITY_PROTOCOLS if isinstance(model, proto))


def require_capability(model: object, capability: Capability) -> None:
    """Raise TypeError when `model` lacks `capability`."""
    if capability not in capabilities_of(model):
        raise TypeError(
            f"{type(model).__name__} does not implement the '{capability}' capability "
            f"(has: {', '.join(sorted(capabilities_of(model))) or 'none'})"
        )


def model_info(model: Model, settings: ModelSettings | None = None) -> ModelInfo:
    """Event-safe identity of a model, optionally with the effective settings of a call."""
    return ModelInfo(
        provider=model.provider,
        model_name=model.model_name,
        settings=(settings or model.settings).for_event(),
    )

