"""Text generation and streaming."""

from __future__ import annotations

from typing import Any, TypeAlias

from genflow.io.streaming import TextStream
from genflow.runtime.execution import ModelCallPromise, execute_call, execute_stream_call

from .base import (
    CallOptions,
    Capability,
    ModelSettings,
    TextGenerationModel,
    TextStreamingModel,
    require_capability,
)

TEXT_GENERATION = "text-generation"
TEXT_STREAMING = "text-streaming"

TextStreamPromise: TypeAlias = ModelCallPromise[TextStream]


def generate_text(
    model: TextGenerationModel,
    prompt: Any,
    options: CallOptions | None = None,
) -> ModelCallPromise[str]:
    """Generate text for `prompt`.

    Leading and trailing whitespace is removed unless the effective settings
    disable `trim_whitespace`.

    Example:
        >>> text = await generate_text(model, "Write a short story about a robot.")
        >>> full = await generate_text(model, "Hi").as_full_response()
    """
    require_capability(model, Capability.TEXT)

    def extract(response: Any, settings: ModelSettings) -> str:
        text = model.extract_text(response)
        return text.strip() if settings.trim_whitespace else text

    return execute_call(
        function_type=TEXT_GENERATION,
        model=model,
        input=prompt,
        produce=lambda call: model.generate_text_response(prompt, call),
        extract_value=extract,
        extract_usage=getattr(model, "extract_usage", None),
        options=options,
    )


def stream_text(
    model: TextStreamingModel,
    prompt: Any,
    options: CallOptions | None = None,
) -> TextStreamPromise:
    """Stream text for `prompt` as a TextStream of fragments.

    Retry and throttling cover opening the stream only; a failure after the
    first fragment is raised from the iteration and is never retried.

    Example:
        >>> stream = await stream_text(model, "Write a haiku")
        >>> async for fragment in stream:
        ...     print(fragment, end="")
    """
    require_capability(model, Capability.TEXT_STREAM)
    return execute_stream_call(
        function_type=TEXT_STREAMING,
        model=model,
        input=prompt,
        open_stream=lambda call: model.generate_delta_stream_response(prompt, call),
        extract_delta=model.extract_text_delta,
        options=options,
    )
