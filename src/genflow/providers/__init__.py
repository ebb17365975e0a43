"""Model providers."""

from .openai import (
    EventStream,
    OpenAIApi,
    OpenAIChatModel,
    OpenAIChatSettings,
    OpenAITextGenerationModel,
    OpenAITextGenerationSettings,
    classify_openai_error,
    parse_sse_line,
    status_error,
)

__all__ = [
    "OpenAIApi", "OpenAIChatModel", "OpenAIChatSettings",
    "OpenAITextGenerationModel", "OpenAITextGenerationSettings",
    "EventStream", "parse_sse_line", "status_error", "classify_openai_error",
]
