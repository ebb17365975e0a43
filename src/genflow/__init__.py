"""genflow - Provider-agnostic orchestration of generative model calls.

Every call (text, streaming text, structured JSON, tool use) runs through one
executor that adds retry on transient failure, admission throttling,
cancellation, usage extraction and lifecycle events.

Quick Start:
    >>> from genflow import generate_text, stream_text
    >>> from genflow.providers import OpenAIChatModel
    >>>
    >>> model = OpenAIChatModel("gpt-3.5-turbo")
    >>> text = await generate_text(model, "Write a short story about a robot.")
    >>>
    >>> async for fragment in await stream_text(model, "Write a haiku"):
    ...     print(fragment, end="", flush=True)

Structured Generation:
    >>> from pydantic import BaseModel
    >>> from typing import Literal
    >>>
    >>> class Sentiment(BaseModel):
    ...     sentiment: Literal["positive", "neutral", "negative"]
    >>>
    >>> result = await generate_json(model, Schema.from_type(Sentiment), "Classify: I hate this")
    >>> result.sentiment
    'negative'

Tools:
    >>> @tool
    ... def get_weather(city: str) -> str:
    ...     '''Current weather for a city.'''
    ...     return f"Sunny in {city}"
    >>>
    >>> result = await use_tool(model, get_weather, "What's the weather in Paris?")

Retry, Throttling and Cancellation:
    >>> run = RunContext(function_id="story")
    >>> model = model.with_settings(
    ...     retry=retry_with_exponential_backoff(max_tries=5, initial_delay=1.0),
    ...     throttle=throttle_max_concurrency(4),
    ... )
    >>> promise = generate_text(model, "Tell me a story", CallOptions(run=run))
    >>> run.cancel("user navigated away")   # aborts backoff, throttle waits and requests
"""

from __future__ import annotations

__version__ = "0.1.0"

# Configuration
from .foundation.config import GenflowSettings, clear_settings_cache, get_settings, merge_settings

# Run context
from .foundation.context import CancellationToken, RunContext

# Errors
from .foundation.errors import (
    CancellationError,
    ErrorCode,
    FatalProviderError,
    GenflowError,
    ProviderError,
    SchemaMismatchError,
    ToolExecutionError,
    TransientProviderError,
    UnknownSchemaSelectedError,
    ValidationIssue,
)

# Streaming
from .io.streaming import TextStream

# Models
from .model import (
    CallOptions,
    Capability,
    InstructionPrompt,
    ModelSettings,
    ProviderCallOptions,
    Usage,
    capabilities_of,
    with_prompt_format,
)
from .model.text import TextStreamPromise, generate_text, stream_text

# Observability
from .runtime.observability import (
    CallbackSink,
    CallFailedEvent,
    CallFinishedEvent,
    CallStartedEvent,
    EventSink,
    LoggingEventSink,
    configure_logging,
    get_logger,
)

# Execution
from .runtime.execution import CallMetadata, FullResponse, ModelCallPromise

# Retry & throttle policies
from .runtime.retry import RetryPolicy, RetryWithExponentialBackoff, retry_never, retry_with_exponential_backoff
from .runtime.throttle import ThrottlePolicy, throttle_max_concurrency, throttle_rate_limit, throttle_unlimited

# Structured generation
from .structured import JsonOrTextResult, Schema, generate_json, generate_json_or_text

# Tools
from .tools import TextResult, Tool, ToolCallResult, execute_tool, tool, use_tool, use_tool_or_generate_text

__all__ = [
    # Version
    "__version__",
    # Configuration
    "GenflowSettings", "get_settings", "clear_settings_cache", "merge_settings", "init_logging",
    # Run context
    "RunContext", "CancellationToken",
    # Errors
    "GenflowError", "ErrorCode", "ProviderError", "TransientProviderError", "FatalProviderError",
    "CancellationError", "SchemaMismatchError", "UnknownSchemaSelectedError", "ToolExecutionError",
    "ValidationIssue",
    # Models
    "ModelSettings", "CallOptions", "ProviderCallOptions", "Capability", "capabilities_of", "Usage",
    "InstructionPrompt", "with_prompt_format",
    # Text
    "generate_text", "stream_text", "TextStream", "TextStreamPromise",
    # Results
    "ModelCallPromise", "FullResponse", "CallMetadata",
    # Policies
    "RetryPolicy", "RetryWithExponentialBackoff", "retry_never", "retry_with_exponential_backoff",
    "ThrottlePolicy", "throttle_unlimited", "throttle_max_concurrency", "throttle_rate_limit",
    # Observability
    "EventSink", "CallbackSink", "LoggingEventSink", "CallStartedEvent", "CallFinishedEvent", "CallFailedEvent",
    "configure_logging", "get_logger",
    # Structured generation
    "Schema", "generate_json", "generate_json_or_text", "JsonOrTextResult",
    # Tools
    "Tool", "tool", "ToolCallResult", "TextResult", "execute_tool", "use_tool", "use_tool_or_generate_text",
]


def init_logging() -> None:
    """Configure structured logging from GENFLOW_LOG_* settings.

    Example:
        >>> import os
        >>> os.environ["GENFLOW_LOG_FORMAT"] = "json"
        >>> init_logging()
    """
    cfg = get_settings().logging
    configure_logging(cfg.format, cfg.level)
