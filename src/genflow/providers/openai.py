"""OpenAI-compatible provider over httpx.

Two models:

- OpenAITextGenerationModel: the completions endpoint (text and streaming)
- OpenAIChatModel: the chat completions endpoint (text, streaming, JSON via
  function calling, JSON-or-text via an optional function call)

Both only shape requests and read responses. Retry, throttling, cancellation
and events come from the call executor; errors raised here are already
classified as transient or fatal.

Example:
    >>> model = OpenAIChatModel("gpt-3.5-turbo", settings=OpenAIChatSettings(temperature=0.7))
    >>> text = await generate_text(model.with_settings(max_completion_tokens=200), "Write a haiku")
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx
import orjson
from pydantic import Field

from genflow.foundation.config import get_settings, merge_settings
from genflow.foundation.errors import (
    ErrorCode,
    FatalProviderError,
    GenflowError,
    JsonDict,
    ProviderError,
    TransientProviderError,
    to_provider_error,
)
from genflow.model.base import JsonOrTextSelection, ModelSettings, ProviderCallOptions
from genflow.model.usage import Usage
from genflow.structured.schema import Schema

logger = logging.getLogger("genflow.providers.openai")

PROVIDER = "openai"


# ─────────────────────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────────────────────


class OpenAITextGenerationSettings(ModelSettings):
    """Completions request settings on top of the shared model settings."""

    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    presence_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    frequency_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    suffix: str | None = None
    best_of: int | None = Field(default=None, ge=1)
    n: int | None = Field(default=None, ge=1)
    logprobs: int | None = Field(default=None, ge=0, le=5)
    echo: bool | None = None


class OpenAIChatSettings(ModelSettings):
    """Chat completions request settings on top of the shared model settings."""

    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    presence_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    frequency_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)


_SAMPLING_FIELDS = (
    "temperature", "top_p", "presence_penalty", "frequency_penalty", "suffix", "best_of", "n", "logprobs", "echo",
)


def request_settings(options: ProviderCallOptions) -> JsonDict:
    """Request body fields derived from the effective settings of an attempt."""
    s = options.settings
    body: JsonDict = {}
    if s.max_completion_tokens is not None:
        body["max_tokens"] = s.max_completion_tokens
    if s.stop_sequences:
        body["stop"] = list(s.stop_sequences)
    for name in _SAMPLING_FIELDS:
        if (value := getattr(s, name, None)) is not None:
            body[name] = value
    if options.user_id is not None:
        body["user"] = options.user_id
    return body


# ─────────────────────────────────────────────────────────────────────────────
# Error Classification
# ─────────────────────────────────────────────────────────────────────────────


def _error_message(status: int, body: str) -> str:
    try:
        message = orjson.loads(body)["error"]["message"]
    except (orjson.JSONDecodeError, KeyError, TypeError):
        message = body[:200] or "no response body"
    return f"OpenAI API returned {status}: {message}"


def status_error(status: int, body: str = "") -> ProviderError:
    """Classify an error status: 429, 408, 409 and 5xx are transient."""
    message = _error_message(status, body)
    match status:
        case 429:
            return TransientProviderError(message, code=ErrorCode.RATE_LIMITED, status_code=status, response_body=body)
        case 408:
            return TransientProviderError(message, code=ErrorCode.TIMEOUT, status_code=status, response_body=body)
        case 409:
            return TransientProviderError(message, code=ErrorCode.SERVER_ERROR, status_code=status, response_body=body)
        case s if s >= 500:
            return TransientProviderError(message, code=ErrorCode.SERVER_ERROR, status_code=status, response_body=body)
        case 401 | 403:
            return FatalProviderError(message, code=ErrorCode.AUTH_ERROR, status_code=status, response_body=body)
        case _:
            return FatalProviderError(message, code=ErrorCode.CLIENT_ERROR, status_code=status, response_body=body)


def classify_openai_error(exc: BaseException) -> GenflowError:
    """Map httpx and decoding failures to transient or fatal provider errors."""
    match exc:
        case GenflowError():
            return exc
        case httpx.TimeoutException():
            return TransientProviderError(f"Request timed out: {exc}", code=ErrorCode.TIMEOUT)
        case httpx.TransportError():
            return TransientProviderError(f"Network error: {exc}", code=ErrorCode.NETWORK_ERROR)
        case orjson.JSONDecodeError():
            return FatalProviderError(f"Malformed response body: {exc}", code=ErrorCode.PARSE_ERROR)
        case _:
            return to_provider_error(exc)


# ─────────────────────────────────────────────────────────────────────────────
# HTTP Transport
# ─────────────────────────────────────────────────────────────────────────────

_DONE: Any = object()


def parse_sse_line(line: str) -> JsonDict | None | Any:
    """Decode one server-sent event line.

    Returns the JSON payload of a data line, the end marker for
    ``data: [DONE]`` and None for anything else (comments, blank lines,
    other fields).
    """
    if not line.startswith("data:"):
        return None
    payload = line[5:].strip()
    if payload == "[DONE]":
        return _DONE
    return orjson.loads(payload) if payload else None


class EventStream:
    """JSON payloads of a streaming response, closing the response at the end."""

    __slots__ = ("_response", "_lines", "_closed")

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._lines = response.aiter_lines()
        self._closed = False

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> JsonDict:
        while not self._closed:
            try:
                line = await self._lines.__anext__()
            except StopAsyncIteration:
                break
            event = parse_sse_line(line)
            if event is _DONE:
                break
            if event is not None:
                return event
        await self.aclose()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._response.aclose()


class OpenAIApi:
    """Shared HTTP access for OpenAI models: base url, credentials and one AsyncClient.

    Args:
        api_key: Bearer token (defaults to GENFLOW_OPENAI_API_KEY)
        base_url: API root (defaults to GENFLOW_OPENAI_BASE_URL)
        timeout: Request timeout in seconds
        client: Preconfigured client, e.g. with a mock transport
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        cfg = get_settings().openai
        self.api_key = api_key or (cfg.api_key.get_secret_value() if cfg.api_key else None)
        self.base_url = (base_url or cfg.base_url).rstrip("/")
        self.timeout = timeout or cfg.timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _request(self, path: str, body: JsonDict) -> httpx.Request:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return self._get_client().build_request(
            "POST", f"{self.base_url}{path}", content=orjson.dumps(body), headers=headers, timeout=self.timeout
        )

    async def post(self, path: str, body: JsonDict) -> JsonDict:
        """POST a JSON body and return the decoded JSON response."""
        logger.debug("POST %s", path)
        response = await self._get_client().send(self._request(path, body))
        if response.status_code >= 400:
            raise status_error(response.status_code, response.text)
        return orjson.loads(response.content)

    async def stream(self, path: str, body: JsonDict) -> EventStream:
        """POST with ``stream: true``; returns once the response headers arrived."""
        logger.debug("POST %s (stream)", path)
        response = await self._get_client().send(self._request(path, {**body, "stream": True}), stream=True)
        if response.status_code >= 400:
            try:
                text = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            raise status_error(response.status_code, text)
        return EventStream(response)


def extract_usage(response: JsonDict) -> Usage | None:
    usage = response.get("usage")
    if not usage:
        return None
    return Usage(prompt_tokens=usage.get("prompt_tokens", 0), completion_tokens=usage.get("completion_tokens", 0))


# ─────────────────────────────────────────────────────────────────────────────
# Models
# ─────────────────────────────────────────────────────────────────────────────


class _OpenAIModel:
    provider: str = PROVIDER
    settings_type: type[ModelSettings] = ModelSettings

    def __init__(
        self,
        model_name: str,
        *,
        settings: ModelSettings | None = None,
        api: OpenAIApi | None = None,
        **api_options: Any,
    ) -> None:
        self.model_name = model_name
        self.settings = settings if settings is not None else self.settings_type()
        self.api = api or OpenAIApi(**api_options)

    @property
    def settings_for_event(self) -> JsonDict:
        return self.settings.for_event()

    def with_settings(self, **overrides: Any) -> Any:
        """Copy with merged settings, sharing the HTTP client."""
        return type(self)(self.model_name, settings=merge_settings(self.settings, overrides), api=self.api)

    def classify_error(self, exc: BaseException) -> GenflowError:
        return classify_openai_error(exc)

    def extract_usage(self, response: JsonDict) -> Usage | None:
        return extract_usage(response)

    async def aclose(self) -> None:
        await self.api.aclose()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.model_name!r})"


def _first_choice(response: JsonDict) -> JsonDict:
    choices = response.get("choices") or []
    if not choices:
        raise FatalProviderError("Response contains no choices", code=ErrorCode.PARSE_ERROR)
    return choices[0]


class OpenAITextGenerationModel(_OpenAIModel):
    """Completions endpoint model (text + streaming)."""

    settings_type = OpenAITextGenerationSettings

    def _body(self, prompt: str, options: ProviderCallOptions) -> JsonDict:
        return {"model": self.model_name, "prompt": prompt, **request_settings(options)}

    async def generate_text_response(self, prompt: str, options: ProviderCallOptions) -> JsonDict:
        return await self.api.post("/completions", self._body(prompt, options))

    def extract_text(self, response: JsonDict) -> str:
        return _first_choice(response)["text"]

    async def generate_delta_stream_response(self, prompt: str, options: ProviderCallOptions) -> AsyncIterator[JsonDict]:
        return await self.api.stream("/completions", self._body(prompt, options))

    def extract_text_delta(self, delta: JsonDict) -> str | None:
        choices = delta.get("choices") or []
        return choices[0].get("text") if choices else None


ChatMessages = Sequence[dict[str, Any]]


def chat_messages(prompt: str | ChatMessages) -> list[dict[str, Any]]:
    """A plain string becomes a single user message."""
    if isinstance(prompt, str):
        return [{"role": "user", "content": prompt}]
    return [dict(m) for m in prompt]


def function_definition(schema: Schema[Any]) -> JsonDict:
    definition: JsonDict = {"name": schema.name, "parameters": schema.json_schema()}
    if schema.description:
        definition["description"] = schema.description
    return definition


def _function_arguments(call: JsonDict) -> Any:
    try:
        return orjson.loads(call.get("arguments") or "{}")
    except orjson.JSONDecodeError as e:
        raise FatalProviderError(
            f"Function call arguments are not valid JSON: {e}", code=ErrorCode.PARSE_ERROR
        ) from e


class OpenAIChatModel(_OpenAIModel):
    """Chat completions endpoint model.

    JSON generation forces a function call whose parameters are the schema;
    JSON-or-text offers every schema as a function and lets the model answer
    in plain text instead.
    """

    settings_type = OpenAIChatSettings

    def _body(self, prompt: str | ChatMessages, options: ProviderCallOptions, **extra: Any) -> JsonDict:
        return {"model": self.model_name, "messages": chat_messages(prompt), **request_settings(options), **extra}

    async def generate_text_response(self, prompt: str | ChatMessages, options: ProviderCallOptions) -> JsonDict:
        return await self.api.post("/chat/completions", self._body(prompt, options))

    def extract_text(self, response: JsonDict) -> str:
        return _first_choice(response)["message"].get("content") or ""

    async def generate_delta_stream_response(
        self, prompt: str | ChatMessages, options: ProviderCallOptions
    ) -> AsyncIterator[JsonDict]:
        return await self.api.stream("/chat/completions", self._body(prompt, options))

    def extract_text_delta(self, delta: JsonDict) -> str | None:
        choices = delta.get("choices") or []
        return (choices[0].get("delta") or {}).get("content") if choices else None

    async def generate_json_response(
        self, prompt: str | ChatMessages, schema: Schema[Any], options: ProviderCallOptions
    ) -> JsonDict:
        body = self._body(prompt, options, functions=[function_definition(schema)], function_call={"name": schema.name})
        return await self.api.post("/chat/completions", body)

    def extract_json(self, response: JsonDict) -> Any:
        call = _first_choice(response)["message"].get("function_call")
        if not call:
            raise FatalProviderError("Response contains no function call", code=ErrorCode.PARSE_ERROR)
        return _function_arguments(call)

    async def generate_json_or_text_response(
        self, prompt: str | ChatMessages, schemas: Sequence[Schema[Any]], options: ProviderCallOptions
    ) -> JsonDict:
        body = self._body(prompt, options, functions=[function_definition(s) for s in schemas], function_call="auto")
        return await self.api.post("/chat/completions", body)

    def extract_json_or_text(self, response: JsonDict) -> JsonOrTextSelection:
        message = _first_choice(response)["message"]
        if call := message.get("function_call"):
            return JsonOrTextSelection(call["name"], _function_arguments(call), message.get("content"))
        return JsonOrTextSelection(None, text=message.get("content") or "")


