"""Standardized error handling for model calls.

Provides error codes for programmatic handling and the exception hierarchy
surfaced by the call executor, structured generation and tool execution.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from functools import lru_cache
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import JsonValue


class ErrorCode(StrEnum):
    """Standard error codes for model call failures.

    Used for programmatic error handling and retry decisions.
    """
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    CLIENT_ERROR = "CLIENT_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    CANCELLED = "CANCELLED"
    SCHEMA_MISMATCH = "SCHEMA_MISMATCH"
    UNKNOWN_SCHEMA = "UNKNOWN_SCHEMA"
    TOOL_EXECUTION = "TOOL_EXECUTION"
    UNKNOWN = "UNKNOWN"


# Transient codes: the same request may succeed when repeated
RETRYABLE_CODES: frozenset[ErrorCode] = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.SERVER_ERROR,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.TIMEOUT,
})

# Pattern -> code mapping, checked in insertion order. Patterns match whole
# words or phrases of "<ExceptionName> <message>", lowercased.
_PATTERN_CODES: dict[re.Pattern[str], ErrorCode] = {
    re.compile(r"\btime(?:d)? ?out\b"): ErrorCode.TIMEOUT,
    re.compile(r"\bconnection (?:reset|refused|aborted|closed|lost|error)\b"): ErrorCode.NETWORK_ERROR,
    re.compile(r"\bnetwork (?:error|failure|unreachable)\b"): ErrorCode.NETWORK_ERROR,
    re.compile(r"\brate[- ]limit(?:ed|s)?\b|\btoo many requests\b"): ErrorCode.RATE_LIMITED,
    re.compile(r"\boverloaded\b|\b(?:service|server) (?:temporarily )?unavailable\b"): ErrorCode.SERVER_ERROR,
    re.compile(r"\bauth(?:entication|orization)?\b|\bunauthori[sz]ed\b|\bforbidden\b"): ErrorCode.AUTH_ERROR,
    re.compile(r"\b(?:json)?decode ?error\b|\bparse error\b|\b(?:invalid|malformed) json\b"): ErrorCode.PARSE_ERROR,
}


@lru_cache(maxsize=256)
def _classify_cached(exc_key: str) -> ErrorCode:
    """Cached classification by exception signature."""
    haystack = exc_key.lower()
    for pattern, code in _PATTERN_CODES.items():
        if pattern.search(haystack):
            return code
    return ErrorCode.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorCode:
    """Map exception to error code by type, then by whole-word patterns on name/message."""
    if isinstance(exc, GenflowError):
        return exc.code
    if isinstance(exc, TimeoutError):
        return ErrorCode.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ErrorCode.NETWORK_ERROR
    if isinstance(exc, PermissionError):
        return ErrorCode.AUTH_ERROR
    return _classify_cached(f"{type(exc).__name__} {exc}")


# ─────────────────────────────────────────────────────────────────────────────
# Exception Hierarchy
# ─────────────────────────────────────────────────────────────────────────────


class GenflowError(Exception):
    """Base class for every error surfaced by a model call.

    Attributes:
        code: Machine-readable error classification
        attempts: Number of provider attempts made before the error surfaced
        elapsed_ms: Wall time of the logical call when the error surfaced
        function_id: Caller-supplied label of the failing call
    """

    code: ErrorCode = ErrorCode.UNKNOWN
    retryable: bool = False

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.attempts: int | None = None
        self.elapsed_ms: float | None = None
        self.function_id: str | None = None

    def with_call_info(self, *, attempts: int, elapsed_ms: float, function_id: str | None) -> GenflowError:
        """Attach call bookkeeping (attempt count, elapsed time) before surfacing."""
        self.attempts, self.elapsed_ms, self.function_id = attempts, elapsed_ms, function_id
        return self

    def __str__(self) -> str:
        parts = [f"{self.message} [{self.code}]"]
        if self.attempts is not None:
            parts.append(f" after {self.attempts} attempt(s)")
        if self.elapsed_ms is not None:
            parts.append(f" in {self.elapsed_ms:.0f}ms")
        return "".join(parts)


class ProviderError(GenflowError):
    """Failure reported by a provider while producing a response.

    Attributes:
        status_code: HTTP status code when the failure came from an HTTP response
        response_body: Raw response body for diagnostics
    """

    code = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code
        self.response_body = response_body


class TransientProviderError(ProviderError):
    """Server-side or network-transient failure. The only error kind that is retried."""

    code = ErrorCode.SERVER_ERROR
    retryable = True


class FatalProviderError(ProviderError):
    """Non-retryable provider failure (malformed request, auth, unparseable response)."""

    code = ErrorCode.CLIENT_ERROR


class CancellationError(GenflowError):
    """The run was cancelled. Always terminal, never retried."""

    code = ErrorCode.CANCELLED

    def __init__(self, message: str = "Call was cancelled", *, reason: object = None) -> None:
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    """A single violation found while validating a value against a schema.

    `path` is dotted (``"address.city"``, ``"items.0"``); empty for the root.
    """

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path or '<root>'}: {self.message}"


class SchemaMismatchError(GenflowError):
    """Generated JSON failed schema validation. Not retried automatically."""

    code = ErrorCode.SCHEMA_MISMATCH

    def __init__(self, schema_name: str, value: JsonValue, issues: tuple[ValidationIssue, ...]) -> None:
        detail = "; ".join(str(i) for i in issues) or "invalid value"
        super().__init__(f"Generated JSON does not match schema '{schema_name}': {detail}")
        self.schema_name = schema_name
        self.value = value
        self.issues = issues

    @property
    def paths(self) -> tuple[str, ...]:
        """Paths of all violating locations."""
        return tuple(i.path for i in self.issues)


class UnknownSchemaSelectedError(GenflowError):
    """Provider selected a schema that is not among the candidates."""

    code = ErrorCode.UNKNOWN_SCHEMA

    def __init__(self, schema_name: str, candidates: tuple[str, ...]) -> None:
        super().__init__(
            f"Model selected unknown schema '{schema_name}' (candidates: {', '.join(candidates) or 'none'})"
        )
        self.schema_name = schema_name
        self.candidates = candidates


class ToolExecutionError(GenflowError):
    """The tool action raised after its parameters were generated successfully."""

    code = ErrorCode.TOOL_EXECUTION

    def __init__(self, tool_name: str, parameters: object, cause: BaseException) -> None:
        super().__init__(f"Tool '{tool_name}' failed: {cause}")
        self.tool_name = tool_name
        self.parameters = parameters
        self.cause = cause


def to_provider_error(exc: BaseException) -> GenflowError:
    """Turn an arbitrary exception raised by a provider into a classified error.

    Already-classified errors pass through. Timeouts and connection failures
    become transient, as do messages naming a rate limit or an overloaded
    service. Unrecognised exceptions are fatal.
    """
    if isinstance(exc, GenflowError):
        return exc
    code = classify_exception(exc)
    cls = TransientProviderError if code in RETRYABLE_CODES else FatalProviderError
    err = cls(str(exc) or type(exc).__name__, code=code)
    err.__cause__ = exc
    return err
