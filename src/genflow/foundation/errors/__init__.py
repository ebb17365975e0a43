"""Unified error handling for genflow.

- ErrorCode: Standard error codes for call failures
- GenflowError and subclasses: the exception taxonomy surfaced to callers
- classify_exception/to_provider_error: pattern-based classification of raw exceptions
"""

from .errors import (
    RETRYABLE_CODES,
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
    classify_exception,
    to_provider_error,
)
from .types import JsonDict, JsonPrimitive, JsonValue

__all__ = [
    # Codes & classification
    "ErrorCode", "RETRYABLE_CODES", "classify_exception", "to_provider_error",
    # Exceptions
    "GenflowError", "ProviderError", "TransientProviderError", "FatalProviderError",
    "CancellationError", "SchemaMismatchError", "UnknownSchemaSelectedError", "ToolExecutionError",
    "ValidationIssue",
    # JSON aliases
    "JsonDict", "JsonPrimitive", "JsonValue",
]
