"""Structured generation: schemas, validation and multi-schema dispatch."""

from .generate import (
    JSON_GENERATION,
    JSON_OR_TEXT_GENERATION,
    JsonOrTextResult,
    generate_json,
    generate_json_or_text,
    unique_schemas,
)
from .schema import Invalid, PydanticValidator, Schema, SchemaValidator, Valid, ValidationOutcome, issues_from

__all__ = [
    # Schemas
    "Schema", "SchemaValidator", "PydanticValidator", "Valid", "Invalid", "ValidationOutcome", "issues_from",
    # Generation
    "generate_json", "generate_json_or_text", "JsonOrTextResult", "unique_schemas",
    "JSON_GENERATION", "JSON_OR_TEXT_GENERATION",
]
