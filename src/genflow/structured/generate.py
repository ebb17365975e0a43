"""Structured generation: JSON for one schema, or a choice among several."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from genflow.foundation.errors import UnknownSchemaSelectedError
from genflow.model.base import (
    CallOptions,
    Capability,
    JsonGenerationModel,
    JsonOrTextGenerationModel,
    ModelSettings,
    require_capability,
)
from genflow.runtime.execution import ModelCallPromise, execute_call

from .schema import Schema

T = TypeVar("T")

JSON_GENERATION = "json-generation"
JSON_OR_TEXT_GENERATION = "json-or-text-generation"


@dataclass(frozen=True, slots=True)
class JsonOrTextResult(Generic[T]):
    """Outcome of a multi-schema call.

    Exactly one of the two shapes holds: `schema` names the selected schema
    and `value` is validated against it, or `schema` is None and `text`
    holds the model's free-text answer.
    """

    schema: str | None
    value: T | None = None
    text: str | None = None

    @property
    def is_text(self) -> bool:
        return self.schema is None


def _expand(prompt: Any, arg: object) -> Any:
    return prompt(arg) if callable(prompt) else prompt


def unique_schemas(schemas: Sequence[Schema[Any]]) -> dict[str, Schema[Any]]:
    """Index schemas by name, rejecting duplicates.

    Raises:
        ValueError: If two schemas share a name
    """
    by_name: dict[str, Schema[Any]] = {}
    for schema in schemas:
        if schema.name in by_name:
            raise ValueError(f"Duplicate schema name '{schema.name}'")
        by_name[schema.name] = schema
    return by_name


def generate_json(
    model: JsonGenerationModel,
    schema: Schema[T],
    prompt: Any | Callable[[Schema[T]], Any],
    options: CallOptions | None = None,
) -> ModelCallPromise[T]:
    """Generate JSON conforming to `schema`.

    A validation failure raises SchemaMismatchError and is never retried.

    Example:
        >>> sentiment = await generate_json(model, SentimentSchema, "Classify: I hate it")
        >>> sentiment.sentiment
        'negative'
    """
    require_capability(model, Capability.JSON)
    expanded = _expand(prompt, schema)

    def extract(response: Any, _: ModelSettings) -> T:
        return schema.parse(model.extract_json(response))

    return execute_call(
        function_type=JSON_GENERATION,
        model=model,
        input=expanded,
        produce=lambda call: model.generate_json_response(expanded, schema, call),
        extract_value=extract,
        extract_usage=getattr(model, "extract_usage", None),
        options=options,
    )


def generate_json_or_text(
    model: JsonOrTextGenerationModel,
    schemas: Sequence[Schema[Any]],
    prompt: Any | Callable[[Sequence[Schema[Any]]], Any],
    options: CallOptions | None = None,
) -> ModelCallPromise[JsonOrTextResult[Any]]:
    """Let the model pick one of `schemas` or answer with free text.

    Raises:
        ValueError: Immediately, if schema names are not unique
        UnknownSchemaSelectedError: If the model selects a schema not offered
        SchemaMismatchError: If the selected schema rejects the generated JSON
    """
    require_capability(model, Capability.JSON_OR_TEXT)
    by_name = unique_schemas(schemas)
    candidates = tuple(by_name.values())
    expanded = _expand(prompt, candidates)

    def extract(response: Any, settings: ModelSettings) -> JsonOrTextResult[Any]:
        selection = model.extract_json_or_text(response)
        if selection.schema_name is None:
            text = selection.text or ""
            return JsonOrTextResult(None, text=text.strip() if settings.trim_whitespace else text)
        if (schema := by_name.get(selection.schema_name)) is None:
            raise UnknownSchemaSelectedError(selection.schema_name, tuple(by_name))
        return JsonOrTextResult(schema.name, schema.parse(selection.value), selection.text)

    return execute_call(
        function_type=JSON_OR_TEXT_GENERATION,
        model=model,
        input=expanded,
        produce=lambda call: model.generate_json_or_text_response(expanded, candidates, call),
        extract_value=extract,
        extract_usage=getattr(model, "extract_usage", None),
        options=options,
    )
