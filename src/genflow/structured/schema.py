"""Named schemas and their validators.

A Schema pairs a name and description (what the model sees) with a
validator (what checks the model's JSON). Validators return Valid or
Invalid instead of raising; `Schema.parse` turns Invalid into a
SchemaMismatchError.

Example:
    >>> class Sentiment(BaseModel):
    ...     '''Sentiment of a text.'''
    ...     sentiment: Literal["positive", "neutral", "negative"]
    >>> schema = Schema.from_type(Sentiment, name="sentiment")
    >>> schema.validate({"sentiment": "angry"})
    Invalid(issues=(ValidationIssue(path='sentiment', ...),))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeAlias, TypeVar, runtime_checkable

from pydantic import BaseModel, TypeAdapter, ValidationError

from genflow.foundation.errors import JsonDict, JsonValue, SchemaMismatchError, ValidationIssue

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)


@dataclass(frozen=True, slots=True)
class Valid(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class Invalid:
    issues: tuple[ValidationIssue, ...]


ValidationOutcome: TypeAlias = Valid[T] | Invalid


@runtime_checkable
class SchemaValidator(Protocol[T_co]):
    """Validates untyped JSON into a typed value."""

    def validate(self, value: JsonValue) -> Valid[T_co] | Invalid: ...

    def json_schema(self) -> JsonDict: ...


def issues_from(error: ValidationError) -> tuple[ValidationIssue, ...]:
    """Convert a pydantic ValidationError into path/message issues."""
    return tuple(
        ValidationIssue(path=".".join(str(part) for part in err["loc"]), message=err["msg"])
        for err in error.errors()
    )


class PydanticValidator(Generic[T]):
    """Validator backed by a pydantic TypeAdapter (models, dataclasses, TypedDicts, ...)."""

    __slots__ = ("target", "_adapter")

    def __init__(self, target: type[T] | Any) -> None:
        self.target = target
        self._adapter: TypeAdapter[T] = TypeAdapter(target)

    def validate(self, value: JsonValue) -> Valid[T] | Invalid:
        try:
            return Valid(self._adapter.validate_python(value))
        except ValidationError as e:
            return Invalid(issues_from(e))

    def json_schema(self) -> JsonDict:
        return self._adapter.json_schema()

    def __repr__(self) -> str:
        return f"PydanticValidator({getattr(self.target, '__name__', self.target)!r})"


def _first_doc_line(target: object) -> str | None:
    if not isinstance(target, type) or not issubclass(target, BaseModel):
        return None
    doc = target.__doc__
    return doc.strip().split("\n")[0].strip() if doc and doc.strip() else None


@dataclass(frozen=True, slots=True)
class Schema(Generic[T]):
    """Named shape that generated JSON must conform to.

    Attributes:
        name: Identity, unique within one dispatch set
        description: Shown to the model alongside the shape
        validator: Checks and types the generated JSON
    """

    name: str
    description: str | None
    validator: SchemaValidator[T]

    @classmethod
    def from_type(cls, target: type[T] | Any, *, name: str | None = None, description: str | None = None) -> Schema[T]:
        """Build a schema from a pydantic model or any TypeAdapter-compatible type.

        The name defaults to the type's name, the description to the first
        line of a model's docstring.
        """
        schema_name = name or getattr(target, "__name__", None)
        if not schema_name:
            raise ValueError(f"Schema name required for {target!r}")
        return cls(schema_name, description or _first_doc_line(target), PydanticValidator(target))

    def validate(self, value: JsonValue) -> Valid[T] | Invalid:
        return self.validator.validate(value)

    def parse(self, value: JsonValue) -> T:
        """Validate `value` and return the typed result.

        Raises:
            SchemaMismatchError: If validation fails
        """
        match self.validator.validate(value):
            case Valid(value=typed):
                return typed
            case Invalid(issues=issues):
                raise SchemaMismatchError(self.name, value, issues)
        raise TypeError(f"Validator for schema '{self.name}' returned neither Valid nor Invalid")

    def json_schema(self) -> JsonDict:
        """JSON Schema of the expected shape, for providers."""
        return self.validator.json_schema()
