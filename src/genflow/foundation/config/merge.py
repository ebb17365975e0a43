"""Order-defined merging of settings layers.

Settings reach a call through several layers: the model's own settings,
then per-call overrides. `merge_settings` resolves them with one rule:
later layers override earlier ones field by field, and only fields a layer
explicitly sets take part. Nothing is ever mutated; a new validated
instance of the base's type is returned.

Example:
    >>> base = ModelSettings(max_completion_tokens=200, trim_whitespace=False)
    >>> merge_settings(base, {"max_completion_tokens": 500})
    ModelSettings(max_completion_tokens=500, trim_whitespace=False, ...)
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel

S = TypeVar("S", bound=BaseModel)


def explicit_fields(layer: BaseModel | Mapping[str, Any]) -> dict[str, Any]:
    """Fields a layer sets explicitly (unset defaults do not override)."""
    if isinstance(layer, BaseModel):
        return {name: getattr(layer, name) for name in layer.model_fields_set}
    return dict(layer)


def merge_settings(base: S, *layers: BaseModel | Mapping[str, Any] | None) -> S:
    """Merge settings layers onto `base`; later layers win field by field.

    Args:
        base: Lowest-priority layer; its type is the result type
        layers: Higher-priority layers, lowest first. None entries are skipped.

    Raises:
        pydantic.ValidationError: If a layer sets an unknown or invalid field
    """
    if not any(layer for layer in layers):
        return base
    merged = explicit_fields(base)
    for layer in layers:
        if layer is not None:
            merged.update(explicit_fields(layer))
    return type(base).model_validate(merged)
