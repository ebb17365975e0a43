"""Token usage reported by providers."""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, NonNegativeInt, computed_field


class Usage(BaseModel):
    """Token counts of one provider response.

    Usage objects are additive, so the totals of a call tree can be aggregated
    with ``sum(usages, Usage())``.
    """

    model_config = ConfigDict(frozen=True)

    prompt_tokens: NonNegativeInt = 0
    completion_tokens: NonNegativeInt = 0

    @computed_field
    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: Usage) -> Usage:
        if not isinstance(other, Usage):
            return NotImplemented
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )

    def __radd__(self, other: object) -> Usage:
        # Supports sum() with its default start value of 0
        if other == 0:
            return self
        return NotImplemented


def total_usage(usages: Iterable[Usage | None]) -> Usage:
    """Sum usages, skipping calls whose provider reported none."""
    return sum((u for u in usages if u is not None), Usage())
