"""Testing utilities: scripted mock models and a recording event sink."""

from .mock import (
    FragmentStream,
    Invocation,
    MockJsonModel,
    MockJsonOrTextModel,
    MockStreamingTextModel,
    MockTextModel,
    RecordingSink,
)

__all__ = [
    "MockTextModel", "MockStreamingTextModel", "MockJsonModel", "MockJsonOrTextModel",
    "FragmentStream", "Invocation", "RecordingSink",
]
