"""Run identity and cooperative cancellation threaded through a call tree."""

from .run import CancellationToken, RunContext

__all__ = ["CancellationToken", "RunContext"]
