"""Streaming of generated text.

Example:
    >>> stream = await stream_text(model, "Tell me a story")
    >>> async for fragment in stream:
    ...     print(fragment, end="", flush=True)
"""

from .stream import StreamResult, StreamState, TextStream, collect_stream

__all__ = ["TextStream", "StreamState", "StreamResult", "collect_stream"]
