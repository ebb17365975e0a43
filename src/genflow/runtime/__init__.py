"""Runtime layer: retry, throttling, observability and the call executor."""
