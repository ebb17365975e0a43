"""Shared fixtures: fast policies, isolated settings and a recording sink."""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from genflow.foundation.config import clear_settings_cache
from genflow.foundation.testing import RecordingSink
from genflow.runtime.observability import logging as structured
from genflow.runtime.retry import RetryWithExponentialBackoff, retry_with_exponential_backoff


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Each test sees fresh settings, default logging and no GENFLOW_* variables from the environment."""
    monkeypatch.setattr(structured, "_config", structured._LoggingConfig())
    for key in [k for k in os.environ if k.startswith("GENFLOW_")]:
        monkeypatch.delenv(key)
    monkeypatch.chdir(os.path.dirname(__file__))
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def fast_retry() -> RetryWithExponentialBackoff:
    """Three tries without waiting between them."""
    return retry_with_exponential_backoff(max_tries=3, initial_delay=0.0)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
