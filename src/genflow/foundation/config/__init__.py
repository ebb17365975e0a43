"""Configuration: environment-backed defaults and explicit settings merging."""

from .merge import explicit_fields, merge_settings
from .settings import (
    GenflowSettings,
    LoggingSettings,
    OpenAISettings,
    RetrySettings,
    ThrottleSettings,
    clear_settings_cache,
    default_retry_policy,
    default_throttle_policy,
    get_settings,
)

__all__ = [
    "GenflowSettings", "RetrySettings", "ThrottleSettings", "LoggingSettings", "OpenAISettings",
    "get_settings", "clear_settings_cache", "default_retry_policy", "default_throttle_policy",
    "merge_settings", "explicit_fields",
]
