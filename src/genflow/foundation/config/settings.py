"""Environment-based configuration using pydantic-settings.

Provides type-safe, validated defaults from environment variables. These
defaults apply only where neither the model settings nor the call options
choose a policy.

Example:
    >>> from genflow.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.retry.max_tries
    3

    # Or with environment variables:
    # GENFLOW_RETRY_MAX_TRIES=8
    # GENFLOW_THROTTLE_MAX_CONCURRENT=4
    # GENFLOW_LOG_FORMAT=json
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import Field, PositiveFloat, PositiveInt, SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from genflow.runtime.retry import RetryPolicy
    from genflow.runtime.throttle import ThrottlePolicy


class RetrySettings(BaseSettings):
    """Default retry configuration."""

    model_config = SettingsConfigDict(env_prefix="GENFLOW_RETRY_", extra="ignore")

    max_tries: Annotated[int, Field(ge=1, le=20)] = 3
    initial_delay: Annotated[float, Field(ge=0.0, description="Delay after the first failure in seconds")] = 2.0
    backoff_factor: PositiveFloat = Field(default=2.0, description="Exponential backoff base")
    max_delay: PositiveFloat | None = Field(default=None, description="Optional delay cap in seconds")
    jitter: bool = False


class ThrottleSettings(BaseSettings):
    """Default admission control. Both limits unset means unlimited."""

    model_config = SettingsConfigDict(env_prefix="GENFLOW_THROTTLE_", extra="ignore")

    max_concurrent: PositiveInt | None = Field(default=None, description="Max attempts in flight")
    max_calls: PositiveInt | None = Field(default=None, description="Max attempts per window")
    window_seconds: PositiveFloat = Field(default=60.0, description="Rate window in seconds")

    @computed_field
    @property
    def strategy(self) -> Literal["unlimited", "concurrency", "rate"]:
        if self.max_concurrent is not None:
            return "concurrency"
        return "rate" if self.max_calls is not None else "unlimited"


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="GENFLOW_LOG_", extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "none"] = "console"


class OpenAISettings(BaseSettings):
    """Defaults for the OpenAI-compatible provider."""

    model_config = SettingsConfigDict(env_prefix="GENFLOW_OPENAI_", extra="ignore")

    api_key: SecretStr | None = Field(default=None, description="Bearer token sent to the API")
    base_url: str = "https://api.openai.com/v1"
    timeout: PositiveFloat = Field(default=60.0, description="Request timeout in seconds")


class GenflowSettings(BaseSettings):
    """Root settings for genflow.

    Loads configuration from environment variables with GENFLOW_ prefix.
    Supports nested configuration and .env files.
    """

    model_config = SettingsConfigDict(
        env_prefix="GENFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    retry: RetrySettings = Field(default_factory=RetrySettings)
    throttle: ThrottleSettings = Field(default_factory=ThrottleSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)


@lru_cache(maxsize=1)
def get_settings() -> GenflowSettings:
    """Get the global settings instance (cached)."""
    return GenflowSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing).

    The next get_settings() call reloads configuration from the environment.
    """
    get_settings.cache_clear()
    _default_throttle.cache_clear()


def default_retry_policy() -> RetryPolicy:
    """Retry policy used when neither model nor call chooses one."""
    from genflow.runtime.retry import retry_with_exponential_backoff

    r = get_settings().retry
    return retry_with_exponential_backoff(
        max_tries=r.max_tries,
        initial_delay=r.initial_delay,
        backoff_factor=r.backoff_factor,
        max_delay=r.max_delay,
        jitter=r.jitter,
    )


@lru_cache(maxsize=1)
def _default_throttle() -> ThrottlePolicy:
    # One shared instance: a bounded default must count across all calls
    from genflow.runtime.throttle import throttle_max_concurrency, throttle_rate_limit, throttle_unlimited

    t = get_settings().throttle
    match t.strategy:
        case "concurrency": return throttle_max_concurrency(t.max_concurrent)  # type: ignore[arg-type]
        case "rate": return throttle_rate_limit(t.max_calls, t.window_seconds)  # type: ignore[arg-type]
        case _: return throttle_unlimited()


def default_throttle_policy() -> ThrottlePolicy:
    """Throttle policy used when neither model nor call chooses one."""
    return _default_throttle()
