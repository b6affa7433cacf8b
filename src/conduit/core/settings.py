"""Runtime settings for the provider subsystem.

Defaults that apply when no ``ProviderDescriptor`` overrides them: the
default per-call timeout, the default retry policy and the bound on the
liveness check run while loading a handler.

Manifesto:
    Fallback execution parameters come from the environment, never from code edits.

    - **Validated once:** A bad CONDUIT_* value fails when settings are first read
    - **Environment-driven:** Reads from ``CONDUIT_*`` env vars and .env files
    - **Never the whitelist:** Settings tune parameters; the set of loadable
      handler keys lives in code only (see ``conduit.providers.registry``)

Examples:
    >>> from conduit.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.default_timeout
    30.0

Tags:
    settings, configuration, pydantic, environment, conduit-core

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConduitSettings(BaseSettings):
    """Process-wide defaults.

    Fields
    ──────
    log_level            : Structlog log level
    log_json             : JSON logs (True), console (False), auto (None)
    default_timeout      : Seconds per execute() call when no override is given
    max_retries          : Default RetryPolicy.max_retries
    initial_delay        : Default RetryPolicy.initial_delay (seconds)
    max_delay            : Default RetryPolicy.max_delay (seconds)
    backoff_multiplier   : Default RetryPolicy.backoff_multiplier
    health_check_timeout : Bound on a handler's liveness check (seconds)
    """

    model_config = SettingsConfigDict(
        env_prefix="CONDUIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ─────────────────────────────────────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    # ── Execution defaults ───────────────────────────────────────
    default_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, gt=1)

    # ── Loader ───────────────────────────────────────────────────
    health_check_timeout: float = Field(default=5.0, gt=0)


@lru_cache(maxsize=1)
def get_settings() -> ConduitSettings:
    """Return the cached settings instance."""
    return ConduitSettings()


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    get_settings.cache_clear()


__all__ = ["ConduitSettings", "get_settings", "reset_settings"]
