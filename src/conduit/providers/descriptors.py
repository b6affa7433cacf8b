"""Per-integration runtime parameters supplied by configuration.

A ProviderDescriptor names a registry key and tunes how the handler for
that key is constructed: its retry policy and default timeout. It cannot
add keys; the loader rejects a descriptor for an unregistered key.

Example:
    >>> descriptor = ProviderDescriptor(
    ...     handler_key="GENERIC_HTTP",
    ...     default_timeout=10.0,
    ...     retry=RetryPolicyConfig(max_retries=5, initial_delay=0.5),
    ... )
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from conduit.core.errors import ProviderErrorCode
from conduit.core.settings import ConduitSettings
from conduit.execution.retry import RetryPolicy


class RetryPolicyConfig(BaseModel):
    """Validated retry configuration, converted to a RetryPolicy."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_retries: int = Field(default=3, ge=0)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, gt=1)
    retryable_error_codes: list[ProviderErrorCode] = Field(default_factory=list)

    @classmethod
    def from_settings(cls, settings: ConduitSettings) -> RetryPolicyConfig:
        return cls(
            max_retries=settings.max_retries,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            backoff_multiplier=settings.backoff_multiplier,
        )

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy.from_config(self.model_dump())


class ProviderDescriptor(BaseModel):
    """Configuration record for one integration.

    Attributes:
        handler_key: Registry key (must be whitelisted)
        name: Display name for operator tooling
        default_timeout: Seconds per execute() call (settings default when None)
        retry: Retry configuration (settings default when None)
        enabled: A disabled descriptor makes its key unloadable
    """

    model_config = ConfigDict(extra="forbid")

    handler_key: str = Field(min_length=1)
    name: str | None = None
    default_timeout: float | None = Field(default=None, gt=0)
    retry: RetryPolicyConfig | None = None
    enabled: bool = True


__all__ = ["RetryPolicyConfig", "ProviderDescriptor"]
