"""Retry policy with bounded exponential backoff and code-based retryability.

A RetryPolicy is configured once per handler instance and never changes for
that instance's lifetime. The engine asks it two questions after a failed
attempt: is this code retryable, and how long to wait before the next try.

Example:
    >>> from conduit.execution.retry import RetryPolicy
    >>>
    >>> policy = RetryPolicy(max_retries=5, initial_delay=0.1, max_delay=10.0)
    >>> [policy.backoff_delay(n) for n in range(1, 6)]
    [0.1, 0.2, 0.4, 0.8, 1.6]
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from conduit.core.errors import NON_RETRYABLE_BY_DEFAULT, ProviderErrorCode, coerce_code


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff bounded by a maximum delay.

    Delay before retry ``n`` (n >= 1) = min(initial_delay * multiplier ** (n - 1), max_delay)

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        initial_delay: Delay before the first retry, in seconds
        max_delay: Cap on any single delay, in seconds
        backoff_multiplier: Growth factor per retry (> 1)
        retryable_error_codes: Codes eligible for retry; empty means every
            code except TIMEOUT and VALIDATION_FAILED
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_error_codes: frozenset[ProviderErrorCode] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_delay < 0:
            raise ValueError(f"initial_delay must be >= 0, got {self.initial_delay}")
        if self.max_delay < 0:
            raise ValueError(f"max_delay must be >= 0, got {self.max_delay}")
        if self.backoff_multiplier <= 1:
            raise ValueError(f"backoff_multiplier must be > 1, got {self.backoff_multiplier}")
        object.__setattr__(
            self,
            "retryable_error_codes",
            frozenset(coerce_code(code) for code in self.retryable_error_codes),
        )

    @property
    def max_attempts(self) -> int:
        """Total handler invocations allowed (initial + retries)."""
        return self.max_retries + 1

    def backoff_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        delay = self.initial_delay * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay)

    def is_retryable(self, code: ProviderErrorCode | str) -> bool:
        """Whether a failure with ``code`` may be retried under this policy."""
        code = coerce_code(code)
        if not self.retryable_error_codes:
            return code not in NON_RETRYABLE_BY_DEFAULT
        return code in self.retryable_error_codes

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> RetryPolicy:
        """Build from a plain mapping (descriptor or settings values)."""
        codes: Iterable[Any] = config.get("retryable_error_codes") or ()
        return cls(
            max_retries=int(config.get("max_retries", 3)),
            initial_delay=float(config.get("initial_delay", 1.0)),
            max_delay=float(config.get("max_delay", 10.0)),
            backoff_multiplier=float(config.get("backoff_multiplier", 2.0)),
            retryable_error_codes=frozenset(coerce_code(c) for c in codes),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_retries": self.max_retries,
            "initial_delay": self.initial_delay,
            "max_delay": self.max_delay,
            "backoff_multiplier": self.backoff_multiplier,
            "retryable_error_codes": sorted(code.value for code in self.retryable_error_codes),
        }


DEFAULT_RETRY_POLICY = RetryPolicy()

NO_RETRY = RetryPolicy(max_retries=0)


__all__ = ["RetryPolicy", "DEFAULT_RETRY_POLICY", "NO_RETRY"]
