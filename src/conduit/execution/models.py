"""Execution domain models.

Defines the data passed into and returned from the execution engine:
- ExecutionContext: one invocation's input, correlation id and cancellation
- ExecutionResult: the uniform success/failure envelope
- ResultError: the classified error carried by a failed result

ExecutionResult is produced exactly once per ``execute()`` call and is
JSON-serializable via ``to_dict()`` for logging and telemetry.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from conduit.core.errors import (
    ProviderError,
    ProviderErrorCode,
    classify_exception,
    coerce_code,
    exception_details,
)

if TYPE_CHECKING:
    from conduit.execution.timeout import CancellationToken


@dataclass(frozen=True)
class ExecutionContext:
    """Per-invocation context created by the orchestrator.

    Attributes:
        task_id: Opaque correlation id
        input: Handler-specific payload
        cancellation_token: Optional caller-supplied token
        timeout_override: Seconds; replaces the handler default when set
        metadata: Free-form key/value pairs copied onto the result
    """

    task_id: str
    input: Any = None
    cancellation_token: CancellationToken | None = None
    timeout_override: float | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.timeout_override is not None and self.timeout_override <= 0:
            raise ValueError(f"timeout_override must be positive, got {self.timeout_override}")

    def with_token(self, token: CancellationToken) -> ExecutionContext:
        """Copy of this context carrying a different cancellation token."""
        return replace(self, cancellation_token=token)


@dataclass(frozen=True)
class ResultError:
    """Classified error attached to a failed ExecutionResult."""

    code: ProviderErrorCode
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", coerce_code(self.code))

    @classmethod
    def from_exception(cls, error: BaseException) -> ResultError:
        """Normalize any exception into a ResultError."""
        if isinstance(error, ProviderError):
            return cls(error.code, error.message, exception_details(error))
        return cls(
            classify_exception(error),
            str(error) or type(error).__name__,
            exception_details(error),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire ``error`` object."""
        payload: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


@dataclass(frozen=True)
class ExecutionResult:
    """Uniform result of one ``execute()`` call (or one handler attempt).

    Invariant: ``data`` is only set on success and ``error`` is set iff the
    result is a failure. Use :meth:`ok` and :meth:`fail` to build results.

    Attributes:
        success: Whether the call succeeded
        data: Handler output (success only)
        error: Classified error (failure only)
        duration: Wall-clock seconds of the whole call, stamped by the engine
        metadata: Context metadata plus engine bookkeeping (attempts, provider)
    """

    success: bool
    data: Any = None
    error: ResultError | None = None
    duration: float | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.success and self.error is not None:
            raise ValueError("A successful result cannot carry an error")
        if not self.success:
            if self.error is None:
                raise ValueError("A failed result must carry an error")
            if self.data is not None:
                raise ValueError("A failed result cannot carry data")

    @classmethod
    def ok(cls, data: Any = None, **metadata: Any) -> ExecutionResult:
        """Build a successful result."""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(
        cls,
        code: ProviderErrorCode | str,
        message: str,
        details: Mapping[str, Any] | None = None,
        **metadata: Any,
    ) -> ExecutionResult:
        """Build a failed result."""
        return cls(
            success=False,
            error=ResultError(coerce_code(code), message, dict(details or {})),
            metadata=metadata,
        )

    @classmethod
    def from_error(cls, error: ResultError, **metadata: Any) -> ExecutionResult:
        return cls(success=False, error=error, metadata=metadata)

    @property
    def error_code(self) -> ProviderErrorCode | None:
        """Shortcut for ``result.error.code``."""
        return self.error.code if self.error else None

    @property
    def duration_ms(self) -> float | None:
        if self.duration is None:
            return None
        return round(self.duration * 1000.0, 3)

    def finalized(self, duration: float, metadata: Mapping[str, Any]) -> ExecutionResult:
        """Copy stamped with the call duration and final metadata."""
        return replace(self, duration=duration, metadata=dict(metadata))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON wire shape (duration in milliseconds)."""
        payload: dict[str, Any] = {"success": self.success}
        if self.success:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        payload["durationMeasured"] = self.duration_ms
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload


__all__ = ["ExecutionContext", "ResultError", "ExecutionResult"]
