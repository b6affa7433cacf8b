"""
Structured error types for provider loading and execution.

Every failure that leaves the loader or the execution engine is classified
into one of a closed set of codes. Orchestrators route on the code (retry,
alert, show to user) and log the details; they never parse messages.

Manifesto:
    - **Closed taxonomy:** Seven codes, no ad-hoc strings
    - **One shape:** Raised faults and returned failures share code/message/details
    - **Safe messages:** Stack traces live in ``details``, never in ``message``
    - **Error chaining:** The original exception is preserved as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       ProviderError                              │
        │             (code, message, details, cause)                      │
        ├─────────────────────────────────────────────────────────────────┤
        │  Loader stage                  │  Engine stage                   │
        │  ────────────                  │  ────────────                   │
        │  ProviderNotAllowedError       │  ProviderValidationError        │
        │  ProviderLoadError             │  ProviderTimeoutError           │
        │  ProviderUnhealthyError        │  ProviderExecutionError         │
        │                                │  (MAX_RETRIES_EXCEEDED is only  │
        │                                │   ever returned, never raised)  │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    Raising from a handler's core logic:

    >>> raise ProviderExecutionError("Upstream returned 502", details={"status_code": 502})

    Serializing for the wire:

    >>> ProviderError(ProviderErrorCode.TIMEOUT, "Timed out").to_dict()
    {'code': 'ERR_PROVIDER_TIMEOUT', 'message': 'Timed out', 'details': {}}

Guardrails:
    ❌ DON'T: Invent new code strings in handlers
    ✅ DO: Pick the closest ProviderErrorCode and put specifics in details

    ❌ DON'T: Put tracebacks or secrets into ``message``
    ✅ DO: Put diagnostics in ``details`` (logged, not shown to end users)

Tags:
    error-handling, exception-hierarchy, error-codes, conduit-core

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

import traceback
from enum import Enum
from typing import Any


class ErrorStage(str, Enum):
    """Which component is allowed to produce a code."""

    LOADER = "loader"
    ENGINE = "engine"


class ProviderErrorCode(str, Enum):
    """
    Closed set of classified failure codes.

    Loader-only codes are reported when resolving a key to a handler.
    Engine-only codes are reported inside a failed ExecutionResult.

    Attributes:
        NOT_ALLOWED: Key is not part of the fixed registry
        LOAD_FAILED: Factory raised or produced a structurally invalid handler
        UNHEALTHY: Handler failed its initial liveness check
        VALIDATION_FAILED: Handler rejected the input
        TIMEOUT: Merged cancellation fired (timer or caller)
        EXECUTION_FAILED: Handler core logic failed
        MAX_RETRIES_EXCEEDED: Retryable failures exhausted the attempt budget
    """

    # Loader
    NOT_ALLOWED = "ERR_PROVIDER_NOT_ALLOWED"
    LOAD_FAILED = "ERR_PROVIDER_LOAD_FAILED"
    UNHEALTHY = "ERR_PROVIDER_UNHEALTHY"

    # Engine
    VALIDATION_FAILED = "ERR_PROVIDER_VALIDATION_FAILED"
    TIMEOUT = "ERR_PROVIDER_TIMEOUT"
    EXECUTION_FAILED = "ERR_PROVIDER_EXECUTION_FAILED"
    MAX_RETRIES_EXCEEDED = "ERR_PROVIDER_MAX_RETRIES_EXCEEDED"

    @property
    def stage(self) -> ErrorStage:
        """Component that owns this code."""
        if self in _LOADER_CODES:
            return ErrorStage.LOADER
        return ErrorStage.ENGINE


_LOADER_CODES = frozenset({
    ProviderErrorCode.NOT_ALLOWED,
    ProviderErrorCode.LOAD_FAILED,
    ProviderErrorCode.UNHEALTHY,
})

# Never retried under the default (empty) retryable set.
NON_RETRYABLE_BY_DEFAULT = frozenset({
    ProviderErrorCode.TIMEOUT,
    ProviderErrorCode.VALIDATION_FAILED,
})


def coerce_code(value: ProviderErrorCode | str | None) -> ProviderErrorCode:
    """Map a code or its wire string to a ProviderErrorCode.

    Unknown strings collapse to EXECUTION_FAILED so that a handler returning
    a bogus code still lands inside the closed taxonomy.
    """
    if isinstance(value, ProviderErrorCode):
        return value
    try:
        return ProviderErrorCode(value)
    except ValueError:
        return ProviderErrorCode.EXECUTION_FAILED


class ProviderError(Exception):
    """
    Base exception for every classified provider failure.

    Attributes:
        code: Classified failure code
        message: Human-readable message, safe to surface to operators
        details: Free-form diagnostics (logged, not for end-user display)
        cause: Underlying exception, if this error wraps one
    """

    default_code: ProviderErrorCode = ProviderErrorCode.EXECUTION_FAILED

    def __init__(
        self,
        code: ProviderErrorCode | str | None = None,
        message: str = "",
        details: dict[str, Any] | None = None,
        *,
        cause: BaseException | None = None,
    ):
        self.code = coerce_code(code) if code is not None else self.default_code
        self.message = message or self.code.value
        self.details: dict[str, Any] = dict(details or {})
        self.cause = cause
        super().__init__(self.message)
        if cause is not None:
            self.__cause__ = cause

    def with_details(self, **kwargs: Any) -> ProviderError:
        """Add detail fields. Returns self for chaining."""
        self.details.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire ``error`` object."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": dict(self.details),
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code.value!r}, message={self.message!r})"


class _FixedCodeError(ProviderError):
    """ProviderError whose code is fixed by the subclass."""

    def __init__(
        self,
        message: str = "",
        details: dict[str, Any] | None = None,
        *,
        cause: BaseException | None = None,
    ):
        super().__init__(self.default_code, message, details, cause=cause)


# =============================================================================
# LOADER ERRORS
# =============================================================================


class ProviderNotAllowedError(_FixedCodeError):
    """Key is outside the fixed registry."""

    default_code = ProviderErrorCode.NOT_ALLOWED


class ProviderLoadError(_FixedCodeError):
    """Factory failed or produced an object missing required operations."""

    default_code = ProviderErrorCode.LOAD_FAILED


class ProviderUnhealthyError(_FixedCodeError):
    """Initial liveness check failed."""

    default_code = ProviderErrorCode.UNHEALTHY


# =============================================================================
# ENGINE ERRORS
# =============================================================================


class ProviderValidationError(_FixedCodeError):
    """Input rejected by a handler."""

    default_code = ProviderErrorCode.VALIDATION_FAILED


class ProviderTimeoutError(_FixedCodeError):
    """Time budget exhausted or caller cancelled."""

    default_code = ProviderErrorCode.TIMEOUT


class ProviderExecutionError(_FixedCodeError):
    """Handler core logic failed."""

    default_code = ProviderErrorCode.EXECUTION_FAILED


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def classify_exception(error: BaseException) -> ProviderErrorCode:
    """Get the classified code for any exception."""
    if isinstance(error, ProviderError):
        return error.code
    if isinstance(error, TimeoutError):
        return ProviderErrorCode.TIMEOUT
    return ProviderErrorCode.EXECUTION_FAILED


def exception_details(error: BaseException) -> dict[str, Any]:
    """Diagnostic details for an exception (type and formatted traceback)."""
    if isinstance(error, ProviderError):
        details = dict(error.details)
    else:
        details = {}
    details.setdefault("exception_type", type(error).__name__)
    details.setdefault(
        "traceback",
        "".join(traceback.format_exception(type(error), error, error.__traceback__)),
    )
    return details


__all__ = [
    "ErrorStage",
    "ProviderErrorCode",
    "NON_RETRYABLE_BY_DEFAULT",
    "coerce_code",
    "ProviderError",
    "ProviderNotAllowedError",
    "ProviderLoadError",
    "ProviderUnhealthyError",
    "ProviderValidationError",
    "ProviderTimeoutError",
    "ProviderExecutionError",
    "classify_exception",
    "exception_details",
]
