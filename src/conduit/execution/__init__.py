"""Conduit Execution -- the envelope around a handler's core logic.

ARCHITECTURE
────────────
::

    ExecutionContext (task_id, input, token, timeout_override, metadata)
      │
      ▼
    ExecutionEngine.execute(handler, context)
      ├── validate             ─ VALIDATION_FAILED, no attempts
      ├── MergedCancellation   ─ timer + caller token, first cancel wins
      ├── RetryPolicy          ─ bounded exponential backoff
      └── sleep(delay, token)  ─ interruptible backoff wait
      │
      ▼
    ExecutionResult (success, data | error, duration, metadata)

    Handler-local resilience
      └── CircuitBreaker       ─ fail fast while an upstream is down
"""

from conduit.execution.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from conduit.execution.engine import ExecutionEngine, execute
from conduit.execution.models import ExecutionContext, ExecutionResult, ResultError
from conduit.execution.retry import DEFAULT_RETRY_POLICY, NO_RETRY, RetryPolicy
from conduit.execution.timeout import (
    CancellationReason,
    CancellationToken,
    MergedCancellation,
    OperationCancelled,
    sleep,
)

__all__ = [
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "ExecutionEngine",
    "execute",
    "ExecutionContext",
    "ExecutionResult",
    "ResultError",
    "DEFAULT_RETRY_POLICY",
    "NO_RETRY",
    "RetryPolicy",
    "CancellationReason",
    "CancellationToken",
    "MergedCancellation",
    "OperationCancelled",
    "sleep",
]
