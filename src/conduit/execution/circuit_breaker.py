"""Circuit breaker for handler-local fault isolation.

A handler that talks to one upstream keeps a breaker on its own instance.
The loader caches that instance, so the breaker's counters survive across
``execute()`` calls for the same key.

States:
    CLOSED: calls pass through; consecutive failures are counted
    OPEN: calls are rejected until ``recovery_timeout`` has passed
    HALF_OPEN: a limited number of probe calls decide between CLOSED and OPEN

Example:
    >>> breaker = CircuitBreaker(name="GENERIC_HTTP", failure_threshold=3)
    >>> if not breaker.allow_request():
    ...     raise CircuitOpenError(breaker.name, breaker.retry_after())
    >>> try:
    ...     response = await send()
    ... except httpx.TransportError:
    ...     breaker.record_failure()
    ...     raise
    ... except BaseException:
    ...     breaker.release()
    ...     raise
    ... breaker.record_success()
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from conduit.core.errors import ProviderExecutionError
from conduit.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(ProviderExecutionError):
    """Raised when the circuit rejects a call.

    Classified as EXECUTION_FAILED with ``details.circuit_state == "open"``.
    """

    def __init__(self, name: str = "default", retry_after: float | None = None):
        details: dict[str, Any] = {"circuit": name, "circuit_state": CircuitState.OPEN.value}
        if retry_after is not None:
            details["retry_after"] = round(retry_after, 3)
        super().__init__(f"Circuit '{name}' is open; upstream calls are suspended", details)


@dataclass
class CircuitStats:
    """Lifetime counters for one breaker."""

    calls: int = 0
    successes: int = 0
    failures: int = 0
    rejections: int = 0
    transitions: int = 0

    @property
    def failure_rate(self) -> float:
        """Failures as a percentage of calls that completed."""
        completed = self.successes + self.failures
        return 100.0 * self.failures / completed if completed else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "failure_rate": round(self.failure_rate, 2)}


class CircuitBreaker:
    """Three-state breaker driven by explicit success/failure reports.

    Not thread-safe: it is meant to be used from the event loop that runs
    the owning handler.

    Args:
        name: Identifier used in logs and errors (usually the handler key)
        failure_threshold: Consecutive failures that open the circuit
        recovery_timeout: Seconds the circuit stays open before probing
        success_threshold: Probe successes needed to close again
        half_open_max_calls: Probe calls admitted while half-open
        clock: Monotonic time source
    """

    def __init__(
        self,
        name: str = "default",
        *,
        failure_threshold: int = 3,
        recovery_timeout: float = 30.0,
        success_threshold: int = 2,
        half_open_max_calls: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1 or success_threshold < 1 or half_open_max_calls < 1:
            raise ValueError("Circuit breaker thresholds must be >= 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._probe_successes = 0
        self._probes_admitted = 0
        self._reopens_at: float | None = None
        self.stats = CircuitStats()

    @property
    def state(self) -> CircuitState:
        self._maybe_half_open()
        return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures recorded since the last success or reset."""
        return self._consecutive_failures

    def retry_after(self) -> float | None:
        """Seconds until an open circuit starts probing, None unless open."""
        if self.state != CircuitState.OPEN or self._reopens_at is None:
            return None
        return max(0.0, self._reopens_at - self._clock())

    def allow_request(self) -> bool:
        """Whether a call may go to the upstream now."""
        state = self.state
        self.stats.calls += 1
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN and self._probes_admitted < self.half_open_max_calls:
            self._probes_admitted += 1
            return True
        self.stats.rejections += 1
        return False

    def record_success(self) -> None:
        self.stats.successes += 1
        self._consecutive_failures = 0
        if self.state == CircuitState.HALF_OPEN:
            self._probe_successes += 1
            if self._probe_successes >= self.success_threshold:
                self._move_to(CircuitState.CLOSED)

    def record_failure(self) -> None:
        self.stats.failures += 1
        self._consecutive_failures += 1
        state = self.state
        if state == CircuitState.HALF_OPEN:
            self._move_to(CircuitState.OPEN)
        elif state == CircuitState.CLOSED and self._consecutive_failures >= self.failure_threshold:
            self._move_to(CircuitState.OPEN)

    def release(self) -> None:
        """Return a half-open probe slot whose call ended without an outcome.

        Cancelled calls say nothing about the upstream, but an admitted probe
        that never reports would hold its slot forever.
        """
        if self._state == CircuitState.HALF_OPEN and self._probes_admitted > 0:
            self._probes_admitted -= 1

    def reset(self) -> None:
        """Close the circuit and forget failures."""
        self._move_to(CircuitState.CLOSED)

    def force_open(self) -> None:
        """Open the circuit now (maintenance, tests)."""
        self._move_to(CircuitState.OPEN)

    def _maybe_half_open(self) -> None:
        if self._state == CircuitState.OPEN and self._reopens_at is not None:
            if self._clock() >= self._reopens_at:
                self._move_to(CircuitState.HALF_OPEN)

    def _move_to(self, target: CircuitState) -> None:
        previous = self._state
        self._state = target
        self.stats.transitions += 1
        self._probe_successes = 0
        self._probes_admitted = 0
        if target == CircuitState.OPEN:
            self._reopens_at = self._clock() + self.recovery_timeout
        else:
            self._reopens_at = None
        if target == CircuitState.CLOSED:
            self._consecutive_failures = 0

        log = logger.warning if target == CircuitState.OPEN else logger.info
        log(
            "circuit_state_changed",
            circuit=self.name,
            old_state=previous.value,
            new_state=target.value,
            consecutive_failures=self._consecutive_failures,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._consecutive_failures,
            "retry_after": self.retry_after(),
            "stats": self.stats.to_dict(),
        }


__all__ = ["CircuitState", "CircuitOpenError", "CircuitStats", "CircuitBreaker"]
