"""Liveness checks for provider handlers.

Used twice: once while loading a handler (an unhealthy instance is never
cached) and on demand by ``ProviderLoader.check_health()`` for every cached
handler.

Example:
    >>> report = await loader.check_health()
    >>> print(report.status)  # "healthy" | "degraded" | "unhealthy"
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from conduit.core.protocols import SupportsHealthCheck


class HealthStatus(str, Enum):
    """Liveness of one handler, or of the whole cache."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheckResult:
    """Outcome of one handler's liveness check."""

    name: str
    status: HealthStatus
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class HealthReport:
    """Aggregate of the per-handler checks."""

    status: HealthStatus
    checks: list[HealthCheckResult]
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    @classmethod
    def from_checks(cls, checks: list[HealthCheckResult]) -> HealthReport:
        """All healthy (or none) -> healthy, all unhealthy -> unhealthy, else degraded."""
        failing = [check for check in checks if not check.healthy]
        if not failing:
            status = HealthStatus.HEALTHY
        elif len(failing) == len(checks):
            status = HealthStatus.UNHEALTHY
        else:
            status = HealthStatus.DEGRADED
        return cls(status=status, checks=list(checks))

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form, as printed by ``conduit providers health --json``."""
        return {
            "status": self.status.value,
            "timestamp": self.checked_at.isoformat(),
            "checks": [check.to_dict() for check in self.checks],
        }


async def _call_health_check(handler: Any) -> Any:
    check = handler.health_check
    if inspect.iscoroutinefunction(check):
        return await check()
    outcome = await asyncio.to_thread(check)
    if inspect.isawaitable(outcome):
        return await outcome
    return outcome


async def run_health_check(handler: Any, timeout: float) -> HealthCheckResult:
    """Run ``handler.health_check()`` bounded by ``timeout`` seconds.

    Handlers without a liveness check are reported healthy. Exceptions and
    a ``False`` return are reported unhealthy; nothing is raised. Plain
    ``health_check`` functions run in a worker thread so a blocking check
    cannot stall the event loop past ``timeout``.
    """
    name = str(getattr(handler, "key", type(handler).__name__))
    if not isinstance(handler, SupportsHealthCheck):
        return HealthCheckResult(name, HealthStatus.HEALTHY, "No liveness check", {"checked": False})

    started = time.monotonic()
    try:
        outcome = await asyncio.wait_for(_call_health_check(handler), timeout=timeout)
    except TimeoutError:
        return HealthCheckResult(
            name,
            HealthStatus.UNHEALTHY,
            f"Liveness check timed out after {timeout}s",
            {"timeout": timeout},
        )
    except Exception as e:
        return HealthCheckResult(
            name,
            HealthStatus.UNHEALTHY,
            f"Liveness check failed: {e}",
            {"error": str(e), "exception_type": type(e).__name__},
        )

    elapsed_ms = round((time.monotonic() - started) * 1000.0, 3)
    if outcome:
        return HealthCheckResult(name, HealthStatus.HEALTHY, "Liveness check OK", {"latency_ms": elapsed_ms})
    return HealthCheckResult(
        name, HealthStatus.UNHEALTHY, "Liveness check returned false", {"latency_ms": elapsed_ms}
    )


__all__ = ["HealthStatus", "HealthCheckResult", "HealthReport", "run_health_check"]
