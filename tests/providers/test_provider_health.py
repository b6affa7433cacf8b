"""Tests for handler liveness checks and the health report."""

import asyncio
import time

import pytest

from conduit.providers.health import (
    HealthCheckResult,
    HealthReport,
    HealthStatus,
    run_health_check,
)


class NoCheck:
    key = "NO_CHECK"


class SyncCheck:
    key = "SYNC_CHECK"

    def __init__(self, healthy=True):
        self.healthy = healthy

    def health_check(self):
        return self.healthy


class BlockingCheck:
    key = "BLOCKING_CHECK"

    def __init__(self, seconds):
        self.seconds = seconds

    def health_check(self):
        time.sleep(self.seconds)
        return True


class AsyncCheck:
    key = "ASYNC_CHECK"

    def __init__(self, delay=0.0, error=None):
        self.delay = delay
        self.error = error

    async def health_check(self):
        await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return True


class TestRunHealthCheck:
    """Tests for run_health_check."""

    @pytest.mark.asyncio
    async def test_without_check(self):
        """Handlers without a check are healthy and marked unchecked."""
        check = await run_health_check(NoCheck(), timeout=1.0)
        assert check.healthy
        assert check.details == {"checked": False}
        assert check.name == "NO_CHECK"

    @pytest.mark.asyncio
    async def test_sync_true_and_false(self):
        """Sync checks are supported."""
        assert (await run_health_check(SyncCheck(True), timeout=1.0)).healthy
        check = await run_health_check(SyncCheck(False), timeout=1.0)
        assert check.status == HealthStatus.UNHEALTHY
        assert check.message == "Liveness check returned false"

    @pytest.mark.asyncio
    async def test_async_ok(self):
        """Async checks report latency."""
        check = await run_health_check(AsyncCheck(), timeout=1.0)
        assert check.healthy
        assert "latency_ms" in check.details

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Slow checks are bounded."""
        check = await run_health_check(AsyncCheck(delay=1.0), timeout=0.02)
        assert check.status == HealthStatus.UNHEALTHY
        assert check.details == {"timeout": 0.02}

    @pytest.mark.asyncio
    async def test_blocking_sync_check_is_bounded(self):
        """A blocking sync check times out without stalling the event loop."""
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.005)
                ticks += 1

        ticking = asyncio.create_task(ticker())
        start = time.monotonic()
        check = await run_health_check(BlockingCheck(0.5), timeout=0.05)
        elapsed = time.monotonic() - start
        ticking.cancel()

        assert check.status == HealthStatus.UNHEALTHY
        assert check.details == {"timeout": 0.05}
        assert elapsed < 0.3
        assert ticks > 0

    @pytest.mark.asyncio
    async def test_exception(self):
        """Exceptions become unhealthy results."""
        check = await run_health_check(AsyncCheck(error=RuntimeError("db down")), timeout=1.0)
        assert not check.healthy
        assert check.details["exception_type"] == "RuntimeError"
        assert "db down" in check.message


class TestHealthReport:
    """Tests for HealthReport aggregation."""

    def _check(self, status):
        return HealthCheckResult("x", status, "m")

    def test_empty_is_healthy(self):
        """No checks means healthy."""
        assert HealthReport.from_checks([]).status == HealthStatus.HEALTHY

    def test_mixed_is_degraded(self):
        """Some unhealthy checks give degraded."""
        report = HealthReport.from_checks([self._check(HealthStatus.HEALTHY), self._check(HealthStatus.UNHEALTHY)])
        assert report.status == HealthStatus.DEGRADED
        assert not report.healthy

    def test_all_unhealthy(self):
        """All unhealthy gives unhealthy."""
        report = HealthReport.from_checks([self._check(HealthStatus.UNHEALTHY)])
        assert report.status == HealthStatus.UNHEALTHY

    def test_to_dict(self):
        """Serialization lists each check."""
        payload = HealthReport.from_checks([self._check(HealthStatus.HEALTHY)]).to_dict()
        assert payload["status"] == "healthy"
        assert payload["checks"] == [{"name": "x", "status": "healthy", "message": "m", "details": {}}]
        assert "timestamp" in payload
