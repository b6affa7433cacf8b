"""
Shared pytest fixtures and configuration for conduit tests.

This module provides:
- Singleton cleanup fixtures (settings, default loader) for test isolation
- ScriptedHandler, a handler whose attempts follow a scripted list of outcomes
- Fast retry policies so retry tests finish in milliseconds
"""

from __future__ import annotations

import asyncio
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from conduit.core.errors import ProviderErrorCode
from conduit.core.settings import reset_settings
from conduit.execution.models import ExecutionContext, ExecutionResult
from conduit.execution.retry import RetryPolicy
from conduit.providers.loader import reset_default_loader


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Singleton Cleanup Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_singletons(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Reset cached settings and the default loader around each test.

    Runs from an empty directory so a developer's .env never leaks in.
    """
    monkeypatch.chdir(tmp_path)
    reset_settings()
    reset_default_loader()
    yield
    reset_settings()
    reset_default_loader()


# =============================================================================
# Handler Fixtures
# =============================================================================


class ScriptedHandler:
    """Handler whose successive attempts follow ``script``.

    Each script entry is one of:
    - an ExecutionResult: returned as-is
    - an Exception instance: raised
    - a float: sleep that many seconds, then succeed
    The last entry repeats once the script runs out.
    """

    key = "SCRIPTED"
    name = "Scripted Handler"

    def __init__(
        self,
        script: list[Any] | None = None,
        *,
        retry_policy: RetryPolicy | None = None,
        default_timeout: float = 5.0,
        validation_error: str | None = None,
    ):
        self.script = script or [ExecutionResult.ok({"ok": True})]
        self.retry_policy = retry_policy or RetryPolicy(max_retries=3, initial_delay=0.001, max_delay=0.01)
        self.default_timeout = default_timeout
        self.validation_error = validation_error
        self.calls = 0
        self.contexts: list[ExecutionContext] = []

    def validate(self, input: Any) -> str | None:
        return self.validation_error

    async def invoke(self, context: ExecutionContext) -> ExecutionResult:
        self.contexts.append(context)
        step = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, int | float):
            await asyncio.sleep(step)
            return ExecutionResult.ok({"slept": step})
        return step


def failure(code: ProviderErrorCode = ProviderErrorCode.EXECUTION_FAILED, message: str = "boom") -> ExecutionResult:
    return ExecutionResult.fail(code, message)


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Three retries with millisecond backoff."""
    return RetryPolicy(max_retries=3, initial_delay=0.001, max_delay=0.01)
