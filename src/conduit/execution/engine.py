"""
Execution engine: the uniform envelope around a handler's core logic.

``execute(handler, context)`` validates the input, derives one merged
cancellation token from the effective timeout and the caller's token, then
runs the handler's ``invoke`` in a bounded retry loop with exponential
backoff. It always returns an ExecutionResult; it never raises.

Manifesto:
    - **One failure channel:** Raised faults and returned failures are both
      normalized into a failed ExecutionResult
    - **Cancellation wins:** Once the merged token fires, the call returns
      TIMEOUT at once, whatever the in-flight attempt or backoff is doing
    - **Strictly sequential attempts:** Attempt n+1 starts only after
      attempt n finished and the backoff elapsed
    - **Strategy, not inheritance:** Handlers are passed in; nothing extends
      the engine

Architecture:
    ::

        execute(handler, context)
          │
          ├─ validate(input) ── message ──────────► VALIDATION_FAILED (0 attempts)
          │
          ├─ MergedCancellation(timeout_override or default_timeout,
          │                     context.cancellation_token)
          │
          └─ for attempt in 0..max_retries:
               invoke(ctx) ⟶ raced against merged token
               ├─ success ────────────────────────► result
               ├─ token fired ────────────────────► TIMEOUT
               ├─ not retryable ──────────────────► original code
               ├─ last attempt ───────────────────► MAX_RETRIES_EXCEEDED
               └─ sleep(backoff_delay(attempt+1), token) ── fired ──► TIMEOUT

Examples:
    >>> loader = get_default_loader()
    >>> handler = await loader.load("GENERIC_HTTP")
    >>> ctx = ExecutionContext(task_id="t-42", input={"req_template": {...}})
    >>> result = await execute(handler, ctx)
    >>> result.to_dict()["durationMeasured"]
    132.418

Guardrails:
    ❌ DON'T: Wrap ``execute`` in try/except for handler faults
    ✅ DO: Branch on ``result.error.code``

    ❌ DON'T: Retry outside the engine (double retry budgets)
    ✅ DO: Tune ``RetryPolicy`` per handler via ProviderDescriptor

Tags:
    execution, retry, backoff, timeout, cancellation, engine, conduit-core

Doc-Types:
    - API Reference
    - Architecture Guide
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Any

from conduit.core.errors import ProviderErrorCode
from conduit.core.logging import get_logger
from conduit.core.protocols import ProviderHandler
from conduit.core.settings import get_settings
from conduit.execution.models import ExecutionContext, ExecutionResult, ResultError
from conduit.execution.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from conduit.execution.timeout import (
    CancellationReason,
    MergedCancellation,
    OperationCancelled,
    run_with_token,
    sleep,
)

logger = get_logger(__name__)

SleepFn = Callable[[float, Any], Awaitable[None]]


async def _invoke(handler: ProviderHandler, context: ExecutionContext) -> Any:
    """Run one attempt, off the loop when ``invoke`` is a plain function."""
    invoke = handler.invoke
    if inspect.iscoroutinefunction(invoke):
        return await invoke(context)
    outcome = await asyncio.to_thread(invoke, context)
    if inspect.isawaitable(outcome):
        return await outcome
    return outcome


def _as_result(outcome: Any) -> ExecutionResult:
    if isinstance(outcome, ExecutionResult):
        return outcome
    return ExecutionResult.ok(outcome)


class ExecutionEngine:
    """Stateless executor shared by every handler.

    Args:
        sleep: Interruptible sleep used for backoff (``sleep(delay, token)``)
        clock: Monotonic clock used for ``duration``
    """

    def __init__(
        self,
        *,
        sleep: SleepFn = sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sleep = sleep
        self._clock = clock

    async def execute(self, handler: ProviderHandler, context: ExecutionContext) -> ExecutionResult:
        """Run ``handler`` under validation, timeout, cancellation and retry.

        Never raises for handler faults. Cancelling the task that awaits this
        coroutine propagates ``asyncio.CancelledError`` as usual.
        """
        started = self._clock()
        provider = provider_name(handler)
        log = logger.bind(provider=provider, task_id=context.task_id)

        attempts = 0
        try:
            result, attempts = await self._run(handler, context, log)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.exception("provider_engine_error")
            result = ExecutionResult.from_error(ResultError.from_exception(exc))

        metadata = {
            **context.metadata,
            **result.metadata,
            "attempts": attempts,
            "provider": provider,
            "task_id": context.task_id,
        }
        return result.finalized(self._clock() - started, metadata)

    async def _run(
        self,
        handler: ProviderHandler,
        context: ExecutionContext,
        log: Any,
    ) -> tuple[ExecutionResult, int]:
        message = self._validate(handler, context.input)
        if message:
            log.warning("provider_validation_failed", error=message)
            return ExecutionResult.fail(ProviderErrorCode.VALIDATION_FAILED, message), 0

        policy: RetryPolicy = getattr(handler, "retry_policy", None) or DEFAULT_RETRY_POLICY
        timeout = (
            context.timeout_override
            or getattr(handler, "default_timeout", None)
            or get_settings().default_timeout
        )

        attempts = 0
        with MergedCancellation(timeout, context.cancellation_token) as merged:
            token = merged.token
            attempt_context = context.with_token(token)

            for attempt in range(policy.max_attempts):
                if token.cancelled:
                    return self._timed_out(merged, attempts, log), attempts

                attempts += 1
                log.debug("provider_attempt_started", attempt=attempts, max_attempts=policy.max_attempts)
                try:
                    outcome = await run_with_token(
                        _invoke(handler, attempt_context), token, operation=f"{provider_name(handler)}.invoke"
                    )
                    result = _as_result(outcome)
                except OperationCancelled as exc:
                    if token.cancelled:
                        return self._timed_out(merged, attempts, log), attempts
                    result = ExecutionResult.from_error(ResultError.from_exception(exc))
                except Exception as exc:
                    result = ExecutionResult.from_error(ResultError.from_exception(exc))

                if result.success:
                    if attempt > 0:
                        log.info("provider_retry_succeeded", attempt=attempts)
                    return result, attempts

                # a fired token outranks whatever the handler reported
                if token.cancelled:
                    return self._timed_out(merged, attempts, log), attempts

                error = result.error
                assert error is not None
                if not policy.is_retryable(error.code):
                    log.warning(
                        "provider_failed_not_retryable",
                        attempt=attempts,
                        error_code=error.code.value,
                        error=error.message,
                    )
                    return result, attempts

                if attempt >= policy.max_retries:
                    log.error(
                        "provider_retries_exhausted",
                        attempts=attempts,
                        max_attempts=policy.max_attempts,
                        error_code=error.code.value,
                        error=error.message,
                    )
                    return self._exhausted(error, attempts), attempts

                delay = policy.backoff_delay(attempt + 1)
                log.warning(
                    "provider_retry_scheduled",
                    attempt=attempts,
                    max_attempts=policy.max_attempts,
                    delay=delay,
                    error_code=error.code.value,
                    error=error.message,
                )
                try:
                    await self._sleep(delay, token)
                except OperationCancelled:
                    return self._timed_out(merged, attempts, log), attempts

        # max_attempts >= 1, so the loop always returns
        raise AssertionError("retry loop exited without a result")

    @staticmethod
    def _validate(handler: ProviderHandler, input: Any) -> str | None:
        try:
            return handler.validate(input)
        except Exception as exc:
            return str(exc) or type(exc).__name__

    @staticmethod
    def _exhausted(last_error: ResultError, attempts: int) -> ExecutionResult:
        return ExecutionResult.fail(
            ProviderErrorCode.MAX_RETRIES_EXCEEDED,
            f"Retries exhausted after {attempts} attempts: {last_error.message}",
            {"last_error": last_error.to_dict()},
        )

    @staticmethod
    def _timed_out(merged: MergedCancellation, attempts: int, log: Any) -> ExecutionResult:
        reason = merged.token.reason or CancellationReason.CALLER
        if reason == CancellationReason.TIMEOUT:
            message = f"Execution timed out after {merged.timeout}s"
        else:
            message = "Execution was cancelled by the caller"
        log.warning(
            "provider_execution_timed_out",
            reason=reason.value,
            timeout=merged.timeout,
            elapsed=round(merged.elapsed, 3),
            attempts=attempts,
        )
        return ExecutionResult.fail(
            ProviderErrorCode.TIMEOUT,
            message,
            {"reason": reason.value, "timeout": merged.timeout},
        )


def provider_name(handler: Any) -> str:
    """Display key for logs and operation names."""
    return str(getattr(handler, "key", type(handler).__name__))


_default_engine = ExecutionEngine()


async def execute(handler: ProviderHandler, context: ExecutionContext) -> ExecutionResult:
    """Execute ``handler`` with the process-wide default engine."""
    return await _default_engine.execute(handler, context)


__all__ = ["ExecutionEngine", "execute", "provider_name"]
