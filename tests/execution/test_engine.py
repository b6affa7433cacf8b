"""Tests for the execution engine."""

import asyncio
import time

import pytest
from structlog.testing import capture_logs

from conftest import ScriptedHandler, failure
from conduit.core.errors import ProviderErrorCode, ProviderExecutionError, ProviderTimeoutError
from conduit.execution.engine import ExecutionEngine, execute
from conduit.execution.models import ExecutionContext, ExecutionResult
from conduit.execution.retry import RetryPolicy
from conduit.execution.timeout import CancellationToken, OperationCancelled


def make_context(**kwargs) -> ExecutionContext:
    kwargs.setdefault("task_id", "task-1")
    kwargs.setdefault("input", {"value": 1})
    return ExecutionContext(**kwargs)


class RecordingSleep:
    """Backoff sleep that records delays and returns at once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay, token=None):
        self.delays.append(delay)
        if token is not None:
            token.raise_if_cancelled("sleep")


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def engine(recording_sleep):
    return ExecutionEngine(sleep=recording_sleep)


class TestSuccess:
    """Tests for successful execution."""

    @pytest.mark.asyncio
    async def test_first_attempt(self, engine):
        """A successful first attempt returns data and bookkeeping."""
        handler = ScriptedHandler([ExecutionResult.ok({"answer": 42})])
        result = await engine.execute(handler, make_context(metadata={"pipeline": "p1"}))

        assert result.success is True
        assert result.data == {"answer": 42}
        assert handler.calls == 1
        assert result.metadata == {
            "pipeline": "p1",
            "attempts": 1,
            "provider": "SCRIPTED",
            "task_id": "task-1",
        }
        assert result.duration is not None and result.duration >= 0

    @pytest.mark.asyncio
    async def test_plain_return_value_is_wrapped(self, engine):
        """A handler returning a bare value is treated as success."""

        class BareHandler(ScriptedHandler):
            async def invoke(self, context):
                return {"raw": True}

        result = await engine.execute(BareHandler(), make_context())
        assert result.success is True
        assert result.data == {"raw": True}

    @pytest.mark.asyncio
    async def test_sync_handler_runs_in_thread(self, engine):
        """Plain-function handlers are supported."""

        class SyncHandler(ScriptedHandler):
            def invoke(self, context):
                return ExecutionResult.ok({"sync": context.task_id})

        result = await engine.execute(SyncHandler(), make_context())
        assert result.data == {"sync": "task-1"}

    @pytest.mark.asyncio
    async def test_module_level_execute(self):
        """The module-level execute delegates to a default engine."""
        result = await execute(ScriptedHandler(), make_context())
        assert result.success is True

    @pytest.mark.asyncio
    async def test_wire_shape(self, engine):
        """to_dict reports durationMeasured in milliseconds."""
        result = await engine.execute(ScriptedHandler([0.01]), make_context())
        payload = result.to_dict()
        assert payload["success"] is True
        assert payload["durationMeasured"] >= 5.0
        assert payload["metadata"]["attempts"] == 1


class TestValidation:
    """Tests for the validation step."""

    @pytest.mark.asyncio
    async def test_rejected_without_attempts(self, engine):
        """A validation message returns VALIDATION_FAILED and never invokes."""
        handler = ScriptedHandler(validation_error="url is required")
        result = await engine.execute(handler, make_context())

        assert result.success is False
        assert result.error_code is ProviderErrorCode.VALIDATION_FAILED
        assert result.error.message == "url is required"
        assert result.metadata["attempts"] == 0
        assert handler.calls == 0

    @pytest.mark.asyncio
    async def test_raising_validate(self, engine):
        """A validate that raises is a validation failure."""

        class Raising(ScriptedHandler):
            def validate(self, input):
                raise TypeError("input must be a dict")

        result = await engine.execute(Raising(), make_context())
        assert result.error_code is ProviderErrorCode.VALIDATION_FAILED
        assert result.error.message == "input must be a dict"


class TestRetries:
    """Tests for the bounded retry loop."""

    @pytest.mark.asyncio
    async def test_always_failing_runs_max_attempts(self, engine):
        """maxRetries=3 means exactly 4 invocations, then MAX_RETRIES_EXCEEDED."""
        handler = ScriptedHandler([failure()])
        result = await engine.execute(handler, make_context())

        assert handler.calls == 4
        assert result.error_code is ProviderErrorCode.MAX_RETRIES_EXCEEDED
        assert result.error.details["last_error"]["code"] == "ERR_PROVIDER_EXECUTION_FAILED"
        assert result.metadata["attempts"] == 4

    @pytest.mark.asyncio
    async def test_raised_faults_are_retried_the_same_way(self, engine):
        """Raised exceptions are classified and retried like returned failures."""
        handler = ScriptedHandler([ProviderExecutionError("upstream 502")])
        result = await engine.execute(handler, make_context())

        assert handler.calls == 4
        assert result.error_code is ProviderErrorCode.MAX_RETRIES_EXCEEDED
        assert result.error.details["last_error"]["message"] == "upstream 502"

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, engine):
        """Two failures then success: success after exactly 3 invocations."""
        handler = ScriptedHandler([failure(), RuntimeError("flaky"), ExecutionResult.ok("done")])
        result = await engine.execute(handler, make_context())

        assert result.success is True
        assert result.data == "done"
        assert handler.calls == 3
        assert result.metadata["attempts"] == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", [ProviderErrorCode.TIMEOUT, ProviderErrorCode.VALIDATION_FAILED])
    async def test_timeout_and_validation_never_retried(self, engine, code):
        """TIMEOUT and VALIDATION_FAILED are not retried under the default policy."""
        handler = ScriptedHandler([failure(code)], retry_policy=RetryPolicy(max_retries=10, initial_delay=0))
        result = await engine.execute(handler, make_context())

        assert handler.calls == 1
        assert result.error_code is code

    @pytest.mark.asyncio
    async def test_raised_timeout_error_not_retried(self, engine):
        """A raised TimeoutError classifies as TIMEOUT and is not retried."""
        handler = ScriptedHandler([ProviderTimeoutError("upstream slow")])
        result = await engine.execute(handler, make_context())
        assert handler.calls == 1
        assert result.error_code is ProviderErrorCode.TIMEOUT

    @pytest.mark.asyncio
    async def test_explicit_retryable_set(self, engine):
        """Codes outside an explicit set keep their original code."""
        policy = RetryPolicy(
            max_retries=3,
            initial_delay=0,
            retryable_error_codes=frozenset({ProviderErrorCode.TIMEOUT}),
        )
        handler = ScriptedHandler([failure()], retry_policy=policy)
        result = await engine.execute(handler, make_context())

        assert handler.calls == 1
        assert result.error_code is ProviderErrorCode.EXECUTION_FAILED

    @pytest.mark.asyncio
    async def test_no_retry_policy_exhausts_immediately(self, engine):
        """With zero retries a retryable failure is reported as exhausted."""
        handler = ScriptedHandler([failure()], retry_policy=RetryPolicy(max_retries=0))
        result = await engine.execute(handler, make_context())
        assert handler.calls == 1
        assert result.error_code is ProviderErrorCode.MAX_RETRIES_EXCEEDED

    @pytest.mark.asyncio
    async def test_backoff_delays(self, engine, recording_sleep):
        """Waits follow min(initial * multiplier^(n-1), max)."""
        policy = RetryPolicy(max_retries=5, initial_delay=0.1, max_delay=0.5, backoff_multiplier=2)
        handler = ScriptedHandler([failure()], retry_policy=policy)
        await engine.execute(handler, make_context())

        assert recording_sleep.delays == pytest.approx([0.1, 0.2, 0.4, 0.5, 0.5])

    @pytest.mark.asyncio
    async def test_attempts_are_sequential(self):
        """Attempt n+1 never starts before attempt n finished."""
        active = 0
        overlaps = []

        class Tracking(ScriptedHandler):
            async def invoke(self, context):
                nonlocal active
                active += 1
                overlaps.append(active)
                await asyncio.sleep(0.005)
                active -= 1
                return failure()

        handler = Tracking(retry_policy=RetryPolicy(max_retries=2, initial_delay=0.001))
        await ExecutionEngine().execute(handler, make_context())
        assert overlaps == [1, 1, 1]


class TestCancellation:
    """Tests for timeout and caller cancellation."""

    @pytest.mark.asyncio
    async def test_caller_cancel_beats_slow_handler(self, engine):
        """A caller cancel at 50ms ends a 200ms attempt promptly with TIMEOUT."""
        token = CancellationToken()
        handler = ScriptedHandler([0.2])
        asyncio.get_running_loop().call_later(0.05, token.cancel)

        start = time.monotonic()
        result = await engine.execute(handler, make_context(cancellation_token=token))
        elapsed = time.monotonic() - start

        assert result.error_code is ProviderErrorCode.TIMEOUT
        assert result.error.details["reason"] == "caller"
        assert 0.04 <= elapsed < 0.1

    @pytest.mark.asyncio
    async def test_timeout_override(self, engine):
        """timeout_override bounds the whole call."""
        handler = ScriptedHandler([1.0])
        start = time.monotonic()
        result = await engine.execute(handler, make_context(timeout_override=0.05))

        assert result.error_code is ProviderErrorCode.TIMEOUT
        assert result.error.details == {"reason": "timeout", "timeout": 0.05}
        assert time.monotonic() - start < 0.5

    @pytest.mark.asyncio
    async def test_handler_default_timeout(self, engine):
        """Without an override the handler default applies."""
        handler = ScriptedHandler([1.0], default_timeout=0.05)
        result = await engine.execute(handler, make_context())
        assert result.error_code is ProviderErrorCode.TIMEOUT
        assert result.error.details["timeout"] == 0.05

    @pytest.mark.asyncio
    async def test_timeout_spans_retries(self):
        """The time budget covers all attempts and backoff waits."""
        policy = RetryPolicy(max_retries=10, initial_delay=0.03, max_delay=0.03)
        handler = ScriptedHandler([failure()], retry_policy=policy)
        result = await ExecutionEngine().execute(handler, make_context(timeout_override=0.1))

        assert result.error_code is ProviderErrorCode.TIMEOUT
        assert 1 <= handler.calls < 11

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self):
        """A cancel during the backoff wait returns at once."""
        token = CancellationToken()
        policy = RetryPolicy(max_retries=3, initial_delay=5.0, max_delay=5.0)
        handler = ScriptedHandler([failure()], retry_policy=policy)
        asyncio.get_running_loop().call_later(0.05, token.cancel)

        start = time.monotonic()
        result = await ExecutionEngine().execute(handler, make_context(cancellation_token=token))

        assert result.error_code is ProviderErrorCode.TIMEOUT
        assert handler.calls == 1
        assert time.monotonic() - start < 1.0

    @pytest.mark.asyncio
    async def test_pre_cancelled_token(self, engine):
        """A token cancelled before the call means no attempt runs."""
        token = CancellationToken()
        token.cancel()
        handler = ScriptedHandler()
        result = await engine.execute(handler, make_context(cancellation_token=token))

        assert result.error_code is ProviderErrorCode.TIMEOUT
        assert handler.calls == 0
        assert result.metadata["attempts"] == 0

    @pytest.mark.asyncio
    async def test_handler_sees_merged_token(self, engine):
        """Handlers receive the merged token, never the caller's."""
        caller = CancellationToken()
        handler = ScriptedHandler()
        await engine.execute(handler, make_context(cancellation_token=caller))

        seen = handler.contexts[0].cancellation_token
        assert isinstance(seen, CancellationToken)
        assert seen is not caller

    @pytest.mark.asyncio
    async def test_cooperative_handler(self, engine):
        """A handler that checks its token surfaces TIMEOUT, not its own error."""

        class Cooperative(ScriptedHandler):
            async def invoke(self, context):
                while True:
                    context.cancellation_token.raise_if_cancelled()
                    await asyncio.sleep(0.005)

        result = await engine.execute(Cooperative(), make_context(timeout_override=0.03))
        assert result.error_code is ProviderErrorCode.TIMEOUT
        assert result.error.details["reason"] == "timeout"

    @pytest.mark.asyncio
    async def test_foreign_operation_cancelled_is_a_failure(self, engine):
        """OperationCancelled from an unrelated token is an ordinary TIMEOUT failure."""
        handler = ScriptedHandler([OperationCancelled(operation="nested")])
        result = await engine.execute(handler, make_context())
        assert result.error_code is ProviderErrorCode.TIMEOUT
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_outer_task_cancellation_propagates(self, engine):
        """Cancelling the task awaiting execute raises CancelledError."""
        handler = ScriptedHandler([5.0])
        task = asyncio.create_task(engine.execute(handler, make_context()))
        await asyncio.sleep(0.02)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestLogging:
    """Tests for structured log events."""

    @pytest.mark.asyncio
    async def test_retry_events(self, engine):
        """Retries emit scheduled and exhausted events."""
        handler = ScriptedHandler([failure()], retry_policy=RetryPolicy(max_retries=2, initial_delay=0.01))
        with capture_logs() as logs:
            await engine.execute(handler, make_context())

        events = [entry["event"] for entry in logs]
        assert events.count("provider_retry_scheduled") == 2
        assert events[-1] == "provider_retries_exhausted"
        scheduled = [entry for entry in logs if entry["event"] == "provider_retry_scheduled"]
        assert scheduled[0]["provider"] == "SCRIPTED"
        assert scheduled[0]["task_id"] == "task-1"
        assert scheduled[0]["delay"] == pytest.approx(0.01)

    @pytest.mark.asyncio
    async def test_retry_succeeded_event(self, engine):
        """A success after a failure emits provider_retry_succeeded."""
        handler = ScriptedHandler([failure(), ExecutionResult.ok(1)])
        with capture_logs() as logs:
            await engine.execute(handler, make_context())
        assert any(entry["event"] == "provider_retry_succeeded" for entry in logs)

    @pytest.mark.asyncio
    async def test_validation_and_timeout_events(self, engine):
        """Validation failures and timeouts are logged."""
        with capture_logs() as logs:
            await engine.execute(ScriptedHandler(validation_error="bad"), make_context())
            await engine.execute(ScriptedHandler([1.0]), make_context(timeout_override=0.02))
        events = [entry["event"] for entry in logs]
        assert "provider_validation_failed" in events
        assert "provider_execution_timed_out" in events

    @pytest.mark.asyncio
    async def test_not_retryable_event(self, engine):
        """Non-retryable failures are logged with their code."""
        with capture_logs() as logs:
            await engine.execute(ScriptedHandler([failure(ProviderErrorCode.TIMEOUT)]), make_context())
        entry = next(e for e in logs if e["event"] == "provider_failed_not_retryable")
        assert entry["error_code"] == "ERR_PROVIDER_TIMEOUT"
