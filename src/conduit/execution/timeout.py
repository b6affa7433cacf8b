"""Cancellation tokens, merged timeouts and interruptible sleep.

Every ``execute()`` call runs under exactly one token. The engine builds it
by merging a timeout timer with the caller's own token: whichever fires
first cancels the merged token, and it stays cancelled. Handlers and the
backoff sleep only ever see the merged token, so they cannot tell a timeout
from an upstream abort.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                     MergedCancellation                           │
        └─────────────────────────────────────────────────────────────────┘

        caller token ──register()──┐
                                   ├──► merged token ──► handler.invoke(ctx)
        loop.call_later(timeout) ──┘         │
                                             └────────► sleep(delay, token)

        first cancels wins: cancel() is idempotent and irreversible

Examples:
    Caller-side cancellation:

    >>> token = CancellationToken()
    >>> ctx = ExecutionContext(task_id="t-1", input={...}, cancellation_token=token)
    >>> task = asyncio.create_task(engine.execute(handler, ctx))
    >>> token.cancel()          # result comes back as ERR_PROVIDER_TIMEOUT

    Cooperative handler:

    >>> async def invoke(self, context):
    ...     for page in pages:
    ...         context.cancellation_token.raise_if_cancelled()
    ...         await fetch(page)

    Interruptible wait:

    >>> await sleep(2.0, token)   # returns early with OperationCancelled

Guardrails:
    - Tokens are bound to the running event loop; cancel them from loop code
    - A handler that never awaits cannot be preempted; the engine still
      returns promptly, but the handler's thread keeps running
    - Callbacks registered on a token must not block

Tags:
    timeout, cancellation, deadline, resilience, execution, conduit-core

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from conduit.core.errors import ProviderExecutionError, ProviderTimeoutError
from conduit.core.logging import get_logger

logger = get_logger(__name__)


class CancellationReason(str, Enum):
    """Why a merged token fired."""

    TIMEOUT = "timeout"
    CALLER = "caller"


class OperationCancelled(ProviderTimeoutError):
    """Raised when work observes a cancelled token.

    Classified as ``ERR_PROVIDER_TIMEOUT``, so a handler that lets it
    propagate is reported the same way as an engine-side timeout.

    Attributes:
        reason: What fired the token, if known
        timeout: The time budget in seconds, if the reason is a timeout
        operation: Name/description of the interrupted operation
    """

    def __init__(
        self,
        reason: CancellationReason | str | None = None,
        timeout: float | None = None,
        operation: str = "operation",
    ):
        self.reason = reason
        self.timeout = timeout
        self.operation = operation

        if reason == CancellationReason.TIMEOUT and timeout is not None:
            msg = f"Operation '{operation}' timed out after {timeout}s"
        else:
            msg = f"Operation '{operation}' was cancelled"

        details: dict[str, Any] = {"operation": operation}
        if reason is not None:
            details["reason"] = reason.value if isinstance(reason, Enum) else reason
        if timeout is not None:
            details["timeout"] = timeout
        super().__init__(msg, details)


class CancellationRegistration:
    """Handle returned by :meth:`CancellationToken.register`."""

    def __init__(self, token: CancellationToken | None, callback: Callable[..., Any] | None):
        self._token = token
        self._callback = callback

    def unregister(self) -> None:
        """Stop receiving the cancellation callback. Safe to call twice."""
        if self._token is not None and self._callback is not None:
            self._token._remove(self._callback)
        self._token = None
        self._callback = None


class CancellationToken:
    """Explicit, irreversible cancellation signal.

    Example:
        >>> token = CancellationToken()
        >>> token.cancel(CancellationReason.CALLER)
        True
        >>> token.cancel(CancellationReason.TIMEOUT)  # already fired
        False
        >>> token.reason
        <CancellationReason.CALLER: 'caller'>
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: CancellationReason | None = None
        self._callbacks: list[Callable[[CancellationToken], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> CancellationReason | None:
        return self._reason

    def cancel(self, reason: CancellationReason = CancellationReason.CALLER) -> bool:
        """Fire the token. Returns False if it had already fired."""
        if self._event.is_set():
            return False
        self._reason = CancellationReason(reason)
        self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("cancellation_callback_failed", callback=repr(callback))
        return True

    def register(self, callback: Callable[[CancellationToken], Any]) -> CancellationRegistration:
        """Call ``callback(token)`` when the token fires.

        If the token already fired, the callback runs immediately.
        """
        if self.cancelled:
            callback(self)
            return CancellationRegistration(None, None)
        self._callbacks.append(callback)
        return CancellationRegistration(self, callback)

    def _remove(self, callback: Callable[..., Any]) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    async def wait(self) -> CancellationReason | None:
        """Suspend until the token fires."""
        await self._event.wait()
        return self._reason

    def raise_if_cancelled(self, operation: str = "operation") -> None:
        """Raise OperationCancelled if the token has fired."""
        if self.cancelled:
            raise OperationCancelled(self._reason, operation=operation)

    def __repr__(self) -> str:
        state = f"cancelled ({self._reason.value})" if self._reason else "active"
        return f"<CancellationToken {state}>"


class MergedCancellation:
    """One token that fires on a timer or on a linked caller token.

    Must be started inside a running event loop. Use as a context manager so
    the timer and the caller registration are always released.

    Attributes:
        token: The merged token handed to handlers and sleeps
        timeout: Timer length in seconds (None means no timer)
        parent: Caller-supplied token, if any
    """

    def __init__(self, timeout: float | None, parent: CancellationToken | None = None):
        if timeout is not None and timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {timeout}")
        self.timeout = timeout
        self.parent = parent
        self.token = CancellationToken()
        self.start_time: float | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._registration: CancellationRegistration | None = None

    def start(self) -> MergedCancellation:
        loop = asyncio.get_running_loop()
        self.start_time = time.monotonic()
        # Link the caller first: an already-cancelled caller beats the timer.
        if self.parent is not None:
            self._registration = self.parent.register(
                lambda _parent: self.token.cancel(CancellationReason.CALLER)
            )
        if self.timeout is not None and not self.token.cancelled:
            self._timer = loop.call_later(self.timeout, self.token.cancel, CancellationReason.TIMEOUT)
        return self

    def close(self) -> None:
        """Stop the timer and detach from the caller token."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._registration is not None:
            self._registration.unregister()
            self._registration = None

    @property
    def elapsed(self) -> float:
        """Seconds since start()."""
        if self.start_time is None:
            return 0.0
        return time.monotonic() - self.start_time

    def __enter__(self) -> MergedCancellation:
        return self.start()

    def __exit__(self, *args: Any) -> None:
        self.close()


async def sleep(delay: float, token: CancellationToken | None = None) -> None:
    """Sleep for ``delay`` seconds, returning early if ``token`` fires.

    Raises:
        OperationCancelled: if the token is (or becomes) cancelled
    """
    if delay < 0:
        raise ValueError(f"Delay must be non-negative, got {delay}")
    if token is None:
        await asyncio.sleep(delay)
        return

    token.raise_if_cancelled("sleep")
    try:
        await asyncio.wait_for(token.wait(), timeout=delay)
    except TimeoutError:
        return
    raise OperationCancelled(token.reason, operation="sleep")


async def run_with_token(awaitable: Any, token: CancellationToken, operation: str = "operation") -> Any:
    """Await ``awaitable`` unless ``token`` fires first.

    The awaitable is wrapped in a task; if the token wins, the task is
    cancelled and OperationCancelled is raised without waiting for it. A
    token that fires in the same loop iteration as the work completes
    still wins.
    """
    if token.cancelled:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelled(token.reason, operation=operation)
    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()

    if token.cancelled:
        abandon(work)
        raise OperationCancelled(token.reason, operation=operation)
    if work.cancelled():
        raise ProviderExecutionError(
            f"Operation '{operation}' was cancelled from inside",
            {"operation": operation},
        )
    return work.result()


def abandon(task: asyncio.Future[Any]) -> None:
    """Cancel a task we no longer wait for and consume its outcome."""
    task.cancel()
    task.add_done_callback(_consume_outcome)


def _consume_outcome(task: asyncio.Future[Any]) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug("abandoned_task_failed", error=repr(error))


__all__ = [
    "CancellationReason",
    "OperationCancelled",
    "CancellationRegistration",
    "CancellationToken",
    "MergedCancellation",
    "sleep",
    "run_with_token",
    "abandon",
]
