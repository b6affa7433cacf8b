"""
Handler contract shared by the loader and the execution engine.

Every integration (generic HTTP call, cloud function invocation, workflow
trigger-and-poll) is an independent object that satisfies this shape. The
engine is a free service parameterized over it; there is no base class to
extend.

Manifesto:
    Protocols define contracts without inheritance. They enable:
    - **Decoupling:** The engine depends on shape, not implementation
    - **Testability:** Any object matching the protocol works as a handler
    - **Verification:** The loader checks the shape with ``isinstance``
      before caching an instance

Architecture:
    ::

        protocols.py (YOU ARE HERE)
        ├── ProviderHandler       - identity, policy, validate, invoke
        └── SupportsHealthCheck   - optional liveness check

    Consumers:
        execution/engine.py, providers/loader.py, providers/handlers/*

Guardrails:
    ❌ DON'T: Put retry or timeout logic inside ``invoke``
    ✅ DO: Let the engine own the envelope; ``invoke`` is one attempt

    ❌ DON'T: Ignore ``context.cancellation_token`` in long-running work
    ✅ DO: Await through it or check ``raise_if_cancelled()`` between steps

Tags:
    protocol, handler, contract, provider, conduit-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from conduit.execution.models import ExecutionContext, ExecutionResult
    from conduit.execution.retry import RetryPolicy


@runtime_checkable
class ProviderHandler(Protocol):
    """Contract for a concrete integration.

    ``invoke`` performs exactly one attempt. It may return a failed
    ExecutionResult or raise; the engine treats both the same way.
    It may be a coroutine function or a plain function (run in a thread).
    """

    key: str
    name: str
    retry_policy: RetryPolicy
    default_timeout: float

    def validate(self, input: Any) -> str | None:
        """Return an error message for invalid input, None when valid."""
        ...

    def invoke(self, context: ExecutionContext) -> Any:
        """Run one attempt of the integration's core logic."""
        ...


@runtime_checkable
class SupportsHealthCheck(Protocol):
    """Optional liveness check. Handlers without it are always healthy."""

    async def health_check(self) -> bool: ...


__all__ = ["ProviderHandler", "SupportsHealthCheck"]
