"""
Whitelist-gated provider loader with instance caching.

``load(key)`` resolves a string key to a long-lived handler instance. Keys
outside ``PROVIDER_REGISTRY`` are refused; a handler is cached only after
it was constructed, passed structural verification and passed its initial
liveness check. Cached instances are returned by identity, so handler-local
state (circuit-breaker counters) persists across calls.

Manifesto:
    - **Closed set:** Only keys declared in source can load
    - **Verified before cached:** A failed load never leaves an instance behind
    - **No automatic retries:** Retrying is the execution engine's job
    - **Observable:** Monotonic counters via ``stats()``

Architecture:
    ::

        load(key)
          ├─ cached? ──────────────────────────► cache_hit_count += 1, same instance
          ├─ not in registry / disabled ───────► ProviderNotAllowedError
          └─ per-key asyncio.Lock
               ├─ cached meanwhile? ───────────► same instance
               ├─ factory(retry_policy, default_timeout)
               │     └─ raises / wrong shape ──► ProviderLoadError
               ├─ health_check() (bounded) ────► ProviderUnhealthyError
               └─ cache, load_count += 1

Examples:
    >>> loader = ProviderLoader()
    >>> handler = await loader.load("GENERIC_HTTP")
    >>> handler is await loader.load("GENERIC_HTTP")
    True
    >>> await loader.load("MALICIOUS_PROVIDER")
    Traceback (most recent call last):
    ProviderNotAllowedError: Provider 'MALICIOUS_PROVIDER' is not allowed

Guardrails:
    ❌ DON'T: Call ``invalidate`` on the hot path
    ✅ DO: Use it for tests and hot reload only

    ❌ DON'T: Keep your own reference to a handler to bypass the cache
    ✅ DO: Call ``load(key)``; cache hits are lock-free and cheap

Tags:
    loader, cache, whitelist, providers, conduit-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from typing import Any

from conduit.core.errors import (
    ProviderLoadError,
    ProviderNotAllowedError,
    ProviderUnhealthyError,
)
from conduit.core.logging import get_logger
from conduit.core.protocols import ProviderHandler
from conduit.core.settings import ConduitSettings, get_settings
from conduit.providers.descriptors import ProviderDescriptor, RetryPolicyConfig
from conduit.providers.health import HealthReport, run_health_check
from conduit.providers.registry import PROVIDER_REGISTRY, HandlerFactory

logger = get_logger(__name__)

_REQUIRED_MEMBERS = ("key", "name", "retry_policy", "default_timeout", "validate", "invoke")


def _normalize_key(key: Any) -> Any:
    return getattr(key, "value", key)


class ProviderLoader:
    """Resolve whitelisted keys to cached handler instances.

    Args:
        registry: Fixed key → factory mapping (defaults to PROVIDER_REGISTRY)
        descriptors: Runtime parameters per key; keys must be registered
        settings: Fallback defaults (defaults to ``get_settings()``)

    Raises:
        ProviderNotAllowedError: A descriptor names an unregistered key
    """

    def __init__(
        self,
        registry: Mapping[str, HandlerFactory] = PROVIDER_REGISTRY,
        descriptors: Iterable[ProviderDescriptor] = (),
        settings: ConduitSettings | None = None,
    ):
        self._registry = registry
        self._settings = settings or get_settings()
        self._descriptors: dict[str, ProviderDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.handler_key not in registry:
                raise ProviderNotAllowedError(
                    f"Descriptor references unregistered provider '{descriptor.handler_key}'",
                    {"key": descriptor.handler_key, "allowed": list(registry)},
                )
            self._descriptors[descriptor.handler_key] = descriptor

        self._cache: dict[str, ProviderHandler] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._load_count = 0
        self._cache_hit_count = 0
        self._error_count = 0

    # ------------------------------------------------------------------
    # Registry queries (no side effects)
    # ------------------------------------------------------------------

    def is_allowed(self, key: Any) -> bool:
        key = _normalize_key(key)
        return isinstance(key, str) and key in self._registry

    def list_allowed(self) -> list[str]:
        return list(self._registry)

    def descriptor(self, key: str) -> ProviderDescriptor | None:
        return self._descriptors.get(_normalize_key(key))

    def display_name(self, key: str) -> str:
        """Descriptor name, else the handler's own name, else the key."""
        key = _normalize_key(key)
        descriptor = self._descriptors.get(key)
        if descriptor is not None and descriptor.name:
            return descriptor.name
        handler = self._cache.get(key)
        if handler is not None:
            return handler.name
        return str(getattr(self._registry.get(key), "name", key))

    def cached(self, key: str) -> ProviderHandler | None:
        """Cached instance for ``key`` without touching the counters."""
        return self._cache.get(_normalize_key(key))

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self, key: str) -> ProviderHandler:
        """Return the cached handler for ``key``, building it on first use.

        Raises:
            ProviderNotAllowedError: Key is not registered or its descriptor is disabled
            ProviderLoadError: Factory raised or produced an invalid handler
            ProviderUnhealthyError: Initial liveness check failed
        """
        key = _normalize_key(key)
        handler = self._cache.get(key) if isinstance(key, str) else None
        if handler is not None:
            self._cache_hit_count += 1
            logger.debug("provider_cache_hit", provider=key)
            return handler

        self._check_allowed(key)

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # another caller may have finished the build while we waited
            handler = self._cache.get(key)
            if handler is not None:
                self._cache_hit_count += 1
                logger.debug("provider_cache_hit", provider=key)
                return handler

            handler = await self._build(key)
            self._cache[key] = handler
            self._load_count += 1
            logger.info("provider_loaded", provider=key, name=handler.name)
            return handler

    def _check_allowed(self, key: Any) -> None:
        if not self.is_allowed(key):
            self._error_count += 1
            allowed = self.list_allowed()
            logger.warning("provider_load_rejected", provider=str(key), allowed=allowed)
            raise ProviderNotAllowedError(
                f"Provider '{key}' is not allowed",
                {"key": key, "allowed": allowed},
            )

        descriptor = self._descriptors.get(key)
        if descriptor is not None and not descriptor.enabled:
            self._error_count += 1
            logger.warning("provider_load_rejected", provider=key, reason="disabled")
            raise ProviderNotAllowedError(
                f"Provider '{key}' is disabled",
                {"key": key, "allowed": self.list_allowed(), "reason": "disabled"},
            )

    async def _build(self, key: str) -> ProviderHandler:
        factory = self._registry[key]
        kwargs = self._factory_kwargs(key)
        try:
            handler = factory(**kwargs)
        except Exception as e:
            self._error_count += 1
            logger.error("provider_load_failed", provider=key, error=str(e))
            raise ProviderLoadError(
                f"Failed to construct provider '{key}': {e}",
                {"key": key, "exception_type": type(e).__name__},
                cause=e,
            ) from e

        missing = [member for member in _REQUIRED_MEMBERS if not hasattr(handler, member)]
        missing += [
            member
            for member in ("validate", "invoke")
            if hasattr(handler, member) and not callable(getattr(handler, member))
        ]
        if missing or not isinstance(handler, ProviderHandler):
            self._error_count += 1
            logger.error("provider_load_failed", provider=key, missing=missing)
            raise ProviderLoadError(
                f"Provider '{key}' does not implement the handler contract",
                {"key": key, "missing": missing},
            )

        check = await run_health_check(handler, self._settings.health_check_timeout)
        if not check.healthy:
            self._error_count += 1
            logger.error("provider_unhealthy", provider=key, message=check.message, **check.details)
            raise ProviderUnhealthyError(
                f"Provider '{key}' failed its liveness check: {check.message}",
                {"key": key, **check.details},
            )
        return handler

    def _factory_kwargs(self, key: str) -> dict[str, Any]:
        descriptor = self._descriptors.get(key)
        retry = descriptor.retry if descriptor and descriptor.retry else None
        timeout = descriptor.default_timeout if descriptor else None
        return {
            "retry_policy": (retry or RetryPolicyConfig.from_settings(self._settings)).to_policy(),
            "default_timeout": timeout or self._settings.default_timeout,
        }

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def invalidate(self, key: str) -> bool:
        """Drop the cached instance for ``key``. Returns whether one existed."""
        key = _normalize_key(key)
        removed = self._cache.pop(key, None) is not None
        if removed:
            logger.info("provider_cache_invalidated", provider=key)
        return removed

    def invalidate_all(self) -> int:
        """Drop every cached instance. Returns how many were removed."""
        count = len(self._cache)
        self._cache.clear()
        if count:
            logger.info("provider_cache_invalidated", count=count)
        return count

    def stats(self) -> dict[str, Any]:
        return {
            "load_count": self._load_count,
            "cache_hit_count": self._cache_hit_count,
            "error_count": self._error_count,
            "cache_size": len(self._cache),
            "cached_keys": sorted(self._cache),
        }

    async def check_health(self) -> HealthReport:
        """Run the liveness check of every cached handler."""
        handlers = list(self._cache.values())
        checks = await asyncio.gather(
            *(run_health_check(handler, self._settings.health_check_timeout) for handler in handlers)
        )
        return HealthReport.from_checks(list(checks))


# Module-level singleton
_default_loader: ProviderLoader | None = None


def get_default_loader() -> ProviderLoader:
    """Get the process-wide loader (created on first use)."""
    global _default_loader
    if _default_loader is None:
        _default_loader = ProviderLoader()
    return _default_loader


def reset_default_loader() -> None:
    """Drop the process-wide loader (for testing)."""
    global _default_loader
    _default_loader = None


__all__ = ["ProviderLoader", "get_default_loader", "reset_default_loader"]
