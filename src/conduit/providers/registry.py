"""Provider Registry: the closed whitelist of loadable handlers.

Manifesto:
The loader turns a string key into a live handler instance. That string
may originate from a database row or a request body, so the set of keys it
can resolve must never be derived from data. The registry is a fixed
mapping declared here, in source, and reviewed like any other code change.

ARCHITECTURE
────────────
::

    PROVIDER_REGISTRY (read-only MappingProxyType)
      ├── "GENERIC_HTTP"      → GenericHttpHandler
      ├── "CLOUD_FUNCTION"    → CloudFunctionHandler
      └── "WORKFLOW_TRIGGER"  → WorkflowTriggerHandler

    factory(retry_policy=..., default_timeout=...) → handler

BEST PRACTICES
──────────────
- Never build a registry from configuration, environment variables or
  request payloads; ``ProviderDescriptor`` tunes parameters only.
- Tests that need a custom factory pass their own mapping to
  ``ProviderLoader(registry=...)``; nothing mutates this one.

Related modules:
    loader.py      - ProviderLoader consults the registry on cache miss
    descriptors.py - runtime parameters for a registered key
    kinds.py       - ProviderKind enumeration

Tags:
    conduit-core, providers, registry, whitelist, security

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from conduit.core.protocols import ProviderHandler
from conduit.providers.handlers.cloud_function import CloudFunctionHandler
from conduit.providers.handlers.generic_http import GenericHttpHandler
from conduit.providers.handlers.workflow_trigger import WorkflowTriggerHandler
from conduit.providers.kinds import ProviderKind

HandlerFactory = Callable[..., ProviderHandler]

PROVIDER_REGISTRY: Mapping[str, HandlerFactory] = MappingProxyType({
    ProviderKind.GENERIC_HTTP.value: GenericHttpHandler,
    ProviderKind.CLOUD_FUNCTION.value: CloudFunctionHandler,
    ProviderKind.WORKFLOW_TRIGGER.value: WorkflowTriggerHandler,
})


def allowed_keys(registry: Mapping[str, Any] = PROVIDER_REGISTRY) -> list[str]:
    """Registered keys in declaration order."""
    return list(registry)


__all__ = ["HandlerFactory", "PROVIDER_REGISTRY", "allowed_keys"]
