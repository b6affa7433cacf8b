"""Conduit Providers -- whitelist, loader and concrete handlers.

MODULE MAP
──────────
  kinds.py        ─ ProviderKind (the closed set of keys)
  registry.py     ─ PROVIDER_REGISTRY (read-only key → factory)
  descriptors.py  ─ ProviderDescriptor / RetryPolicyConfig (pydantic)
  loader.py       ─ ProviderLoader (cache, counters, health)
  health.py       ─ HealthStatus / HealthCheckResult / HealthReport
  handlers/       ─ generic HTTP, cloud function, workflow trigger
"""

from conduit.providers.descriptors import ProviderDescriptor, RetryPolicyConfig
from conduit.providers.health import HealthCheckResult, HealthReport, HealthStatus
from conduit.providers.kinds import ProviderKind
from conduit.providers.loader import ProviderLoader, get_default_loader, reset_default_loader
from conduit.providers.registry import PROVIDER_REGISTRY, HandlerFactory, allowed_keys

__all__ = [
    "ProviderDescriptor",
    "RetryPolicyConfig",
    "HealthCheckResult",
    "HealthReport",
    "HealthStatus",
    "ProviderKind",
    "ProviderLoader",
    "get_default_loader",
    "reset_default_loader",
    "PROVIDER_REGISTRY",
    "HandlerFactory",
    "allowed_keys",
]
