"""
Conduit - uniform, safe execution of external provider integrations.

Sub-packages:
- conduit.core: errors, logging, settings, handler protocol, templates
- conduit.execution: context/result models, retry, cancellation, engine
- conduit.providers: whitelist registry, loader, health, concrete handlers
- conduit.cli: operator tooling
"""

__version__ = "0.1.0"
