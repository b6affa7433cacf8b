"""Closed enumeration of integration kinds (the registry keys)."""

from __future__ import annotations

from enum import Enum


class ProviderKind(str, Enum):
    """Every key the loader can ever resolve. Adding one is a code change."""

    GENERIC_HTTP = "GENERIC_HTTP"
    CLOUD_FUNCTION = "CLOUD_FUNCTION"
    WORKFLOW_TRIGGER = "WORKFLOW_TRIGGER"

    def __str__(self) -> str:
        return self.value


__all__ = ["ProviderKind"]
