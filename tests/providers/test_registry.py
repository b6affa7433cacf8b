"""Tests for the fixed provider registry."""

import pytest

from conduit.providers import ProviderKind
from conduit.providers.handlers import CloudFunctionHandler, GenericHttpHandler, WorkflowTriggerHandler
from conduit.providers.registry import PROVIDER_REGISTRY, allowed_keys


class TestRegistry:
    """Tests for PROVIDER_REGISTRY."""

    def test_keys_match_provider_kinds(self):
        """Every ProviderKind is registered, nothing else is."""
        assert set(PROVIDER_REGISTRY) == {kind.value for kind in ProviderKind}

    def test_factories(self):
        """Keys map to their handler classes."""
        assert PROVIDER_REGISTRY["GENERIC_HTTP"] is GenericHttpHandler
        assert PROVIDER_REGISTRY["CLOUD_FUNCTION"] is CloudFunctionHandler
        assert PROVIDER_REGISTRY["WORKFLOW_TRIGGER"] is WorkflowTriggerHandler

    def test_read_only(self):
        """The registry cannot be extended at runtime."""
        with pytest.raises(TypeError):
            PROVIDER_REGISTRY["MALICIOUS_PROVIDER"] = object  # type: ignore[index]

    def test_handler_key_equals_registry_key(self):
        """Handler classes report the key they are registered under."""
        for key, factory in PROVIDER_REGISTRY.items():
            assert factory.key == key

    def test_allowed_keys_order(self):
        """allowed_keys keeps declaration order."""
        assert allowed_keys() == ["GENERIC_HTTP", "CLOUD_FUNCTION", "WORKFLOW_TRIGGER"]

    def test_kind_str(self):
        """ProviderKind renders as its value."""
        assert str(ProviderKind.GENERIC_HTTP) == "GENERIC_HTTP"
