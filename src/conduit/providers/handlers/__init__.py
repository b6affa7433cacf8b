"""Concrete handlers, one per integration kind."""

from conduit.providers.handlers.cloud_function import CloudFunctionHandler
from conduit.providers.handlers.generic_http import GenericHttpHandler
from conduit.providers.handlers.workflow_trigger import WorkflowTriggerHandler

__all__ = ["CloudFunctionHandler", "GenericHttpHandler", "WorkflowTriggerHandler"]
