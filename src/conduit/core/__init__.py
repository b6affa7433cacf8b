"""Conduit Core -- primitives shared by the loader and the execution engine.

Architecture::

    errors.py      Closed error taxonomy (ProviderErrorCode, ProviderError)
    logging.py     structlog configuration and context binding
    settings.py    ConduitSettings (pydantic-settings, CONDUIT_* env vars)
    protocols.py   ProviderHandler / SupportsHealthCheck contracts
    template.py    {{var}} substitution and dotted-path extraction
"""

from conduit.core.errors import (
    ErrorStage,
    ProviderError,
    ProviderErrorCode,
    ProviderExecutionError,
    ProviderLoadError,
    ProviderNotAllowedError,
    ProviderTimeoutError,
    ProviderUnhealthyError,
    ProviderValidationError,
    classify_exception,
)
from conduit.core.logging import LogContext, configure_logging, get_logger
from conduit.core.protocols import ProviderHandler, SupportsHealthCheck
from conduit.core.settings import ConduitSettings, get_settings

__all__ = [
    "ErrorStage",
    "ProviderError",
    "ProviderErrorCode",
    "ProviderExecutionError",
    "ProviderLoadError",
    "ProviderNotAllowedError",
    "ProviderTimeoutError",
    "ProviderUnhealthyError",
    "ProviderValidationError",
    "classify_exception",
    "LogContext",
    "configure_logging",
    "get_logger",
    "ProviderHandler",
    "SupportsHealthCheck",
    "ConduitSettings",
    "get_settings",
]
