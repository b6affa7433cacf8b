"""
Conduit Logging - structured logging for the provider subsystem.

Every loader and engine decision is emitted as a structlog event with
key/value fields, so log aggregation can filter on ``provider``,
``task_id``, ``attempt`` or ``error_code`` without parsing text.

Architecture:
    ::

        configure_logging(level="INFO", json_format=True, service="conduit")
            │
            ▼
        structlog processor chain:
          1. TimeStamper (iso)
          2. merge_contextvars        (task_id / provider bound per call)
          3. add_log_level, add_logger_name
          4. _add_service_metadata
          5. _elasticsearch_compatible (JSON only)
          6. JSONRenderer | ConsoleRenderer

    Usage:
        logger = get_logger(__name__)
        logger.warning("provider_retry_scheduled", provider="GENERIC_HTTP", attempt=1, delay=1.0)

Examples:
    >>> from conduit.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> with LogContext(task_id="task-1", provider="GENERIC_HTTP"):
    ...     logger.info("provider_loaded")

Guardrails:
    - Event names are snake_case verbs in past tense or noun phrases
    - Never log credentials from handler input (auth blocks, api keys)
    - The library never configures logging on import; hosts call
      ``configure_logging`` once at startup

Tags:
    logging, structlog, observability, ecs, json-logging, conduit-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "conduit"

# structlog key -> ECS field name
_ECS_FIELDS = {"timestamp": "@timestamp", "level": "log.level"}


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Stamp ``service.name`` unless the event already carries one."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Rename structlog's default keys to their ECS equivalents."""
    for key, ecs_key in _ECS_FIELDS.items():
        if key in event_dict:
            event_dict[ecs_key] = event_dict.pop(key)
    return event_dict


def _shared_processors(add_timestamp: bool) -> list[Processor]:
    processors: list[Processor] = []
    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))
    processors += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]
    return processors


def _output_processors(json_format: bool) -> list[Processor]:
    if json_format:
        return [
            structlog.processors.format_exc_info,
            _elasticsearch_compatible,
            structlog.processors.JSONRenderer(default=str),
        ]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "conduit",
    add_timestamp: bool = True,
) -> None:
    """Configure structlog and the stdlib root logger once per process.

    Events are rendered by structlog and handed to stdlib logging, so
    records from httpx and botocore share the same stream and level.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines when True, console output when False,
            JSON whenever stderr is not a TTY when None
        service: Value of ``service.name`` on every event
        add_timestamp: Include an ISO timestamp
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")
    if json_format is None:
        json_format = not sys.stderr.isatty()

    structlog.configure(
        processors=_shared_processors(add_timestamp) + _output_processors(json_format),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level, force=True)


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind key/values to every event logged from the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Scoped contextvars binding, usable with ``with`` or ``async with``.

    ``None`` values are skipped. On exit the previous values of the bound
    keys are restored, so nested scopes may rebind the same key.

    Example:
        async with LogContext(task_id="task-1", provider="CLOUD_FUNCTION"):
            result = await execute(handler, context)
    """

    def __init__(self, **values: Any):
        self.values = {key: value for key, value in values.items() if value is not None}
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self._tokens = structlog.contextvars.bind_contextvars(**self.values)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
        self._tokens = {}

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
