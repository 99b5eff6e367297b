"""
Structured logging for sprout.

Manifesto:
    Scheduler fires happen on background threads, far away from the request
    that installed them. Every log line therefore carries structured fields
    (garden_id, water_schedule_id, job tag) instead of formatted strings,
    so a single resource can be followed across threads.

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────┐
        │ configure_logging(level="INFO", json_format=True,          │
        │                   service="sprout")                        │
        │     ↓                                                      │
        │ structlog processor chain:                                 │
        │   1. merge_contextvars (LogContext / bind_context)         │
        │   2. TimeStamper (UTC, ISO-8601)                           │
        │   3. add_log_level, add_logger_name                        │
        │   4. StackInfoRenderer, set_exc_info                       │
        │   5. service metadata                                      │
        │   6. JSONRenderer (or ConsoleRenderer for dev)             │
        └────────────────────────────────────────────────────────────┘

Examples:
    >>> from sprout.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> logger.info("light.scheduled", garden_id="01H...", state="ON")

Tags:
    logging, structlog, observability, json-logging

Doc-Types:
    - API Reference
    - Observability Guide
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.types import EventDict, Processor, WrappedLogger

    from sprout.core.settings import SproutSettings

_SERVICE_NAME = "sprout"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "sprout",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if add_timestamp:
        shared_processors.insert(1, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )

    # Route stdlib logging to the same stream and level
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )


def configure_from_settings(settings: SproutSettings) -> None:
    """Configure logging from a settings object."""
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_format == "json",
        service=settings.service_name,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs on this thread/task.

    Example:
        bind_context(garden_id=garden.id)
        logger.info("light.toggled")  # includes garden_id
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(water_schedule_id=ws.id):
            logger.info("water.fired")
        # context removed here
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
