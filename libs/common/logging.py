"""Structured logging configuration for the search core.

This module standardizes logging across components using ``structlog``. It
produces either JSON (for machines) or a pretty console format (for humans)
and binds a consistent component context so logs stay useful when the host
application aggregates them.

Typical usage
- Call ``configure_logging_from_config(config)`` (or ``configure_logging``) once at startup
- Acquire loggers via ``structlog.get_logger(name)``
"""

import logging
import sys
from typing import Any
import structlog
from structlog.stdlib import LoggerFactory, add_logger_name

from .config import BaseConfig


def configure_logging(
    component_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
    **context: Any
) -> None:
    """Configure structured logging for a component.

    Parameters
    - component_name: Logical identifier bound to each log line
    - log_level: ``DEBUG``, ``INFO``, ``WARNING``, ``ERROR`` (case-insensitive)
    - log_format: ``json`` for production; ``console`` for local dev
    - context: Extra key/value pairs bound to every log line
    """

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_logger_name,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(component=component_name, **context)


def configure_logging_from_config(config: BaseConfig, component_name: str = "search-core") -> None:
    """Configure logging from settings, binding the search core's deployment context.

    Every log line carries ``env`` and, when the config has them, the
    embedding model and note store backend, so logs from several clients can
    be told apart after aggregation.
    """
    context = {"env": config.tm_env}
    embedding_model = getattr(config, "tm_embedding_model", None)
    if embedding_model:
        context["embedding_model"] = embedding_model
    backend = getattr(config, "tm_note_store_backend", None)
    if backend:
        context["note_store_backend"] = backend

    configure_logging(component_name, config.tm_log_level, config.tm_log_format, **context)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_performance(operation: str, duration_ms: float, **kwargs: Any) -> None:
    """Log performance metrics.

    Parameters
    - operation: A stable identifier for the measured unit of work
    - duration_ms: Elapsed time in milliseconds
    - kwargs: Additional dimensions (e.g., source, status)
    """
    logger = get_logger("performance")
    logger.info(
        f"Operation {operation} completed",
        operation=operation,
        duration_ms=duration_ms,
        **kwargs
    )
