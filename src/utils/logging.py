"""Structured logging configuration using structlog."""

import logging
import sys
from typing import Any, Optional

import structlog

# Third-party loggers that drown out our own output at DEBUG level
NOISY_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3", "aiohttp.access")


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    correlation_id: Optional[str] = None,
) -> structlog.BoundLogger:
    """Configure structured logging.

    Args:
        log_level: Log level (DEBUG, INFO, WARN, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
        correlation_id: Optional correlation ID for this run, bound as ``pid``
            on every logger through contextvars

    Returns:
        Configured logger instance
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    if correlation_id:
        bind_run_context(pid=correlation_id)

    return structlog.get_logger()


def bind_run_context(**values: Any) -> None:
    """Attach values to every log line of the current run.

    Bound through contextvars, so loggers created by components with
    ``get_logger`` carry them too, including inside asyncio tasks and
    ``asyncio.to_thread`` workers started afterwards.
    """
    structlog.contextvars.bind_contextvars(**{k: v for k, v in values.items() if v is not None})


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name

    Returns:
        Logger instance
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
