"""
Logging utilities for the sync pipeline.

Routes stdlib logging through structlog so Lambda and CLI runs emit the
same structured records.
"""

import logging
import sys
from typing import Any

import structlog


def setup_sync_logger(name: str, level: str = "INFO", json_logs: bool = True) -> structlog.stdlib.BoundLogger:
    """
    Set up structured logging for the sync pipeline.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Whether to output JSON format logs

    Returns:
        Configured structlog logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )

    if json_logs:
        processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    # boto is chatty at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return structlog.get_logger(name)


def get_sync_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance with the given name."""
    return structlog.get_logger(name)


def log_sync_event(logger: Any, event_type: str, **kwargs: Any) -> None:
    """
    Log a pipeline event with structured data.

    Args:
        logger: Structured logger instance
        event_type: Type of event (drain_started, reindex_page_enqueued, etc.)
        **kwargs: Additional event data
    """
    if event_type.endswith("_error") or event_type.endswith("_failed"):
        logger.error(event_type, **kwargs)
    elif event_type.endswith("_warning") or event_type.endswith("_superseded"):
        logger.warning(event_type, **kwargs)
    else:
        logger.info(event_type, **kwargs)
