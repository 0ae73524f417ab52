"""
Structured logging configuration using structlog.

Logs go to stderr so that reports written to stdout stay machine readable.
The runner and every worker process call setup_logging() with the level from
the run configuration.

Usage:
    from quire.logging_config import setup_logging, get_logger
    setup_logging(log_level="DEBUG", json_logs=False)
    logger = get_logger(__name__)
    logger.debug("fixture.created", name="page", scope="test")
"""

from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(log_level: str = "WARNING", json_logs: bool = False) -> None:
    """Configure structlog with shared processors.

    Args:
        log_level: Standard Python log level string (DEBUG, INFO, WARNING, etc.)
        json_logs: If True, output JSON lines. If False, colored console.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    # Bind to the real stream; test output capture swaps sys.stderr
    handler = logging.StreamHandler(sys.__stderr__)
    handler.setFormatter(formatter)

    quire_logger = logging.getLogger("quire")
    quire_logger.handlers.clear()
    quire_logger.addHandler(handler)
    quire_logger.propagate = False
    quire_logger.setLevel(getattr(logging, log_level.upper(), logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Optional logger name. If None, uses the "quire" logger.

    Returns:
        A bound structlog logger.
    """
    return structlog.get_logger(name or "quire")
