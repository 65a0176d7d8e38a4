"""Structured logging for flip_core.

Every component logs through a named structlog logger (``quote_coalescer``,
``pair_resolver``, ``price_orchestrator`` ...). Records from stdlib
loggers such as uvicorn and alembic go through the same renderer, so one
JSON line format covers the whole process.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping

import structlog

# Component loggers, by the name each module passes to get_logger.
COMPONENT_LOGGERS = (
    "api",
    "duel_settlement",
    "geckoterminal",
    "kv_store",
    "pair_resolver",
    "price_orchestrator",
    "price_service",
    "quote_coalescer",
    "retry",
    "round_settlement",
    "settlement_engine",
    "token_registry",
)

# Log every upstream request otherwise.
_QUIET_LOGGERS = ("httpx", "httpcore")


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    component_levels: Mapping[str, str] | None = None,
) -> None:
    """Configure structlog and route stdlib logging through the same renderer.

    Args:
        level: Root level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: "json" for production, "console" for development.
        component_levels: Per-logger overrides, e.g. ``{"quote_coalescer": "DEBUG"}``
            to trace batching without turning on DEBUG everywhere.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "console":
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

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
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_level(level))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    for name in COMPONENT_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)
    for name, component_level in (component_levels or {}).items():
        logging.getLogger(name).setLevel(_level(component_level))


def get_logger(name: str | None = None, **initial_context) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, optionally pre-bound with context."""
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
