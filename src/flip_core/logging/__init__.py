"""Structured logging for the quote pipeline, poller and settlement."""

from flip_core.logging.setup import COMPONENT_LOGGERS, get_logger, setup_logging

__all__ = ["COMPONENT_LOGGERS", "get_logger", "setup_logging"]
