"""Tests for structured logging setup."""

from __future__ import annotations

import json
import logging

import structlog

from flip_core.logging import COMPONENT_LOGGERS, get_logger, setup_logging


class TestSetupLogging:
    def test_json_format(self, capsys):
        setup_logging(level="INFO", log_format="json")
        logger = get_logger("test_json")
        logger.info("quote_cached", pair="base:0xabc")

        captured = capsys.readouterr()
        line = json.loads(captured.err.strip())
        assert line["event"] == "quote_cached"
        assert line["pair"] == "base:0xabc"
        assert line["level"] == "info"
        assert line["logger"] == "test_json"
        assert "timestamp" in line

    def test_console_format(self, capsys):
        setup_logging(level="INFO", log_format="console")
        logger = get_logger("test_console")
        logger.info("hello console", token_id="degen")

        captured = capsys.readouterr()
        assert "hello console" in captured.err
        assert "degen" in captured.err

    def test_log_level_filtering(self, capsys):
        setup_logging(level="WARNING", log_format="json")
        logger = get_logger("test_level")
        logger.info("should be hidden")
        logger.warning("should appear")

        captured = capsys.readouterr()
        assert "should be hidden" not in captured.err
        assert "should appear" in captured.err

    def test_get_logger_with_context(self, capsys):
        setup_logging(level="INFO", log_format="json")
        logger = get_logger("test_ctx", room_id="duel_1", user_id="u1")
        logger.info("context test")

        captured = capsys.readouterr()
        line = json.loads(captured.err.strip())
        assert line["room_id"] == "duel_1"
        assert line["user_id"] == "u1"

    def test_stdlib_records_share_renderer(self, capsys):
        setup_logging(level="INFO", log_format="json")
        logging.getLogger("uvicorn.error").info("plain stdlib")

        captured = capsys.readouterr()
        line = json.loads(captured.err.strip())
        assert line["event"] == "plain stdlib"
        assert line["level"] == "info"

    def test_httpx_quieted(self):
        setup_logging(level="DEBUG", log_format="json")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_component_levels(self, capsys):
        setup_logging(
            level="WARNING",
            log_format="json",
            component_levels={"quote_coalescer": "debug"},
        )
        get_logger("quote_coalescer").debug("batch_flushed", size=3)
        get_logger("pair_resolver").info("pair_resolved")

        captured = capsys.readouterr()
        line = json.loads(captured.err.strip())
        assert line["event"] == "batch_flushed"
        assert line["logger"] == "quote_coalescer"

    def test_component_levels_reset_on_reconfigure(self):
        setup_logging(level="INFO", component_levels={"pair_resolver": "ERROR"})
        setup_logging(level="INFO")
        for name in COMPONENT_LOGGERS:
            assert logging.getLogger(name).level == logging.NOTSET

    def test_contextvars_binding(self, capsys):
        setup_logging(level="INFO", log_format="json")
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id="abc123")

        logger = get_logger("test_ctxvars")
        logger.info("with context var")

        captured = capsys.readouterr()
        line = json.loads(captured.err.strip())
        assert line["request_id"] == "abc123"

        structlog.contextvars.clear_contextvars()
