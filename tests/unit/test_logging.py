"""Unit tests for structlog configuration."""

from __future__ import annotations

import json
import logging

import structlog

from storyrag.utils.logging import configure_logging


def teardown_function() -> None:
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


def test_json_output_renders_json_lines(capsys) -> None:
    configure_logging(log_level="DEBUG", json_output=True)
    structlog.get_logger(logger_name="test").info("chunk_stored", chunk_count=3)

    line = capsys.readouterr().err.strip().splitlines()[-1]
    payload = json.loads(line)
    assert payload["event"] == "chunk_stored"
    assert payload["chunk_count"] == 3
    assert payload["level"] == "info"


def test_level_filters_lower_messages(capsys) -> None:
    configure_logging(log_level="WARNING", json_output=True)
    log = structlog.get_logger(logger_name="test")
    log.info("hidden_event")
    log.warning("visible_event")

    err = capsys.readouterr().err
    assert "hidden_event" not in err
    assert "visible_event" in err


def test_stdlib_logging_routed_through_root_handler() -> None:
    configure_logging(log_level="INFO", json_output=True)
    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)
    assert root.level == logging.INFO
