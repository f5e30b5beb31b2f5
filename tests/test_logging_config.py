"""Tests for structured logging configuration."""

import json
import logging
import os
from unittest.mock import patch

import pytest

from cloudseq.logging_config import JSONFormatter, configure_logging


@pytest.fixture(autouse=True)
def _restore_cloudseq_logger():
    logger = logging.getLogger("cloudseq")
    handlers, level = list(logger.handlers), logger.level
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers = handlers
    logger.setLevel(level)


class TestJSONFormatter:
    def _record(self, **extra):
        record = logging.LogRecord(
            name="cloudseq.progress",
            level=logging.INFO,
            pathname=__file__,
            lineno=10,
            msg="vpc created with ID: %s",
            args=("vpc-1",),
            exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(self._record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "cloudseq.progress"
        assert entry["message"] == "vpc created with ID: vpc-1"
        assert entry["timestamp"].endswith("Z")

    def test_provisioning_extras_included(self):
        entry = json.loads(JSONFormatter().format(self._record(
            step="vpc", resource_id="vpc-1", creation_index=0, event="step_success",
        )))

        assert entry["step"] == "vpc"
        assert entry["resource_id"] == "vpc-1"
        assert entry["creation_index"] == 0
        assert entry["event"] == "step_success"
        assert "attempt" not in entry


class TestConfigureLogging:
    def test_text_console_handler(self):
        logger = configure_logging("debug", "text")

        assert logger.name == "cloudseq"
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_json_console_handler(self):
        logger = configure_logging("INFO", "json")

        assert isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "run.log"
        logger = configure_logging("INFO", "text", str(log_file))

        logging.getLogger("cloudseq.provisioning").info("hello", extra={"event": "test"})
        for handler in logger.handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().splitlines()[-1])
        assert entry["message"] == "hello"
        assert entry["event"] == "test"

    def test_falls_back_to_settings(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "WARNING", "LOG_FORMAT": "json"}):
            logger = configure_logging()

        assert logger.level == logging.WARNING
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_reconfigure_replaces_handlers(self):
        configure_logging("INFO", "text")
        logger = configure_logging("INFO", "text")

        assert len(logger.handlers) == 1
