"""Tests for centralized logging configuration."""

import json
import logging
import os
from unittest.mock import patch

from gatedci.logging_config import JSONFormatter, configure_logging


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_defaults_to_warning_text(self):
        with patch.dict(os.environ, {}, clear=True):
            configure_logging()
        logger = logging.getLogger("gatedci")
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_log_level_from_env(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "DEBUG"}, clear=True):
            configure_logging()
        assert logging.getLogger("gatedci").level == logging.DEBUG

    def test_level_override_takes_precedence(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "ERROR"}, clear=True):
            configure_logging(level_override="DEBUG")
        assert logging.getLogger("gatedci").level == logging.DEBUG

    def test_invalid_level_falls_back_to_warning(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "NOTREAL"}, clear=True):
            configure_logging()
        assert logging.getLogger("gatedci").level == logging.WARNING

    def test_json_format(self):
        with patch.dict(os.environ, {"LOG_FORMAT": "json"}, clear=True):
            configure_logging()
        assert isinstance(logging.getLogger("gatedci").handlers[0].formatter, JSONFormatter)

    def test_repeated_calls_do_not_stack_handlers(self):
        with patch.dict(os.environ, {}, clear=True):
            configure_logging()
            configure_logging()
        assert len(logging.getLogger("gatedci").handlers) == 1


class TestJSONFormatter:
    def test_fields(self):
        record = logging.LogRecord("gatedci.runner", logging.INFO, __file__, 1, "step %s", ("build",), None)
        payload = json.loads(JSONFormatter().format(record))

        assert payload["level"] == "INFO"
        assert payload["logger"] == "gatedci.runner"
        assert payload["message"] == "step build"
        assert "exception" not in payload
