"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from relay.app.core.logging import (
    JSONFormatter,
    ContextFilter,
    get_logger,
    get_logging_config,
    get_log_context,
    setup_logging,
)


def _record(msg="Test message", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


@pytest.fixture
def restore_logging():
    """Put the root and relay loggers back the way the test found them."""
    root = logging.getLogger()
    relay = logging.getLogger("relay")
    saved = (
        root.handlers[:], root.level,
        relay.handlers[:], relay.level, relay.propagate,
    )
    yield
    root.handlers[:], root.level = saved[0], saved[1]
    relay.handlers[:], relay.level, relay.propagate = saved[2], saved[3], saved[4]


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        formatter = JSONFormatter()

        data = json.loads(formatter.format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_context(self):
        """Test JSON formatting with retry context fields."""
        formatter = JSONFormatter()
        record = _record("Retry 1/3 after network error")
        record.tenant_id = "acct-1"
        record.attempt = 1
        record.error_type = "network"
        record.delay_ms = 1000.0

        data = json.loads(formatter.format(record))

        assert data["tenant_id"] == "acct-1"
        assert data["attempt"] == 1
        assert data["error_type"] == "network"
        assert data["delay_ms"] == 1000.0
        assert "extra" not in data

    def test_unset_context_fields_are_omitted(self):
        formatter = JSONFormatter()
        record = _record()
        ContextFilter().filter(record)

        data = json.loads(formatter.format(record))

        assert "tenant_id" not in data
        assert "attempt" not in data

    def test_json_format_with_extra_fields(self):
        formatter = JSONFormatter()
        record = _record("Custom event")
        record.blog = "staff"
        record.batch_size = 42

        data = json.loads(formatter.format(record))

        assert data["extra"]["blog"] == "staff"
        assert data["extra"]["batch_size"] == 42

    def test_json_format_with_exception(self):
        formatter = JSONFormatter()
        try:
            raise ConnectionResetError("peer reset")
        except ConnectionResetError:
            record = _record("Attempt failed", logging.ERROR, sys.exc_info())

        data = json.loads(formatter.format(record))

        exception_text = "".join(data["exception"])
        assert "ConnectionResetError" in exception_text
        assert "peer reset" in exception_text

    def test_json_format_unicode(self):
        formatter = JSONFormatter()

        data = json.loads(formatter.format(_record("Blog: café ✓")))

        assert data["message"] == "Blog: café ✓"


class TestContextFilter:
    """Test context filter for adding default fields."""

    def test_adds_default_fields(self):
        record = _record()

        assert ContextFilter().filter(record) is True
        for field in ContextFilter.CONTEXT_DEFAULTS:
            assert hasattr(record, field)
        assert record.tenant_id is None

    def test_preserves_existing_values(self):
        record = _record()
        record.tenant_id = "acct-9"
        record.attempt = 3

        ContextFilter().filter(record)

        assert record.tenant_id == "acct-9"
        assert record.attempt == 3


class TestGetLoggingConfig:
    """Test logging configuration generation."""

    def test_default_text_format(self):
        with patch("relay.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"

            config = get_logging_config()

        assert "standard" in config["formatters"]
        assert "structured" in config["formatters"]
        assert "json" not in config["formatters"]
        assert config["handlers"]["console"]["formatter"] == "standard"

    def test_structured_format(self):
        with patch("relay.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "structured"
            mock_settings.log_level = "DEBUG"

            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "structured"
        assert config["handlers"]["console"]["level"] == "DEBUG"
        assert "tenant_id=%(tenant_id)s" in config["formatters"]["structured"]["format"]

    def test_json_format(self):
        with patch("relay.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "JSON"
            mock_settings.log_level = "warning"

            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["handlers"]["console"]["level"] == "WARNING"

    def test_relay_logger_and_context_filter(self):
        config = get_logging_config()

        assert "relay" in config["loggers"]
        assert config["loggers"]["relay"]["propagate"] is False
        assert "context" in config["handlers"]["console"]["filters"]


class TestGetLogger:
    """Test get_logger function."""

    def test_get_logger_default_name(self):
        assert get_logger().name == "relay"

    def test_get_logger_module_name(self):
        assert get_logger("relay.app.resilience.retry").name == "relay.app.resilience.retry"


class TestGetLogContext:
    """Test get_log_context helper function."""

    def test_basic_context(self):
        context = get_log_context(tenant_id="acct-1", attempt=2, error_type="rate_limit")

        assert context == {"tenant_id": "acct-1", "attempt": 2, "error_type": "rate_limit"}

    def test_context_filters_none(self):
        context = get_log_context(tenant_id=None, operation="execute_batch", delay_ms=0.0)

        assert "tenant_id" not in context
        assert context["operation"] == "execute_batch"
        # zero is a real value
        assert context["delay_ms"] == 0.0

    def test_context_with_extra(self):
        context = get_log_context(tenant_id="acct-1", status_code=503, blog="staff")

        assert context["status_code"] == 503
        assert context["blog"] == "staff"


class TestIntegration:
    """Integration tests for logging system."""

    def test_json_logging_output(self, capsys, restore_logging):
        with patch("relay.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "INFO"

            setup_logging()

        get_logger("relay.integration").warning(
            "Retry 1/3 after rate_limit error",
            extra=get_log_context(tenant_id="acct-1", attempt=1, error_type="rate_limit"),
        )

        data = json.loads(capsys.readouterr().out.strip())

        assert data["level"] == "WARNING"
        assert data["logger"] == "relay.integration"
        assert data["tenant_id"] == "acct-1"
        assert data["attempt"] == 1
        assert data["error_type"] == "rate_limit"
        assert logging.getLogger("httpx").level == logging.WARNING
