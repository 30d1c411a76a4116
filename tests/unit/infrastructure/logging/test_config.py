"""Tests for infrastructure.logging.config module."""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from src.infrastructure.logging.config import (
    ContextInjectorFilter,
    NamespacePrefixFilter,
    SensitiveDataFilter,
    SimpleJsonFormatter,
    build_logging_config,
    configure_logging,
)
from src.infrastructure.logging.context import clear_context, use_context

pytestmark = pytest.mark.unit


def _record(msg="message", args=(), name="src.backtest_cache.store"):
    return logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=msg,
        args=args,
        exc_info=None,
    )


class TestSensitiveDataFilter:
    """Tests for SensitiveDataFilter."""

    def setup_method(self):
        self.filter = SensitiveDataFilter()

    def test_redacts_database_url_password(self):
        """Passwords embedded in database URLs are masked."""
        record = _record("Connecting to postgresql://cache:hunter2@db:5432/results")
        self.filter.filter(record)
        assert "hunter2" not in record.msg
        assert "postgresql://cache:***@db:5432/results" in record.msg

    def test_redacts_password_pairs_in_args(self):
        """Key/value secrets in %-args are masked."""
        record = _record("Config: %s", ("password=secret123",))
        self.filter.filter(record)
        assert "secret123" not in record.getMessage()

    def test_preserves_non_sensitive_data(self):
        """Ordinary messages are untouched."""
        record = _record("Cached %s in %s tier", ("abc", "temporary"))
        self.filter.filter(record)
        assert record.getMessage() == "Cached abc in temporary tier"


class TestNamespacePrefixFilter:
    """Tests for NamespacePrefixFilter."""

    def test_package_loggers_renamed_once(self):
        """src.* loggers move under bcache. and stay there on a second pass."""
        record = _record()
        NamespacePrefixFilter().filter(record)
        NamespacePrefixFilter().filter(record)
        assert record.name == "bcache.backtest_cache.store"

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("cli.commands.cache", "bcache.cli.commands.cache"),
            ("sqlalchemy.engine.Engine", "sqlalchemy.engine.Engine"),
        ],
    )
    def test_cli_prefixed_third_party_untouched(self, name, expected):
        record = _record(name=name)
        NamespacePrefixFilter().filter(record)
        assert record.name == expected


class TestContextInjectorFilter:
    """Tests for ContextInjectorFilter."""

    def teardown_method(self):
        clear_context()

    def test_injects_context_fields(self):
        """Context values appear as record attributes."""
        record = _record()
        with use_context(fingerprint="f" * 64, sweep_id="s1"):
            ContextInjectorFilter().filter(record)
        assert record.fingerprint == "f" * 64
        assert record.sweep_id == "s1"

    def test_does_not_override_reserved_fields(self):
        """Context cannot clobber built-in record fields."""
        record = _record(msg="original")
        with use_context(msg="hijacked"):
            ContextInjectorFilter().filter(record)
        assert record.msg == "original"


class TestSimpleJsonFormatter:
    """Tests for SimpleJsonFormatter."""

    def test_produces_valid_json_with_extras(self):
        """Structured context ends up in the JSON document."""
        record = _record("Evicted %d entries", (3,))
        record.sweep_id = "s1"

        payload = json.loads(SimpleJsonFormatter().format(record))

        assert payload["message"] == "Evicted 3 entries"
        assert payload["level"] == "INFO"
        assert payload["sweep_id"] == "s1"
        assert payload["timestamp"].endswith("+00:00")
        assert "thread" in payload

    def test_includes_exception_info(self):
        """Exceptions are rendered into the payload."""
        try:
            raise ValueError("bad artifact")
        except ValueError:
            record = logging.LogRecord(
                "test", logging.ERROR, "", 0, "failed", (), sys.exc_info()
            )
        payload = json.loads(SimpleJsonFormatter().format(record))
        assert "bad artifact" in payload["exception"]


class TestBuildLoggingConfig:
    """Tests for build_logging_config function."""

    def test_text_formatter_by_default(self):
        config = build_logging_config("debug")
        assert config["root"]["level"] == "DEBUG"
        assert "format" in config["formatters"]["default"]
        assert config["handlers"]["console"]["filters"] == ["redact", "ns", "ctx"]

    def test_json_formatter_when_enabled(self):
        config = build_logging_config(json=True)
        assert config["formatters"]["default"]["()"].endswith("SimpleJsonFormatter")

    @pytest.mark.parametrize(
        "config_values", [{"LOG_LEVEL": "warning", "LOG_SQLALCHEMY_LEVEL": "INFO"}]
    )
    def test_levels_from_configuration(self, config_values):
        config = build_logging_config()
        assert config["root"]["level"] == "WARNING"
        assert config["loggers"]["sqlalchemy.engine"]["level"] == "INFO"


class TestConfigureLogging:
    """Tests for configure_logging function."""

    @pytest.mark.parametrize("config_values", [{"LOG_JSON": "true"}])
    def test_reads_json_flag_from_configuration(self, config_values):
        with patch("logging.config.dictConfig") as mock_dict:
            configure_logging("INFO")
        applied = mock_dict.call_args[0][0]
        assert applied["formatters"]["default"]["()"].endswith("SimpleJsonFormatter")

    def test_explicit_flag_wins(self):
        with patch("logging.config.dictConfig") as mock_dict:
            configure_logging("INFO", use_json=False)
        applied = mock_dict.call_args[0][0]
        assert "format" in applied["formatters"]["default"]
