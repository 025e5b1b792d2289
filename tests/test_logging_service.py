"""Tests for the logging service."""

import json
import os
from io import StringIO
from pathlib import Path
from unittest.mock import patch

from hypothesis import given, settings, strategies as st

from romcat.services.logging import LoggingService, setup_logging

RESERVED_KEYS = {"event", "level", "logger", "timestamp", "exception", "exc_info", "stack_info", "positional_args"}

context_keys = st.text(min_size=1, max_size=20).filter(lambda x: x.isidentifier() and x not in RESERVED_KEYS)
context_values = st.one_of(
    st.text(max_size=100),
    st.integers(min_value=-(2**53), max_value=2**53),
    st.booleans(),
)


def _json_lines(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.strip()]


class TestLoggingService:
    """Test cases for LoggingService."""

    def test_development_logging_format(self) -> None:
        """Development logging is human-readable on stderr."""
        with patch.dict(os.environ, {"ROMCAT_ENV": "development"}):
            with patch("sys.stderr", new_callable=StringIO) as mock_stderr:
                service = LoggingService(log_level="INFO")
                service.configure()

                service.get_logger("test").info("test message", key="value")
                output = mock_stderr.getvalue()

        assert "test message" in output
        assert "key=value" in output
        assert "[    INFO]" in output
        assert not output.strip().startswith("{")

    def test_production_logging_format(self) -> None:
        """Production logging writes one JSON object per event."""
        with patch.dict(os.environ, {"ROMCAT_ENV": "production"}):
            with patch("sys.stderr", new_callable=StringIO) as mock_stderr:
                service = LoggingService(log_level="INFO")
                service.configure()

                service.get_logger("test").info("test message", key="value")
                output = mock_stderr.getvalue()

        parsed = _json_lines(output)[0]
        assert parsed["event"] == "test message"
        assert parsed["key"] == "value"
        assert parsed["level"] == "info"
        assert "timestamp" in parsed

    def test_level_filtering(self) -> None:
        with patch.dict(os.environ, {"ROMCAT_ENV": "production"}):
            with patch("sys.stderr", new_callable=StringIO) as mock_stderr:
                service = LoggingService(log_level="WARNING")
                service.configure()

                logger = service.get_logger("test")
                logger.info("hidden")
                logger.warning("shown")
                output = mock_stderr.getvalue()

        events = [line["event"] for line in _json_lines(output)]
        assert events == ["shown"]

    def test_quiet_writes_nothing_to_console(self) -> None:
        """Quiet mode keeps the console clean for JSON command output."""
        with patch("sys.stderr", new_callable=StringIO) as mock_stderr:
            with patch("sys.stdout", new_callable=StringIO) as mock_stdout:
                service = LoggingService(log_level="DEBUG", quiet=True)
                service.configure()

                service.get_logger("test").error("silent")

        assert mock_stderr.getvalue() == ""
        assert mock_stdout.getvalue() == ""

    def test_file_logging_setup(self, tmp_path: Path) -> None:
        """Log files are JSON even in development."""
        with patch.dict(os.environ, {"ROMCAT_ENV": "development"}):
            service = LoggingService(log_level="INFO", log_dir=tmp_path / "logs", quiet=True)
            service.configure()

            service.get_logger("test").info("test file message", data="test")

        catalog_log = tmp_path / "logs" / "catalog.log"
        errors_log = tmp_path / "logs" / "errors.log"
        assert catalog_log.exists()
        assert errors_log.exists()

        parsed = _json_lines(catalog_log.read_text())[0]
        assert parsed["event"] == "test file message"
        assert parsed["data"] == "test"
        assert errors_log.read_text() == ""

    def test_error_file_logging(self, tmp_path: Path) -> None:
        """Errors land in both files."""
        service = LoggingService(log_level="DEBUG", log_dir=tmp_path, quiet=True)
        service.configure()

        service.get_logger("test").error("test error message", error_code=500)

        parsed = _json_lines((tmp_path / "errors.log").read_text())[0]
        assert parsed["event"] == "test error message"
        assert parsed["error_code"] == 500
        assert parsed["level"] == "error"
        assert "test error message" in (tmp_path / "catalog.log").read_text()


class TestStructuredLoggingProperties:
    """Property-based tests for structured logging consistency."""

    @given(
        log_level=st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
        logger_name=st.text(min_size=1, max_size=30).filter(lambda x: x.isidentifier()),
        message=st.text(min_size=1, max_size=100),
        context_data=st.dictionaries(keys=context_keys, values=context_values, max_size=5),
    )
    @settings(max_examples=50)
    def test_structured_logging_consistency(
        self,
        log_level: str,
        logger_name: str,
        message: str,
        context_data: dict[str, str | int | bool],
    ) -> None:
        """Every event carries level, logger, timestamp and its context unchanged."""
        with patch.dict(os.environ, {"ROMCAT_ENV": "production"}):
            with patch("sys.stderr", new_callable=StringIO) as mock_stderr:
                service = LoggingService(log_level="DEBUG")
                service.configure()

                logger = service.get_logger(logger_name)
                getattr(logger, log_level.lower())(message, **context_data)
                output = mock_stderr.getvalue()

        parsed = _json_lines(output)[0]
        assert parsed["event"] == message
        assert parsed["level"] == log_level.lower()
        assert parsed["logger"] == logger_name
        assert "T" in parsed["timestamp"] and parsed["timestamp"].endswith("Z")
        for key, value in context_data.items():
            assert parsed[key] == value

    def test_exception_details_are_rendered(self) -> None:
        with patch.dict(os.environ, {"ROMCAT_ENV": "production"}):
            with patch("sys.stderr", new_callable=StringIO) as mock_stderr:
                service = LoggingService(log_level="DEBUG")
                service.configure()

                try:
                    raise ValueError("bad header")
                except ValueError:
                    service.get_logger("test").error("Import failed", exc_info=True, source="x.dat")
                output = mock_stderr.getvalue()

        parsed = _json_lines(output)[0]
        assert parsed["source"] == "x.dat"
        assert "Traceback" in parsed["exception"]
        assert "ValueError: bad header" in parsed["exception"]


def test_setup_logging_function(tmp_path: Path) -> None:
    """Test the setup_logging convenience function."""
    with patch.dict(os.environ, {}):
        service = setup_logging(log_level="debug", log_dir=tmp_path, environment="production", quiet=True)

        assert isinstance(service, LoggingService)
        assert service.log_level == "DEBUG"
        assert os.environ["ROMCAT_ENV"] == "production"

        service.get_logger("test_setup").info("setup test", component="test")

    parsed = _json_lines((tmp_path / "catalog.log").read_text())[0]
    assert parsed["event"] == "setup test"
    assert parsed["component"] == "test"
