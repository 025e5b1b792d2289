"""Tests for the catalog error hierarchy and ErrorHandlingService."""

import json
import sqlite3
import xml.etree.ElementTree as ET
from unittest.mock import patch

import httpx
import pytest
from hypothesis import given, strategies as st

from romcat.services.errors import (
    CatalogError,
    ErrorCategory,
    ErrorHandlingService,
    ErrorSeverity,
    FileSystemError,
    NetworkError,
    ParseError,
    StoreError,
    UnresolvedPlatformError,
    get_error_service,
)


def _xml_error() -> ET.ParseError:
    try:
        ET.fromstring("<datafile>")
    except ET.ParseError as e:
        return e
    raise AssertionError("expected a parse error")


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://thumbnails.example/boxart.png")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class TestErrorConversion:
    """Standard exceptions map onto the catalog hierarchy."""

    @pytest.fixture
    def service(self) -> ErrorHandlingService:
        return ErrorHandlingService()

    @pytest.mark.parametrize(
        ("error", "category"),
        [
            (sqlite3.OperationalError("database is locked"), ErrorCategory.STORE),
            (_xml_error(), ErrorCategory.PARSE),
            (json.JSONDecodeError("Expecting value", "", 0), ErrorCategory.PARSE),
            (_status_error(503), ErrorCategory.NETWORK),
            (httpx.ConnectError("refused"), ErrorCategory.NETWORK),
            (PermissionError("denied"), ErrorCategory.FILE_SYSTEM),
            (FileNotFoundError("missing"), ErrorCategory.FILE_SYSTEM),
            (IsADirectoryError("is a directory"), ErrorCategory.FILE_SYSTEM),
            (RuntimeError("boom"), ErrorCategory.UNEXPECTED),
        ],
    )
    def test_category(self, service: ErrorHandlingService, error: Exception, category: ErrorCategory) -> None:
        with patch("romcat.services.errors.log"):
            friendly = service.handle_error(error, operation="scan", component="test")

        assert friendly.category == category
        assert friendly.message

    def test_catalog_errors_pass_through(self, service: ErrorHandlingService) -> None:
        original = UnresolvedPlatformError("Some Unknown Console")

        with patch("romcat.services.errors.log"):
            friendly = service.handle_error(original, operation="import-dat", component="test")

        assert friendly.category == ErrorCategory.PLATFORM
        assert "Some Unknown Console" in friendly.message
        assert any("--platform" in action for action in friendly.suggested_actions)
        assert service.get_recent_errors() == [original]

    def test_path_context_is_kept(self, service: ErrorHandlingService) -> None:
        with patch("romcat.services.errors.log"):
            friendly = service.handle_error(
                PermissionError("denied"), operation="scan", component="test", context={"path": "/roms/gba"}
            )

        assert "/roms/gba" in (friendly.technical_details or "")
        assert "Check file/directory permissions" in friendly.suggested_actions

    def test_status_error_records_status(self, service: ErrorHandlingService) -> None:
        with patch("romcat.services.errors.log"):
            service.handle_error(_status_error(429), operation="fetch-covers", component="test")

        error = service.get_recent_errors(1)[0]
        assert isinstance(error, NetworkError)
        assert error.status_code == 429
        assert error.suggested_actions == ["Increase request_delay in the configuration"]


class TestErrorLogging:
    """Technical details go to the log, not the user message."""

    def test_warning_severity_logs_warning(self) -> None:
        service = ErrorHandlingService()

        with patch("romcat.services.errors.log") as mock_logger:
            service.handle_error(NetworkError("offline"), operation="fetch-covers", component="covers")

        assert mock_logger.warning.called
        assert not mock_logger.error.called

    def test_error_logs_technical_details(self) -> None:
        service = ErrorHandlingService()
        error = StoreError("Catalog transaction failed", operation="scan", original_error=sqlite3.OperationalError("disk I/O error"))

        with patch("romcat.services.errors.log") as mock_logger:
            service.handle_error(error, operation="scan", component="store")

        kwargs = mock_logger.error.call_args.kwargs
        assert kwargs["category"] == "store"
        assert kwargs["severity"] == "critical"
        assert "disk I/O error" in kwargs["technical_details"]
        assert kwargs["operation"] == "scan"


class TestErrorHistory:
    """Tests for bounded error history."""

    @given(count=st.integers(min_value=0, max_value=30), max_size=st.integers(min_value=1, max_value=10))
    def test_history_is_bounded(self, count: int, max_size: int) -> None:
        service = ErrorHandlingService(max_history_size=max_size)

        with patch("romcat.services.errors.log"):
            for i in range(count):
                service.handle_error(RuntimeError(f"error {i}"), operation="op", component="test")

        recent = service.get_recent_errors(count=100)
        assert len(recent) == min(count, max_size)
        if recent:
            assert f"error {count - 1}" in (recent[-1].technical_details or "")

    def test_count_by_category(self) -> None:
        service = ErrorHandlingService()

        with patch("romcat.services.errors.log"):
            service.handle_error(ParseError("bad DAT"), operation="import-dat", component="test")
            service.handle_error(ParseError("bad gamelist"), operation="import-gamelist", component="test")
            service.handle_error(FileSystemError("unreadable"), operation="scan", component="test")

        counts = service.get_error_count_by_category()
        assert counts == {ErrorCategory.PARSE: 2, ErrorCategory.FILE_SYSTEM: 1}


class TestUserMessages:
    """Tests for user-facing messages."""

    def test_message_with_suggestions(self) -> None:
        service = ErrorHandlingService()
        friendly = ParseError("Malformed DAT XML", source="gba.dat", line_number=3).to_user_friendly()

        message = service.create_user_message(friendly)

        assert message.startswith("Malformed DAT XML")
        assert "Suggested actions:" in message
        assert "gba.dat" not in message

    def test_message_without_suggestions(self) -> None:
        service = ErrorHandlingService()
        friendly = CatalogError("Something failed", suggested_actions=["a", "b"]).to_user_friendly()

        assert service.create_user_message(friendly, include_suggestions=False) == "Something failed"

    def test_suggestions_are_capped(self) -> None:
        friendly = CatalogError("x", suggested_actions=["1", "2", "3", "4"]).to_user_friendly()

        message = ErrorHandlingService().create_user_message(friendly)

        assert "• 3" in message
        assert "• 4" not in message

    def test_parse_error_details(self) -> None:
        error = ParseError("Unterminated 'game' block in DAT", source="x.dat", line_number=12)

        assert error.severity == ErrorSeverity.ERROR
        assert not error.recoverable
        assert "Source: x.dat" in (error.technical_details or "")
        assert "Line: 12" in (error.technical_details or "")

    def test_global_service_is_shared(self) -> None:
        assert get_error_service() is get_error_service()
