"""Error handling for the ROM catalog.

This module provides:
- Exception classes for the failure classes of the catalog engine
  (file access, parsing, platform resolution, persistence)
- User-friendly error messages with suggested actions
- A centralized error handling service used by the command line
"""

import json
import sqlite3
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

log = structlog.stdlib.get_logger()


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""
    FILE_SYSTEM = "file_system"
    PARSE = "parse"
    PLATFORM = "platform"
    STORE = "store"
    CONFIGURATION = "configuration"
    NETWORK = "network"
    UNEXPECTED = "unexpected"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(frozen=True)
class UserFriendlyError:
    """User-friendly error representation with suggested actions."""
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    suggested_actions: list[str]
    technical_details: str | None = None
    recoverable: bool = True


def _describe(error: Exception) -> str:
    return f"{type(error).__name__}: {error}"


class CatalogError(Exception):
    """Base exception class for catalog errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNEXPECTED,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        suggested_actions: list[str] | None = None,
        technical_details: str | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.suggested_actions = suggested_actions or []
        self.technical_details = technical_details
        self.recoverable = recoverable

    def to_user_friendly(self) -> UserFriendlyError:
        """Convert to user-friendly error representation."""
        return UserFriendlyError(
            message=self.message,
            category=self.category,
            severity=self.severity,
            suggested_actions=self.suggested_actions,
            technical_details=self.technical_details,
            recoverable=self.recoverable,
        )


class FileSystemError(CatalogError):
    """A file could not be read or written.

    Fatal to the single record being processed; a scan counts it and moves on.
    """

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        path: str | None = None,
        operation: str | None = None,
    ) -> None:
        technical_details = None
        if original_error:
            technical_details = _describe(original_error)
        if path:
            technical_details = f"Path: {path}" + (f"\n{technical_details}" if technical_details else "")

        super().__init__(
            message=message,
            category=ErrorCategory.FILE_SYSTEM,
            severity=ErrorSeverity.ERROR,
            suggested_actions=self._get_suggested_actions(original_error),
            technical_details=technical_details,
            recoverable=True,
        )
        self.original_error = original_error
        self.path = path
        self.operation = operation

    @staticmethod
    def _get_suggested_actions(original_error: Exception | None) -> list[str]:
        """Get suggested actions based on error type."""
        if isinstance(original_error, PermissionError):
            return [
                "Check file/directory permissions",
                "Run the command as a user that can read the collection",
            ]
        if isinstance(original_error, FileNotFoundError):
            return [
                "Verify the path is correct",
                "Check if the file was moved or deleted",
            ]
        return [
            "Check the file path and permissions",
            "Make sure the file is not truncated or still being copied",
        ]


class ParseError(CatalogError):
    """Checksum database or metadata list content is malformed.

    Fatal to the whole import: partial data would misattribute titles.
    """

    def __init__(
        self,
        message: str,
        source: str | None = None,
        line_number: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        technical_details = None
        if source:
            technical_details = f"Source: {source}"
        if line_number is not None:
            technical_details = (technical_details or "") + f"\nLine: {line_number}"
        if original_error:
            technical_details = (technical_details or "") + f"\nError: {_describe(original_error)}"

        super().__init__(
            message=message,
            category=ErrorCategory.PARSE,
            severity=ErrorSeverity.ERROR,
            suggested_actions=[
                "Check that the file is a No-Intro/Redump DAT or an EmulationStation gamelist.xml",
                "Download a fresh copy of the file",
            ],
            technical_details=technical_details,
            recoverable=False,
        )
        self.source = source
        self.line_number = line_number
        self.original_error = original_error


class UnresolvedPlatformError(CatalogError):
    """No platform was given and none could be inferred from the header."""

    def __init__(self, header: str) -> None:
        super().__init__(
            message=f"Cannot detect platform from DAT header {header!r}",
            category=ErrorCategory.PLATFORM,
            severity=ErrorSeverity.ERROR,
            suggested_actions=[
                "Pass --platform with the platform code (e.g. GBA, FC, MD)",
            ],
            technical_details=f"Header: {header}",
            recoverable=False,
        )
        self.header = header


class StoreError(CatalogError):
    """A catalog transaction failed and was rolled back."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        technical_details = None
        if operation:
            technical_details = f"Operation: {operation}"
        if original_error:
            technical_details = (technical_details or "") + f"\nError: {_describe(original_error)}"

        super().__init__(
            message=message,
            category=ErrorCategory.STORE,
            severity=ErrorSeverity.CRITICAL,
            suggested_actions=[
                "Re-run the command; the failed batch was rolled back",
                "Check that the catalog database is writable and not locked",
            ],
            technical_details=technical_details,
            recoverable=True,
        )
        self.operation = operation
        self.original_error = original_error


class ConfigurationError(CatalogError):
    """Exception for configuration-related errors."""

    def __init__(
        self,
        message: str,
        setting: str | None = None,
        current_value: Any = None,
        expected: str | None = None,
    ) -> None:
        suggested_actions = [
            "Check the configuration settings",
            "Reset to default values if needed",
        ]
        if expected:
            suggested_actions.append(f"Expected: {expected}")

        technical_details = None
        if setting:
            technical_details = f"Setting: {setting}"
        if current_value is not None:
            technical_details = (technical_details or "") + f"\nCurrent: {current_value}"

        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.ERROR,
            suggested_actions=suggested_actions,
            technical_details=technical_details,
            recoverable=True,
        )
        self.setting = setting
        self.current_value = current_value
        self.expected = expected


class NetworkError(CatalogError):
    """Exception for network-related errors during cover art fetches."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        suggested_actions = [
            "Check your internet connection",
            "Try again in a few moments",
        ]
        if status_code == 429:
            suggested_actions = ["Increase request_delay in the configuration"]

        technical_details = None
        if original_error:
            technical_details = _describe(original_error)
        if url:
            technical_details = f"URL: {url}" + (f"\n{technical_details}" if technical_details else "")
        if status_code:
            technical_details = f"Status: {status_code}" + (f"\n{technical_details}" if technical_details else "")

        super().__init__(
            message=message,
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.WARNING,
            suggested_actions=suggested_actions,
            technical_details=technical_details,
            recoverable=True,
        )
        self.original_error = original_error
        self.url = url
        self.status_code = status_code


class ErrorHandlingService:
    """Centralized error handling.

    Converts exceptions into the catalog hierarchy, logs them with technical
    details, and keeps a bounded history for the end-of-run summary.
    """

    def __init__(self, max_history_size: int = 100) -> None:
        self._error_history: list[tuple[float, CatalogError]] = []
        self._max_history_size = max_history_size

    def handle_error(
        self,
        error: Exception,
        operation: str,
        component: str,
        context: dict[str, Any] | None = None,
    ) -> UserFriendlyError:
        """Handle an error and return a user-friendly representation.

        Args:
            error: The exception that occurred
            operation: The operation being performed
            component: The component where the error occurred
            context: Additional context information

        Returns:
            User-friendly error representation
        """
        catalog_error = self._convert(error, operation, context)
        self._log_error(catalog_error, operation, component, context)

        self._error_history.append((time.time(), catalog_error))
        if len(self._error_history) > self._max_history_size:
            self._error_history.pop(0)

        return catalog_error.to_user_friendly()

    def _convert(
        self,
        error: Exception,
        operation: str,
        context: dict[str, Any] | None,
    ) -> CatalogError:
        """Convert a standard exception to a CatalogError."""
        import httpx

        if isinstance(error, CatalogError):
            return error

        path = context.get("path") if context else None

        if isinstance(error, sqlite3.Error):
            return StoreError(
                message="The catalog database reported an error.",
                operation=operation,
                original_error=error,
            )
        if isinstance(error, (ET.ParseError, json.JSONDecodeError)):
            return ParseError(
                message="The file could not be parsed.",
                source=path,
                original_error=error,
            )
        if isinstance(error, httpx.HTTPStatusError):
            return NetworkError(
                message=f"HTTP error {error.response.status_code} occurred.",
                original_error=error,
                url=str(error.request.url),
                status_code=error.response.status_code,
            )
        if isinstance(error, httpx.RequestError):
            return NetworkError(
                message="A network error occurred. Please check your connection.",
                original_error=error,
                url=context.get("url") if context else None,
            )
        if isinstance(error, PermissionError):
            return FileSystemError(
                message="Permission denied. You don't have access to this file or directory.",
                original_error=error,
                path=path,
                operation=operation,
            )
        if isinstance(error, FileNotFoundError):
            return FileSystemError(
                message="The file or directory was not found.",
                original_error=error,
                path=path,
                operation=operation,
            )
        if isinstance(error, OSError):
            return FileSystemError(
                message=f"A file system error occurred: {error}",
                original_error=error,
                path=path,
                operation=operation,
            )

        return CatalogError(
            message="An unexpected error occurred.",
            category=ErrorCategory.UNEXPECTED,
            severity=ErrorSeverity.ERROR,
            technical_details=_describe(error),
        )

    def _log_error(
        self,
        error: CatalogError,
        operation: str,
        component: str,
        context: dict[str, Any] | None,
    ) -> None:
        """Log error with full technical details."""
        log_method = log.warning if error.severity == ErrorSeverity.WARNING else log.error
        log_method(
            "Error occurred",
            error_message=error.message,
            category=error.category.value,
            severity=error.severity.value,
            operation=operation,
            component=component,
            technical_details=error.technical_details,
            recoverable=error.recoverable,
            context=context,
        )

    def get_recent_errors(self, count: int = 10) -> list[CatalogError]:
        """Get the most recent errors, oldest first."""
        recent = self._error_history[-count:] if self._error_history else []
        return [error for _, error in recent]

    def get_error_count_by_category(self) -> dict[ErrorCategory, int]:
        counts: dict[ErrorCategory, int] = {}
        for _, error in self._error_history:
            counts[error.category] = counts.get(error.category, 0) + 1
        return counts

    def create_user_message(
        self,
        error: UserFriendlyError,
        include_suggestions: bool = True,
    ) -> str:
        """Create a formatted user message from an error."""
        parts = [error.message]

        if include_suggestions and error.suggested_actions:
            parts.append("\nSuggested actions:")
            for action in error.suggested_actions[:3]:
                parts.append(f"  • {action}")

        return "\n".join(parts)


_error_service: ErrorHandlingService | None = None


def get_error_service() -> ErrorHandlingService:
    """Get the global error handling service instance."""
    global _error_service
    if _error_service is None:
        _error_service = ErrorHandlingService()
    return _error_service


def handle_error(
    error: Exception,
    operation: str,
    component: str,
    context: dict[str, Any] | None = None,
) -> UserFriendlyError:
    """Convenience function to handle errors using the global service."""
    return get_error_service().handle_error(error, operation, component, context)
