"""Service layer: catalog engine, parsers and external integrations."""

from .catalog_store import CatalogStore
from .checksum_db import ChecksumDatabase, Dialect, load_checksum_database, parse_checksum_database
from .config import ConfigurationService, ValidationResult
from .container import ContainerInspection, ContainerInspector, ContainerMode, InspectedEntry
from .covers import CoverArtService
from .errors import (
    CatalogError,
    ConfigurationError,
    ErrorCategory,
    ErrorHandlingService,
    ErrorSeverity,
    FileSystemError,
    NetworkError,
    ParseError,
    StoreError,
    UnresolvedPlatformError,
    UserFriendlyError,
    get_error_service,
    handle_error,
)
from .fingerprint import Fingerprint, fingerprint_file, fingerprint_stream
from .gamedb import ReferenceCatalog, ReferenceEntry
from .gamelist import load_metadata_list, parse_metadata_list, render_metadata_list
from .http_client import HttpClientService
from .platforms import PLATFORMS, UNKNOWN_PLATFORM, PlatformDefinition, classify_path
from .reconciler import Reconciler
from .scanner import ScanService

__all__ = [
    "CatalogError",
    "CatalogStore",
    "ChecksumDatabase",
    "ConfigurationError",
    "ConfigurationService",
    "ContainerInspection",
    "ContainerInspector",
    "ContainerMode",
    "CoverArtService",
    "Dialect",
    "ErrorCategory",
    "ErrorHandlingService",
    "ErrorSeverity",
    "FileSystemError",
    "Fingerprint",
    "HttpClientService",
    "InspectedEntry",
    "NetworkError",
    "PLATFORMS",
    "ParseError",
    "PlatformDefinition",
    "Reconciler",
    "ReferenceCatalog",
    "ReferenceEntry",
    "ScanService",
    "StoreError",
    "UNKNOWN_PLATFORM",
    "UnresolvedPlatformError",
    "UserFriendlyError",
    "ValidationResult",
    "classify_path",
    "fingerprint_file",
    "fingerprint_stream",
    "get_error_service",
    "handle_error",
    "load_checksum_database",
    "load_metadata_list",
    "parse_checksum_database",
    "parse_metadata_list",
    "render_metadata_list",
]
