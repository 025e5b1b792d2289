"""Data models for the ROM catalog."""

from .catalog import (
    CatalogEntry,
    ChecksumRecord,
    CollectionStats,
    CoverFetchResult,
    EnrichResult,
    FileRecord,
    GameRecord,
    MetadataEntry,
    MetadataImportResult,
    PlatformStats,
    ScanResult,
    SearchPage,
)
from .config import AppConfig

__all__ = [
    "AppConfig",
    "CatalogEntry",
    "ChecksumRecord",
    "CollectionStats",
    "CoverFetchResult",
    "EnrichResult",
    "FileRecord",
    "GameRecord",
    "MetadataEntry",
    "MetadataImportResult",
    "PlatformStats",
    "ScanResult",
    "SearchPage",
]
