"""Catalog data models: persisted records and transient parser output."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class FileRecord:
    """One scanned unit of identification.

    A plain file or a self-identifying container has an empty ``entry``;
    an entry inside a carrier container has the inner entry name.
    """
    path: str
    entry: str
    filename: str
    size: int
    crc32: str
    md5: str
    sha1: str
    platform: str
    game_id: int | None = None
    id: int | None = None

    @property
    def identity(self) -> tuple[str, str]:
        return (self.path, self.entry)


@dataclass(frozen=True)
class GameRecord:
    """A canonical game identity."""
    id: int
    platform: str
    title_en: str = ""
    title_native: str = ""
    description: str = ""
    developer: str = ""
    publisher: str = ""
    release_date: str = ""
    genre: str = ""
    players: str = ""
    rating: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ChecksumRecord:
    """One ROM entry from a checksum database."""
    title: str
    platform: str
    crc32: str = ""
    md5: str = ""
    sha1: str = ""
    size: int = 0


@dataclass(frozen=True)
class MetadataEntry:
    """One game from a metadata list, keyed by source filename."""
    filename: str
    name: str
    description: str = ""
    release_date: str = ""
    developer: str = ""
    publisher: str = ""
    genre: str = ""
    players: str = ""
    rating: str = ""
    thumbnail: str = ""
    image: str = ""
    marquee: str = ""


@dataclass(frozen=True)
class CatalogEntry:
    """A file record joined with its linked game, if any."""
    file: FileRecord
    game: GameRecord | None = None

    @property
    def title(self) -> str:
        """Best display title: native, then English, then the filename."""
        if self.game is not None:
            if self.game.title_native:
                return self.game.title_native
            if self.game.title_en:
                return self.game.title_en
        return self.file.filename


@dataclass(frozen=True)
class SearchPage:
    entries: list[CatalogEntry]
    total: int
    page: int
    page_size: int


@dataclass(frozen=True)
class PlatformStats:
    platform: str
    total: int
    matched: int
    unmatched: int
    has_title_en: int
    has_title_native: int


@dataclass(frozen=True)
class CollectionStats:
    platforms: list[PlatformStats]
    total: int
    matched: int
    unmatched: int


@dataclass
class ScanResult:
    """Counters reported by a scan pass."""
    scanned: int = 0
    added: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class MetadataImportResult:
    """Counters for a batch of metadata-list imports."""
    lists: int = 0
    created: int = 0
    matched: int = 0
    failed: int = 0
    skipped_lists: list[str] = field(default_factory=list)


@dataclass
class EnrichResult:
    enriched: int = 0
    skipped: int = 0
    filename_enriched: int = 0
    filename_skipped: int = 0
    unmatched: int = 0
    skipped_titles: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class CoverFetchResult:
    fetched: int = 0
    not_found: int = 0
    cached: int = 0
    skipped_platforms: list[str] = field(default_factory=list)
