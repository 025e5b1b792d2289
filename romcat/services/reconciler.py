"""Reconciliation orchestrator.

Drives the pipeline: scan files into the catalog, register titles from
checksum databases, and link files to games by hash or by metadata-list
filename. Every operation here is synchronous and runs its catalog writes
inside a single transaction.
"""

import os
from pathlib import Path, PurePosixPath

import structlog

from ..models import (
    CatalogEntry,
    CollectionStats,
    EnrichResult,
    MetadataEntry,
    MetadataImportResult,
    ScanResult,
    SearchPage,
)
from .catalog_store import DEFAULT_PAGE_SIZE, CatalogStore
from .checksum_db import ChecksumDatabase, load_checksum_database, parse_checksum_database
from .errors import FileSystemError, ParseError, StoreError
from .gamedb import ReferenceCatalog
from .gamelist import GAMELIST_FILENAME, export_entry, load_metadata_list, write_metadata_list
from .platforms import CONTAINER_EXTENSIONS, PLATFORMS, platform_for_folder
from .scanner import ScanService

log = structlog.stdlib.get_logger()

# Suffixes stripped from filenames when guessing a title for enrichment
TITLE_SUFFIXES: tuple[str, ...] = tuple(
    sorted(
        {ext for platform in PLATFORMS for ext in platform.extensions} | set(CONTAINER_EXTENSIONS) | {".7z"},
        key=len,
        reverse=True,
    )
)


def strip_rom_suffix(name: str) -> str:
    lowered = name.lower()
    for suffix in TITLE_SUFFIXES:
        if lowered.endswith(suffix):
            return name[: -len(suffix)]
    return name


def title_candidates(filename: str) -> list[str]:
    """Titles to try for a display filename, most specific first.

    ``"Game (USA).zip/Game (USA).nes"`` yields the inner name, then the
    container name, both without extensions.
    """
    inner = strip_rom_suffix(PurePosixPath(filename).name)
    outer = strip_rom_suffix(filename.split("/", 1)[0])
    candidates = [inner]
    if outer and outer != inner:
        candidates.append(outer)
    return candidates


class Reconciler:
    """Facade over the catalog pipeline used by the command line."""

    def __init__(
        self,
        store: CatalogStore,
        reference: ReferenceCatalog | None = None,
        scanner: ScanService | None = None,
    ) -> None:
        self.store = store
        self.reference = reference or ReferenceCatalog()
        self.scanner = scanner or ScanService(store)

    # Scan

    def scan(self, root: Path) -> ScanResult:
        return self.scanner.scan(root)

    # Checksum databases

    def import_checksum_database(self, content: str, platform: str | None = None) -> tuple[int, str]:
        """Register every title in a checksum database.

        Returns:
            (games created, database title)
        """
        database = parse_checksum_database(content, platform)
        return self._import(database), database.source

    def import_checksum_file(self, path: Path, platform: str | None = None) -> tuple[int, str]:
        database = load_checksum_database(path, platform)
        return self._import(database), database.source

    def _import(self, database: ChecksumDatabase) -> int:
        created = self.store.import_checksum_records(database.records)
        log.info(
            "Checksum database imported",
            source=database.source,
            platform=database.platform,
            records=len(database.records),
            created=created,
        )
        return created

    def match_checksum_database(self, content: str, platform: str | None = None) -> int:
        """Link scanned files to games by hash.

        Returns:
            Number of file matches
        """
        database = parse_checksum_database(content, platform)
        return self.store.match_by_hash(database.records)

    def match_checksum_file(self, path: Path, platform: str | None = None) -> int:
        database = load_checksum_database(path, platform)
        return self.store.match_by_hash(database.records)

    # Metadata lists

    def match_metadata_list(self, entries: list[MetadataEntry], platform: str) -> tuple[int, int]:
        """Returns (games created, files matched)."""
        return self.store.match_by_metadata(entries, platform.upper())

    def import_metadata_lists(self, roms_dir: Path) -> MetadataImportResult:
        """Reconcile every ``gamelist.xml`` found under ``roms_dir``.

        The platform comes from the folder holding the list. Each list is its
        own transaction; a list that cannot be read, parsed or stored is
        counted as failed and the rest are still processed.

        Raises:
            FileSystemError: If ``roms_dir`` is not a directory
        """
        roms_dir = Path(roms_dir)
        if not roms_dir.is_dir():
            raise FileSystemError("Gamelist directory not found", path=str(roms_dir), operation="import_gamelist")

        result = MetadataImportResult()
        for path in self._find_metadata_lists(roms_dir):
            platform = platform_for_folder(path.parent.name)
            if platform is None:
                log.info("Skipping gamelist in unrecognized folder", path=str(path))
                result.skipped_lists.append(str(path))
                continue

            try:
                entries = load_metadata_list(path)
                created, matched = self.store.match_by_metadata(entries, platform)
            except (FileSystemError, ParseError, StoreError) as e:
                log.error("Failed to import gamelist", path=str(path), platform=platform, error=e.message)
                result.failed += 1
                continue

            result.lists += 1
            result.created += created
            result.matched += matched
            log.info("Gamelist imported", path=str(path), platform=platform, created=created, matched=matched)

        return result

    @staticmethod
    def _find_metadata_lists(roms_dir: Path) -> list[Path]:
        found: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(roms_dir):
            dirnames.sort()
            for name in sorted(filenames):
                if name.lower() == GAMELIST_FILENAME:
                    found.append(Path(dirpath) / name)
        return found

    def export_metadata_lists(self, out_dir: Path, platform: str | None = None) -> dict[str, Path]:
        """Write ``<out_dir>/<PLATFORM>/gamelist.xml`` for each platform with files.

        Returns:
            Platform code -> written file
        """
        platforms = [platform.upper()] if platform else self.store.platforms()
        written: dict[str, Path] = {}
        for code in platforms:
            files = self.store.list_files(code)
            if not files:
                log.info("No files to export", platform=code)
                continue
            path = Path(out_dir) / code / GAMELIST_FILENAME
            write_metadata_list(path, [export_entry(entry) for entry in files])
            written[code] = path
        return written

    # Enrichment

    def enrich(self, platform: str | None = None) -> EnrichResult:
        """Backfill game details from the reference tables.

        Linked games are looked up by English title. Unlinked files are
        looked up by titles derived from their filename and, on a hit, get a
        game of their own.
        """
        code = platform.upper() if platform else None
        result = EnrichResult()

        with self.store.transaction("enrich"):
            for game in self.store.enrichable_games(code):
                reference = self.reference.lookup(game.platform, game.title_en)
                if reference is None:
                    result.skipped += 1
                    result.skipped_titles.setdefault(game.platform, []).append(game.title_en)
                    continue
                self.store.apply_reference(game.id, reference.as_fields())
                result.enriched += 1

            unmatched = self.store.unmatched_files(code)
            result.unmatched = len(unmatched)
            for file in unmatched:
                candidates = title_candidates(file.filename)
                hit = None
                for title in candidates:
                    reference = self.reference.lookup(file.platform, title)
                    if reference is not None:
                        hit = (title, reference)
                        break
                if hit is None:
                    result.filename_skipped += 1
                    result.skipped_titles.setdefault(file.platform, []).append(candidates[0])
                    continue

                title, reference = hit
                self.store.create_game_and_link(file, title, reference.as_fields())
                result.filename_enriched += 1

        for titles in result.skipped_titles.values():
            titles.sort()

        log.info(
            "Enrichment complete",
            enriched=result.enriched,
            skipped=result.skipped,
            filename_enriched=result.filename_enriched,
            filename_skipped=result.filename_skipped,
        )
        return result

    # Queries

    def list_files(self, platform: str | None = None) -> list[CatalogEntry]:
        return self.store.list_files(platform.upper() if platform else None)

    def search(
        self,
        query: str,
        platform: str | None = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> SearchPage:
        return self.store.search(query, platform.upper() if platform else None, page, page_size)

    def stats(self) -> CollectionStats:
        return self.store.stats()

    def platforms(self) -> list[str]:
        return self.store.platforms()
