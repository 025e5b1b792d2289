"""Collection scanner: walk, classify, fingerprint and record files."""

import os
from pathlib import Path

import structlog

from ..models import FileRecord, ScanResult
from .catalog_store import CatalogStore
from .container import ContainerInspector
from .errors import FileSystemError, StoreError
from .fingerprint import Fingerprint, fingerprint_file
from .platforms import UNKNOWN_PLATFORM, classify_path, is_container, is_valid_extension

log = structlog.stdlib.get_logger()


def walk_files(root: Path) -> list[Path]:
    """Every regular file under ``root`` in a stable, sorted walk order."""
    files: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            files.append(Path(dirpath) / name)
    return files


class ScanService:
    """Populates file records from a directory tree.

    The scan never links files to games and always runs to completion;
    per-file failures are counted in ``ScanResult.errors``.
    """

    def __init__(self, store: CatalogStore, inspector: ContainerInspector | None = None) -> None:
        self.store = store
        self.inspector = inspector or ContainerInspector()

    def scan(self, root: Path) -> ScanResult:
        """Scan ``root`` and upsert every identification unit found.

        Raises:
            FileSystemError: If ``root`` is missing or not a directory
            StoreError: If the scan transaction itself cannot be opened or committed
        """
        # File identity keys hold absolute paths
        root = Path(root).resolve()
        if not root.is_dir():
            raise FileSystemError(
                "Scan root is not a directory",
                original_error=FileNotFoundError(str(root)) if not root.exists() else None,
                path=str(root),
                operation="scan",
            )

        result = ScanResult()
        log.info("Scan started", root=str(root))

        with self.store.transaction("scan"):
            for path in walk_files(root):
                self._scan_path(root, path, result)

        log.info(
            "Scan complete",
            root=str(root),
            scanned=result.scanned,
            added=result.added,
            skipped=result.skipped,
            errors=result.errors,
        )
        return result

    def _scan_path(self, root: Path, path: Path, result: ScanResult) -> None:
        platform = classify_path(root, path)
        if platform == UNKNOWN_PLATFORM:
            log.debug("Skipping file outside platform folders", path=str(path))
            result.skipped += 1
            return

        if is_container(path):
            self._scan_container(path, platform, result)
            return

        if not is_valid_extension(platform, path.suffix):
            log.debug("Skipping file with unsupported extension", path=str(path), platform=platform)
            result.skipped += 1
            return

        try:
            fingerprint = fingerprint_file(path)
        except FileSystemError as e:
            log.warning("Failed to hash file", path=str(path), error=e.message)
            result.errors += 1
            return

        result.scanned += 1
        self._record(path, "", path.name, fingerprint, platform, result)

    def _scan_container(self, path: Path, platform: str, result: ScanResult) -> None:
        try:
            inspection = self.inspector.inspect(path, platform)
        except FileSystemError:
            result.errors += 1
            return

        if not inspection.has_payload:
            result.skipped += 1
            return

        for item in inspection.entries:
            if item.fingerprint is None:
                result.errors += 1
                continue
            result.scanned += 1
            self._record(path, item.entry, item.filename, item.fingerprint, platform, result)

    def _record(
        self,
        path: Path,
        entry: str,
        filename: str,
        fingerprint: Fingerprint,
        platform: str,
        result: ScanResult,
    ) -> None:
        record = FileRecord(
            path=str(path),
            entry=entry,
            filename=filename,
            size=fingerprint.size,
            crc32=fingerprint.crc32,
            md5=fingerprint.md5,
            sha1=fingerprint.sha1,
            platform=platform,
        )
        try:
            with self.store.savepoint("scan_record"):
                self.store.upsert_file(record)
        except StoreError as e:
            log.error("Failed to record file", path=str(path), entry=entry, error=e.message)
            result.errors += 1
            return

        result.added += 1
        log.debug("File recorded", filename=filename, platform=platform, crc32=fingerprint.crc32)
