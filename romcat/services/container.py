"""Container (zip) inspection.

Whether a container is the ROM or merely carries ROMs is a per-platform
setting, never a guess from the archive contents:

- ``UNIT``: arcade-style sets; the archive is hashed and cataloged whole.
- ``CARRIER``: each qualifying entry is hashed from the decompression
  stream and cataloged as ``<container-basename>/<entry-name>``.
"""

import zipfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath

import structlog

from .errors import FileSystemError
from .fingerprint import Fingerprint, fingerprint_file, fingerprint_stream
from .platforms import container_is_unit, is_valid_extension

log = structlog.stdlib.get_logger()


class ContainerMode(Enum):
    UNIT = "unit"
    CARRIER = "carrier"


@dataclass(frozen=True)
class InspectedEntry:
    """One identification unit found by inspecting a container.

    Exactly one of ``fingerprint`` and ``error`` is set.
    """
    entry: str  # Inner entry name, empty for a whole-container unit
    filename: str
    fingerprint: Fingerprint | None = None
    error: FileSystemError | None = None


@dataclass
class ContainerInspection:
    path: Path
    mode: ContainerMode
    entries: list[InspectedEntry] = field(default_factory=list)

    @property
    def has_payload(self) -> bool:
        """False means the archive opened fine but held nothing for this platform."""
        return bool(self.entries)


class ContainerInspector:
    """Turns a container file into the identification units it holds."""

    def mode_for(self, platform: str) -> ContainerMode:
        return ContainerMode.UNIT if container_is_unit(platform) else ContainerMode.CARRIER

    def inspect(self, path: Path, platform: str) -> ContainerInspection:
        """Inspect a container for ``platform``.

        Per-entry hash failures are reported on the entry; the remaining
        entries are still processed.

        Raises:
            FileSystemError: If the container itself cannot be opened or listed
        """
        mode = self.mode_for(platform)
        inspection = ContainerInspection(path=path, mode=mode)

        if mode is ContainerMode.UNIT:
            if not is_valid_extension(platform, path.suffix):
                return inspection
            try:
                fingerprint = fingerprint_file(path)
                inspection.entries.append(InspectedEntry(entry="", filename=path.name, fingerprint=fingerprint))
            except FileSystemError as e:
                inspection.entries.append(InspectedEntry(entry="", filename=path.name, error=e))
            return inspection

        try:
            with zipfile.ZipFile(path) as archive:
                for info in archive.infolist():
                    if info.is_dir():
                        continue
                    if not is_valid_extension(platform, PurePosixPath(info.filename).suffix):
                        continue
                    inspection.entries.append(self._hash_entry(archive, info, path))
        except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as e:
            log.warning("Cannot open container", path=str(path), error=str(e))
            raise FileSystemError(
                "Cannot open container",
                original_error=e,
                path=str(path),
                operation="inspect",
            ) from e

        if not inspection.has_payload:
            log.info("Container has no recognized payload", path=str(path), platform=platform)
        return inspection

    def _hash_entry(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo, path: Path) -> InspectedEntry:
        filename = f"{path.name}/{info.filename}"
        label = f"{path}!{info.filename}"
        try:
            with archive.open(info) as member:
                fingerprint = fingerprint_stream(member, expected_size=info.file_size, name=label)
        except FileSystemError as e:
            log.warning("Failed to hash container entry", path=str(path), entry=info.filename, error=e.message)
            return InspectedEntry(entry=info.filename, filename=filename, error=e)
        except (OSError, zipfile.BadZipFile, NotImplementedError, RuntimeError) as e:
            # Unsupported compression or an encrypted member
            log.warning("Failed to open container entry", path=str(path), entry=info.filename, error=str(e))
            return InspectedEntry(
                entry=info.filename,
                filename=filename,
                error=FileSystemError("Cannot read container entry", original_error=e, path=label),
            )
        return InspectedEntry(entry=info.filename, filename=filename, fingerprint=fingerprint)
