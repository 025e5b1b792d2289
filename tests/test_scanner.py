"""Tests for the collection scanner."""

import hashlib
import struct
import zipfile
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest

from romcat.services import scanner
from romcat.services.catalog_store import CatalogStore
from romcat.services.errors import FileSystemError, StoreError
from romcat.services.fingerprint import fingerprint_file
from romcat.services.scanner import ScanService, walk_files


def write(path: Path, data: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def write_zip(path: Path, members: dict[str, bytes]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        for name, data in members.items():
            archive.writestr(name, data)
    return path


@pytest.fixture
def store() -> Iterator[CatalogStore]:
    with CatalogStore(":memory:") as catalog:
        yield catalog


@pytest.fixture
def collection(tmp_path: Path) -> Path:
    """A small ROM tree:

    roms/
      gba/Metroid Fusion (USA).gba
      gba/notes.txt                 (wrong extension)
      fc/game.zip                   (carries game.nes and readme.txt)
      fc/docs.zip                   (carries nothing playable)
      neogeo/kof98.zip              (arcade set, hashed whole)
      misc/unknown.bin              (no platform folder)
    """
    root = tmp_path / "roms"
    write(root / "gba" / "Metroid Fusion (USA).gba", b"GBA" * 100)
    write(root / "gba" / "notes.txt", b"notes")
    write_zip(root / "fc" / "game.zip", {"game.nes": b"NES\x1a" + b"\x00" * 64, "readme.txt": b"read me"})
    write_zip(root / "fc" / "docs.zip", {"manual.txt": b"manual"})
    write_zip(root / "neogeo" / "kof98.zip", {"242-p1.p1": b"\x01" * 32, "242-s1.s1": b"\x02" * 32})
    write(root / "misc" / "unknown.bin", b"??")
    return root


class TestWalk:
    """The walk order is stable."""

    def test_sorted(self, collection: Path) -> None:
        names = [p.relative_to(collection).as_posix() for p in walk_files(collection)]

        assert names == [
            "fc/docs.zip",
            "fc/game.zip",
            "gba/Metroid Fusion (USA).gba",
            "gba/notes.txt",
            "misc/unknown.bin",
            "neogeo/kof98.zip",
        ]


class TestScan:
    """Tests for ScanService.scan."""

    def test_counts(self, store: CatalogStore, collection: Path) -> None:
        result = ScanService(store).scan(collection)

        assert result.scanned == 3
        assert result.added == 3
        assert result.errors == 0
        # notes.txt, docs.zip, unknown.bin
        assert result.skipped == 3
        assert store.count_files() == 3

    def test_records(self, store: CatalogStore, collection: Path) -> None:
        ScanService(store).scan(collection)

        by_name = {e.file.filename: e.file for e in store.list_files()}
        assert set(by_name) == {"Metroid Fusion (USA).gba", "game.zip/game.nes", "kof98.zip"}

        gba = by_name["Metroid Fusion (USA).gba"]
        assert gba.platform == "GBA"
        assert gba.entry == ""
        assert gba.sha1 == hashlib.sha1(b"GBA" * 100).hexdigest().upper()
        assert gba.size == 300
        assert gba.game_id is None

        nes = by_name["game.zip/game.nes"]
        assert nes.platform == "FC"
        assert nes.path == str(collection / "fc" / "game.zip")
        assert nes.entry == "game.nes"
        assert nes.sha1 == hashlib.sha1(b"NES\x1a" + b"\x00" * 64).hexdigest().upper()

    def test_arcade_set_is_one_record(self, store: CatalogStore, collection: Path) -> None:
        ScanService(store).scan(collection)

        neogeo = store.list_files("NEOGEO")
        assert len(neogeo) == 1
        kof = neogeo[0].file
        assert kof.entry == ""
        assert kof.filename == "kof98.zip"
        assert kof.sha1 == hashlib.sha1((collection / "neogeo" / "kof98.zip").read_bytes()).hexdigest().upper()

    def test_rescan_is_idempotent(self, store: CatalogStore, collection: Path) -> None:
        service = ScanService(store)
        service.scan(collection)
        first = {(e.file.path, e.file.entry): e.file.id for e in store.list_files()}

        result = service.scan(collection)

        assert result.added == 3
        assert store.count_files() == 3
        assert {(e.file.path, e.file.entry): e.file.id for e in store.list_files()} == first

    def test_relative_and_absolute_roots_share_records(
        self, store: CatalogStore, collection: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        service = ScanService(store)
        service.scan(collection)
        monkeypatch.chdir(collection.parent)

        result = service.scan(Path("roms"))

        assert result.added == 3
        assert store.count_files() == 3
        assert all(Path(e.file.path).is_absolute() for e in store.list_files())

    def test_platform_folder_as_root(self, store: CatalogStore, collection: Path) -> None:
        result = ScanService(store).scan(collection / "gba")

        assert result.added == 1
        assert result.skipped == 1
        assert store.platforms() == ["GBA"]

    def test_corrupt_container_counts_as_error(self, store: CatalogStore, tmp_path: Path) -> None:
        root = tmp_path / "roms"
        write(root / "fc" / "broken.zip", b"PK\x03\x04 not a zip")
        write(root / "fc" / "ok.nes", b"NES\x1a")

        result = ScanService(store).scan(root)

        assert result.errors == 1
        assert result.added == 1

    def test_damaged_deflate_member_counts_as_error(self, store: CatalogStore, tmp_path: Path) -> None:
        root = tmp_path / "roms"
        archive = tmp_path / "roms" / "fc" / "game.zip"
        archive.parent.mkdir(parents=True)
        with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr("game.nes", b"NES\x1a" * 1024)
        raw = bytearray(archive.read_bytes())
        name_length, extra_length = struct.unpack_from("<HH", raw, 26)
        offset = 30 + name_length + extra_length
        raw[offset:offset + 4] = b"\xff" * 4
        archive.write_bytes(bytes(raw))
        write(root / "fc" / "ok.nes", b"NES\x1a")

        result = ScanService(store).scan(root)

        assert result.errors == 1
        assert result.added == 1
        assert [e.file.filename for e in store.list_files()] == ["ok.nes"]

    def test_unreadable_file_counts_as_error(self, store: CatalogStore, tmp_path: Path) -> None:
        root = tmp_path / "roms"
        bad = write(root / "gb" / "bad.gb", b"x")
        write(root / "gb" / "good.gb", b"y")

        def failing_fingerprint(path: Path):
            if path == bad:
                raise FileSystemError("Cannot read file", path=str(path), operation="fingerprint")
            return fingerprint_file(path)

        with patch.object(scanner, "fingerprint_file", side_effect=failing_fingerprint):
            result = ScanService(store).scan(root)

        assert result.errors == 1
        assert result.scanned == 1
        assert [e.file.filename for e in store.list_files()] == ["good.gb"]

    def test_store_failure_skips_only_that_record(self, store: CatalogStore, tmp_path: Path) -> None:
        root = tmp_path / "roms"
        write(root / "gb" / "a.gb", b"a")
        write(root / "gb" / "b.gb", b"b")
        real_upsert = store.upsert_file

        def failing_upsert(record):
            if record.filename == "a.gb":
                raise StoreError("disk full", operation="upsert_file")
            return real_upsert(record)

        with patch.object(store, "upsert_file", side_effect=failing_upsert):
            result = ScanService(store).scan(root)

        assert result.scanned == 2
        assert result.errors == 1
        assert result.added == 1
        assert [e.file.filename for e in store.list_files()] == ["b.gb"]

    def test_missing_root(self, store: CatalogStore, tmp_path: Path) -> None:
        with pytest.raises(FileSystemError) as exc_info:
            ScanService(store).scan(tmp_path / "absent")

        assert exc_info.value.operation == "scan"

    def test_file_as_root(self, store: CatalogStore, tmp_path: Path) -> None:
        path = write(tmp_path / "game.gba", b"x")

        with pytest.raises(FileSystemError):
            ScanService(store).scan(path)
