"""SQLite catalog of scanned files and resolved games.

Three paths link a file to a game and all of them share one rule for game
details: a populated column is never overwritten (see ``merge_game_fields``).

- Hash match: deferential. A file that already has a game only contributes
  an English title to it, and only when the game has none.
- Metadata-list match: authoritative. Matched files are always relinked.
- Filename enrichment: only touches files with no game.

Every batch runs inside one transaction; nested ``transaction()`` calls
become savepoints, so a caller can wrap several store operations in one
all-or-nothing unit.
"""

import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import structlog

from ..models import (
    CatalogEntry,
    ChecksumRecord,
    CollectionStats,
    FileRecord,
    GameRecord,
    MetadataEntry,
    PlatformStats,
    SearchPage,
)
from .errors import StoreError

log = structlog.stdlib.get_logger()

DEFAULT_PAGE_SIZE = 50

SCHEMA = """
CREATE TABLE IF NOT EXISTS games (
    id INTEGER PRIMARY KEY,
    platform TEXT NOT NULL,
    title_en TEXT NOT NULL DEFAULT '',
    title_native TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT '',
    developer TEXT NOT NULL DEFAULT '',
    publisher TEXT NOT NULL DEFAULT '',
    release_date TEXT NOT NULL DEFAULT '',
    genre TEXT NOT NULL DEFAULT '',
    players TEXT NOT NULL DEFAULT '',
    rating TEXT NOT NULL DEFAULT '',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS rom_files (
    id INTEGER PRIMARY KEY,
    path TEXT NOT NULL,
    entry TEXT NOT NULL DEFAULT '',
    filename TEXT NOT NULL,
    size INTEGER NOT NULL DEFAULT 0,
    crc32 TEXT NOT NULL DEFAULT '',
    md5 TEXT NOT NULL DEFAULT '',
    sha1 TEXT NOT NULL DEFAULT '',
    platform TEXT NOT NULL,
    game_id INTEGER REFERENCES games(id),
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (path, entry)
);

CREATE TABLE IF NOT EXISTS cover_arts (
    id INTEGER PRIMARY KEY,
    game_id INTEGER NOT NULL REFERENCES games(id),
    image_type TEXT NOT NULL,
    file_path TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (game_id, image_type)
);

CREATE INDEX IF NOT EXISTS idx_rom_files_crc32 ON rom_files(crc32);
CREATE INDEX IF NOT EXISTS idx_rom_files_md5 ON rom_files(md5);
CREATE INDEX IF NOT EXISTS idx_rom_files_sha1 ON rom_files(sha1);
CREATE INDEX IF NOT EXISTS idx_rom_files_platform ON rom_files(platform);
CREATE INDEX IF NOT EXISTS idx_games_platform ON games(platform);
"""

# Game columns that reconciliation may fill in
MERGEABLE_COLUMNS = (
    "title_en",
    "title_native",
    "description",
    "developer",
    "publisher",
    "release_date",
    "genre",
    "players",
    "rating",
)

# Hash columns in match priority order
HASH_PRIORITY = (("sha1", "sha1"), ("md5", "md5"), ("crc32", "crc32"))

_FILE_COLUMNS = "r.id, r.path, r.entry, r.filename, r.size, r.crc32, r.md5, r.sha1, r.platform, r.game_id"
_GAME_COLUMNS = (
    "g.id AS g_id, g.platform AS g_platform, g.title_en, g.title_native, g.description, g.developer, "
    "g.publisher, g.release_date, g.genre, g.players, g.rating, g.created_at, g.updated_at"
)
_JOINED_FROM = "FROM rom_files r LEFT JOIN games g ON r.game_id = g.id"


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _file_from_row(row: sqlite3.Row) -> FileRecord:
    return FileRecord(
        id=row["id"],
        path=row["path"],
        entry=row["entry"],
        filename=row["filename"],
        size=row["size"],
        crc32=row["crc32"],
        md5=row["md5"],
        sha1=row["sha1"],
        platform=row["platform"],
        game_id=row["game_id"],
    )


def _game_from_row(row: sqlite3.Row, prefix: str = "") -> GameRecord:
    return GameRecord(
        id=row[f"{prefix}id"],
        platform=row[f"{prefix}platform"],
        title_en=row["title_en"],
        title_native=row["title_native"],
        description=row["description"],
        developer=row["developer"],
        publisher=row["publisher"],
        release_date=row["release_date"],
        genre=row["genre"],
        players=row["players"],
        rating=row["rating"],
        created_at=_parse_timestamp(row["created_at"]),
        updated_at=_parse_timestamp(row["updated_at"]),
    )


def _entry_from_row(row: sqlite3.Row) -> CatalogEntry:
    game = _game_from_row(row, prefix="g_") if row["g_id"] is not None else None
    return CatalogEntry(file=_file_from_row(row), game=game)


class CatalogStore:
    """Persistent catalog backed by a single SQLite database file."""

    def __init__(self, database_path: Path | str) -> None:
        """Open (creating if needed) the catalog database.

        Args:
            database_path: Database file, or ``":memory:"`` for a throwaway catalog

        Raises:
            StoreError: If the database cannot be opened or migrated
        """
        self.database_path = str(database_path)
        self._depth = 0
        self._savepoint_counter = 0

        try:
            if self.database_path != ":memory:":
                Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode; batches issue BEGIN/COMMIT explicitly
            self.conn = sqlite3.connect(self.database_path, isolation_level=None)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
            if self.database_path != ":memory:":
                self.conn.execute("PRAGMA journal_mode = WAL")
            self.conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise StoreError("Cannot open the catalog database", operation="open", original_error=e) from e

        log.debug("Catalog store opened", database_path=self.database_path)

    @property
    def connection(self) -> sqlite3.Connection:
        return self.conn

    def close(self) -> None:
        self.conn.close()
        log.debug("Catalog store closed", database_path=self.database_path)

    def __enter__(self) -> "CatalogStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Transactions

    @contextmanager
    def transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """All-or-nothing unit of work.

        The outermost call opens a transaction, inner calls open savepoints.
        A ``sqlite3.Error`` inside the block is re-raised as ``StoreError``
        after rollback; any other exception is re-raised unchanged after rollback.
        """
        if self._depth > 0:
            with self.savepoint(operation):
                yield self.conn
            return

        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreError("Cannot start a catalog transaction", operation=operation, original_error=e) from e

        self._depth += 1
        try:
            yield self.conn
        except BaseException as e:
            self._depth -= 1
            self.conn.execute("ROLLBACK")
            log.warning("Catalog transaction rolled back", operation=operation, error=str(e))
            if isinstance(e, sqlite3.Error):
                raise StoreError("Catalog update failed and was rolled back", operation=operation, original_error=e) from e
            raise
        else:
            self._depth -= 1
            try:
                self.conn.execute("COMMIT")
            except sqlite3.Error as e:
                self.conn.execute("ROLLBACK")
                raise StoreError("Cannot commit catalog transaction", operation=operation, original_error=e) from e

    @contextmanager
    def savepoint(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Roll back only this block on failure; the enclosing transaction survives."""
        self._savepoint_counter += 1
        name = f"sp_{self._savepoint_counter}"
        self.conn.execute(f"SAVEPOINT {name}")
        self._depth += 1
        try:
            yield self.conn
        except BaseException as e:
            self._depth -= 1
            self.conn.execute(f"ROLLBACK TO {name}")
            self.conn.execute(f"RELEASE {name}")
            if isinstance(e, sqlite3.Error):
                raise StoreError("Catalog update failed and was rolled back", operation=operation, original_error=e) from e
            raise
        else:
            self._depth -= 1
            self.conn.execute(f"RELEASE {name}")

    # Files

    def upsert_file(self, record: FileRecord) -> int:
        """Insert or refresh a file by its identity key; the game link is left alone.

        Returns:
            Row id of the file record
        """
        with self.transaction("upsert_file") as conn:
            conn.execute(
                """
                INSERT INTO rom_files (path, entry, filename, size, crc32, md5, sha1, platform)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(path, entry) DO UPDATE SET
                    filename = excluded.filename,
                    size = excluded.size,
                    crc32 = excluded.crc32,
                    md5 = excluded.md5,
                    sha1 = excluded.sha1,
                    platform = excluded.platform,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    record.path,
                    record.entry,
                    record.filename,
                    record.size,
                    record.crc32,
                    record.md5,
                    record.sha1,
                    record.platform,
                ),
            )
            row = conn.execute(
                "SELECT id FROM rom_files WHERE path = ? AND entry = ?",
                (record.path, record.entry),
            ).fetchone()
        return int(row["id"])

    def get_file(self, path: str, entry: str = "") -> FileRecord | None:
        row = self.conn.execute(
            f"SELECT {_FILE_COLUMNS} FROM rom_files r WHERE r.path = ? AND r.entry = ?",
            (path, entry),
        ).fetchone()
        return _file_from_row(row) if row else None

    def count_files(self) -> int:
        return int(self.conn.execute("SELECT COUNT(*) FROM rom_files").fetchone()[0])

    def list_files(self, platform: str | None = None) -> list[CatalogEntry]:
        """All files joined with their games, ordered by platform then filename."""
        sql = f"SELECT {_FILE_COLUMNS}, {_GAME_COLUMNS} {_JOINED_FROM}"
        params: list[str] = []
        if platform:
            sql += " WHERE r.platform = ?"
            params.append(platform)
        sql += " ORDER BY r.platform, r.filename"
        return [_entry_from_row(row) for row in self.conn.execute(sql, params)]

    def unmatched_files(self, platform: str | None = None) -> list[FileRecord]:
        sql = f"SELECT {_FILE_COLUMNS} FROM rom_files r WHERE r.game_id IS NULL"
        params: list[str] = []
        if platform:
            sql += " AND r.platform = ?"
            params.append(platform)
        sql += " ORDER BY r.platform, r.filename"
        return [_file_from_row(row) for row in self.conn.execute(sql, params)]

    def platforms(self) -> list[str]:
        rows = self.conn.execute("SELECT DISTINCT platform FROM rom_files ORDER BY platform")
        return [row["platform"] for row in rows]

    # Games

    def get_game(self, game_id: int) -> GameRecord | None:
        row = self.conn.execute("SELECT * FROM games WHERE id = ?", (game_id,)).fetchone()
        return _game_from_row(row) if row else None

    def find_game(self, title: str, platform: str, title_column: str = "title_en") -> int | None:
        """Id of the first game with this title on this platform."""
        if title_column not in ("title_en", "title_native"):
            raise ValueError(f"Not a title column: {title_column}")
        row = self.conn.execute(
            f"SELECT id FROM games WHERE {title_column} = ? AND platform = ? ORDER BY id LIMIT 1",
            (title, platform),
        ).fetchone()
        return int(row["id"]) if row else None

    def count_games(self, platform: str | None = None) -> int:
        if platform:
            row = self.conn.execute("SELECT COUNT(*) FROM games WHERE platform = ?", (platform,)).fetchone()
        else:
            row = self.conn.execute("SELECT COUNT(*) FROM games").fetchone()
        return int(row[0])

    def _insert_game(self, platform: str, fields: dict[str, str]) -> int:
        columns = ["platform", *(column for column in MERGEABLE_COLUMNS if fields.get(column))]
        values = [platform, *(fields[column] for column in columns[1:])]
        placeholders = ", ".join("?" for _ in columns)
        cursor = self.conn.execute(
            f"INSERT INTO games ({', '.join(columns)}) VALUES ({placeholders})",
            values,
        )
        return int(cursor.lastrowid or 0)

    def find_or_create_game(
        self,
        title: str,
        platform: str,
        title_column: str = "title_en",
        fields: dict[str, str] | None = None,
    ) -> tuple[int, bool]:
        """Look up (title, platform) before inserting.

        On find, ``fields`` are merged into empty columns of the existing game;
        on create, the new game gets the title plus every non-empty field.

        Returns:
            (game id, whether the game was created)
        """
        details = dict(fields or {})
        details[title_column] = title

        game_id = self.find_game(title, platform, title_column)
        if game_id is not None:
            self.merge_game_fields(game_id, details)
            return game_id, False
        return self._insert_game(platform, details), True

    def merge_game_fields(self, game_id: int, fields: dict[str, str]) -> bool:
        """Fill only the currently-empty columns of a game from ``fields``.

        Empty values in ``fields`` are ignored and populated columns are never
        changed. Every reconciliation path goes through here.

        Returns:
            True if at least one column was filled
        """
        updates = {column: fields[column] for column in MERGEABLE_COLUMNS if fields.get(column)}
        if not updates:
            return False

        assignments = ", ".join(
            f"{column} = CASE WHEN {column} = '' THEN ? ELSE {column} END" for column in updates
        )
        any_empty = " OR ".join(f"{column} = ''" for column in updates)
        cursor = self.conn.execute(
            f"UPDATE games SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ? AND ({any_empty})",
            [*updates.values(), game_id],
        )
        return cursor.rowcount > 0

    def _link(self, file_id: int, game_id: int) -> None:
        self.conn.execute(
            "UPDATE rom_files SET game_id = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (game_id, file_id),
        )

    def enrichable_games(self, platform: str | None = None) -> list[GameRecord]:
        """Distinct games that have an English title and at least one linked file."""
        sql = (
            "SELECT DISTINCT g.* FROM games g JOIN rom_files r ON r.game_id = g.id "
            "WHERE g.title_en != ''"
        )
        params: list[str] = []
        if platform:
            sql += " AND r.platform = ?"
            params.append(platform)
        sql += " ORDER BY g.platform, g.title_en, g.id"
        return [_game_from_row(row) for row in self.conn.execute(sql, params)]

    def apply_reference(self, game_id: int, fields: dict[str, str]) -> bool:
        """Backfill a game from reference data (take-if-empty)."""
        with self.transaction("apply_reference"):
            return self.merge_game_fields(game_id, fields)

    def create_game_and_link(self, file: FileRecord, title_en: str, fields: dict[str, str]) -> int:
        """Find-or-create a game by English title on the file's platform, fill its details and link the file."""
        if file.id is None:
            raise ValueError("File record has not been stored")
        with self.transaction("create_game_and_link"):
            game_id, _ = self.find_or_create_game(title_en, file.platform, fields=fields)
            self._link(file.id, game_id)
        return game_id

    # Reconciliation

    def import_checksum_records(self, records: Iterable[ChecksumRecord]) -> int:
        """Register canonical titles; files are never touched.

        Returns:
            Number of games created
        """
        created = 0
        with self.transaction("import_checksum_records"):
            for record in records:
                if not record.title:
                    continue
                if self.find_game(record.title, record.platform) is None:
                    self._insert_game(record.platform, {"title_en": record.title})
                    created += 1

        log.info("Checksum records imported", created=created)
        return created

    def match_by_hash(self, records: Iterable[ChecksumRecord]) -> int:
        """Link files to games by the strongest hash each record carries.

        A file that already has a game is not relinked; its game only gains
        the record's title when it has no English title yet. Each matched
        file counts once per record, so duplicate dumps are all counted.
        Records without a title are skipped.

        Returns:
            Number of file matches
        """
        matched = 0
        with self.transaction("match_by_hash"):
            for record in records:
                column, value = self._match_key(record)
                if column is None or not record.title:
                    continue

                rows = self.conn.execute(
                    f"SELECT id, game_id FROM rom_files WHERE {column} = ? ORDER BY id",
                    (value,),
                ).fetchall()
                for row in rows:
                    if row["game_id"] is not None:
                        self.merge_game_fields(row["game_id"], {"title_en": record.title})
                    else:
                        game_id, _ = self.find_or_create_game(record.title, record.platform)
                        self._link(row["id"], game_id)
                    matched += 1

        log.info("Hash match complete", matched=matched)
        return matched

    @staticmethod
    def _match_key(record: ChecksumRecord) -> tuple[str | None, str]:
        for column, attr in HASH_PRIORITY:
            value = getattr(record, attr)
            if value:
                return column, value.upper()
        return None, ""

    def files_for_metadata(self, filename: str, platform: str) -> list[int]:
        """Ids of files on ``platform`` named ``filename``, ``*/filename`` or ``filename/*``.

        Comparisons are exact and case-sensitive.
        """
        suffix = f"/{filename}"
        prefix = f"{filename}/"
        rows = self.conn.execute(
            """
            SELECT id FROM rom_files
            WHERE platform = ?
              AND (filename = ?
                   OR substr(filename, -?) = ?
                   OR substr(filename, 1, ?) = ?)
            ORDER BY id
            """,
            (platform, filename, len(suffix), suffix, len(prefix), prefix),
        ).fetchall()
        return [int(row["id"]) for row in rows]

    def match_by_metadata(self, entries: Iterable[MetadataEntry], platform: str) -> tuple[int, int]:
        """Link files to games keyed by the list's native-language name.

        Matched files are always relinked, replacing any previous game.
        Entries without a name are skipped.

        Returns:
            (games created, files matched)
        """
        created = 0
        matched = 0
        with self.transaction("match_by_metadata"):
            for entry in entries:
                if not entry.name:
                    continue
                file_ids = self.files_for_metadata(entry.filename, platform)
                if not file_ids:
                    continue

                game_id, was_created = self.find_or_create_game(
                    entry.name,
                    platform,
                    title_column="title_native",
                    fields={
                        "description": entry.description,
                        "developer": entry.developer,
                        "publisher": entry.publisher,
                        "release_date": entry.release_date,
                        "genre": entry.genre,
                        "players": entry.players,
                        "rating": entry.rating,
                    },
                )
                if was_created:
                    created += 1
                for file_id in file_ids:
                    self._link(file_id, game_id)
                    matched += 1

        log.info("Metadata match complete", platform=platform, created=created, matched=matched)
        return created, matched

    # Queries

    def search(
        self,
        query: str,
        platform: str | None = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> SearchPage:
        """Substring search over filename and both titles, one page at a time."""
        page = max(page, 1)
        if page_size < 1:
            page_size = DEFAULT_PAGE_SIZE

        pattern = f"%{_escape_like(query)}%"
        where = (
            "WHERE (r.filename LIKE ? ESCAPE '\\' OR g.title_en LIKE ? ESCAPE '\\' "
            "OR g.title_native LIKE ? ESCAPE '\\')"
        )
        params: list[str | int] = [pattern, pattern, pattern]
        if platform:
            where += " AND r.platform = ?"
            params.append(platform)

        total = int(self.conn.execute(f"SELECT COUNT(*) {_JOINED_FROM} {where}", params).fetchone()[0])
        rows = self.conn.execute(
            f"SELECT {_FILE_COLUMNS}, {_GAME_COLUMNS} {_JOINED_FROM} {where} "
            "ORDER BY r.platform, r.filename LIMIT ? OFFSET ?",
            [*params, page_size, (page - 1) * page_size],
        )
        return SearchPage(
            entries=[_entry_from_row(row) for row in rows],
            total=total,
            page=page,
            page_size=page_size,
        )

    def stats(self) -> CollectionStats:
        rows = self.conn.execute(
            f"""
            SELECT r.platform AS platform,
                   COUNT(*) AS total,
                   COUNT(r.game_id) AS matched,
                   SUM(CASE WHEN COALESCE(g.title_en, '') != '' THEN 1 ELSE 0 END) AS has_en,
                   SUM(CASE WHEN COALESCE(g.title_native, '') != '' THEN 1 ELSE 0 END) AS has_native
            {_JOINED_FROM}
            GROUP BY r.platform
            ORDER BY r.platform
            """
        )
        platforms = [
            PlatformStats(
                platform=row["platform"],
                total=row["total"],
                matched=row["matched"],
                unmatched=row["total"] - row["matched"],
                has_title_en=row["has_en"],
                has_title_native=row["has_native"],
            )
            for row in rows
        ]
        return CollectionStats(
            platforms=platforms,
            total=sum(p.total for p in platforms),
            matched=sum(p.matched for p in platforms),
            unmatched=sum(p.unmatched for p in platforms),
        )

    # Cover art

    def cover_candidates(self, platform: str | None = None) -> list[tuple[int, str, str]]:
        """(game id, English title, platform) for games worth fetching art for."""
        return [(game.id, game.title_en, game.platform) for game in self.enrichable_games(platform)]

    def record_cover_arts(self, covers: Iterable[tuple[int, str, str]]) -> int:
        """Store (game id, image type, file path) rows, replacing an older path."""
        count = 0
        with self.transaction("record_cover_arts"):
            for game_id, image_type, file_path in covers:
                self.conn.execute(
                    """
                    INSERT INTO cover_arts (game_id, image_type, file_path) VALUES (?, ?, ?)
                    ON CONFLICT(game_id, image_type) DO UPDATE SET file_path = excluded.file_path
                    """,
                    (game_id, image_type, file_path),
                )
                count += 1
        return count

    def cover_art_path(self, game_id: int, image_type: str = "boxart") -> str | None:
        row = self.conn.execute(
            "SELECT file_path FROM cover_arts WHERE game_id = ? AND image_type = ?",
            (game_id, image_type),
        ).fetchone()
        return row["file_path"] if row else None
