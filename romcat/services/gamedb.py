"""Static reference tables used to backfill game details.

Each ``<PLATFORM>.json`` file maps an English title to descriptive fields::

    {
      "Super Mario Bros. (World)": {
        "title_ja": "スーパーマリオブラザーズ",
        "desc_ja": "...",
        "developer": "Nintendo",
        "publisher": "Nintendo",
        "release_date": "1985-09-13",
        "genre": "Platform",
        "players": "1-2"
      }
    }

Bundled tables ship in ``romcat/data/gamedb``; tables in an extra directory
are merged over them title by title.
"""

import json
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path

import structlog

log = structlog.stdlib.get_logger()


@dataclass(frozen=True)
class ReferenceEntry:
    """Descriptive fields known for one title."""
    title_native: str = ""
    description: str = ""
    developer: str = ""
    publisher: str = ""
    release_date: str = ""
    genre: str = ""
    players: str = ""

    def as_fields(self) -> dict[str, str]:
        """Game columns this entry can fill."""
        return {
            "title_native": self.title_native,
            "description": self.description,
            "developer": self.developer,
            "publisher": self.publisher,
            "release_date": self.release_date,
            "genre": self.genre,
            "players": self.players,
        }


def _entry_from_json(raw: dict[str, str]) -> ReferenceEntry:
    def text(key: str) -> str:
        value = raw.get(key)
        return str(value).strip() if value is not None else ""

    return ReferenceEntry(
        title_native=text("title_ja"),
        description=text("desc_ja"),
        developer=text("developer"),
        publisher=text("publisher"),
        release_date=text("release_date"),
        genre=text("genre"),
        players=text("players"),
    )


def bundled_tables() -> Traversable:
    return resources.files("romcat") / "data" / "gamedb"


class ReferenceCatalog:
    """Platform -> English title -> ReferenceEntry, loaded on first lookup."""

    def __init__(self, extra_directory: Path | None = None, include_bundled: bool = True) -> None:
        self.extra_directory = extra_directory
        self.include_bundled = include_bundled
        self._tables: dict[str, dict[str, ReferenceEntry]] | None = None

    def lookup(self, platform: str, title_en: str) -> ReferenceEntry | None:
        """Exact-title lookup; returns None for an unknown platform or title."""
        table = self.tables.get(platform.upper())
        if table is None:
            return None
        return table.get(title_en)

    @property
    def tables(self) -> dict[str, dict[str, ReferenceEntry]]:
        if self._tables is None:
            self._tables = self._load()
        return self._tables

    def platforms(self) -> list[str]:
        return sorted(self.tables)

    def _load(self) -> dict[str, dict[str, ReferenceEntry]]:
        tables: dict[str, dict[str, ReferenceEntry]] = {}
        sources: list[Traversable] = []
        if self.include_bundled:
            bundled = bundled_tables()
            if bundled.is_dir():
                sources.extend(sorted(bundled.iterdir(), key=lambda item: item.name))
        if self.extra_directory is not None and self.extra_directory.is_dir():
            sources.extend(sorted(self.extra_directory.glob("*.json")))

        for source in sources:
            if not source.name.endswith(".json"):
                continue
            platform = source.name[: -len(".json")].upper()
            try:
                raw = json.loads(source.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
                # One unreadable table must not disable enrichment for the rest
                log.warning("Skipping unreadable reference table", table=source.name, error=str(e))
                continue
            if not isinstance(raw, dict):
                log.warning("Skipping reference table without a title mapping", table=source.name)
                continue

            table = tables.setdefault(platform, {})
            for title, fields in raw.items():
                if isinstance(fields, dict):
                    table[title] = _entry_from_json(fields)
            log.debug("Reference table loaded", platform=platform, titles=len(raw))

        return tables
