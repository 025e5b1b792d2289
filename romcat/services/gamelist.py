"""EmulationStation ``gamelist.xml`` metadata lists.

A metadata list maps ROM filenames to descriptive fields::

    <gameList>
      <game>
        <path>./1944j.zip</path>
        <name>1944: The Loop Master</name>
        <developer>Capcom</developer>
      </game>
    </gameList>
"""

import xml.etree.ElementTree as ET
from pathlib import Path, PurePosixPath

import structlog

from ..models import CatalogEntry, MetadataEntry
from .errors import FileSystemError, ParseError

log = structlog.stdlib.get_logger()

GAMELIST_FILENAME = "gamelist.xml"

# (element tag, MetadataEntry attribute) in document order
FIELD_TAGS: tuple[tuple[str, str], ...] = (
    ("path", "filename"),
    ("name", "name"),
    ("desc", "description"),
    ("releasedate", "release_date"),
    ("developer", "developer"),
    ("publisher", "publisher"),
    ("genre", "genre"),
    ("players", "players"),
    ("rating", "rating"),
    ("thumbnail", "thumbnail"),
    ("image", "image"),
    ("marquee", "marquee"),
)


def _basename(path: str) -> str:
    # Lists written on Windows use backslashes
    return PurePosixPath(path.strip().replace("\\", "/")).name


def parse_metadata_list(content: str | bytes) -> list[MetadataEntry]:
    """Parse a metadata list into entries keyed by ROM filename.

    Games without a path or a name are dropped. Paths are reduced to their
    basename and every field is whitespace-trimmed.

    Raises:
        ParseError: If the content is not well-formed or the root is not ``gameList``
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise ParseError("Malformed gamelist XML", line_number=e.position[0], original_error=e) from e

    if root.tag != "gameList":
        raise ParseError(f"Expected a <gameList> document, found <{root.tag}>")

    entries: list[MetadataEntry] = []
    dropped = 0
    for game in root.iter("game"):
        values = {attr: (game.findtext(tag) or "").strip() for tag, attr in FIELD_TAGS}
        values["filename"] = _basename(values["filename"])
        if not values["filename"] or not values["name"]:
            dropped += 1
            continue
        entries.append(MetadataEntry(**values))

    log.debug("Metadata list parsed", entries=len(entries), dropped=dropped)
    return entries


def load_metadata_list(path: Path) -> list[MetadataEntry]:
    """Read and parse a metadata list file.

    Raises:
        FileSystemError: If the file cannot be read
        ParseError: If the content is malformed
    """
    try:
        content = path.read_bytes()
    except OSError as e:
        raise FileSystemError("Cannot read gamelist", original_error=e, path=str(path), operation="load_gamelist") from e

    try:
        return parse_metadata_list(content)
    except ParseError as e:
        if e.source is None:
            e.source = str(path)
        raise


def export_path(filename: str) -> str:
    """Relative path written for a cataloged filename.

    An entry inside a container is exported as the container itself, since
    that is what frontends launch.
    """
    container, sep, _ = filename.partition(".zip/")
    if sep:
        return f"./{container}.zip"
    return f"./{filename}"


def export_entry(entry: CatalogEntry) -> MetadataEntry:
    """Build the metadata-list entry for a cataloged file."""
    game = entry.game
    return MetadataEntry(
        filename=export_path(entry.file.filename),
        name=entry.title,
        description=game.description if game else "",
        release_date=game.release_date if game else "",
        developer=game.developer if game else "",
        publisher=game.publisher if game else "",
        genre=game.genre if game else "",
        players=game.players if game else "",
        rating=game.rating if game else "",
    )


def render_metadata_list(entries: list[MetadataEntry]) -> str:
    """Render entries as a ``gameList`` document; empty fields are left out."""
    root = ET.Element("gameList")
    for entry in entries:
        game = ET.SubElement(root, "game")
        for tag, attr in FIELD_TAGS:
            value = getattr(entry, attr)
            if value:
                ET.SubElement(game, tag).text = value

    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n'


def write_metadata_list(path: Path, entries: list[MetadataEntry]) -> None:
    """Write a metadata list, creating parent directories.

    Raises:
        FileSystemError: If the file cannot be written
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_metadata_list(entries), encoding="utf-8")
    except OSError as e:
        raise FileSystemError("Cannot write gamelist", original_error=e, path=str(path), operation="export_gamelist") from e
    log.info("Metadata list written", path=str(path), entries=len(entries))
