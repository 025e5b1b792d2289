"""Checksum database (DAT) parsing.

Two dialects are understood and both produce the same ``ChecksumRecord`` shape:

- Structured: Logiqx XML as published by No-Intro and Redump::

      <datafile>
        <header><name>Nintendo - Game Boy Advance</name></header>
        <game name="Some Game (USA)">
          <rom name="Some Game (USA).gba" size="4194304" crc="..." md5="..." sha1="..."/>
        </game>
      </datafile>

- Line oriented: ClrMamePro blocks::

      clrmamepro (
          name "Nintendo - Game Boy Advance"
      )
      game (
          name "Some Game (USA)"
          rom ( name "Some Game (USA).gba" size 4194304 crc ... md5 ... sha1 ... )
      )

The dialect is chosen from the first non-blank line, not the file extension.
"""

import re
import xml.etree.ElementTree as ET
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import structlog

from ..models import ChecksumRecord
from .errors import FileSystemError, ParseError, UnresolvedPlatformError

log = structlog.stdlib.get_logger()


class Dialect(Enum):
    STRUCTURED = "structured"
    LINE_ORIENTED = "line_oriented"


# Substring of the lowercased header title -> platform code. A pattern that
# contains another pattern must come before it ("game boy color" before
# "game boy").
HEADER_PLATFORM_PATTERNS: tuple[tuple[str, str], ...] = (
    ("game boy advance", "GBA"),
    ("game boy color", "GBC"),
    ("game boy", "GB"),
    ("wonderswan color", "WSC"),
    ("wonderswan", "WS"),
    ("super nintendo", "SFC"),
    ("super famicom", "SFC"),
    ("nintendo entertainment system", "FC"),
    ("famicom", "FC"),
    ("mega drive", "MD"),
    ("genesis", "MD"),
    ("nintendo 64", "N64"),
    ("nintendo ds", "NDS"),
    ("pc engine", "PCE"),
    ("turbografx", "PCE"),
    ("pc-fx", "PCFX"),
    ("game gear", "GG"),
    ("master system", "SMS"),
    ("saturn", "SS"),
    ("neo geo pocket", "NGP"),
    ("neo geo", "NEOGEO"),
    ("playstation 2", "PS2"),
    ("playstation", "PS1"),
)

GAME_BLOCKS = ("game", "machine", "resource")


@dataclass(frozen=True)
class ChecksumDatabase:
    """Parsed checksum database: its declared title and canonical records."""
    source: str
    platform: str
    dialect: Dialect
    records: list[ChecksumRecord] = field(default_factory=list)


@dataclass
class _RawRom:
    title: str
    crc32: str
    md5: str
    sha1: str
    size: int


def detect_platform_from_header(title: str) -> str | None:
    """Infer a platform code from a DAT header title, most specific pattern first."""
    lowered = title.lower()
    for pattern, code in HEADER_PLATFORM_PATTERNS:
        if pattern in lowered:
            return code
    return None


def detect_dialect(content: str) -> Dialect:
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.lower().startswith("clrmamepro"):
            return Dialect.LINE_ORIENTED
        return Dialect.STRUCTURED
    return Dialect.STRUCTURED


def parse_size(value: str | None) -> int:
    """Parse a declared size; malformed values degrade to zero."""
    try:
        return max(int((value or "").strip()), 0)
    except ValueError:
        return 0


def _parse_structured(content: str) -> tuple[str, list[_RawRom]]:
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise ParseError("Malformed DAT XML", line_number=e.position[0], original_error=e) from e

    if root.tag != "datafile":
        raise ParseError(f"Expected a <datafile> document, found <{root.tag}>")

    header = root.find("header")
    source = ""
    if header is not None:
        source = (header.findtext("name") or "").strip() or (header.findtext("description") or "").strip()

    roms: list[_RawRom] = []
    for game in root:
        if game.tag not in ("game", "machine"):
            continue
        title = (game.get("name") or "").strip()
        for rom in game.iter("rom"):
            roms.append(_RawRom(
                title=title or (rom.get("name") or "").strip(),
                crc32=(rom.get("crc") or "").strip().upper(),
                md5=(rom.get("md5") or "").strip().upper(),
                sha1=(rom.get("sha1") or "").strip().upper(),
                size=parse_size(rom.get("size")),
            ))
    return source, roms


_TOKEN_RE = re.compile(
    r'(?P<space>\s+)'
    r'|(?P<open>\()'
    r'|(?P<close>\))'
    r'|(?P<string>"(?:[^"\\\n]|\\.)*")'
    r'|(?P<word>[^\s()"]+)'
)


@dataclass
class _Token:
    kind: str
    value: str
    line: int


@dataclass
class _Block:
    name: str
    line: int
    fields: dict[str, str] = field(default_factory=dict)
    children: list["_Block"] = field(default_factory=list)


def _tokenize(content: str) -> list[_Token]:
    tokens: list[_Token] = []
    position = 0
    line = 1
    while position < len(content):
        match = _TOKEN_RE.match(content, position)
        if match is None:
            raise ParseError("Unterminated string in DAT", line_number=line)
        kind = match.lastgroup or ""
        text = match.group()
        if kind == "string":
            tokens.append(_Token("value", text[1:-1].replace('\\"', '"'), line))
        elif kind == "word":
            tokens.append(_Token("value", text, line))
        elif kind in ("open", "close"):
            tokens.append(_Token(kind, text, line))
        line += text.count("\n")
        position = match.end()
    return tokens


def _parse_block_body(tokens: list[_Token], index: int, block: _Block) -> int:
    """Fill ``block`` from tokens after its opening parenthesis; returns the index after ``)``."""
    while index < len(tokens):
        token = tokens[index]
        if token.kind == "close":
            return index + 1
        if token.kind != "value":
            raise ParseError("Unexpected '(' in DAT", line_number=token.line)

        key = token.value.lower()
        following = tokens[index + 1] if index + 1 < len(tokens) else None
        if following is None:
            break
        if following.kind == "open":
            child = _Block(name=key, line=token.line)
            index = _parse_block_body(tokens, index + 2, child)
            block.children.append(child)
        elif following.kind == "value":
            # Repeated keys keep the first value
            block.fields.setdefault(key, following.value)
            index += 2
        else:
            # A bare flag right before the closing parenthesis
            block.fields.setdefault(key, "")
            index += 1
    raise ParseError(f"Unterminated '{block.name}' block in DAT", line_number=block.line)


def _parse_blocks(content: str) -> list[_Block]:
    tokens = _tokenize(content)
    blocks: list[_Block] = []
    index = 0
    while index < len(tokens):
        token = tokens[index]
        following = tokens[index + 1] if index + 1 < len(tokens) else None
        if token.kind != "value" or following is None or following.kind != "open":
            raise ParseError("Expected 'name (' at top level of DAT", line_number=token.line)
        block = _Block(name=token.value.lower(), line=token.line)
        index = _parse_block_body(tokens, index + 2, block)
        blocks.append(block)
    return blocks


def _rom_from_block(rom: _Block, game_title: str) -> _RawRom:
    rom_name = rom.fields.get("name", "").strip()
    if not rom_name:
        raise ParseError("ROM entry without a name", line_number=rom.line)
    return _RawRom(
        title=game_title or rom_name,
        crc32=rom.fields.get("crc", "").strip().upper(),
        md5=rom.fields.get("md5", "").strip().upper(),
        sha1=rom.fields.get("sha1", "").strip().upper(),
        size=parse_size(rom.fields.get("size")),
    )


def _parse_line_oriented(content: str) -> tuple[str, list[_RawRom]]:
    source = ""
    roms: list[_RawRom] = []
    for block in _parse_blocks(content):
        if block.name == "clrmamepro":
            if not source:
                source = block.fields.get("name", "").strip() or block.fields.get("description", "").strip()
        elif block.name in GAME_BLOCKS:
            game_title = block.fields.get("name", "").strip()
            for child in block.children:
                if child.name == "rom":
                    roms.append(_rom_from_block(child, game_title))
        elif block.name == "rom":
            roms.append(_rom_from_block(block, ""))
    return source, roms


_PARSERS: dict[Dialect, Callable[[str], tuple[str, list[_RawRom]]]] = {
    Dialect.STRUCTURED: _parse_structured,
    Dialect.LINE_ORIENTED: _parse_line_oriented,
}


def parse_checksum_database(content: str, platform: str | None = None) -> ChecksumDatabase:
    """Parse DAT content into canonical records.

    Args:
        content: Full text of the DAT
        platform: Explicit platform code; overrides header detection

    Returns:
        ChecksumDatabase with the header title as ``source``

    Raises:
        ParseError: If the content is malformed
        UnresolvedPlatformError: If no platform is given and the header
            title matches no known pattern
    """
    content = content.lstrip("\ufeff")
    dialect = detect_dialect(content)
    source, raw_roms = _PARSERS[dialect](content)

    resolved = platform.strip().upper() if platform and platform.strip() else detect_platform_from_header(source)
    if not resolved:
        raise UnresolvedPlatformError(source)

    records = [
        ChecksumRecord(
            title=raw.title,
            platform=resolved,
            crc32=raw.crc32,
            md5=raw.md5,
            sha1=raw.sha1,
            size=raw.size,
        )
        for raw in raw_roms
    ]

    log.info(
        "Checksum database parsed",
        source=source,
        platform=resolved,
        dialect=dialect.value,
        records=len(records),
    )
    return ChecksumDatabase(source=source, platform=resolved, dialect=dialect, records=records)


def load_checksum_database(path: Path, platform: str | None = None) -> ChecksumDatabase:
    """Read and parse a DAT file.

    Raises:
        FileSystemError: If the file cannot be read
        ParseError: If the content is malformed
        UnresolvedPlatformError: If the platform cannot be determined
    """
    try:
        content = path.read_bytes().decode("utf-8-sig", errors="replace")
    except OSError as e:
        raise FileSystemError("Cannot read DAT file", original_error=e, path=str(path), operation="load_dat") from e

    try:
        return parse_checksum_database(content, platform)
    except ParseError as e:
        if e.source is None:
            e.source = str(path)
        raise
