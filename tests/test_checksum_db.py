"""Tests for DAT parsing in both dialects."""

from pathlib import Path

import pytest
from hypothesis import given, strategies as st

from romcat.models import ChecksumRecord
from romcat.services.checksum_db import (
    Dialect,
    detect_dialect,
    detect_platform_from_header,
    load_checksum_database,
    parse_checksum_database,
    parse_size,
)
from romcat.services.errors import FileSystemError, ParseError, UnresolvedPlatformError

XML_DAT = """<?xml version="1.0"?>
<!DOCTYPE datafile PUBLIC "-//Logiqx//DTD ROM Management Datafile//EN" "http://www.logiqx.com/dats/datafile.dtd">
<datafile>
  <header>
    <name>Nintendo - Game Boy Advance</name>
    <description>Nintendo - Game Boy Advance (20240101)</description>
  </header>
  <game name="Metroid Fusion (USA)">
    <description>Metroid Fusion (USA)</description>
    <rom name="Metroid Fusion (USA).gba" size="8388608" crc="6c75479c" md5="af5040fc0f579800151ee2a683e2e5b5" sha1="5de8536afe1f0078ee6fe1089f890e8c7aa0a6e8"/>
  </game>
  <game name="Mother 3 (Japan)">
    <rom name="Mother 3 (Japan).gba" size="33554432" crc="0a44569c"/>
  </game>
</datafile>
"""

CMP_DAT = """clrmamepro (
\tname "Nintendo - Game Boy Color"
\tdescription "Nintendo - Game Boy Color"
\tversion 20240101
)

game (
\tname "Pokemon - Crystal Version (USA, Europe)"
\tdescription "Pokemon - Crystal Version (USA, Europe)"
\trom ( name "Pokemon - Crystal Version (USA, Europe).gbc" size 2097152 crc EE6F5188 md5 301899B8087289A6436B0A241FBBB474 sha1 F4CD194BDEE0D04CA4EAC29E09B8E4E9D818C133 flags verified )
)

game (
\tname "Tetris DX (World)"
\trom ( name "Tetris DX (World).gbc" size 524288 crc 5cbd8a70 )
)
"""


class TestDialectDetection:
    """The dialect comes from the first non-blank line."""

    def test_structured(self) -> None:
        assert detect_dialect(XML_DAT) is Dialect.STRUCTURED

    def test_line_oriented(self) -> None:
        assert detect_dialect("\n\n   clrmamepro (\n)") is Dialect.LINE_ORIENTED
        assert detect_dialect("CLRMAMEPRO (\n)") is Dialect.LINE_ORIENTED

    def test_empty(self) -> None:
        assert detect_dialect("") is Dialect.STRUCTURED


class TestHeaderPlatform:
    """Header titles map to platforms, most specific first."""

    @pytest.mark.parametrize(
        ("title", "platform"),
        [
            ("Nintendo - Game Boy Advance", "GBA"),
            ("Nintendo - Game Boy Color", "GBC"),
            ("Nintendo - Game Boy", "GB"),
            ("Nintendo - Nintendo Entertainment System (Headered)", "FC"),
            ("Nintendo - Super Nintendo Entertainment System", "SFC"),
            ("Sega - Mega Drive - Genesis", "MD"),
            ("SNK - Neo Geo Pocket", "NGP"),
            ("Sony - PlayStation 2", "PS2"),
            ("Sony - PlayStation", "PS1"),
            ("Bandai - WonderSwan Color", "WSC"),
        ],
    )
    def test_known_headers(self, title: str, platform: str) -> None:
        assert detect_platform_from_header(title) == platform

    def test_unknown_header(self) -> None:
        assert detect_platform_from_header("Commodore - Amiga") is None


class TestStructuredDialect:
    """Tests for Logiqx XML."""

    def test_records(self) -> None:
        database = parse_checksum_database(XML_DAT)

        assert database.source == "Nintendo - Game Boy Advance"
        assert database.platform == "GBA"
        assert database.dialect is Dialect.STRUCTURED
        assert database.records == [
            ChecksumRecord(
                title="Metroid Fusion (USA)",
                platform="GBA",
                crc32="6C75479C",
                md5="AF5040FC0F579800151EE2A683E2E5B5",
                sha1="5DE8536AFE1F0078EE6FE1089F890E8C7AA0A6E8",
                size=8388608,
            ),
            ChecksumRecord(title="Mother 3 (Japan)", platform="GBA", crc32="0A44569C", size=33554432),
        ]

    def test_explicit_platform_overrides_header(self) -> None:
        database = parse_checksum_database(XML_DAT, platform=" gb ")

        assert database.platform == "GB"
        assert {r.platform for r in database.records} == {"GB"}

    def test_byte_order_mark(self) -> None:
        database = parse_checksum_database("\ufeff" + XML_DAT)

        assert len(database.records) == 2

    def test_malformed_xml(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            parse_checksum_database("<datafile><game name='x'>")

        assert exc_info.value.line_number == 1

    def test_wrong_root(self) -> None:
        with pytest.raises(ParseError):
            parse_checksum_database("<gameList><game/></gameList>", platform="GBA")

    def test_unresolved_platform(self) -> None:
        content = "<datafile><header><name>Commodore - Amiga</name></header></datafile>"

        with pytest.raises(UnresolvedPlatformError) as exc_info:
            parse_checksum_database(content)

        assert exc_info.value.header == "Commodore - Amiga"

    def test_malformed_size_degrades_to_zero(self) -> None:
        content = (
            "<datafile><header><name>Nintendo - Game Boy</name></header>"
            "<game name='Tetris (World)'><rom name='Tetris (World).gb' size='big' crc='46df91ad'/></game>"
            "</datafile>"
        )

        database = parse_checksum_database(content)

        assert database.records[0].size == 0
        assert database.records[0].crc32 == "46DF91AD"


class TestLineOrientedDialect:
    """Tests for ClrMamePro blocks."""

    def test_records(self) -> None:
        database = parse_checksum_database(CMP_DAT)

        assert database.source == "Nintendo - Game Boy Color"
        assert database.platform == "GBC"
        assert database.dialect is Dialect.LINE_ORIENTED
        assert [r.title for r in database.records] == [
            "Pokemon - Crystal Version (USA, Europe)",
            "Tetris DX (World)",
        ]
        crystal = database.records[0]
        assert crystal.crc32 == "EE6F5188"
        assert crystal.md5 == "301899B8087289A6436B0A241FBBB474"
        assert crystal.sha1 == "F4CD194BDEE0D04CA4EAC29E09B8E4E9D818C133"
        assert crystal.size == 2097152
        assert database.records[1].crc32 == "5CBD8A70"
        assert database.records[1].sha1 == ""

    def test_rom_without_name(self) -> None:
        content = 'clrmamepro ( name "Nintendo - Game Boy" )\ngame ( name "X" rom ( size 1 crc 00000000 ) )\n'

        with pytest.raises(ParseError):
            parse_checksum_database(content)

    def test_unterminated_block(self) -> None:
        content = 'clrmamepro ( name "Nintendo - Game Boy" )\ngame (\n name "X"\n rom ( name "x.gb" size 1 )\n'

        with pytest.raises(ParseError) as exc_info:
            parse_checksum_database(content)

        assert exc_info.value.line_number == 2

    def test_unterminated_string(self) -> None:
        content = 'clrmamepro ( name "Nintendo - Game Boy )\n'

        with pytest.raises(ParseError):
            parse_checksum_database(content)

    def test_game_title_falls_back_to_rom_name(self) -> None:
        content = 'clrmamepro ( name "Nintendo - Game Boy" )\ngame ( rom ( name "Untitled.gb" size 4 ) )\n'

        database = parse_checksum_database(content)

        assert database.records[0].title == "Untitled.gb"

    def test_unresolved_platform(self) -> None:
        with pytest.raises(UnresolvedPlatformError):
            parse_checksum_database('clrmamepro ( name "Mystery Machine" )\n')


class TestParseSize:
    """Malformed sizes never fail an import."""

    @given(st.integers(min_value=0, max_value=2**40))
    def test_numbers(self, value: int) -> None:
        assert parse_size(str(value)) == value
        assert parse_size(f"  {value} ") == value

    @pytest.mark.parametrize("value", [None, "", "abc", "1.5", "0x10"])
    def test_malformed(self, value: str | None) -> None:
        assert parse_size(value) == 0

    def test_negative(self) -> None:
        assert parse_size("-5") == 0


class TestLoadChecksumDatabase:
    """Tests for reading DAT files from disk."""

    def test_load(self, tmp_path: Path) -> None:
        path = tmp_path / "gbc.dat"
        path.write_bytes(b"\xef\xbb\xbf" + CMP_DAT.encode("utf-8"))

        database = load_checksum_database(path)

        assert database.platform == "GBC"
        assert len(database.records) == 2

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileSystemError):
            load_checksum_database(tmp_path / "missing.dat")

    def test_parse_error_names_the_file(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.dat"
        path.write_text("<datafile>")

        with pytest.raises(ParseError) as exc_info:
            load_checksum_database(path, platform="GBA")

        assert exc_info.value.source == str(path)
