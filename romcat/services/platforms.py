"""Platform registry and folder-based platform classification.

Platforms are recognized from folder names in the collection, the way
EmulationStation-style ROM trees are laid out::

    roms/
    ├── gba/
    │   └── Some Game (USA).gba
    └── fc/
        └── japan/game.zip      (container carrying game.nes)

Every lookup in this module walks an explicit ordered sequence, so the
first match is always well defined.
"""

from dataclasses import dataclass
from pathlib import Path, PurePath

import structlog

log = structlog.stdlib.get_logger()

UNKNOWN_PLATFORM = "unknown"
CONTAINER_EXTENSIONS = (".zip",)


@dataclass(frozen=True)
class PlatformDefinition:
    """A platform and how files for it are recognized."""

    code: str
    full_name: str
    folders: tuple[str, ...]
    extensions: tuple[str, ...]  # Empty means any extension is accepted
    container_is_unit: bool = False  # The .zip itself is the ROM (arcade sets)
    libretro_system: str | None = None


PLATFORMS: tuple[PlatformDefinition, ...] = (
    # Nintendo
    PlatformDefinition("FC", "Nintendo Famicom / NES", ("fc", "nes"), (".nes",),
                       libretro_system="Nintendo_-_Nintendo_Entertainment_System"),
    PlatformDefinition("SFC", "Nintendo Super Famicom / SNES", ("sfc", "snes"), (".sfc", ".smc"),
                       libretro_system="Nintendo_-_Super_Nintendo_Entertainment_System"),
    PlatformDefinition("GB", "Nintendo Game Boy", ("gb",), (".gb",),
                       libretro_system="Nintendo_-_Game_Boy"),
    PlatformDefinition("GBC", "Nintendo Game Boy Color", ("gbc",), (".gbc",),
                       libretro_system="Nintendo_-_Game_Boy_Color"),
    PlatformDefinition("GBA", "Nintendo Game Boy Advance", ("gba",), (".gba",),
                       libretro_system="Nintendo_-_Game_Boy_Advance"),
    PlatformDefinition("N64", "Nintendo 64", ("n64",), (".n64", ".z64", ".v64"),
                       libretro_system="Nintendo_-_Nintendo_64"),
    PlatformDefinition("NDS", "Nintendo DS", ("nds",), (".nds",),
                       libretro_system="Nintendo_-_Nintendo_DS"),

    # Sega
    PlatformDefinition("MD", "Sega Mega Drive / Genesis", ("md", "genesis", "megadrive"), (".md", ".bin", ".gen"),
                       libretro_system="Sega_-_Mega_Drive_-_Genesis"),
    PlatformDefinition("GG", "Sega Game Gear", ("gg",), (".gg",),
                       libretro_system="Sega_-_Game_Gear"),
    PlatformDefinition("SMS", "Sega Master System", ("sms",), (".sms",),
                       libretro_system="Sega_-_Master_System_-_Mark_III"),
    PlatformDefinition("SS", "Sega Saturn", ("segasaturn",), (".iso", ".bin", ".cue")),

    # Sony
    PlatformDefinition("PS1", "Sony PlayStation", ("ps1", "psx"), (".bin", ".cue", ".img", ".iso")),
    PlatformDefinition("PS2", "Sony PlayStation 2", ("ps2",), (".iso", ".bin", ".cue")),

    # NEC
    PlatformDefinition("PCE", "NEC PC Engine / TurboGrafx-16", ("pce", "pcengine", "pcenginecd"), (".pce",),
                       libretro_system="NEC_-_PC_Engine_-_TurboGrafx_16"),
    PlatformDefinition("PCFX", "NEC PC-FX", ("pcfx",), (".iso", ".bin", ".cue")),

    # Bandai / SNK
    PlatformDefinition("WS", "Bandai WonderSwan", ("ws", "wonderswan"), (".ws",),
                       libretro_system="Bandai_-_WonderSwan"),
    PlatformDefinition("WSC", "Bandai WonderSwan Color", ("wsc", "wonderswancolor"), (".wsc",),
                       libretro_system="Bandai_-_WonderSwan_Color"),
    PlatformDefinition("NGP", "SNK Neo Geo Pocket", ("ngp",), (".ngp",),
                       libretro_system="SNK_-_Neo_Geo_Pocket"),
    PlatformDefinition("NEOGEO", "SNK Neo Geo", ("neogeo",), (".zip",), container_is_unit=True),
    PlatformDefinition("ARCADE", "Arcade", ("arcade",), (".zip",), container_is_unit=True),

    # Computers and others
    PlatformDefinition("MSX", "Microsoft MSX", ("msx",), (".rom",)),
    PlatformDefinition("PICO8", "PICO-8", ("pico8",), (".p8", ".png")),
)

PLATFORMS_BY_CODE: dict[str, PlatformDefinition] = {p.code: p for p in PLATFORMS}

FOLDER_PLATFORMS: tuple[tuple[str, str], ...] = tuple(
    (folder, platform.code) for platform in PLATFORMS for folder in platform.folders
)


def get_platform(code: str) -> PlatformDefinition | None:
    return PLATFORMS_BY_CODE.get(code.upper())


def platform_for_folder(name: str) -> str | None:
    """Return the platform code bound to a folder name, case-insensitively."""
    lowered = name.lower()
    for folder, code in FOLDER_PLATFORMS:
        if folder == lowered:
            return code
    return None


def classify_path(root: Path | str, path: Path | str) -> str:
    """Return the platform code for ``path`` found under scan ``root``.

    If the root folder itself is a platform folder, that platform applies to
    everything below it. Otherwise directory components are examined from the
    root downward and the top-most recognized folder wins. Returns
    ``UNKNOWN_PLATFORM`` when no folder is recognized.
    """
    root_path = PurePath(root)
    root_platform = platform_for_folder(root_path.name)
    if root_platform:
        return root_platform

    try:
        relative = PurePath(path).relative_to(root_path)
    except ValueError:
        log.debug("Path is outside scan root", root=str(root), path=str(path))
        return UNKNOWN_PLATFORM

    # The last part is the file itself
    for part in relative.parts[:-1]:
        code = platform_for_folder(part)
        if code:
            return code
    return UNKNOWN_PLATFORM


def is_valid_extension(platform: str, extension: str) -> bool:
    """Check ``extension`` (with leading dot) against the platform allow-list.

    Platforms without a declared list accept anything.
    """
    definition = get_platform(platform)
    if definition is None or not definition.extensions:
        return True
    return extension.lower() in definition.extensions


def container_is_unit(platform: str) -> bool:
    """True when containers on this platform are hashed whole instead of opened."""
    definition = get_platform(platform)
    return definition.container_is_unit if definition else False


def is_container(path: Path | str) -> bool:
    return PurePath(path).suffix.lower() in CONTAINER_EXTENSIONS


def get_supported_platforms() -> list[str]:
    return [p.code for p in PLATFORMS]
