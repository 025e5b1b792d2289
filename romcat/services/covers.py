"""Box art downloads from libretro-thumbnails.

Runs in three phases so the network loop never holds catalog state:
snapshot the candidate games, fetch images to disk, then record what was
fetched in one catalog transaction.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

import httpx
import structlog

from ..models import CoverFetchResult
from .catalog_store import CatalogStore
from .http_client import HttpClientService
from .platforms import get_platform

log = structlog.stdlib.get_logger()

THUMBNAIL_BASE_URL = "https://raw.githubusercontent.com/libretro-thumbnails"
IMAGE_TYPE = "boxart"

_UNSAFE_FILENAME_CHARS = re.compile(r'[/\\:*?"<>|]')


def sanitize_cover_filename(title: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", title)


def boxart_url(system: str, title: str) -> str:
    """libretro names thumbnails after the title with ``&`` replaced by ``_``."""
    name = quote(title.replace("&", "_"), safe="()',!")
    return f"{THUMBNAIL_BASE_URL}/{system}/master/Named_Boxarts/{name}.png"


@dataclass(frozen=True)
class CoverCandidate:
    game_id: int
    title: str
    platform: str
    url: str
    path: Path


class CoverArtService:
    """Fetches box art for games that already have an English title."""

    def __init__(self, store: CatalogStore, http_client: HttpClientService, covers_directory: Path) -> None:
        self.store = store
        self.http_client = http_client
        self.covers_directory = covers_directory

    def plan(self, platform: str | None = None) -> tuple[list[CoverCandidate], list[str]]:
        """Snapshot what to fetch.

        Returns:
            (candidates, platforms skipped because they have no thumbnail system)
        """
        platforms = [platform.upper()] if platform else self.store.platforms()
        candidates: list[CoverCandidate] = []
        skipped: list[str] = []

        for code in platforms:
            definition = get_platform(code)
            if definition is None or definition.libretro_system is None:
                log.info("No thumbnail system for platform, skipping", platform=code)
                skipped.append(code)
                continue
            for game_id, title, game_platform in self.store.cover_candidates(code):
                candidates.append(CoverCandidate(
                    game_id=game_id,
                    title=title,
                    platform=game_platform,
                    url=boxart_url(definition.libretro_system, title),
                    path=self.covers_directory / game_platform / f"{sanitize_cover_filename(title)}.png",
                ))

        return candidates, skipped

    async def fetch_covers(self, platform: str | None = None, force: bool = False) -> CoverFetchResult:
        """Download missing box art and record it in the catalog.

        Existing image files are kept and counted as cached unless ``force``.
        A 404, or any other failed request, counts as not found.
        """
        candidates, skipped = self.plan(platform)
        result = CoverFetchResult(skipped_platforms=skipped)
        fetched: list[tuple[int, str, str]] = []

        for candidate in candidates:
            if not force and candidate.path.exists():
                result.cached += 1
                fetched.append((candidate.game_id, IMAGE_TYPE, str(candidate.path)))
                continue

            try:
                await self.http_client.download_file(candidate.url, candidate.path)
            except httpx.HTTPStatusError as e:
                if e.response.status_code != 404:
                    log.warning("Cover request failed", title=candidate.title, status_code=e.response.status_code)
                result.not_found += 1
                continue
            except httpx.RequestError as e:
                log.warning("Cover request failed", title=candidate.title, error=str(e))
                result.not_found += 1
                continue

            result.fetched += 1
            fetched.append((candidate.game_id, IMAGE_TYPE, str(candidate.path)))

        if fetched:
            self.store.record_cover_arts(fetched)

        log.info(
            "Cover fetch complete",
            fetched=result.fetched,
            not_found=result.not_found,
            cached=result.cached,
            skipped_platforms=result.skipped_platforms,
        )
        return result
