"""Command-line entry point for the ROM catalog.

This module provides:
- Command-line argument parsing
- Lazy construction of the catalog services
- Error reporting and exit codes
"""

import argparse
import asyncio
import dataclasses
import json
import sys
from collections.abc import Callable
from pathlib import Path

import structlog

from . import __version__
from .models import AppConfig
from .services.catalog_store import CatalogStore
from .services.config import VALID_LOG_LEVELS, ConfigurationService
from .services.covers import CoverArtService
from .services.errors import CatalogError, get_error_service, handle_error
from .services.gamedb import ReferenceCatalog
from .services.http_client import HttpClientService
from .services.logging import setup_logging
from .services.reconciler import Reconciler

log = structlog.stdlib.get_logger()


class ApplicationContext:
    """Container for application services.

    Services are built on first use, so commands that never touch the
    catalog (or the network) never open it.
    """

    def __init__(self, config_path: Path | None = None, database_path: Path | None = None) -> None:
        self._config_path = config_path
        self._database_path = database_path

        self._config_service: ConfigurationService | None = None
        self._config: AppConfig | None = None
        self._store: CatalogStore | None = None
        self._reconciler: Reconciler | None = None

    @property
    def config_service(self) -> ConfigurationService:
        if self._config_service is None:
            self._config_service = ConfigurationService(config_path=self._config_path)
        return self._config_service

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            config = self.config_service.load_config()
            if self._database_path is not None:
                config = dataclasses.replace(config, database_path=self._database_path.expanduser().resolve())
            self._config = config
        return self._config

    @property
    def store(self) -> CatalogStore:
        if self._store is None:
            self._store = CatalogStore(self.config.database_path)
        return self._store

    @property
    def reconciler(self) -> Reconciler:
        if self._reconciler is None:
            self._reconciler = Reconciler(
                self.store,
                reference=ReferenceCatalog(extra_directory=self.config.gamedb_directory),
            )
        return self._reconciler

    def http_client(self) -> HttpClientService:
        return HttpClientService(
            timeout=self.config.request_timeout,
            rate_limit_delay=self.config.request_delay,
        )

    def cleanup(self) -> None:
        if self._store is not None:
            self._store.close()
            self._store = None


def _print_table(rows: list[tuple[str, ...]]) -> None:
    if not rows:
        return
    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]) - 1)]
    for row in rows:
        cells = [cell.ljust(width) for cell, width in zip(row, widths)]
        print("  ".join([*cells, row[-1]]))


# Commands. Each returns the process exit code.

def cmd_scan(context: ApplicationContext, args: argparse.Namespace) -> int:
    result = context.reconciler.scan(args.path)
    print(
        f"Scanned {result.scanned} files: {result.added} added, "
        f"{result.skipped} skipped, {result.errors} errors"
    )
    return 0


def cmd_list(context: ApplicationContext, args: argparse.Namespace) -> int:
    entries = context.reconciler.list_files(args.platform)
    _print_table([(e.file.platform, e.file.crc32, e.file.filename, e.title) for e in entries])
    print(f"{len(entries)} files")
    return 0


def cmd_search(context: ApplicationContext, args: argparse.Namespace) -> int:
    page_size = args.page_size or context.config.page_size
    result = context.reconciler.search(args.query, args.platform, args.page, page_size)
    _print_table([(e.file.platform, e.file.filename, e.title) for e in result.entries])
    pages = max((result.total + result.page_size - 1) // result.page_size, 1)
    print(f"{result.total} matches (page {result.page} of {pages})")
    return 0


def cmd_stats(context: ApplicationContext, args: argparse.Namespace) -> int:
    stats = context.reconciler.stats()
    if args.json:
        print(json.dumps(dataclasses.asdict(stats), indent=2, ensure_ascii=False))
        return 0

    rows = [("PLATFORM", "TOTAL", "MATCHED", "UNMATCHED", "EN", "NATIVE")]
    rows += [
        (p.platform, str(p.total), str(p.matched), str(p.unmatched), str(p.has_title_en), str(p.has_title_native))
        for p in stats.platforms
    ]
    _print_table(rows)
    print(f"Total: {stats.total} files, {stats.matched} matched, {stats.unmatched} unmatched")
    return 0


def cmd_import_dat(context: ApplicationContext, args: argparse.Namespace) -> int:
    created, source = context.reconciler.import_checksum_file(args.file, args.platform)
    print(f"Imported {created} new games from {source or args.file.name}")
    return 0


def cmd_match(context: ApplicationContext, args: argparse.Namespace) -> int:
    matched = context.reconciler.match_checksum_file(args.file, args.platform)
    print(f"Matched {matched} files")
    return 0


def cmd_import_gamelist(context: ApplicationContext, args: argparse.Namespace) -> int:
    result = context.reconciler.import_metadata_lists(args.directory)
    print(
        f"Imported {result.lists} gamelists: {result.created} games created, "
        f"{result.matched} files matched, {result.failed} failed"
    )
    for path in result.skipped_lists:
        print(f"  skipped (unknown platform folder): {path}")
    return 1 if result.failed else 0


def cmd_export_gamelist(context: ApplicationContext, args: argparse.Namespace) -> int:
    written = context.reconciler.export_metadata_lists(args.directory, args.platform)
    for platform, path in written.items():
        print(f"[{platform}] {path}")
    print(f"Exported {len(written)} gamelists")
    return 0


def cmd_enrich(context: ApplicationContext, args: argparse.Namespace) -> int:
    result = context.reconciler.enrich(args.platform)
    print(f"Enriched {result.enriched} games ({result.skipped} skipped - no reference entry)")
    if result.filename_enriched or result.filename_skipped:
        print(f"Enriched {result.filename_enriched} unmatched files by filename ({result.filename_skipped} skipped)")

    if args.show_skipped and result.skipped_titles:
        print("\n--- Skipped titles by platform ---")
        for platform in sorted(result.skipped_titles):
            titles = result.skipped_titles[platform]
            print(f"\n[{platform}] ({len(titles)} skipped)")
            for title in titles:
                print(f"  - {title}")
    return 0


def cmd_fetch_covers(context: ApplicationContext, args: argparse.Namespace) -> int:
    async def run() -> int:
        async with context.http_client() as client:
            service = CoverArtService(context.store, client, context.config.covers_directory)
            result = await service.fetch_covers(args.platform, force=args.force)
        print(f"Fetched {result.fetched} covers ({result.not_found} not found, {result.cached} cached)")
        for platform in result.skipped_platforms:
            print(f"  [{platform}] no thumbnail source, skipped")
        return 0

    return asyncio.run(run())


COMMANDS: dict[str, Callable[[ApplicationContext, argparse.Namespace], int]] = {
    "scan": cmd_scan,
    "list": cmd_list,
    "search": cmd_search,
    "stats": cmd_stats,
    "import-dat": cmd_import_dat,
    "match": cmd_match,
    "import-gamelist": cmd_import_gamelist,
    "export-gamelist": cmd_export_gamelist,
    "enrich": cmd_enrich,
    "fetch-covers": cmd_fetch_covers,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="romcat",
        description="Catalog ROM files and reconcile them against DATs and gamelists",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  romcat scan ~/roms                           Fingerprint every ROM under ~/roms
  romcat import-dat "Nintendo - GBA.dat"       Register titles from a No-Intro DAT
  romcat match "Nintendo - GBA.dat"            Link scanned files to DAT titles
  romcat import-gamelist ~/roms                Apply every gamelist.xml found
  romcat stats --json                          Per-platform match statistics
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, default=None,
                        help="Path to configuration file (default: ~/.config/romcat/config.json)")
    parser.add_argument("--log-level", choices=VALID_LOG_LEVELS, default=None,
                        help="Logging level (default: from configuration)")
    parser.add_argument("--log-dir", type=Path, default=None,
                        help="Directory for JSON log files (default: console only)")
    parser.add_argument("--database", type=Path, default=None,
                        help="Catalog database file (overrides the configuration)")

    subparsers = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    scan = subparsers.add_parser("scan", help="Scan a ROM directory into the catalog")
    scan.add_argument("path", type=Path)

    listing = subparsers.add_parser("list", help="List cataloged files")
    listing.add_argument("--platform")

    search = subparsers.add_parser("search", help="Search filenames and titles")
    search.add_argument("query")
    search.add_argument("--platform")
    search.add_argument("--page", type=int, default=1)
    search.add_argument("--page-size", type=int, default=None)

    stats = subparsers.add_parser("stats", help="Show per-platform statistics")
    stats.add_argument("--json", action="store_true", help="Print machine-readable JSON")

    import_dat = subparsers.add_parser("import-dat", help="Register game titles from a DAT file")
    import_dat.add_argument("file", type=Path)
    import_dat.add_argument("--platform", help="Platform code when the DAT header is not recognized")

    match = subparsers.add_parser("match", help="Link scanned files to DAT entries by hash")
    match.add_argument("file", type=Path)
    match.add_argument("--platform", help="Platform code when the DAT header is not recognized")

    import_gamelist = subparsers.add_parser("import-gamelist", help="Apply gamelist.xml files under a directory")
    import_gamelist.add_argument("directory", type=Path)

    export_gamelist = subparsers.add_parser("export-gamelist", help="Write gamelist.xml files per platform")
    export_gamelist.add_argument("directory", type=Path)
    export_gamelist.add_argument("--platform")

    enrich = subparsers.add_parser("enrich", help="Backfill game details from reference tables")
    enrich.add_argument("--platform")
    enrich.add_argument("--show-skipped", action="store_true", help="List titles with no reference entry")

    covers = subparsers.add_parser("fetch-covers", help="Download box art from libretro-thumbnails")
    covers.add_argument("--platform")
    covers.add_argument("--force", action="store_true", help="Download even when the image exists")

    return parser


def run(argv: list[str] | None = None) -> int:
    """Parse ``argv``, run one command and return its exit code."""
    args = build_parser().parse_args(argv)
    quiet = args.command == "stats" and args.json

    # Configure before anything logs, then again once the configured level is known
    setup_logging(log_level=args.log_level or "INFO", log_dir=args.log_dir, quiet=quiet)
    context = ApplicationContext(config_path=args.config, database_path=args.database)
    if args.log_level is None and context.config.log_level != "INFO":
        setup_logging(log_level=context.config.log_level, log_dir=args.log_dir, quiet=quiet)
    log.debug("Running command", command=args.command, version=__version__)

    try:
        return COMMANDS[args.command](context, args)

    except KeyboardInterrupt:
        log.info("Interrupted by user", command=args.command)
        return 130

    except CatalogError as e:
        error = handle_error(e, operation=args.command, component="cli")
        print(get_error_service().create_user_message(error), file=sys.stderr)
        return 1

    except Exception as e:
        error = handle_error(e, operation=args.command, component="cli")
        log.error("Unhandled exception", command=args.command, error=str(e), exc_info=True)
        print(f"Fatal error: {get_error_service().create_user_message(error, include_suggestions=False)}",
              file=sys.stderr)
        return 1

    finally:
        context.cleanup()


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
