"""Configuration data models."""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppConfig:
    """Application configuration settings."""
    database_path: Path
    covers_directory: Path
    log_level: str
    gamedb_directory: Path | None = None  # Extra reference tables, merged over the bundled ones
    page_size: int = 50
    request_delay: float = 0.1  # Seconds between cover art requests
    request_timeout: float = 30.0
