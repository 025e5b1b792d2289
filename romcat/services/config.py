"""Configuration service for managing catalog settings."""

import json
import os
from pathlib import Path

import structlog

from ..models import AppConfig
from .errors import ConfigurationError

log = structlog.stdlib.get_logger()

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def default_data_root() -> Path:
    """Directory holding the catalog database and covers (``ROMCAT_HOME`` or ~/.romcat)."""
    override = os.getenv("ROMCAT_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".romcat"


class ValidationResult:
    """Result of configuration validation."""

    def __init__(self, is_valid: bool, errors: list[str] | None = None) -> None:
        self.is_valid: bool = is_valid
        self.errors: list[str] = errors or []


class ConfigurationService:
    """Service for managing application configuration."""

    def __init__(self, config_path: Path | None = None) -> None:
        self.config_path: Path = config_path or Path.home() / ".config" / "romcat" / "config.json"
        log.debug("Configuration service initialized", config_path=str(self.config_path))

    def load_config(self) -> AppConfig:
        """Load configuration from file or return default configuration."""
        if not self.config_path.exists():
            log.debug("Configuration file not found, using defaults")
            return self._get_default_config()

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data: dict[str, str | int | float | None] = json.load(f)

            config = self._dict_to_config(data)
            validation_result = self.validate_config(config)

            if not validation_result.is_valid:
                log.warning("Invalid configuration loaded, using defaults", errors=validation_result.errors)
                return self._get_default_config()

            log.info("Configuration loaded", config_path=str(self.config_path))
            return config

        except (json.JSONDecodeError, KeyError, TypeError, ValueError, OSError) as e:
            log.error("Failed to load configuration, using defaults", error=str(e))
            return self._get_default_config()

    def save_config(self, config: AppConfig) -> None:
        """Validate and write the configuration, replacing the file atomically."""
        validation_result = self.validate_config(config)
        if not validation_result.is_valid:
            raise ConfigurationError(
                f"Invalid configuration: {', '.join(validation_result.errors)}",
                setting="config",
            )

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.config_path.with_suffix(self.config_path.suffix + ".tmp")

        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(self._config_to_dict(config), f, indent=2, ensure_ascii=False)
            temp_path.replace(self.config_path)
            log.info("Configuration saved", config_path=str(self.config_path))

        except OSError as e:
            log.error("Failed to save configuration", error=str(e))
            temp_path.unlink(missing_ok=True)
            raise

    def validate_config(self, config: AppConfig) -> ValidationResult:
        """Validate configuration settings."""
        errors = []

        for name in ("database_path", "covers_directory"):
            value = getattr(config, name)
            if not isinstance(value, Path):
                errors.append(f"{name} must be a Path object")
            elif not value.is_absolute():
                errors.append(f"{name} must be an absolute path")

        if config.gamedb_directory is not None:
            if not isinstance(config.gamedb_directory, Path):
                errors.append("gamedb_directory must be a Path object or None")
            elif not config.gamedb_directory.is_absolute():
                errors.append("gamedb_directory must be an absolute path")

        if config.log_level not in VALID_LOG_LEVELS:
            errors.append(f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}")

        if not isinstance(config.page_size, int) or isinstance(config.page_size, bool) or config.page_size < 1:
            errors.append("page_size must be a positive integer")
        elif config.page_size > 500:
            errors.append("page_size should not exceed 500")

        if not isinstance(config.request_delay, (int, float)) or config.request_delay < 0:
            errors.append("request_delay must be a non-negative number")
        elif config.request_delay > 60:
            errors.append("request_delay should not exceed 60 seconds")

        if not isinstance(config.request_timeout, (int, float)) or config.request_timeout <= 0:
            errors.append("request_timeout must be a positive number")
        elif config.request_timeout > 300:
            errors.append("request_timeout should not exceed 300 seconds")

        return ValidationResult(len(errors) == 0, errors)

    def _get_default_config(self) -> AppConfig:
        root = default_data_root()
        return AppConfig(
            database_path=root / "romcat.db",
            covers_directory=root / "covers",
            log_level="INFO",
        )

    def _config_to_dict(self, config: AppConfig) -> dict[str, str | int | float | None]:
        return {
            "database_path": str(config.database_path),
            "covers_directory": str(config.covers_directory),
            "gamedb_directory": str(config.gamedb_directory) if config.gamedb_directory else None,
            "log_level": config.log_level,
            "page_size": config.page_size,
            "request_delay": config.request_delay,
            "request_timeout": config.request_timeout,
        }

    def _dict_to_config(self, data: dict[str, str | int | float | None]) -> AppConfig:
        defaults = self._get_default_config()

        gamedb_raw = data.get("gamedb_directory")
        gamedb_directory = Path(str(gamedb_raw)).expanduser() if gamedb_raw else None

        page_size_raw = data.get("page_size", defaults.page_size)
        delay_raw = data.get("request_delay", defaults.request_delay)
        timeout_raw = data.get("request_timeout", defaults.request_timeout)

        return AppConfig(
            database_path=Path(str(data.get("database_path") or defaults.database_path)).expanduser(),
            covers_directory=Path(str(data.get("covers_directory") or defaults.covers_directory)).expanduser(),
            log_level=str(data.get("log_level") or defaults.log_level),
            gamedb_directory=gamedb_directory,
            page_size=int(page_size_raw) if isinstance(page_size_raw, (int, float)) else defaults.page_size,
            request_delay=float(delay_raw) if isinstance(delay_raw, (int, float)) else defaults.request_delay,
            request_timeout=float(timeout_raw) if isinstance(timeout_raw, (int, float)) else defaults.request_timeout,
        )
