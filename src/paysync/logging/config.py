"""Logging configuration management for PaySync.

One root configuration is shared by the CLI, the local worker and the
Dagster ops. Console output always goes to stderr: commands print ids,
tables and counters on stdout and those must stay machine readable.
"""

import logging
import os
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

DEFAULT_LOG_FILE = Path("logs/paysync.log")

# Third-party loggers capped at these levels
NOISY_LOGGERS: dict[str, int] = {
    "urllib3": logging.WARNING,
    "dagster": logging.INFO,
}


@dataclass
class LoggingConfig:
    """Handler settings for the root logger."""

    level: str = "INFO"
    format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    cli_format_string: str = "%(message)s"
    log_to_file: bool = True
    log_file_path: Path = DEFAULT_LOG_FILE
    max_file_size_mb: int = 50
    backup_count: int = 5
    force_reconfigure: bool = False

    @classmethod
    def from_environment(cls) -> "LoggingConfig":
        """Read LOG_LEVEL, LOG_TO_FILE, LOG_FILE_PATH and the rotation variables."""
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_to_file=os.getenv("LOG_TO_FILE", "true").lower() == "true",
            log_file_path=Path(os.getenv("LOG_FILE_PATH", str(DEFAULT_LOG_FILE))),
            max_file_size_mb=int(os.getenv("LOG_MAX_FILE_SIZE_MB", "50")),
            backup_count=int(os.getenv("LOG_BACKUP_COUNT", "5")),
        )

    @classmethod
    def from_settings(cls, settings: Any) -> "LoggingConfig":
        """Build from the `logging` section of PaySyncSettings."""
        return cls(
            level=settings.level,
            log_to_file=settings.log_to_file,
            log_file_path=settings.log_file_path,
            max_file_size_mb=settings.max_file_size_mb,
            backup_count=settings.backup_count,
        )


def _build_handlers(config: LoggingConfig, cli_mode: bool) -> list[logging.Handler]:
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(
        logging.Formatter(config.cli_format_string if cli_mode else config.format_string)
    )
    handlers: list[logging.Handler] = [console]

    if config.log_to_file:
        config.log_file_path.parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(
            config.log_file_path,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        rotating.setFormatter(logging.Formatter(config.format_string))
        handlers.append(rotating)

    return handlers


def setup_logging(
    config: LoggingConfig | None = None,
    cli_mode: bool = False,
    verbose: bool = False,
) -> None:
    """Configure the root logger.

    Args:
        config: Handler settings. If None, loads from environment.
        cli_mode: If True, console lines carry only the message
        verbose: If True, log at DEBUG whatever the configured level
    """
    if config is None:
        config = LoggingConfig.from_environment()

    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, config.level),
        handlers=_build_handlers(config, cli_mode),
        force=config.force_reconfigure,
    )

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
