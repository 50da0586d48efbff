"""PaySync settings.

One frozen settings object per profile, read from PAYSYNC_* environment
variables and the profile's .env file. Sections map to the components that
consume them: scheduler, retry policy, outbox, events, deleter and logging.
"""

import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROFILE_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


class DatabaseConfig(BaseModel):
    """Database configuration settings."""

    model_config = ConfigDict(frozen=True)

    path: Path = Field(
        default=Path("data/duckdb/paysync.duckdb"),
        description="Path to DuckDB database file",
    )
    create_dirs: bool = Field(
        default=True, description="Automatically create database directories"
    )

    @field_validator("path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Ensure database path has correct extension."""
        if str(v) != ":memory:" and not str(v).endswith((".db", ".duckdb")):
            raise ValueError("Database path must end with .db or .duckdb")
        return v


class SchedulerConfig(BaseModel):
    """Task-tree scheduler settings."""

    model_config = ConfigDict(frozen=True)

    default_page_size: int = Field(
        default=25, ge=1, le=10_000, description="Page size when a plugin declares none"
    )
    fetch_timeout: float = Field(
        default=60.0, gt=0, description="Timeout in seconds for a single plugin call"
    )
    sync_interval: float = Field(
        default=300.0, gt=0, description="Seconds between two sync cycles in the worker"
    )


class RetryConfig(BaseModel):
    """Retry policy applied to every plugin call."""

    model_config = ConfigDict(frozen=True)

    initial_interval: float = Field(default=1.0, ge=0, le=60.0)
    backoff_coefficient: float = Field(default=2.0, ge=1.0, le=10.0)
    maximum_interval: float = Field(default=60.0, ge=0)
    maximum_attempts: int = Field(default=5, ge=1, le=100)


class OutboxConfig(BaseModel):
    """Outbox publisher settings."""

    model_config = ConfigDict(frozen=True)

    poll_limit: int = Field(default=100, ge=1, le=10_000)
    max_retries: int = Field(
        default=10, ge=0, description="Failed deliveries tolerated before dead-lettering"
    )
    poll_interval: float = Field(
        default=5.0, gt=0, description="Seconds between two outbox polls"
    )
    retention_days: int = Field(
        default=30, ge=1, description="Days to keep processed outbox rows"
    )


class EventsConfig(BaseModel):
    """Event publication settings."""

    model_config = ConfigDict(frozen=True)

    outbox_enabled: bool = Field(
        default=True,
        description="Queue events through the outbox instead of publishing inline",
    )
    publisher: Literal["file", "log"] = Field(default="file")
    file_path: Path = Field(default=Path("data/events/events.jsonl"))


class DeleterConfig(BaseModel):
    """Batch deletion settings."""

    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(default=1000, ge=1, le=100_000)


class LoggingConfig(BaseModel):
    """Logging configuration settings."""

    model_config = ConfigDict(frozen=True)

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_to_file: bool = Field(default=True, description="Enable file logging")
    log_file_path: Path = Field(
        default=Path("logs/paysync.log"), description="Path to log file"
    )
    max_file_size_mb: int = Field(default=50, ge=1, le=1000)
    backup_count: int = Field(default=5, ge=1, le=50)


class PaySyncSettings(BaseSettings):
    """Root settings object.

    Environment variables are loaded with the PAYSYNC_ prefix.
    For nested configs, use double underscores: PAYSYNC_OUTBOX__MAX_RETRIES

    Profile Support:
    - Loads from .env.{profile} files (e.g., .env.dev, .env.prod)
    - Falls back to .env
    """

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    outbox: OutboxConfig = Field(default_factory=OutboxConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    deleter: DeleterConfig = Field(default_factory=DeleterConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    debug: bool = Field(default=False, description="Enable debug mode")
    profile: str = Field(default="default", description="Configuration profile name")

    @field_validator("profile")
    @classmethod
    def validate_profile_name(cls, v: str) -> str:
        """Ensure profile name is safe for use as a filename."""
        if not v:
            raise ValueError("Profile name cannot be empty")
        if not _PROFILE_PATTERN.match(v):
            raise ValueError(
                "Profile name must contain only alphanumeric characters, "
                "dashes, and underscores"
            )
        return v

    @model_validator(mode="after")
    def validate_retry_bounds(self) -> "PaySyncSettings":
        """Reject a retry policy whose first interval exceeds its cap."""
        if self.retry.initial_interval > self.retry.maximum_interval:
            raise ValueError("retry.initial_interval cannot exceed maximum_interval")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Load `.env.{profile}` when it exists, `.env` otherwise."""
        from pydantic_settings import DotEnvSettingsSource

        init_dict = init_settings.init_kwargs if init_settings else {}
        profile = init_dict.get("profile", "default")  # type: ignore[reportUnknownMemberType]

        profile_env_file = Path(f".env.{profile}")
        env_file = str(profile_env_file) if profile_env_file.exists() else ".env"

        custom_dotenv = DotEnvSettingsSource(
            settings_cls,
            env_file=env_file,
            env_file_encoding="utf-8",
        )

        return (
            init_settings,
            env_settings,
            custom_dotenv,
            file_secret_settings,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PAYSYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    def create_directories(self) -> None:
        """Create necessary directories for the application."""
        directories = [self.logging.log_file_path.parent]
        if str(self.database.path) != ":memory:":
            directories.append(self.database.path.parent)
        if self.events.publisher == "file":
            directories.append(self.events.file_path.parent)

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)


_settings_cache: dict[str, PaySyncSettings] = {}
_current_profile: str = "default"


def _validate_profile(profile: str) -> None:
    if not profile:
        raise ValueError("Profile name cannot be empty")
    if not _PROFILE_PATTERN.match(profile):
        raise ValueError(
            f"Invalid profile: {profile}. "
            "Profile name must contain only alphanumeric characters, dashes, and underscores"
        )


def get_settings(profile: str | None = None) -> PaySyncSettings:
    """Return the cached settings of a profile, loading them on first use.

    Directories for the database, log file and event file are created
    when `database.create_dirs` is set.

    Args:
        profile: Profile name. Defaults to the current profile.

    Returns:
        PaySyncSettings: The configuration instance for the profile

    Raises:
        ValueError: If configuration is missing or invalid
    """
    if profile is None:
        profile = _current_profile

    if profile in _settings_cache:
        return _settings_cache[profile]

    try:
        settings = PaySyncSettings(profile=profile)
        if settings.database.create_dirs:
            settings.create_directories()
    except Exception as e:
        raise ValueError(f"Configuration error for profile '{profile}': {e}") from e

    _settings_cache[profile] = settings
    return settings


def set_current_profile(profile: str) -> None:
    """Set the current active profile.

    Raises:
        ValueError: If profile name contains invalid characters
    """
    global _current_profile

    _validate_profile(profile)
    _current_profile = profile


def get_current_profile() -> str:
    """Get the current active profile."""
    return _current_profile


def clear_settings_cache() -> None:
    """Drop every cached settings instance."""
    _settings_cache.clear()


def reload_settings(profile: str | None = None) -> PaySyncSettings:
    """Reload settings from environment variables.

    Args:
        profile: Profile to reload. If None, reloads current profile.

    Returns:
        PaySyncSettings: The reloaded configuration instance
    """
    if profile is None:
        profile = _current_profile

    _settings_cache.pop(profile, None)
    return get_settings(profile)


def get_database_path() -> Path:
    """Get the configured database path for the current profile."""
    return get_settings().database.path
