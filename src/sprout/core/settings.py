"""Environment-driven settings for sprout.

Manifesto:
    Operational knobs (log format, worker pool size, weather cache TTL) are
    read once from ``SPROUT_*`` environment variables or a ``.env`` file and
    validated at startup, never looked up ad hoc while jobs are firing.

Examples:
    >>> from sprout.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.weather_cache_ttl_seconds
    300

Tags:
    settings, configuration, pydantic, environment

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class SproutSettings(BaseSettings):
    """Settings for the scheduling engine.

    Fields
    ──────
    service_name                     : Name stamped on every log line
    log_level / log_format           : structlog level and renderer
    scheduler_max_workers            : Worker threads that run job fires
    scheduler_stop_timeout_seconds   : How long stop() waits for the loop thread
    weather_cache_ttl_seconds        : Lifetime of cached weather responses
    weather_cache_max_entries        : Bound on the weather response cache
    history_completed_cutoff_minutes : Age after which a completed watering is hidden
    run_migrations_on_startup        : Migrate stored records before scheduling
    """

    model_config = SettingsConfigDict(
        env_prefix="SPROUT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ──────────────────────────────────────────────────
    service_name: str = Field(default="sprout")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or console")

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_max_workers: int = Field(default=8, gt=0)
    scheduler_stop_timeout_seconds: float = Field(default=5.0, gt=0)

    # ── Weather ──────────────────────────────────────────────────
    weather_cache_ttl_seconds: int = Field(default=300, gt=0)
    weather_cache_max_entries: int = Field(default=1000, gt=0)

    # ── History ──────────────────────────────────────────────────
    history_completed_cutoff_minutes: int = Field(default=60, gt=0)

    # ── Startup ──────────────────────────────────────────────────
    run_migrations_on_startup: bool = Field(default=True)

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return level

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, value: str) -> str:
        fmt = value.lower()
        if fmt not in {"json", "console"}:
            raise ValueError("log_format must be 'json' or 'console'")
        return fmt


_settings_cache: dict[str, SproutSettings] = {}


def get_settings(*, _force_reload: bool = False) -> SproutSettings:
    """Load, validate, and cache a :class:`SproutSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    settings = SproutSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = ["SproutSettings", "get_settings", "clear_settings_cache"]
