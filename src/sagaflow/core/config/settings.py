"""
Centralized settings for sagaflow.

One validated, cached settings object holds the knobs the scheduler,
middleware and logging layer read their defaults from. Every field can be
set through a ``SAGAFLOW_*`` environment variable or a ``.env`` file.

Tags:
    sagaflow-core, configuration, settings, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerBackendKind(str, Enum):
    """Which tick driver the scheduler uses when none is passed explicitly."""

    THREAD = "thread"
    ASYNCIO = "asyncio"


class LogFormat(str, Enum):
    JSON = "json"
    CONSOLE = "console"


class SagaflowSettings(BaseSettings):
    """Sagaflow configuration.

    All fields can be set via ``SAGAFLOW_*`` environment variables (e.g.
    ``SAGAFLOW_SCHEDULER_INTERVAL_SECONDS=5``).
    """

    model_config = SettingsConfigDict(
        env_prefix="SAGAFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ──────────────────────────────────────────────────
    service_name: str = Field(default="sagaflow")
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default=LogFormat.CONSOLE)

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_backend: SchedulerBackendKind = Field(default=SchedulerBackendKind.THREAD)
    scheduler_interval_seconds: float = Field(default=1.0, gt=0)
    cron_horizon_days: int = Field(default=4 * 365 + 1, ge=1)

    # ── Middleware defaults ──────────────────────────────────────
    step_timeout_seconds: float | None = Field(default=None)

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unsupported log level: {value!r}")
        return level

    @model_validator(mode="after")
    def _check_timeout(self) -> SagaflowSettings:
        if self.step_timeout_seconds is not None and self.step_timeout_seconds <= 0:
            raise ValueError("step_timeout_seconds must be positive when set")
        return self


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, SagaflowSettings] = {}


def get_settings(*, _force_reload: bool = False) -> SagaflowSettings:
    """Load, validate, and cache a :class:`SagaflowSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = SagaflowSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
