"""Sagaflow configuration."""

from sagaflow.core.config.settings import (
    LogFormat,
    SagaflowSettings,
    SchedulerBackendKind,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "LogFormat",
    "SagaflowSettings",
    "SchedulerBackendKind",
    "clear_settings_cache",
    "get_settings",
]
