"""Tests for sagaflow.core.config.

Covers:
- SagaflowSettings defaults
- SAGAFLOW_* environment overrides
- Field validation
- get_settings caching and clear_settings_cache
"""

import pytest
from pydantic import ValidationError

from sagaflow.core.config import (
    LogFormat,
    SagaflowSettings,
    SchedulerBackendKind,
    clear_settings_cache,
    get_settings,
)


@pytest.fixture(autouse=True)
def no_dotenv(tmp_path, monkeypatch):
    """Run from an empty directory so a developer's .env cannot leak in."""
    monkeypatch.chdir(tmp_path)


class TestSagaflowSettingsDefaults:
    def test_defaults(self):
        s = SagaflowSettings()
        assert s.service_name == "sagaflow"
        assert s.log_level == "INFO"
        assert s.log_format == LogFormat.CONSOLE
        assert s.scheduler_backend == SchedulerBackendKind.THREAD
        assert s.scheduler_interval_seconds == 1.0
        assert s.cron_horizon_days == 1461
        assert s.step_timeout_seconds is None


class TestSagaflowSettingsEnvOverride:
    def test_interval_from_env(self, monkeypatch):
        monkeypatch.setenv("SAGAFLOW_SCHEDULER_INTERVAL_SECONDS", "5")
        assert SagaflowSettings().scheduler_interval_seconds == 5.0

    def test_backend_from_env(self, monkeypatch):
        monkeypatch.setenv("SAGAFLOW_SCHEDULER_BACKEND", "asyncio")
        assert SagaflowSettings().scheduler_backend == SchedulerBackendKind.ASYNCIO

    def test_log_level_normalized(self, monkeypatch):
        monkeypatch.setenv("SAGAFLOW_LOG_LEVEL", "debug")
        assert SagaflowSettings().log_level == "DEBUG"

    def test_step_timeout_from_env(self, monkeypatch):
        monkeypatch.setenv("SAGAFLOW_STEP_TIMEOUT_SECONDS", "2.5")
        assert SagaflowSettings().step_timeout_seconds == 2.5

    def test_unprefixed_variables_ignored(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        assert SagaflowSettings().log_level == "INFO"

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("SAGAFLOW_SERVICE_NAME=from-dotenv\n")
        assert SagaflowSettings().service_name == "from-dotenv"


class TestSagaflowSettingsValidation:
    def test_unknown_level(self):
        with pytest.raises(ValidationError):
            SagaflowSettings(log_level="chatty")

    def test_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            SagaflowSettings(scheduler_interval_seconds=0)

    def test_horizon_at_least_one_day(self):
        with pytest.raises(ValidationError):
            SagaflowSettings(cron_horizon_days=0)

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            SagaflowSettings(step_timeout_seconds=-1)


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_clear_cache_reloads(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("SAGAFLOW_SERVICE_NAME", "reloaded")
        assert get_settings().service_name == first.service_name
        clear_settings_cache()
        assert get_settings().service_name == "reloaded"

    def test_force_reload(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("SAGAFLOW_CRON_HORIZON_DAYS", "30")
        second = get_settings(_force_reload=True)
        assert second is not first
        assert second.cron_horizon_days == 30
