"""
Shared pytest fixtures and configuration for sagaflow tests.

This module provides:
- Registry, settings, lint-rule and logging-context cleanup for isolation
- Small reusable steps that record what ran into a shared journal
- A controllable clock for scheduler tests
"""

import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Generator

import pytest

# Ensure sagaflow package is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sagaflow.core.config import clear_settings_cache
from sagaflow.core.logging import clear_context
from sagaflow.orchestration import CompensatingStep, Step, clear_workflow_registry
from sagaflow.orchestration.validator import clear_custom_rules


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without an explicit marker as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_global_state() -> Generator[None, None, None]:
    """Reset every process-wide registry and cache around each test."""
    clear_workflow_registry()
    clear_settings_cache()
    clear_custom_rules()
    clear_context()
    yield
    clear_workflow_registry()
    clear_settings_cache()
    clear_custom_rules()
    clear_context()


# =============================================================================
# Step Fixtures
# =============================================================================


class Journal(list):
    """Ordered record of side effects produced by test steps."""


class RecordStep(Step):
    """Appends its name to the journal."""

    def __init__(self, name: str, journal: Journal):
        self.name = name
        self.journal = journal

    async def execute(self, context):
        self.journal.append(self.name)


class FailStep(Step):
    """Raises ``error`` (a RuntimeError by default)."""

    def __init__(self, name: str, journal: Journal | None = None, error: Exception | None = None):
        self.name = name
        self.journal = journal
        self.error = error or RuntimeError(f"{name} failed")

    async def execute(self, context):
        if self.journal is not None:
            self.journal.append(self.name)
        raise self.error


class UndoableStep(CompensatingStep):
    """Records ``name`` on execute and ``undo:name`` on compensate."""

    def __init__(self, name: str, journal: Journal, undo_error: Exception | None = None):
        self.name = name
        self.journal = journal
        self.undo_error = undo_error

    async def execute(self, context):
        self.journal.append(self.name)

    async def compensate(self, context):
        self.journal.append(f"undo:{self.name}")
        if self.undo_error is not None:
            raise self.undo_error


@pytest.fixture
def journal() -> Journal:
    return Journal()


@pytest.fixture
def record(journal: Journal):
    """Factory: ``record("A")`` builds a step that journals ``"A"``."""
    return lambda name: RecordStep(name, journal)


@pytest.fixture
def undoable(journal: Journal):
    """Factory: ``undoable("A")`` builds a compensating step."""
    return lambda name, undo_error=None: UndoableStep(name, journal, undo_error)


@pytest.fixture
def failing(journal: Journal):
    """Factory: ``failing("A")`` builds a step that journals then raises."""
    return lambda name, error=None: FailStep(name, journal, error)


# =============================================================================
# Clock Fixture
# =============================================================================


class FakeClock:
    """Manually advanced clock, callable like ``datetime.now``."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 10, 15, 30, tzinfo=UTC))
