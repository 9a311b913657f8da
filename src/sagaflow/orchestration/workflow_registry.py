"""Workflow Registry - name → workflow-factory lookup.

Manifesto:
Applications define workflows in many modules. The registry gives the
scheduler (and any other runner) one table to resolve workflows by name
without knowing where they were defined.

ARCHITECTURE
────────────
::

    WorkflowRegistry
      register(name, factory | workflow)   → stores a zero-arg factory
      resolve(name)                        → factory() or WorkflowNotFoundError
      names() / contains() / unregister() / clear() / stats()

    Module-level default registry:
      register_workflow(...)   (also usable as a decorator)
      get_workflow(name) / list_workflows() / workflow_exists(name)
      clear_workflow_registry()

BEST PRACTICES
──────────────
- Call ``clear_workflow_registry()`` in test fixtures to avoid leaks.
- Register factories when each run should get fresh step instances;
  register a built workflow when steps are stateless.

Example::

    registry = WorkflowRegistry()
    registry.register("orders.checkout", build_checkout)
    workflow = registry.resolve("orders.checkout")

Tags:
    sagaflow, orchestration, registry, lookup, factory

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any, TypeVar, overload

from sagaflow.core.logging import get_logger
from sagaflow.orchestration.exceptions import WorkflowNotFoundError
from sagaflow.orchestration.workflow import TypedWorkflow, Workflow

logger = get_logger(__name__)

WorkflowFactory = Callable[[], Workflow]
F = TypeVar("F", bound=Callable[[], Workflow])


def _as_factory(workflow_or_factory: Workflow | WorkflowFactory) -> WorkflowFactory:
    if isinstance(workflow_or_factory, Workflow):
        return lambda: workflow_or_factory
    if callable(workflow_or_factory):
        return workflow_or_factory
    raise TypeError(f"Expected Workflow or factory, got {type(workflow_or_factory).__name__}")


class WorkflowRegistry:
    """Thread-safe mapping of workflow names to factories."""

    def __init__(self) -> None:
        self._factories: dict[str, WorkflowFactory] = {}
        self._lock = threading.Lock()
        self._resolve_count = 0

    def register(
        self,
        name: str,
        workflow_or_factory: Workflow | WorkflowFactory,
        *,
        replace: bool = False,
    ) -> None:
        """Register a factory (or a built workflow) under ``name``.

        Raises:
            ValueError: ``name`` is blank, or already registered and ``replace`` is False
            TypeError: the second argument is neither a Workflow nor callable
        """
        if not name or not name.strip():
            raise ValueError("Workflow name must be non-empty")
        factory = _as_factory(workflow_or_factory)
        with self._lock:
            if name in self._factories and not replace:
                raise ValueError(f"Workflow '{name}' is already registered")
            self._factories[name] = factory
        logger.debug("workflow_registered", name=name)

    def resolve(self, name: str) -> Workflow:
        """Build the workflow registered under ``name``.

        Raises:
            WorkflowNotFoundError: nothing is registered under ``name``
            TypeError: the factory returned something other than a Workflow
        """
        with self._lock:
            factory = self._factories.get(name)
            available = sorted(self._factories) if factory is None else []
            self._resolve_count += 1
        if factory is None:
            raise WorkflowNotFoundError(name, available)
        workflow = factory()
        if not isinstance(workflow, Workflow):
            raise TypeError(f"Factory for '{name}' returned {type(workflow).__name__}, expected Workflow")
        return workflow

    def resolve_typed(self, name: str, data_type: type) -> TypedWorkflow:
        """Resolve ``name`` and check it is a typed workflow over ``data_type``."""
        workflow = self.resolve(name)
        if not isinstance(workflow, TypedWorkflow) or workflow.data_type is not data_type:
            raise TypeError(f"Workflow '{name}' is not a typed workflow over {data_type.__name__}")
        return workflow

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._factories.pop(name, None) is not None

    def contains(self, name: str) -> bool:
        with self._lock:
            return name in self._factories

    __contains__ = contains

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._factories)

    def clear(self) -> None:
        with self._lock:
            self._factories.clear()
            self._resolve_count = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {"registered": len(self._factories), "resolves": self._resolve_count}

    def __len__(self) -> int:
        with self._lock:
            return len(self._factories)


# =============================================================================
# Default registry
# =============================================================================

_default_registry = WorkflowRegistry()


def get_default_registry() -> WorkflowRegistry:
    return _default_registry


@overload
def register_workflow(workflow_or_factory: Workflow) -> Workflow: ...
@overload
def register_workflow(workflow_or_factory: F) -> F: ...
@overload
def register_workflow(workflow_or_factory: str) -> Callable[[F], F]: ...


def register_workflow(workflow_or_factory: Any) -> Any:
    """
    Register a workflow in the default registry.

    Examples:
        # A built workflow, under its own name
        register_workflow(checkout)

        # A factory; called once to learn the name, then on every resolve
        @register_workflow
        def checkout():
            return Workflow.create("orders.checkout").step(...).build()

        # A factory under an explicit name
        @register_workflow("orders.checkout")
        def checkout():
            ...
    """
    if isinstance(workflow_or_factory, str):
        name = workflow_or_factory

        def decorator(factory: F) -> F:
            _default_registry.register(name, factory)
            return factory

        return decorator

    if isinstance(workflow_or_factory, Workflow):
        _default_registry.register(workflow_or_factory.name, workflow_or_factory)
        return workflow_or_factory

    if callable(workflow_or_factory):
        probe = workflow_or_factory()
        if not isinstance(probe, Workflow):
            raise TypeError(
                f"Expected Workflow, got {type(probe).__name__}. "
                "If using as decorator, the function must return a Workflow."
            )
        _default_registry.register(probe.name, workflow_or_factory)
        return workflow_or_factory

    raise TypeError(f"Expected Workflow, factory or name, got {type(workflow_or_factory).__name__}")


def get_workflow(name: str) -> Workflow:
    """Resolve ``name`` from the default registry."""
    return _default_registry.resolve(name)


def list_workflows() -> list[str]:
    return _default_registry.names()


def workflow_exists(name: str) -> bool:
    return _default_registry.contains(name)


def clear_workflow_registry() -> None:
    """Clear the default registry (for testing)."""
    _default_registry.clear()


def get_workflow_registry_stats() -> dict[str, Any]:
    return _default_registry.stats()
