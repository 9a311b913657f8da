"""Workflow Validator - structural checks before execution.

Catches defects in built workflows *before* they run. The engine never
calls the validator; callers (registries, deploy scripts, tests) do.
Extensible via a rule registry so teams can add domain-specific checks.

Architecture::

    lint_workflow(workflow)
    │
    ├── _check_empty_workflow          E001
    ├── _check_duplicate_siblings      E002
    ├── _check_blank_names             E003
    ├── _check_empty_parallel          W001
    ├── _check_empty_conditional       W002
    ├── _check_empty_body              W003
    ├── _check_compensation_unused     I001
    └── (custom rules via register_lint_rule)
    │
    ▼
    LintResult ── passed / errors / warnings / infos / summary()

    WorkflowValidator.validate(workflow)  (async)
    │
    ▼
    ValidationResult ── is_valid, errors[ValidationIssue(message, step_name)]

Example::

    result = await WorkflowValidator().validate(workflow)
    if not result.is_valid:
        for issue in result.errors:
            print(issue)
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum

from sagaflow.core.errors import ValidationError
from sagaflow.orchestration.step_types import (
    ConditionalStep,
    ParallelStep,
    Step,
    StepKind,
    SubWorkflowStep,
    TryStep,
    is_compensating,
)
from sagaflow.orchestration.workflow import Workflow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Diagnostic model
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    """Severity level for a lint diagnostic."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class LintDiagnostic:
    """A single finding.

    Attributes:
        code: Short identifier (e.g. ``"E001"``).
        severity: ``error``, ``warning``, or ``info``.
        message: Human-readable description.
        step_name: Name of the offending step (if applicable).
        suggestion: Recommended fix (optional).
    """

    code: str
    severity: Severity
    message: str
    step_name: str | None = None
    suggestion: str | None = None

    def __str__(self) -> str:
        prefix = f"[{self.code}] {self.severity.value.upper()}"
        location = f" in step '{self.step_name}'" if self.step_name else ""
        hint = f" ({self.suggestion})" if self.suggestion else ""
        return f"{prefix}{location}: {self.message}{hint}"


@dataclass
class LintResult:
    """Aggregated findings for one workflow."""

    workflow_name: str
    diagnostics: list[LintDiagnostic] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        """True if there are no error-level diagnostics."""
        return not any(d.severity == Severity.ERROR for d in self.diagnostics)

    @property
    def errors(self) -> list[LintDiagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[LintDiagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.WARNING]

    @property
    def infos(self) -> list[LintDiagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.INFO]

    def summary(self) -> str:
        """One-line summary of the lint result."""
        counts = {
            "errors": len(self.errors),
            "warnings": len(self.warnings),
            "infos": len(self.infos),
        }
        status = "PASS" if self.passed else "FAIL"
        parts = [f"{status}: {self.workflow_name}"]
        for label, count in counts.items():
            if count:
                parts.append(f"{count} {label}")
        return " | ".join(parts)

    def __str__(self) -> str:
        return "\n".join([self.summary(), *(f"  {d}" for d in self.diagnostics)])


# ---------------------------------------------------------------------------
# Rule registry
# ---------------------------------------------------------------------------

LintRule = Callable[[Workflow], list[LintDiagnostic]]

_RULES: list[tuple[str, LintRule]] = []


def register_lint_rule(name: str, rule: LintRule) -> None:
    """Register a custom rule that runs after the built-in ones."""
    _RULES.append((name, rule))
    logger.debug("registered lint rule: %s", name)


def list_lint_rules() -> list[str]:
    """Names of all rules (built-in + custom)."""
    return [name for name, _ in _BUILT_IN_RULES] + [name for name, _ in _RULES]


def clear_custom_rules() -> None:
    """Remove all custom rules (built-in rules are preserved)."""
    _RULES.clear()


# ---------------------------------------------------------------------------
# Built-in rules
# ---------------------------------------------------------------------------

def _sibling_groups(steps: Sequence[Step], owner: str | None = None) -> Iterator[tuple[str | None, Sequence[Step]]]:
    """Yield every list of direct siblings, with the name of the node that owns it."""
    yield owner, steps
    for step in steps:
        if isinstance(step, ConditionalStep):
            yield from _sibling_groups(step.then_steps, step.name)
            yield from _sibling_groups(step.else_steps, step.name)
        elif isinstance(step, ParallelStep):
            yield from _sibling_groups(step.members, step.name)
        elif isinstance(step, SubWorkflowStep):
            yield from _sibling_groups(step.workflow.steps, step.name)
        elif isinstance(step, TryStep):
            yield from _sibling_groups(step.steps, step.name)
            yield from _sibling_groups(step.finally_steps, step.name)
        elif step.is_composite:
            yield from _sibling_groups(step.children(), step.name)


def _check_empty_workflow(workflow: Workflow) -> list[LintDiagnostic]:
    """E001: Workflow has no steps."""
    if workflow.steps:
        return []
    return [
        LintDiagnostic(
            code="E001",
            severity=Severity.ERROR,
            message=f"Workflow '{workflow.name}' has no steps.",
            suggestion="Add at least one step before building",
        )
    ]


def _check_duplicate_siblings(workflow: Workflow) -> list[LintDiagnostic]:
    """E002: Two direct siblings share a name."""
    diagnostics = []
    for owner, siblings in _sibling_groups(workflow.steps):
        counts = Counter(s.name for s in siblings if s.name)
        for name, count in counts.items():
            if count > 1:
                where = f" inside '{owner}'" if owner else ""
                diagnostics.append(
                    LintDiagnostic(
                        code="E002",
                        severity=Severity.ERROR,
                        message=f"Step name '{name}' is used {count} times{where}.",
                        step_name=name,
                        suggestion="Give sibling steps unique names",
                    )
                )
    return diagnostics


def _check_blank_names(workflow: Workflow) -> list[LintDiagnostic]:
    """E003: A step has an empty name."""
    return [
        LintDiagnostic(
            code="E003",
            severity=Severity.ERROR,
            message=f"A {type(step).__name__} has an empty name.",
        )
        for step in workflow.walk()
        if not (step.name or "").strip()
    ]


def _check_empty_parallel(workflow: Workflow) -> list[LintDiagnostic]:
    """W001: Parallel group without members."""
    return [
        LintDiagnostic(
            code="W001",
            severity=Severity.WARNING,
            message="Parallel group has no members and does nothing.",
            step_name=step.name,
        )
        for step in workflow.walk()
        if step.kind is StepKind.PARALLEL and not step.children()
    ]


def _check_empty_conditional(workflow: Workflow) -> list[LintDiagnostic]:
    """W002: Conditional with neither branch populated."""
    return [
        LintDiagnostic(
            code="W002",
            severity=Severity.WARNING,
            message="Conditional has empty then and else branches.",
            step_name=step.name,
        )
        for step in workflow.walk()
        if isinstance(step, ConditionalStep) and not step.then_steps and not step.else_steps
    ]


_BODY_KINDS = frozenset({StepKind.FOR_EACH, StepKind.WHILE, StepKind.RETRY, StepKind.TRY})


def _check_empty_body(workflow: Workflow) -> list[LintDiagnostic]:
    """W003: Loop, retry or try block with an empty body."""
    return [
        LintDiagnostic(
            code="W003",
            severity=Severity.WARNING,
            message=f"{step.name} has an empty body.",
            step_name=step.name,
        )
        for step in workflow.walk()
        if step.kind in _BODY_KINDS and not step.steps  # type: ignore[attr-defined]
    ]


def _check_compensation_unused(workflow: Workflow) -> list[LintDiagnostic]:
    """I001: Compensation enabled but nothing can be undone."""
    if not workflow.compensation_enabled or not workflow.steps:
        return []
    if any(is_compensating(s) for s in workflow.walk()):
        return []
    return [
        LintDiagnostic(
            code="I001",
            severity=Severity.INFO,
            message="Compensation is enabled but no step can compensate.",
        )
    ]


_BUILT_IN_RULES: list[tuple[str, LintRule]] = [
    ("check_empty_workflow", _check_empty_workflow),
    ("check_duplicate_siblings", _check_duplicate_siblings),
    ("check_blank_names", _check_blank_names),
    ("check_empty_parallel", _check_empty_parallel),
    ("check_empty_conditional", _check_empty_conditional),
    ("check_empty_body", _check_empty_body),
    ("check_compensation_unused", _check_compensation_unused),
]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def lint_workflow(
    workflow: Workflow,
    *,
    include_infos: bool = True,
    extra_rules: list[LintRule] | None = None,
) -> LintResult:
    """Run every rule against ``workflow``.

    Parameters
    ----------
    workflow
        The workflow to check.
    include_infos
        If ``False``, info-level diagnostics are suppressed.
    extra_rules
        One-shot rules to run in addition to built-in and registered rules.

    Returns
    -------
    LintResult
        Aggregated diagnostics from all rules.
    """
    result = LintResult(workflow_name=workflow.name)
    all_rules = list(_BUILT_IN_RULES) + list(_RULES)
    for i, rule in enumerate(extra_rules or []):
        all_rules.append((f"extra_rule_{i}", rule))

    for rule_name, rule in all_rules:
        try:
            result.diagnostics.extend(rule(workflow))
        except Exception:
            logger.warning("lint rule %s raised an exception", rule_name, exc_info=True)
            result.diagnostics.append(
                LintDiagnostic(
                    code="X001",
                    severity=Severity.WARNING,
                    message=f"Lint rule '{rule_name}' raised an exception.",
                )
            )

    if not include_infos:
        result.diagnostics = [d for d in result.diagnostics if d.severity != Severity.INFO]

    logger.debug("linted %s: %s", workflow.name, result.summary())
    return result


@dataclass(frozen=True)
class ValidationIssue:
    message: str
    step_name: str | None = None
    code: str = ""

    def __str__(self) -> str:
        return f"{self.step_name}: {self.message}" if self.step_name else self.message


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)

    @classmethod
    def success(cls) -> ValidationResult:
        return cls(is_valid=True)

    @classmethod
    def failure(cls, *errors: ValidationIssue) -> ValidationResult:
        return cls(is_valid=False, errors=list(errors))


class WorkflowValidator:
    """Asynchronous facade over :func:`lint_workflow`; only errors fail validation."""

    def __init__(self, extra_rules: list[LintRule] | None = None):
        self.extra_rules = list(extra_rules or [])

    async def validate(self, workflow: Workflow) -> ValidationResult:
        lint = lint_workflow(workflow, include_infos=False, extra_rules=self.extra_rules)
        if lint.passed:
            return ValidationResult.success()
        return ValidationResult.failure(
            *(ValidationIssue(d.message, d.step_name, d.code) for d in lint.errors)
        )

    async def validate_or_raise(self, workflow: Workflow) -> None:
        """Raise :class:`~sagaflow.core.errors.ValidationError` listing every error."""
        result = await self.validate(workflow)
        if not result.is_valid:
            raise ValidationError(
                f"Workflow '{workflow.name}' is invalid: " + "; ".join(str(e) for e in result.errors),
                field="steps",
            ).with_context(workflow=workflow.name)
