"""
Domain exceptions for the scenario engine.

Every error carries a stable code (grouped by family) and optional
suggestions that the CLI shows as hints. There is no comparison error:
divergence between versions is reported as a DiffSummary.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scenario_grader.domain.validation import ValidationIssue


class ScenarioGraderError(Exception):
    """Base class for all engine errors."""

    code = "E0000"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        suggestions: Sequence[str] = (),
    ):
        """
        Args:
            message: Human-readable error message
            code: Override of the class-level error code
            suggestions: Hints for resolving the problem
        """
        super().__init__(message)
        if code:
            self.code = code
        self.suggestions = tuple(suggestions)


# 1xxx: loading


class ScenarioLoadError(ScenarioGraderError):
    """Raised when a scenario file cannot be read or parsed."""

    code = "E1001"

    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Cannot load scenario file {path}: {reason}",
            suggestions=("Check the file is valid YAML with a mapping at the top level",),
        )
        self.path = path
        self.reason = reason


# 2xxx: validation


class ScenarioValidationError(ScenarioGraderError):
    """
    Raised when a scenario definition is malformed.

    Carries the complete list of issues, not just the first, so an author
    can fix a scenario in one pass. Never reaches execution.
    """

    code = "E2001"

    def __init__(self, scenario_id: str | None, issues: Sequence[ValidationIssue]):
        errors = [i for i in issues if i.is_error]
        label = scenario_id or "<unknown>"
        super().__init__(f"Scenario '{label}' has {len(errors)} validation error(s)")
        self.scenario_id = scenario_id
        self.issues = tuple(issues)


# 3xxx: step execution


class StepExecutionError(ScenarioGraderError):
    """
    Raised when an action, wait or assertion fails.

    ``transient`` marks automation errors worth retrying (e.g. the target
    has not rendered yet). Anything else fails the step immediately.
    """

    code = "E3001"

    def __init__(self, message: str, *, transient: bool = False, step_id: str | None = None):
        super().__init__(message)
        self.transient = transient
        self.step_id = step_id


class StepTimeoutError(StepExecutionError):
    """Raised when a step exceeds its timeout. Never retried."""

    code = "E3002"

    def __init__(self, message: str, *, timeout: float, step_id: str | None = None):
        super().__init__(message, transient=False, step_id=step_id)
        self.timeout = timeout


class AssertionMismatch(StepExecutionError):
    """Raised when a deterministic assertion does not hold. Never retried."""

    code = "E3003"

    def __init__(self, message: str, *, expected: str, actual: str, step_id: str | None = None):
        super().__init__(message, transient=False, step_id=step_id)
        self.expected = expected
        self.actual = actual


class RunCancelled(ScenarioGraderError):
    """Raised between steps when the run's cancel signal is set."""

    code = "E3004"

    def __init__(self, run_id: str, next_step: int):
        super().__init__(f"Run {run_id} cancelled before step {next_step}")
        self.run_id = run_id
        self.next_step = next_step


class RunRecordSealed(ScenarioGraderError):
    """Raised when mutating a RunRecord that already has a terminal status."""

    code = "E3005"

    def __init__(self, run_id: str, status: str):
        super().__init__(f"Run {run_id} is {status}; the record is immutable")
        self.run_id = run_id
        self.status = status


# 4xxx: provisioning


class ProvisionError(ScenarioGraderError):
    """
    Raised when an environment cannot be acquired.

    Fatal to the run that requested it, never to sibling comparison runs.
    """

    code = "E4001"

    def __init__(
        self,
        message: str,
        *,
        version: str | None = None,
        suggestions: Sequence[str] = (),
    ):
        super().__init__(message, suggestions=suggestions)
        self.version = version


# 5xxx: capture


class ArtifactCaptureError(ScenarioGraderError):
    """Raised by a capture backend; downgraded to a run warning."""

    code = "E5001"

    def __init__(self, backend: str, message: str):
        super().__init__(f"[{backend}] {message}")
        self.backend = backend


# 6xxx: evaluation


class EvaluationError(ScenarioGraderError):
    """
    Raised when the grader cannot be reached.

    Distinct from grader disagreement, which is an inconclusive verdict.
    """

    code = "E6001"

    def __init__(self, message: str, *, attempts: int = 0):
        super().__init__(
            message,
            suggestions=(
                "Check the grader endpoint and credentials",
                "Re-run with --no-llm to skip language-model evaluation",
            ),
        )
        self.attempts = attempts


# 9xxx: configuration


class ConfigurationError(ScenarioGraderError):
    """Raised when configuration files are invalid or missing."""

    code = "E9001"
