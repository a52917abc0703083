"""
Domain models for the scenario execution and evaluation engine.

Scenario definitions, run records, artifacts, verdicts and comparison results.
All models are immutable (frozen dataclasses) except RunRecord, which is
mutated by the orchestrator and the judge until it reaches a terminal status.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from scenario_grader.domain.exceptions import RunRecordSealed

if TYPE_CHECKING:
    from scenario_grader.domain.interfaces import AutomationDriverInterface


def utc_now() -> str:
    """Current time as an ISO-8601 UTC timestamp."""
    return datetime.now(UTC).isoformat()


def frozen_mapping(data: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
    """Read-only view over a copy of ``data``."""
    return MappingProxyType(dict(data or {}))


# =============================================================================
# ENUMERATIONS
# =============================================================================


class Priority(Enum):
    """Scenario priority."""

    P0 = "P0"
    P1 = "P1"
    P2 = "P2"


class StepKind(Enum):
    """Closed set of step kinds."""

    ACTION = "action"
    WAIT = "wait"
    ASSERTION = "assertion"


class AssertionCheck(Enum):
    """Deterministic checks an assertion step can make."""

    ELEMENT_VISIBLE = "element_visible"
    ELEMENT_HIDDEN = "element_hidden"
    TEXT_CONTAINS = "text_contains"
    TEXT_EQUALS = "text_equals"


class OutcomeCheck(Enum):
    """Structured ExpectedOutcome checks resolved against a RunRecord."""

    STEP_STATUS = "step_status"  # subject=step id, expected=StepStatus value
    LOG_CONTAINS = "log_contains"  # subject=text searched in captured logs
    ARTIFACT_PRESENT = "artifact_present"  # subject=ArtifactKind value


class VersionChannel(Enum):
    """Editor release channel; each resolves to its own executable."""

    STABLE = "stable"
    INSIDERS = "insiders"


class IsolationMode(Enum):
    """How a profile is isolated between runs."""

    SANDBOX_RESET = "sandbox_reset"  # Named profile restored to baseline
    FRESH_PROFILE = "fresh_profile"  # Throwaway profile, no extensions/auth
    NONE = "none"  # Named profile reused as-is


class ScreenshotMethod(Enum):
    """Screenshot capture mechanism."""

    ELECTRON = "electron"
    OS = "os"
    PLAYWRIGHT = "playwright"


class ArtifactKind(Enum):
    """Kind of recorded evidence."""

    VIDEO = "video"
    SCREENSHOT = "screenshot"
    LOG = "log"


class RunStatus(Enum):
    """Run lifecycle states; the last four are terminal."""

    PROVISIONING = "provisioning"
    RUNNING = "running"
    EVALUATING = "evaluating"
    FINALIZING = "finalizing"
    PASSED = "passed"
    FAILED = "failed"
    ERRORED = "errored"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {RunStatus.PASSED, RunStatus.FAILED, RunStatus.ERRORED, RunStatus.SKIPPED}
)

# Allowed forward transitions of the run state machine
_RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PROVISIONING: frozenset({RunStatus.RUNNING, RunStatus.FINALIZING}),
    RunStatus.RUNNING: frozenset({RunStatus.EVALUATING, RunStatus.FINALIZING}),
    RunStatus.EVALUATING: frozenset({RunStatus.FINALIZING}),
    RunStatus.FINALIZING: _TERMINAL_STATUSES,
}


class StepStatus(Enum):
    """Per-step states."""

    PENDING = "pending"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class Decision(Enum):
    """Evaluation decision."""

    PASS = "pass"
    FAIL = "fail"
    INCONCLUSIVE = "inconclusive"


class ExecutionMode(Enum):
    """Direct single pass, or checkpointed orchestrated execution."""

    DIRECT = "direct"
    ORCHESTRATED = "orchestrated"


# =============================================================================
# SCENARIO DEFINITION
# =============================================================================


@dataclass(frozen=True)
class EnvironmentRequirements:
    """Target environment a scenario needs."""

    version: VersionChannel = VersionChannel.STABLE
    profile: str | None = None
    workspace: str | None = None
    isolation: IsolationMode = IsolationMode.SANDBOX_RESET


@dataclass(frozen=True)
class Step:
    """A single scripted interaction.

    ``action`` is set only on action steps and ``check`` only on assertion
    steps. ``timeout`` is in seconds and always concrete once validated.
    """

    id: str
    kind: StepKind
    timeout: float
    target: str | None = None
    params: Mapping[str, Any] = field(default_factory=frozen_mapping)
    non_blocking: bool = False
    description: str = ""
    action: str | None = None
    check: AssertionCheck | None = None

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"Step '{self.id}' timeout must be > 0, got {self.timeout}")


@dataclass(frozen=True)
class OutcomeAssertion:
    """Structured assertion on a finished run."""

    check: OutcomeCheck
    subject: str
    expected: str | None = None


@dataclass(frozen=True)
class ExpectedOutcome:
    """Natural-language expectation plus optional structured assertions."""

    description: str = ""
    assertions: tuple[OutcomeAssertion, ...] = ()


@dataclass(frozen=True)
class ScenarioDefinition:
    """A validated, declarative user-interaction test."""

    id: str
    title: str
    steps: tuple[Step, ...]
    expected_outcome: ExpectedOutcome
    description: str = ""
    tags: frozenset[str] = frozenset()
    priority: Priority = Priority.P1
    owner: str | None = None
    environment: EnvironmentRequirements = field(
        default_factory=EnvironmentRequirements
    )
    default_timeout: float = 30.0
    estimated_duration: float | None = None

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError(f"Scenario '{self.id}' must have at least one step")

    @property
    def step_budget(self) -> float:
        """Estimated duration, or the sum of step timeouts when undeclared."""
        if self.estimated_duration is not None:
            return self.estimated_duration
        return sum(step.timeout for step in self.steps)


# =============================================================================
# ENVIRONMENT
# =============================================================================


@dataclass(frozen=True)
class ResolvedEnvironment:
    """The environment a run actually used."""

    version: VersionChannel
    profile: str | None
    executable: str | None = None
    isolation: IsolationMode = IsolationMode.SANDBOX_RESET


@dataclass(frozen=True)
class EnvironmentHandle:
    """Scoped resource for one provisioned editor instance.

    Owned exclusively by a single RunRecord between acquire and release.
    """

    handle_id: str
    version: VersionChannel
    executable: str
    profile_dir: str
    isolation: IsolationMode
    log_dir: str
    driver: AutomationDriverInterface = field(compare=False, repr=False)
    profile: str | None = None
    extensions_dir: str | None = None
    workspace: str | None = None

    def resolved(self) -> ResolvedEnvironment:
        return ResolvedEnvironment(
            version=self.version,
            profile=self.profile,
            executable=self.executable,
            isolation=self.isolation,
        )


@dataclass(frozen=True)
class CaptureOptions:
    """Which capture backends a run uses."""

    video: bool = False
    screenshots: bool = True
    logs: bool = True
    screenshot_method: ScreenshotMethod = ScreenshotMethod.ELECTRON
    screenshot_interval: float | None = None  # Seconds between periodic shots

    @classmethod
    def disabled(cls) -> CaptureOptions:
        return cls(video=False, screenshots=False, logs=False)

    @property
    def backend_names(self) -> tuple[str, ...]:
        names = []
        if self.video:
            names.append("video")
        if self.screenshots:
            names.append("screenshots")
        if self.logs:
            names.append("logs")
        return tuple(names)


@dataclass(frozen=True)
class Observation:
    """What the automation driver saw for a target."""

    found: bool
    visible: bool = False
    text: str = ""


# =============================================================================
# RUN RESULTS
# =============================================================================


@dataclass(frozen=True)
class StepOutcome:
    """Recorded result of one step."""

    index: int
    step_id: str
    kind: StepKind
    status: StepStatus
    started_at: str
    finished_at: str
    attempts: int = 1
    error: str | None = None
    soft_failure: bool = False  # Failed, but the step was non-blocking
    assertion_passed: bool | None = None  # Only for assertion steps
    detail: str = ""

    @property
    def failed(self) -> bool:
        return self.status in (StepStatus.FAILED, StepStatus.TIMED_OUT)


@dataclass(frozen=True)
class Artifact:
    """Recorded evidence, exclusively owned by one run."""

    kind: ArtifactKind
    path: str
    method: str  # Backend/method that produced it
    captured_at: str
    run_id: str
    step_index: int | None = None
    label: str = ""


@dataclass(frozen=True)
class EvaluationVerdict:
    """Judge decision for a run."""

    decision: Decision
    confidence: float
    rationale: str
    invocations: int = 0  # Grader calls actually consumed
    votes: tuple[Decision, ...] = ()
    scores: Mapping[str, float] = field(default_factory=frozen_mapping)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
        if self.invocations < 0:
            raise ValueError("invocations must be >= 0")


@dataclass(frozen=True)
class GraderRequest:
    """Payload sent to the language-model grader."""

    scenario_id: str
    expected_outcome: str
    transcript: tuple[str, ...]
    artifact_refs: tuple[str, ...] = ()
    attempt: int = 1


@dataclass(frozen=True)
class GraderResponse:
    """Structured grader output; ``decision`` is None when unparseable."""

    decision: Decision | None
    confidence: float = 0.0
    rationale: str = ""
    scores: Mapping[str, float] = field(default_factory=frozen_mapping)


@dataclass
class RunRecord:
    """
    Mutable record of a single scenario run.

    Only the orchestrator (steps, artifacts, status) and the evaluation judge
    (verdict) mutate it. Once the status is terminal every mutator raises
    RunRecordSealed.
    """

    run_id: str
    scenario_id: str
    environment: ResolvedEnvironment
    started_at: str
    status: RunStatus = RunStatus.PROVISIONING
    mode: ExecutionMode = ExecutionMode.DIRECT
    finished_at: str | None = None
    step_outcomes: list[StepOutcome] = field(default_factory=list)
    artifacts: list[Artifact] = field(default_factory=list)
    verdict: EvaluationVerdict | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def begin(
        cls,
        scenario: ScenarioDefinition,
        environment: ResolvedEnvironment,
        mode: ExecutionMode = ExecutionMode.DIRECT,
    ) -> RunRecord:
        """Create a record in the provisioning state with a fresh run id."""
        return cls(
            run_id=str(uuid.uuid4()),
            scenario_id=scenario.id,
            environment=environment,
            started_at=utc_now(),
            mode=mode,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def soft_failures(self) -> list[StepOutcome]:
        return [o for o in self.step_outcomes if o.soft_failure]

    @property
    def blocking_failures(self) -> list[StepOutcome]:
        return [o for o in self.step_outcomes if o.failed and not o.soft_failure]

    def _ensure_open(self) -> None:
        if self.is_terminal:
            raise RunRecordSealed(self.run_id, self.status.value)

    def advance(self, status: RunStatus) -> None:
        """Move to the next lifecycle state."""
        self._ensure_open()
        if status not in _RUN_TRANSITIONS[self.status]:
            raise ValueError(
                f"Invalid run transition {self.status.value} -> {status.value}"
            )
        self.status = status

    def record_step(self, outcome: StepOutcome) -> None:
        self._ensure_open()
        if outcome.index != len(self.step_outcomes):
            raise ValueError(
                f"Step outcome {outcome.index} out of order "
                f"(expected {len(self.step_outcomes)})"
            )
        self.step_outcomes.append(outcome)

    def add_artifacts(self, artifacts: Iterable[Artifact]) -> None:
        self._ensure_open()
        incoming = list(artifacts)
        for artifact in incoming:
            if artifact.run_id != self.run_id:
                raise ValueError(
                    f"Artifact {artifact.path} belongs to run {artifact.run_id}"
                )
        self.artifacts.extend(incoming)

    def set_environment(self, environment: ResolvedEnvironment) -> None:
        self._ensure_open()
        self.environment = environment

    def set_verdict(self, verdict: EvaluationVerdict) -> None:
        self._ensure_open()
        self.verdict = verdict

    def warn(self, message: str) -> None:
        self._ensure_open()
        self.warnings.append(message)

    def finish(self, status: RunStatus, error: str | None = None) -> None:
        """Enter a terminal state, sealing the record."""
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        self.advance(status)
        if error:
            self.error = error
        self.finished_at = utc_now()


# =============================================================================
# COMPARISON
# =============================================================================


@dataclass(frozen=True)
class DiffSummary:
    """Divergent step indices plus a readable description."""

    divergent_steps: frozenset[int] = frozenset()
    description: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.divergent_steps


@dataclass(frozen=True)
class ComparisonResult:
    """One scenario run across several versions, aligned by step index."""

    scenario_id: str
    runs: Mapping[str, RunRecord]
    diff: DiffSummary
    comparison_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if len(self.runs) < 2:
            raise ValueError(
                f"ComparisonResult needs at least two runs, got {len(self.runs)}"
            )
        object.__setattr__(self, "runs", MappingProxyType(dict(self.runs)))


# =============================================================================
# RUN EVENTS
# =============================================================================


class RunEventType(Enum):
    """Live progress notifications emitted while a run executes."""

    RUN_START = "run_start"
    RUN_COMPLETE = "run_complete"
    STEP_START = "step_start"
    STEP_COMPLETE = "step_complete"
    EVALUATION_START = "evaluation_start"
    EVALUATION_COMPLETE = "evaluation_complete"
    EVIDENCE = "evidence"
    ERROR = "error"


@dataclass(frozen=True)
class RunEvent:
    """
    One progress notification for a run.

    Events are informational only; the RunRecord stays the source of truth.
    """

    event_type: RunEventType
    run_id: str
    scenario_id: str
    version: str
    step_index: int | None = None
    step_id: str | None = None
    step_kind: StepKind | None = None
    status: str | None = None  # StepStatus / RunStatus / Decision value
    summary: str = ""
    created_at: str = field(default_factory=utc_now)
