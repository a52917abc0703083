"""
scenario-grader: scenario execution and evaluation engine for VS Code UX tests.

Scenarios are validated YAML documents describing steps against an editor
instance. The engine provisions an isolated editor, drives the steps,
captures evidence concurrently, and grades the run deterministically and
with an optional language-model grader.

Example:
    from scenario_grader import EvaluationJudge, ScenarioOrchestrator, validate
    from scenario_grader.infrastructure import FilesystemRunStore, LocalEditorProvisioner

    scenario = validate(yaml.safe_load(open("scenarios/chat.yaml")))
    orchestrator = ScenarioOrchestrator(
        provisioner=LocalEditorProvisioner(),
        store=FilesystemRunStore("ux-results"),
        judge=EvaluationJudge(),
    )
    record = orchestrator.run(scenario)
"""

# Application layer (orchestration)
from scenario_grader.application.capture import CaptureSession, start_capture, stop_capture
from scenario_grader.application.comparison import ComparisonEngine, diff_runs
from scenario_grader.application.judge import EvaluationJudge
from scenario_grader.application.orchestrator import OrchestratorConfig, ScenarioOrchestrator
from scenario_grader.application.steps import RetryPolicy
from scenario_grader.application.watch import WatchController

# Domain exceptions
from scenario_grader.domain.exceptions import (
    ArtifactCaptureError,
    AssertionMismatch,
    ConfigurationError,
    EvaluationError,
    ProvisionError,
    RunCancelled,
    RunRecordSealed,
    ScenarioGraderError,
    ScenarioLoadError,
    ScenarioValidationError,
    StepExecutionError,
    StepTimeoutError,
)

# Domain interfaces (for type hints and custom adapters)
from scenario_grader.domain.interfaces import (
    AutomationDriverInterface,
    CaptureBackendInterface,
    GraderInterface,
    ProvisionerInterface,
    RunStoreInterface,
)
from scenario_grader.domain.models import (
    Artifact,
    CaptureOptions,
    ComparisonResult,
    Decision,
    DiffSummary,
    EnvironmentHandle,
    EnvironmentRequirements,
    EvaluationVerdict,
    ExecutionMode,
    ExpectedOutcome,
    RunRecord,
    RunStatus,
    ScenarioDefinition,
    Step,
    StepKind,
    StepOutcome,
    StepStatus,
    VersionChannel,
)

# Validation
from scenario_grader.domain.validation import ValidationIssue, check, serialize, validate

__version__ = "0.4.0"

__all__ = [
    # Version
    "__version__",
    # Application
    "CaptureSession",
    "ComparisonEngine",
    "EvaluationJudge",
    "OrchestratorConfig",
    "RetryPolicy",
    "ScenarioOrchestrator",
    "WatchController",
    "diff_runs",
    "start_capture",
    "stop_capture",
    # Exceptions
    "ArtifactCaptureError",
    "AssertionMismatch",
    "ConfigurationError",
    "EvaluationError",
    "ProvisionError",
    "RunCancelled",
    "RunRecordSealed",
    "ScenarioGraderError",
    "ScenarioLoadError",
    "ScenarioValidationError",
    "StepExecutionError",
    "StepTimeoutError",
    # Interfaces
    "AutomationDriverInterface",
    "CaptureBackendInterface",
    "GraderInterface",
    "ProvisionerInterface",
    "RunStoreInterface",
    # Models
    "Artifact",
    "CaptureOptions",
    "ComparisonResult",
    "Decision",
    "DiffSummary",
    "EnvironmentHandle",
    "EnvironmentRequirements",
    "EvaluationVerdict",
    "ExecutionMode",
    "ExpectedOutcome",
    "RunRecord",
    "RunStatus",
    "ScenarioDefinition",
    "Step",
    "StepKind",
    "StepOutcome",
    "StepStatus",
    "VersionChannel",
    # Validation
    "ValidationIssue",
    "check",
    "serialize",
    "validate",
]
