"""
JSON (de)serialization of run records and comparison results.

Shared by the filesystem and in-memory run stores.
"""

from typing import Any

from scenario_grader.domain.models import (
    Artifact,
    ArtifactKind,
    ComparisonResult,
    Decision,
    DiffSummary,
    EvaluationVerdict,
    ExecutionMode,
    IsolationMode,
    ResolvedEnvironment,
    RunRecord,
    RunStatus,
    StepKind,
    StepOutcome,
    StepStatus,
    VersionChannel,
    frozen_mapping,
)


def _outcome_to_dict(outcome: StepOutcome) -> dict[str, Any]:
    return {
        "index": outcome.index,
        "step_id": outcome.step_id,
        "kind": outcome.kind.value,
        "status": outcome.status.value,
        "started_at": outcome.started_at,
        "finished_at": outcome.finished_at,
        "attempts": outcome.attempts,
        "error": outcome.error,
        "soft_failure": outcome.soft_failure,
        "assertion_passed": outcome.assertion_passed,
        "detail": outcome.detail,
    }


def _dict_to_outcome(data: dict[str, Any]) -> StepOutcome:
    return StepOutcome(
        index=data["index"],
        step_id=data["step_id"],
        kind=StepKind(data["kind"]),
        status=StepStatus(data["status"]),
        started_at=data["started_at"],
        finished_at=data["finished_at"],
        attempts=data.get("attempts", 1),
        error=data.get("error"),
        soft_failure=data.get("soft_failure", False),
        assertion_passed=data.get("assertion_passed"),
        detail=data.get("detail", ""),
    )


def _artifact_to_dict(artifact: Artifact) -> dict[str, Any]:
    return {
        "kind": artifact.kind.value,
        "path": artifact.path,
        "method": artifact.method,
        "captured_at": artifact.captured_at,
        "run_id": artifact.run_id,
        "step_index": artifact.step_index,
        "label": artifact.label,
    }


def _dict_to_artifact(data: dict[str, Any]) -> Artifact:
    return Artifact(
        kind=ArtifactKind(data["kind"]),
        path=data["path"],
        method=data["method"],
        captured_at=data["captured_at"],
        run_id=data["run_id"],
        step_index=data.get("step_index"),
        label=data.get("label", ""),
    )


def _verdict_to_dict(verdict: EvaluationVerdict) -> dict[str, Any]:
    return {
        "decision": verdict.decision.value,
        "confidence": verdict.confidence,
        "rationale": verdict.rationale,
        "invocations": verdict.invocations,
        "votes": [v.value for v in verdict.votes],
        "scores": dict(verdict.scores),
    }


def _dict_to_verdict(data: dict[str, Any]) -> EvaluationVerdict:
    return EvaluationVerdict(
        decision=Decision(data["decision"]),
        confidence=data["confidence"],
        rationale=data["rationale"],
        invocations=data.get("invocations", 0),
        votes=tuple(Decision(v) for v in data.get("votes", [])),
        scores=frozen_mapping(data.get("scores")),
    )


def run_record_to_dict(record: RunRecord) -> dict[str, Any]:
    """Serialize a run record to a JSON-compatible dict."""
    env = record.environment
    return {
        "run_id": record.run_id,
        "scenario_id": record.scenario_id,
        "environment": {
            "version": env.version.value,
            "profile": env.profile,
            "executable": env.executable,
            "isolation": env.isolation.value,
        },
        "started_at": record.started_at,
        "finished_at": record.finished_at,
        "status": record.status.value,
        "mode": record.mode.value,
        "step_outcomes": [_outcome_to_dict(o) for o in record.step_outcomes],
        "artifacts": [_artifact_to_dict(a) for a in record.artifacts],
        "verdict": _verdict_to_dict(record.verdict) if record.verdict else None,
        "warnings": list(record.warnings),
        "error": record.error,
    }


def dict_to_run_record(data: dict[str, Any]) -> RunRecord:
    """Deserialize a run record from its JSON dict."""
    env = data["environment"]
    return RunRecord(
        run_id=data["run_id"],
        scenario_id=data["scenario_id"],
        environment=ResolvedEnvironment(
            version=VersionChannel(env["version"]),
            profile=env.get("profile"),
            executable=env.get("executable"),
            isolation=IsolationMode(env.get("isolation", "sandbox_reset")),
        ),
        started_at=data["started_at"],
        finished_at=data.get("finished_at"),
        status=RunStatus(data["status"]),
        mode=ExecutionMode(data.get("mode", "direct")),
        step_outcomes=[_dict_to_outcome(o) for o in data.get("step_outcomes", [])],
        artifacts=[_dict_to_artifact(a) for a in data.get("artifacts", [])],
        verdict=_dict_to_verdict(data["verdict"]) if data.get("verdict") else None,
        warnings=list(data.get("warnings", [])),
        error=data.get("error"),
    )


def comparison_to_dict(result: ComparisonResult) -> dict[str, Any]:
    """Serialize a comparison; runs are referenced by id, not embedded."""
    return {
        "comparison_id": result.comparison_id,
        "scenario_id": result.scenario_id,
        "created_at": result.created_at,
        "runs": {label: record.run_id for label, record in result.runs.items()},
        "statuses": {label: record.status.value for label, record in result.runs.items()},
        "diff": {
            "divergent_steps": sorted(result.diff.divergent_steps),
            "description": result.diff.description,
        },
    }


def dict_to_diff(data: dict[str, Any]) -> DiffSummary:
    return DiffSummary(
        divergent_steps=frozenset(data.get("divergent_steps", [])),
        description=data.get("description", ""),
    )
