"""
ComparisonEngine: run one scenario against several editor versions.

Each version gets its own orchestrator run, executed on a bounded worker
pool (excess runs queue in submission order). Runs are independent failure
domains: an exception in one becomes an Errored record for that version
only. Results are aligned by step index into a DiffSummary.
"""

import logging
import threading
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor

from scenario_grader.application.orchestrator import ScenarioOrchestrator
from scenario_grader.domain.interfaces import RunStoreInterface
from scenario_grader.domain.models import (
    ComparisonResult,
    DiffSummary,
    EnvironmentRequirements,
    ExecutionMode,
    ResolvedEnvironment,
    RunRecord,
    RunStatus,
    ScenarioDefinition,
    StepOutcome,
    VersionChannel,
)

logger = logging.getLogger(__name__)


def _step_signature(outcome: StepOutcome | None) -> tuple[str, bool | None] | None:
    if outcome is None:
        return None
    return outcome.status.value, outcome.assertion_passed


def _describe(outcome: StepOutcome | None) -> str:
    if outcome is None:
        return "not run"
    text = outcome.status.value
    if outcome.assertion_passed is not None:
        text += f" (assertion {'passed' if outcome.assertion_passed else 'failed'})"
    return text


def diff_runs(runs: Mapping[str, RunRecord]) -> DiffSummary:
    """
    Align runs by step index and flag divergent steps.

    A step diverges when its status or assertion result differs between
    versions, or when it ran in some versions and not in others.
    """
    labels = list(runs)
    length = max((len(r.step_outcomes) for r in runs.values()), default=0)
    divergent: set[int] = set()
    lines: list[str] = []

    for index in range(length):
        outcomes = {
            label: (
                runs[label].step_outcomes[index]
                if index < len(runs[label].step_outcomes)
                else None
            )
            for label in labels
        }
        signatures = {_step_signature(o) for o in outcomes.values()}
        if len(signatures) > 1:
            divergent.add(index)
            step_id = next(o.step_id for o in outcomes.values() if o is not None)
            detail = ", ".join(f"{label}={_describe(o)}" for label, o in outcomes.items())
            lines.append(f"step {index} ({step_id}): {detail}")

    statuses = {label: r.status.value for label, r in runs.items()}
    if len(set(statuses.values())) > 1:
        lines.append(
            "run status: " + ", ".join(f"{label}={s}" for label, s in statuses.items())
        )

    return DiffSummary(
        divergent_steps=frozenset(divergent),
        description="\n".join(lines) if lines else "no divergence",
    )


class ComparisonEngine:
    """Runs a scenario once per version with bounded concurrency."""

    def __init__(
        self,
        orchestrator: ScenarioOrchestrator,
        max_parallel: int = 2,
        store: RunStoreInterface | None = None,
    ):
        """
        Args:
            orchestrator: Executes each per-version run
            max_parallel: Maximum simultaneously provisioned environments
            store: Where comparison results are saved (not saved when None)
        """
        if max_parallel < 1:
            raise ValueError("max_parallel must be >= 1")
        self._orchestrator = orchestrator
        self._max_parallel = max_parallel
        self._store = store

    def compare(
        self,
        scenario: ScenarioDefinition,
        versions: Sequence[VersionChannel],
        *,
        requirements: EnvironmentRequirements | None = None,
        mode: ExecutionMode | None = None,
        cancel: threading.Event | None = None,
    ) -> ComparisonResult:
        """
        Run ``scenario`` on every version and align the results.

        Args:
            scenario: Validated scenario
            versions: At least two distinct channels
            requirements: Profile/isolation override; the version is replaced per run
            mode: Execution mode applied to each run independently
            cancel: Shared cancel signal for all runs

        Returns:
            ComparisonResult keyed by version label
        """
        if len(versions) < 2:
            raise ValueError("Comparison needs at least two versions")
        if len(set(versions)) != len(versions):
            raise ValueError(f"Duplicate versions in comparison: {[v.value for v in versions]}")

        logger.info(
            "Comparing %s across %s (max %d parallel)",
            scenario.id,
            ", ".join(v.value for v in versions),
            self._max_parallel,
        )

        runs: dict[str, RunRecord] = {}
        with ThreadPoolExecutor(
            max_workers=self._max_parallel, thread_name_prefix="compare"
        ) as executor:
            futures = {
                version: executor.submit(
                    self._orchestrator.run,
                    scenario,
                    version=version,
                    requirements=requirements,
                    mode=mode,
                    cancel=cancel,
                )
                for version in versions
            }
            for version, future in futures.items():
                try:
                    runs[version.value] = future.result()
                except Exception as e:
                    logger.exception("Comparison run for %s crashed", version.value)
                    runs[version.value] = self._errored_record(
                        scenario, version, e, requirements
                    )

        result = ComparisonResult(
            scenario_id=scenario.id,
            runs=runs,
            diff=diff_runs(runs),
        )
        if self._store is not None:
            self._store.save_comparison(result)
        return result

    def _errored_record(
        self,
        scenario: ScenarioDefinition,
        version: VersionChannel,
        error: Exception,
        requirements: EnvironmentRequirements | None = None,
    ) -> RunRecord:
        env = requirements or scenario.environment
        record = RunRecord.begin(
            scenario, ResolvedEnvironment(version, env.profile, None, env.isolation)
        )
        record.advance(RunStatus.FINALIZING)
        record.finish(RunStatus.ERRORED, f"run crashed: {error}")
        return record
