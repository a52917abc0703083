"""Tests for diff_runs and the ComparisonEngine."""

import threading
import time

import pytest

from scenario_grader.application.comparison import ComparisonEngine, diff_runs
from scenario_grader.domain.models import (
    EnvironmentRequirements,
    IsolationMode,
    ResolvedEnvironment,
    RunRecord,
    RunStatus,
    StepKind,
    StepOutcome,
    StepStatus,
    VersionChannel,
    utc_now,
)
from scenario_grader.infrastructure.automation.mock import MockDriver
from scenario_grader.infrastructure.provisioning.memory import InMemoryProvisioner

BOTH = [VersionChannel.STABLE, VersionChannel.INSIDERS]


def _record(scenario, version: VersionChannel, statuses: list[StepStatus]) -> RunRecord:
    record = RunRecord.begin(scenario, ResolvedEnvironment(version, "default"))
    record.advance(RunStatus.RUNNING)
    now = utc_now()
    for index, status in enumerate(statuses):
        record.record_step(
            StepOutcome(
                index=index,
                step_id=f"s{index}",
                kind=StepKind.ACTION,
                status=status,
                started_at=now,
                finished_at=now,
            )
        )
    record.advance(RunStatus.FINALIZING)
    failed = any(s is not StepStatus.SUCCEEDED for s in statuses)
    record.finish(RunStatus.FAILED if failed else RunStatus.PASSED)
    return record


class StubOrchestrator:
    """Orchestrator double returning scripted records per version."""

    def __init__(self, scenario, statuses=None, crash=(), delay=0.0):
        self._scenario = scenario
        self._statuses = statuses or {}
        self._crash = set(crash)
        self._delay = delay
        self._lock = threading.Lock()
        self.in_flight = 0
        self.peak = 0
        self.calls: list[dict] = []

    def run(self, scenario, *, version, requirements=None, mode=None, cancel=None):
        with self._lock:
            self.calls.append({"version": version, "mode": mode, "cancel": cancel})
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            if self._delay:
                time.sleep(self._delay)
            if version in self._crash:
                raise RuntimeError("renderer process gone")
            default = [StepStatus.SUCCEEDED] * 4
            return _record(scenario, version, self._statuses.get(version, default))
        finally:
            with self._lock:
                self.in_flight -= 1


class TestDiffRuns:
    """Tests for step-aligned diffing."""

    def test_identical_runs_have_empty_diff(self, sample_scenario) -> None:
        ok = [StepStatus.SUCCEEDED] * 3
        runs = {v.value: _record(sample_scenario, v, ok) for v in BOTH}

        diff = diff_runs(runs)

        assert diff.is_empty
        assert diff.description == "no divergence"

    def test_divergence_at_one_step(self, sample_scenario) -> None:
        ok = [StepStatus.SUCCEEDED] * 4
        broken = [StepStatus.SUCCEEDED] * 3 + [StepStatus.FAILED]
        runs = {
            "stable": _record(sample_scenario, VersionChannel.STABLE, ok),
            "insiders": _record(sample_scenario, VersionChannel.INSIDERS, broken),
        }

        diff = diff_runs(runs)

        assert diff.divergent_steps == frozenset({3})
        assert "step 3 (s3): stable=succeeded, insiders=failed" in diff.description
        assert "run status: stable=passed, insiders=failed" in diff.description

    def test_step_missing_in_one_run_diverges(self, sample_scenario) -> None:
        runs = {
            "stable": _record(sample_scenario, VersionChannel.STABLE, [StepStatus.SUCCEEDED] * 3),
            "insiders": _record(
                sample_scenario,
                VersionChannel.INSIDERS,
                [StepStatus.SUCCEEDED, StepStatus.TIMED_OUT],
            ),
        }

        diff = diff_runs(runs)

        assert diff.divergent_steps == frozenset({1, 2})
        assert "insiders=not run" in diff.description


class TestComparisonEngine:
    """Tests for ComparisonEngine.compare."""

    def test_results_keyed_by_version(self, sample_scenario, memory_store) -> None:
        engine = ComparisonEngine(StubOrchestrator(sample_scenario), store=memory_store)

        result = engine.compare(sample_scenario, BOTH)

        assert list(result.runs) == ["stable", "insiders"]
        assert result.diff.is_empty
        assert result.scenario_id == sample_scenario.id
        assert memory_store.comparisons == [result]

    def test_one_crash_does_not_affect_other_runs(self, sample_scenario) -> None:
        stub = StubOrchestrator(sample_scenario, crash={VersionChannel.INSIDERS})

        result = ComparisonEngine(stub).compare(sample_scenario, BOTH)

        assert result.runs["stable"].status is RunStatus.PASSED
        crashed = result.runs["insiders"]
        assert crashed.status is RunStatus.ERRORED
        assert "renderer process gone" in crashed.error
        assert crashed.environment.version is VersionChannel.INSIDERS

    def test_crashed_record_reflects_requirement_overrides(self, sample_scenario) -> None:
        stub = StubOrchestrator(sample_scenario, crash={VersionChannel.INSIDERS})
        reqs = EnvironmentRequirements(profile="team", isolation=IsolationMode.FRESH_PROFILE)

        result = ComparisonEngine(stub).compare(sample_scenario, BOTH, requirements=reqs)

        crashed = result.runs["insiders"].environment
        assert crashed.version is VersionChannel.INSIDERS
        assert crashed.profile == "team"
        assert crashed.isolation is IsolationMode.FRESH_PROFILE

    def test_parallelism_is_bounded(self, sample_scenario) -> None:
        stub = StubOrchestrator(sample_scenario, delay=0.05)
        versions = BOTH
        engine = ComparisonEngine(stub, max_parallel=1)

        engine.compare(sample_scenario, versions)

        assert stub.peak == 1
        assert [c["version"] for c in stub.calls] == versions

    def test_mode_and_cancel_reach_every_run(self, sample_scenario) -> None:
        stub = StubOrchestrator(sample_scenario)
        cancel = threading.Event()

        ComparisonEngine(stub).compare(sample_scenario, BOTH, cancel=cancel)

        assert all(c["cancel"] is cancel for c in stub.calls)

    @pytest.mark.parametrize(
        "versions",
        [[VersionChannel.STABLE], [VersionChannel.STABLE, VersionChannel.STABLE]],
    )
    def test_needs_two_distinct_versions(self, sample_scenario, versions) -> None:
        engine = ComparisonEngine(StubOrchestrator(sample_scenario))

        with pytest.raises(ValueError):
            engine.compare(sample_scenario, versions)

    def test_max_parallel_must_be_positive(self, sample_scenario) -> None:
        with pytest.raises(ValueError):
            ComparisonEngine(StubOrchestrator(sample_scenario), max_parallel=0)

    def test_with_real_orchestrator(self, sample_scenario, make_orchestrator, events) -> None:
        provisioner = InMemoryProvisioner(
            MockDriver, available=[VersionChannel.STABLE], events=events
        )
        orchestrator = make_orchestrator(provisioner_override=provisioner)

        result = ComparisonEngine(orchestrator).compare(sample_scenario, BOTH)

        assert result.runs["stable"].status is RunStatus.PASSED
        assert result.runs["insiders"].status is RunStatus.ERRORED
        assert provisioner.active_count == 0
        assert "run status" in result.diff.description
