"""
ScenarioOrchestrator: the run state machine.

Provisioning -> Running -> Evaluating -> Finalizing -> {Passed, Failed,
Errored, Skipped}. Running iterates steps in order, each going Pending ->
Executing -> {Succeeded, Failed, TimedOut}. A blocking step failure ends the
step sequence; a non-blocking one is recorded as a soft failure.

Teardown (capture stop + environment release) runs on every exit path, and
the RunRecord is persisted once it is terminal.
"""

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace

from scenario_grader.application.capture import CaptureSession, start_capture, stop_capture
from scenario_grader.application.events import RunEventEmitter
from scenario_grader.application.judge import EvaluationJudge
from scenario_grader.application.steps import RetryPolicy, StepContext, run_step
from scenario_grader.domain.exceptions import (
    AssertionMismatch,
    EvaluationError,
    ProvisionError,
    RunCancelled,
    StepTimeoutError,
)
from scenario_grader.domain.interfaces import (
    CaptureBackendInterface,
    ProvisionerInterface,
    RunEventSinkInterface,
    RunStoreInterface,
)
from scenario_grader.domain.models import (
    CaptureOptions,
    Decision,
    EnvironmentHandle,
    EnvironmentRequirements,
    EvaluationVerdict,
    ExecutionMode,
    ResolvedEnvironment,
    RunRecord,
    RunStatus,
    ScenarioDefinition,
    Step,
    StepKind,
    StepOutcome,
    StepStatus,
    VersionChannel,
    utc_now,
)

logger = logging.getLogger(__name__)

BackendFactory = Callable[[CaptureOptions], Sequence[CaptureBackendInterface]]


@dataclass(frozen=True)
class OrchestratorConfig:
    """Timing, retry and capture settings for orchestrated runs."""

    direct_timeout: float = 600.0  # Total step budget in direct mode (seconds)
    orchestrated_timeout: float = 1800.0
    orchestrate_above_steps: int = 25
    orchestrate_above_seconds: float = 600.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    capture: CaptureOptions = field(default_factory=CaptureOptions)


class ScenarioOrchestrator:
    """
    Drives one scenario against one provisioned environment per run.

    Holds only collaborators; all run state lives in the RunRecord, so a
    single orchestrator can serve parallel runs.
    """

    def __init__(
        self,
        provisioner: ProvisionerInterface,
        store: RunStoreInterface,
        judge: EvaluationJudge | None = None,
        backend_factory: BackendFactory | None = None,
        config: OrchestratorConfig | None = None,
        events: RunEventSinkInterface | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            provisioner: Acquires and releases editor environments
            store: Persists run records and checkpoints
            judge: Evaluation judge (deterministic-only when omitted)
            backend_factory: Creates fresh capture backends per run
            config: Timeouts, thresholds, retry policy, capture options
            events: Receives live progress events (optional)
            clock: Monotonic clock, injectable for tests
            sleep: Backoff sleep, injectable for tests
        """
        self._provisioner = provisioner
        self._store = store
        self._judge = judge or EvaluationJudge()
        self._backend_factory = backend_factory
        self._config = config or OrchestratorConfig()
        self._events = events
        self._clock = clock
        self._sleep = sleep

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    def select_mode(
        self, scenario: ScenarioDefinition, forced: ExecutionMode | None = None
    ) -> ExecutionMode:
        """Forced mode wins; otherwise long or large scenarios are orchestrated."""
        if forced is not None:
            return forced
        if (
            len(scenario.steps) > self._config.orchestrate_above_steps
            or scenario.step_budget > self._config.orchestrate_above_seconds
        ):
            return ExecutionMode.ORCHESTRATED
        return ExecutionMode.DIRECT

    def run(
        self,
        scenario: ScenarioDefinition,
        *,
        version: VersionChannel | None = None,
        requirements: EnvironmentRequirements | None = None,
        mode: ExecutionMode | None = None,
        cancel: threading.Event | None = None,
    ) -> RunRecord:
        """
        Execute a scenario end to end.

        Args:
            scenario: Validated scenario
            version: Channel override (used by the comparison engine)
            requirements: Environment override (CLI profile/isolation flags)
            mode: Force direct or orchestrated execution
            cancel: Checked between steps; when set the run ends Skipped

        Returns:
            The terminal RunRecord (already persisted)
        """
        reqs = requirements or scenario.environment
        if version is not None:
            reqs = replace(reqs, version=version)
        run_mode = self.select_mode(scenario, mode)
        record = RunRecord.begin(
            scenario,
            ResolvedEnvironment(reqs.version, reqs.profile, None, reqs.isolation),
            run_mode,
        )
        logger.info(
            "Run %s: scenario %s on %s (%s mode)",
            record.run_id,
            scenario.id,
            reqs.version.value,
            run_mode.value,
        )
        emitter = RunEventEmitter(self._events, record)
        emitter.run_start(len(scenario.steps))

        handle: EnvironmentHandle | None = None
        session: CaptureSession | None = None
        terminal: RunStatus = RunStatus.ERRORED
        error: str | None = None

        try:
            handle = self._provisioner.acquire(reqs)
            record.set_environment(handle.resolved())
            session = self._start_capture(record, handle)

            record.advance(RunStatus.RUNNING)
            self._checkpoint(record)
            self._run_steps(scenario, record, handle, session, cancel, emitter)

            self._stop_capture(record, session)
            session = None

            record.advance(RunStatus.EVALUATING)
            emitter.evaluation_start()
            verdict = self._judge.evaluate(record, scenario.expected_outcome)
            record.set_verdict(verdict)
            emitter.evaluation_complete(verdict)
            terminal = self._terminal_status(record, verdict)

        except ProvisionError as e:
            logger.error("Run %s: provisioning failed: %s", record.run_id, e)
            error = str(e)
        except RunCancelled as e:
            logger.info("Run %s: %s", record.run_id, e)
            terminal, error = RunStatus.SKIPPED, str(e)
        except EvaluationError as e:
            logger.error("Run %s: evaluation failed: %s", record.run_id, e)
            error = f"evaluation error: {e}"
        except KeyboardInterrupt:
            terminal, error = RunStatus.SKIPPED, "interrupted"
            raise
        except Exception as e:
            logger.exception("Run %s: unexpected error", record.run_id)
            error = f"unexpected error: {e}"
        finally:
            if terminal is RunStatus.ERRORED and error is not None:
                emitter.error(error)
            self._teardown(record, handle, session)
            record.finish(terminal, error)
            self._store.save_run(record)
            logger.info("Run %s finished: %s", record.run_id, record.status.value)
            emitter.run_complete()

        return record

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def _budget(self, record: RunRecord) -> float:
        if record.mode is ExecutionMode.ORCHESTRATED:
            return self._config.orchestrated_timeout
        return self._config.direct_timeout

    def _run_steps(
        self,
        scenario: ScenarioDefinition,
        record: RunRecord,
        handle: EnvironmentHandle,
        session: CaptureSession | None,
        cancel: threading.Event | None,
        emitter: RunEventEmitter,
    ) -> None:
        deadline = self._clock() + self._budget(record)

        for index, step in enumerate(scenario.steps):
            # Cancellation is only honoured between steps
            if cancel is not None and cancel.is_set():
                raise RunCancelled(record.run_id, index)

            remaining = deadline - self._clock()
            if remaining <= 0:
                started = utc_now()
                self._capture_failure(session, emitter, step, index)
                outcome = StepOutcome(
                    index=index,
                    step_id=step.id,
                    kind=step.kind,
                    status=StepStatus.TIMED_OUT,
                    started_at=started,
                    finished_at=utc_now(),
                    attempts=0,
                    error=f"scenario time budget of {self._budget(record):g}s exhausted",
                )
                record.record_step(outcome)
                emitter.step_complete(outcome)
                self._checkpoint(record)
                return

            emitter.step_start(index, step)
            outcome = self._execute_step(step, index, record, handle, session, remaining, emitter)
            record.record_step(outcome)
            emitter.step_complete(outcome)
            if session is not None:
                session.mark_step(index, step.id)
            if record.mode is ExecutionMode.ORCHESTRATED:
                self._checkpoint(record)

            if outcome.failed and not outcome.soft_failure:
                logger.info(
                    "Run %s: blocking step %s %s; skipping %d remaining step(s)",
                    record.run_id,
                    step.id,
                    outcome.status.value,
                    len(scenario.steps) - index - 1,
                )
                return

    def _execute_step(
        self,
        step: Step,
        index: int,
        record: RunRecord,
        handle: EnvironmentHandle,
        session: CaptureSession | None,
        remaining: float,
        emitter: RunEventEmitter,
    ) -> StepOutcome:
        timeout = min(step.timeout, remaining)
        logger.debug(
            "Step %s: %s -> %s", step.id, StepStatus.PENDING.value, StepStatus.EXECUTING.value
        )
        started = utc_now()
        attempt = run_step(
            step,
            StepContext(handle.driver, timeout, index, record.run_id),
            self._config.retry,
            sleep=self._sleep,
            clock=self._clock,
        )

        status = StepStatus.SUCCEEDED
        error = None
        detail = attempt.result.detail if attempt.result is not None else ""
        assertion_passed = attempt.result.assertion_passed if attempt.result is not None else None
        if attempt.error is not None:
            status = (
                StepStatus.TIMED_OUT
                if isinstance(attempt.error, StepTimeoutError)
                else StepStatus.FAILED
            )
            error = str(attempt.error)
            detail = ""
            assertion_passed = (
                False if isinstance(attempt.error, AssertionMismatch) else None
            )
            self._capture_failure(session, emitter, step, index)
            logger.warning("Step %s %s: %s", step.id, status.value, error)

        return StepOutcome(
            index=index,
            step_id=step.id,
            kind=step.kind,
            status=status,
            started_at=started,
            finished_at=utc_now(),
            attempts=attempt.attempts,
            error=error,
            soft_failure=status is not StepStatus.SUCCEEDED and step.non_blocking,
            assertion_passed=assertion_passed if step.kind is StepKind.ASSERTION else None,
            detail=detail,
        )

    def _capture_failure(
        self,
        session: CaptureSession | None,
        emitter: RunEventEmitter,
        step: Step,
        index: int,
    ) -> None:
        # Evidence first, before anything else can tear the window down
        if session is None:
            return
        artifacts = session.capture_evidence(f"FAIL_{step.id}", index)
        emitter.evidence(index, step.id, artifacts)

    # ------------------------------------------------------------------
    # Capture, evaluation, teardown
    # ------------------------------------------------------------------

    def _start_capture(
        self, record: RunRecord, handle: EnvironmentHandle
    ) -> CaptureSession | None:
        options = self._config.capture
        if self._backend_factory is None or not options.backend_names:
            return None
        return start_capture(
            handle,
            self._backend_factory(options),
            run_id=record.run_id,
            output_dir=self._store.artifact_dir(record.scenario_id, record.run_id),
            interval=options.screenshot_interval,
        )

    def _stop_capture(self, record: RunRecord, session: CaptureSession | None) -> None:
        if session is None:
            return
        artifacts = stop_capture(session)
        record.add_artifacts(artifacts)
        for warning in session.warnings:
            record.warn(warning)

    def _terminal_status(self, record: RunRecord, verdict: EvaluationVerdict) -> RunStatus:
        if record.blocking_failures:
            return RunStatus.FAILED
        if verdict.decision is Decision.PASS:
            return RunStatus.PASSED
        # Inconclusive counts as failed
        return RunStatus.FAILED

    def _teardown(
        self,
        record: RunRecord,
        handle: EnvironmentHandle | None,
        session: CaptureSession | None,
    ) -> None:
        try:
            self._stop_capture(record, session)
        except Exception as e:
            logger.exception("Run %s: stopping capture failed", record.run_id)
            record.warn(f"capture stop failed: {e}")

        record.advance(RunStatus.FINALIZING)

        if handle is not None:
            try:
                self._provisioner.release(handle)
            except Exception as e:
                logger.exception("Run %s: release failed", record.run_id)
                record.warn(f"environment release failed: {e}")

    def _checkpoint(self, record: RunRecord) -> None:
        if record.mode is ExecutionMode.ORCHESTRATED:
            self._store.checkpoint(record)
