"""Run event emission service."""

import logging
from collections.abc import Sequence

from scenario_grader.domain.interfaces import RunEventSinkInterface
from scenario_grader.domain.models import (
    Artifact,
    EvaluationVerdict,
    RunEvent,
    RunEventType,
    RunRecord,
    Step,
    StepOutcome,
)

logger = logging.getLogger(__name__)


class RunEventEmitter:
    """Emits progress events for one run to a sink.

    A sink that raises never affects the run: the failure is logged and the
    event dropped.
    """

    def __init__(self, sink: RunEventSinkInterface | None, record: RunRecord) -> None:
        self._sink = sink
        self._record = record

    def _emit(self, event_type: RunEventType, **fields: object) -> None:
        if self._sink is None:
            return
        event = RunEvent(
            event_type=event_type,
            run_id=self._record.run_id,
            scenario_id=self._record.scenario_id,
            version=self._record.environment.version.value,
            **fields,  # type: ignore[arg-type]
        )
        try:
            self._sink.handle(event)
        except Exception:
            logger.exception(
                "Run %s: event sink failed on %s", self._record.run_id, event_type.value
            )

    def run_start(self, step_count: int) -> None:
        """Emit RUN_START once the run begins provisioning."""
        self._emit(
            RunEventType.RUN_START,
            summary=f"{step_count} step(s), {self._record.mode.value} mode",
        )

    def step_start(self, index: int, step: Step) -> None:
        """Emit STEP_START just before a step executes."""
        self._emit(
            RunEventType.STEP_START,
            step_index=index,
            step_id=step.id,
            step_kind=step.kind,
        )

    def step_complete(self, outcome: StepOutcome) -> None:
        """Emit STEP_COMPLETE with the step's final status."""
        self._emit(
            RunEventType.STEP_COMPLETE,
            step_index=outcome.index,
            step_id=outcome.step_id,
            step_kind=outcome.kind,
            status=outcome.status.value,
            summary=outcome.error or outcome.detail,
        )

    def evidence(self, index: int, step_id: str, artifacts: Sequence[Artifact]) -> None:
        """Emit EVIDENCE after failure snapshots were taken."""
        if not artifacts:
            return
        self._emit(
            RunEventType.EVIDENCE,
            step_index=index,
            step_id=step_id,
            summary=", ".join(a.path for a in artifacts),
        )

    def evaluation_start(self) -> None:
        self._emit(RunEventType.EVALUATION_START)

    def evaluation_complete(self, verdict: EvaluationVerdict) -> None:
        self._emit(
            RunEventType.EVALUATION_COMPLETE,
            status=verdict.decision.value,
            summary=f"confidence {verdict.confidence:.2f}",
        )

    def error(self, message: str) -> None:
        """Emit ERROR when the run stops on an infrastructure problem."""
        self._emit(RunEventType.ERROR, summary=message)

    def run_complete(self) -> None:
        """Emit RUN_COMPLETE with the terminal status."""
        self._emit(
            RunEventType.RUN_COMPLETE,
            status=self._record.status.value,
            summary=self._record.error or "",
        )
