"""
EvaluationJudge: deterministic checks first, then a retry-and-agree grader.

Implements the verdict policy:
1. Failed assertion steps, failed blocking steps and structured outcome
   assertions short-circuit to FAIL without consulting the grader.
2. The natural-language expectation is submitted to the grader up to
   ``max_invocations`` times; the first decision reaching ``quorum`` votes
   wins, otherwise the verdict is INCONCLUSIVE.
3. An unreachable grader raises EvaluationError; disagreement never does.
"""

import logging
from collections import Counter
from dataclasses import replace
from pathlib import Path

from scenario_grader.domain.exceptions import EvaluationError
from scenario_grader.domain.interfaces import GraderInterface
from scenario_grader.domain.models import (
    ArtifactKind,
    Decision,
    EvaluationVerdict,
    ExpectedOutcome,
    GraderRequest,
    GraderResponse,
    OutcomeAssertion,
    OutcomeCheck,
    RunRecord,
    StepKind,
    StepOutcome,
    frozen_mapping,
)

logger = logging.getLogger(__name__)


def _describe_outcome(outcome: StepOutcome) -> str:
    line = (
        f"[{outcome.index}] {outcome.step_id} ({outcome.kind.value}): "
        f"{outcome.status.value} after {outcome.attempts} attempt(s)"
    )
    if outcome.soft_failure:
        line += " [non-blocking]"
    if outcome.detail:
        line += f" - {outcome.detail}"
    if outcome.error:
        line += f" - error: {outcome.error}"
    return line


def build_transcript(record: RunRecord) -> tuple[str, ...]:
    """Step-by-step transcript of a run, as sent to the grader."""
    lines = [_describe_outcome(o) for o in record.step_outcomes]
    lines.extend(f"warning: {w}" for w in record.warnings)
    return tuple(lines)


class EvaluationJudge:
    """Renders pass / fail / inconclusive verdicts for completed runs."""

    def __init__(
        self,
        grader: GraderInterface | None = None,
        max_invocations: int = 3,
        quorum: int = 2,
    ):
        """
        Args:
            grader: Language-model grader; None evaluates deterministically only
            max_invocations: Grader call budget per evaluation
            quorum: Agreeing votes needed to accept a decision
        """
        if max_invocations < 1:
            raise ValueError("max_invocations must be >= 1")
        if not 1 <= quorum <= max_invocations:
            raise ValueError(
                f"quorum must be between 1 and max_invocations ({max_invocations})"
            )
        self._grader = grader
        self._max_invocations = max_invocations
        self._quorum = quorum

    def evaluate(self, record: RunRecord, expected: ExpectedOutcome) -> EvaluationVerdict:
        """
        Judge a completed run.

        Args:
            record: Run with step outcomes and stopped-capture artifacts
            expected: The scenario's expected outcome

        Returns:
            EvaluationVerdict with the number of grader calls consumed

        Raises:
            EvaluationError: If the grader is unreachable
        """
        failures = self._deterministic_failures(record, expected)
        if failures:
            logger.info("Run %s fails deterministic checks: %s", record.run_id, failures)
            return EvaluationVerdict(
                decision=Decision.FAIL,
                confidence=1.0,
                rationale="; ".join(failures),
                invocations=0,
            )

        if self._grader is None or not expected.description.strip():
            return self._deterministic_pass(record)

        return self._grade_with_quorum(self._grader, record, expected)

    # ------------------------------------------------------------------
    # Deterministic checks
    # ------------------------------------------------------------------

    def _deterministic_failures(
        self, record: RunRecord, expected: ExpectedOutcome
    ) -> list[str]:
        failures = []
        for outcome in record.step_outcomes:
            if outcome.kind is StepKind.ASSERTION and outcome.failed:
                failures.append(f"assertion {outcome.step_id} failed: {outcome.error}")
            elif outcome.failed and not outcome.soft_failure:
                failures.append(
                    f"step {outcome.step_id} {outcome.status.value}: {outcome.error}"
                )
        for assertion in expected.assertions:
            problem = self._check_assertion(record, assertion)
            if problem:
                failures.append(problem)
        return failures

    def _check_assertion(self, record: RunRecord, assertion: OutcomeAssertion) -> str | None:
        if assertion.check is OutcomeCheck.STEP_STATUS:
            for outcome in record.step_outcomes:
                if outcome.step_id == assertion.subject:
                    if outcome.status.value != assertion.expected:
                        return (
                            f"step {assertion.subject} expected {assertion.expected}, "
                            f"was {outcome.status.value}"
                        )
                    return None
            return f"step {assertion.subject} never ran"

        if assertion.check is OutcomeCheck.ARTIFACT_PRESENT:
            kind = ArtifactKind(assertion.subject)
            if not any(a.kind is kind for a in record.artifacts):
                return f"no {kind.value} artifact was captured"
            return None

        for artifact in record.artifacts:
            if artifact.kind is not ArtifactKind.LOG:
                continue
            path = Path(artifact.path)
            if path.is_file() and assertion.subject in path.read_text(errors="replace"):
                return None
        return f"captured logs do not contain {assertion.subject!r}"

    def _deterministic_pass(self, record: RunRecord) -> EvaluationVerdict:
        total = len(record.step_outcomes)
        soft = len(record.soft_failures)
        confidence = 1.0 - (soft / total) if total else 1.0
        rationale = "All blocking steps and assertions succeeded"
        if soft:
            rationale += f"; {soft} non-blocking step(s) failed"
        return EvaluationVerdict(
            decision=Decision.PASS,
            confidence=confidence,
            rationale=rationale,
            invocations=0,
        )

    # ------------------------------------------------------------------
    # Retry-and-agree grading
    # ------------------------------------------------------------------

    def build_request(self, record: RunRecord, expected: ExpectedOutcome) -> GraderRequest:
        return GraderRequest(
            scenario_id=record.scenario_id,
            expected_outcome=expected.description,
            transcript=build_transcript(record),
            artifact_refs=tuple(a.path for a in record.artifacts),
        )

    def _grade_with_quorum(
        self, grader: GraderInterface, record: RunRecord, expected: ExpectedOutcome
    ) -> EvaluationVerdict:
        request = self.build_request(record, expected)
        votes: list[Decision] = []
        responses: list[GraderResponse] = []

        for attempt in range(1, self._max_invocations + 1):
            try:
                response = grader.grade(replace(request, attempt=attempt))
            except EvaluationError as e:
                e.attempts = attempt
                raise

            if response.decision not in (Decision.PASS, Decision.FAIL):
                logger.warning(
                    "Grader returned no usable decision for run %s (attempt %d)",
                    record.run_id,
                    attempt,
                )
                continue

            votes.append(response.decision)
            responses.append(response)
            logger.debug(
                "Grader vote %d for run %s: %s", attempt, record.run_id, response.decision.value
            )

            if votes.count(response.decision) >= self._quorum:
                agreeing = [r for r in responses if r.decision is response.decision]
                return EvaluationVerdict(
                    decision=response.decision,
                    confidence=_mean_confidence(agreeing),
                    rationale=agreeing[-1].rationale,
                    invocations=attempt,
                    votes=tuple(votes),
                    scores=_mean_scores(agreeing),
                )

        tally = Counter(v.value for v in votes)
        return EvaluationVerdict(
            decision=Decision.INCONCLUSIVE,
            confidence=0.0,
            rationale=(
                f"No {self._quorum} of {self._max_invocations} grader responses agreed "
                f"(votes: {dict(tally) or 'none usable'})"
            ),
            invocations=self._max_invocations,
            votes=tuple(votes),
        )


def _mean_confidence(responses: list[GraderResponse]) -> float:
    values = [min(max(r.confidence, 0.0), 1.0) for r in responses]
    return sum(values) / len(values)


def _mean_scores(responses: list[GraderResponse]):
    totals: dict[str, list[float]] = {}
    for response in responses:
        for name, value in response.scores.items():
            totals.setdefault(name, []).append(value)
    return frozen_mapping({name: sum(v) / len(v) for name, v in totals.items()})
