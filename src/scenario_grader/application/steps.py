"""
Step handlers: one per StepKind, each executing a step against a driver.

The set of kinds is closed; STEP_HANDLERS must cover every StepKind, which
is verified at import time. Handlers signal failure by raising
StepExecutionError (or its AssertionMismatch / StepTimeoutError subclasses);
``run_step`` adds the bounded retry for transient automation errors and
enforces the step timeout across every attempt.
"""

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace

from scenario_grader.domain.exceptions import (
    AssertionMismatch,
    StepExecutionError,
    StepTimeoutError,
)
from scenario_grader.domain.interfaces import AutomationDriverInterface
from scenario_grader.domain.models import AssertionCheck, Step, StepKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepContext:
    """Everything a handler needs to execute one step."""

    driver: AutomationDriverInterface
    timeout: float  # Effective timeout (step timeout capped by run budget)
    step_index: int
    run_id: str


@dataclass(frozen=True)
class StepResult:
    """Successful execution of a step."""

    detail: str = ""
    assertion_passed: bool | None = None


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with capped exponential backoff for transient errors."""

    max_retries: int = 2
    initial_delay: float = 0.5
    backoff: float = 2.0
    max_delay: float = 5.0

    def delay(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-based)."""
        return min(self.initial_delay * self.backoff ** (retry_number - 1), self.max_delay)

    def should_retry(self, error: StepExecutionError, retries_done: int) -> bool:
        if isinstance(error, AssertionMismatch | StepTimeoutError):
            return False
        return error.transient and retries_done < self.max_retries


class StepHandler(ABC):
    """Executes steps of one kind."""

    kind: StepKind

    @abstractmethod
    def execute(self, step: Step, context: StepContext) -> StepResult:
        """
        Execute a step.

        Raises:
            StepExecutionError: On failure
        """


class ActionHandler(StepHandler):
    kind = StepKind.ACTION

    def execute(self, step: Step, context: StepContext) -> StepResult:
        if step.action is None:
            raise StepExecutionError(f"action step {step.id} names no action", step_id=step.id)
        detail = context.driver.perform(step.action, step.target, step.params, context.timeout)
        return StepResult(detail=detail)


class WaitHandler(StepHandler):
    kind = StepKind.WAIT

    def execute(self, step: Step, context: StepContext) -> StepResult:
        detail = context.driver.wait(step.target, step.params, context.timeout)
        return StepResult(detail=detail)


class AssertionHandler(StepHandler):
    """Deterministic checks on the present UI state."""

    kind = StepKind.ASSERTION

    def execute(self, step: Step, context: StepContext) -> StepResult:
        if step.target is None:
            raise StepExecutionError(f"assertion step {step.id} has no target", step_id=step.id)
        check = step.check or AssertionCheck.ELEMENT_VISIBLE
        observation = context.driver.observe(step.target, context.timeout)
        expected = str(step.params.get("expected", ""))

        if check is AssertionCheck.ELEMENT_VISIBLE:
            passed = observation.found and observation.visible
            want, got = "visible", "visible" if passed else "not visible"
        elif check is AssertionCheck.ELEMENT_HIDDEN:
            passed = not (observation.found and observation.visible)
            want, got = "hidden", "hidden" if passed else "visible"
        elif check is AssertionCheck.TEXT_CONTAINS:
            passed = observation.found and expected in observation.text
            want, got = f"text containing {expected!r}", repr(observation.text)
        else:
            passed = observation.found and observation.text.strip() == expected.strip()
            want, got = f"text {expected!r}", repr(observation.text)

        if not passed:
            raise AssertionMismatch(
                f"{step.target}: expected {want}, got {got}",
                expected=want,
                actual=got,
                step_id=step.id,
            )
        return StepResult(detail=f"{step.target} is {want}", assertion_passed=True)


STEP_HANDLERS: Mapping[StepKind, StepHandler] = {
    handler.kind: handler
    for handler in (ActionHandler(), WaitHandler(), AssertionHandler())
}

_missing = set(StepKind) - set(STEP_HANDLERS)
if _missing:
    raise RuntimeError(f"No step handler for kinds: {sorted(k.value for k in _missing)}")


@dataclass(frozen=True)
class StepAttempt:
    """Result of running a step through the retry policy."""

    attempts: int
    result: StepResult | None = None
    error: StepExecutionError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def _execute_within(handler: StepHandler, step: Step, context: StepContext) -> StepResult:
    """
    Run one attempt on a worker thread and stop waiting after ``context.timeout``.

    A driver call that overruns keeps its worker until the driver gives up
    on its own; the step is reported as timed out either way.

    Raises:
        StepTimeoutError: When the attempt does not finish in time
    """
    results: queue.Queue[StepResult | Exception] = queue.Queue(maxsize=1)

    def target() -> None:
        try:
            results.put(handler.execute(step, context))
        except Exception as e:
            results.put(e)

    worker = threading.Thread(target=target, name=f"step-{step.id}", daemon=True)
    worker.start()
    worker.join(context.timeout)

    if worker.is_alive():
        raise StepTimeoutError(
            f"step {step.id} did not finish within {context.timeout:g}s",
            timeout=context.timeout,
            step_id=step.id,
        )
    try:
        outcome = results.get_nowait()
    except queue.Empty:
        raise StepExecutionError(
            f"step {step.id} ended without a result", step_id=step.id
        ) from None
    if isinstance(outcome, Exception):
        raise outcome
    return outcome


def run_step(
    step: Step,
    context: StepContext,
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> StepAttempt:
    """
    Execute a step, retrying transient automation errors.

    ``context.timeout`` is one deadline for the whole step: each attempt
    gets only what is left of it, and no retry starts once the backoff
    would reach it. Assertion mismatches and timeouts are never retried.

    Args:
        step: The step to run
        context: Driver and effective timeout
        policy: Retry bounds and backoff
        sleep: Injected for tests
        clock: Monotonic clock, injected for tests

    Returns:
        StepAttempt with the result or the final error
    """
    handler = STEP_HANDLERS[step.kind]
    deadline = clock() + context.timeout
    attempts = 0
    remaining = context.timeout
    while True:
        attempts += 1
        try:
            result = _execute_within(handler, step, replace(context, timeout=remaining))
            return StepAttempt(attempts=attempts, result=result)
        except StepExecutionError as e:
            retries_done = attempts - 1
            if not policy.should_retry(e, retries_done):
                return StepAttempt(attempts=attempts, error=e)
            delay = policy.delay(retries_done + 1)
            remaining = deadline - clock()
            if remaining <= delay:
                logger.info("Step %s: timeout reached after %d attempt(s)", step.id, attempts)
                return StepAttempt(
                    attempts=attempts,
                    error=StepTimeoutError(
                        f"step {step.id} timed out after {context.timeout:g}s "
                        f"and {attempts} attempt(s); last error: {e}",
                        timeout=context.timeout,
                        step_id=step.id,
                    ),
                )
            logger.info(
                "Step %s: transient error (%s), retry %d/%d in %.2fs",
                step.id,
                e,
                retries_done + 1,
                policy.max_retries,
                delay,
            )
            sleep(delay)
            remaining = deadline - clock()
