"""
WatchController: rerun the pipeline when scenario files change.

A single supervisor loop consumes change batches, debounces them, and
restarts the pipeline. Before a new run starts, the in-flight run is
cancelled and joined; its own teardown releases the environment and stops
capture, so nothing from the old run survives the restart.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator

logger = logging.getLogger(__name__)

Pipeline = Callable[[threading.Event], object]
ChangeSource = Callable[[], Iterator[set[str]]]


class WatchController:
    """Cancelable, re-triggerable supervisor for a run pipeline."""

    def __init__(
        self,
        pipeline: Pipeline,
        *,
        debounce: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            pipeline: Runs once per trigger; receives a cancel event it must
                pass on to the orchestrator
            debounce: Quiet period (seconds) before changes trigger a rerun
            clock: Monotonic clock, injectable for tests
        """
        self._pipeline = pipeline
        self._debounce = debounce
        self._clock = clock
        self._pending: set[str] = set()
        self._last_change: float | None = None
        self._worker: threading.Thread | None = None
        self._cancel: threading.Event | None = None
        self.runs_started = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    @property
    def pending_changes(self) -> frozenset[str]:
        return frozenset(self._pending)

    def notify(self, paths: Iterable[str]) -> None:
        """Record changed paths; each change restarts the debounce window."""
        paths = set(paths)
        if not paths:
            return
        self._pending |= paths
        self._last_change = self._clock()
        logger.debug("Change detected: %s", sorted(paths))

    def tick(self) -> bool:
        """
        Start a rerun if the debounce window has elapsed.

        Returns:
            True if a rerun was started
        """
        if self._last_change is None:
            return False
        if self._clock() - self._last_change < self._debounce:
            return False
        changed = sorted(self._pending)
        self._pending.clear()
        self._last_change = None
        logger.info("Rerunning after changes to %s", ", ".join(changed))
        self.restart()
        return True

    def restart(self) -> None:
        """Cancel and join the in-flight run, then start a new one."""
        self._cancel_current()
        cancel = threading.Event()
        self._cancel = cancel
        self._worker = threading.Thread(
            target=self._run_pipeline, args=(cancel,), name="watch-run", daemon=True
        )
        self.runs_started += 1
        self._worker.start()

    def _run_pipeline(self, cancel: threading.Event) -> None:
        try:
            self._pipeline(cancel)
        except Exception:
            logger.exception("Watched run failed")

    def _cancel_current(self) -> None:
        if self._worker is None:
            return
        if self._worker.is_alive() and self._cancel is not None:
            logger.info("Cancelling in-flight run")
            self._cancel.set()
        self._worker.join()
        self._worker = None
        self._cancel = None

    def wait(self, timeout: float | None = None) -> None:
        """Block until the current run (if any) finishes."""
        if self._worker is not None:
            self._worker.join(timeout)

    def shutdown(self) -> None:
        """Cancel the in-flight run and wait for its teardown."""
        self._cancel_current()

    def watch(self, changes: ChangeSource, *, run_immediately: bool = True) -> None:
        """
        Supervise until the change source is exhausted or interrupted.

        Args:
            changes: Yields sets of changed paths; an empty set is a timeout
                tick that lets the debounce window close
            run_immediately: Start one run before the first change
        """
        if run_immediately:
            self.restart()
        try:
            for batch in changes():
                self.notify(batch)
                self.tick()
        finally:
            self.shutdown()
