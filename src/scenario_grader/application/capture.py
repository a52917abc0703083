"""
CaptureSession: concurrent artifact capture alongside step execution.

Step boundaries are queued to a background worker so capture never blocks a
step. Backend failures are downgraded to warnings. ``stop_capture`` drains
the queue and closes every backend, so artifacts are complete before the
judge or a report reads them.
"""

import logging
import queue
import threading
from collections.abc import Callable, Sequence
from pathlib import Path

from scenario_grader.domain.exceptions import ArtifactCaptureError
from scenario_grader.domain.interfaces import CaptureBackendInterface
from scenario_grader.domain.models import Artifact, EnvironmentHandle

logger = logging.getLogger(__name__)

MAX_BACKEND_FAILURES = 3  # Consecutive failures before a backend is dropped
STOP_TIMEOUT = 30.0

_STOP = object()


class CaptureSession:
    """
    Capture side-channel for one run.

    Owned by exactly one RunRecord. Everything appended to ``artifacts`` is
    read-only once ``stop`` has returned.
    """

    def __init__(
        self,
        run_id: str,
        handle: EnvironmentHandle,
        backends: Sequence[CaptureBackendInterface],
        output_dir: Path,
        interval: float | None = None,
    ):
        """
        Args:
            run_id: Owning run
            handle: Environment being captured
            backends: Fresh backend instances for this run
            output_dir: Directory artifacts are written to
            interval: Seconds between periodic snapshots (None disables)
        """
        self.run_id = run_id
        self._handle = handle
        self._backends = list(backends)
        self._output_dir = output_dir
        self._interval = interval
        self._queue: queue.Queue[object] = queue.Queue()
        self._lock = threading.Lock()
        self._failures: dict[str, int] = {}
        self._artifacts: list[Artifact] = []
        self._warnings: list[str] = []
        self._worker: threading.Thread | None = None
        self._stopped = False
        self._result: tuple[Artifact, ...] = ()

    @property
    def warnings(self) -> list[str]:
        with self._lock:
            return list(self._warnings)

    @property
    def active_backends(self) -> list[str]:
        return [b.name for b in self._backends]

    def _warn(self, backend: CaptureBackendInterface, error: Exception) -> None:
        message = str(error) if isinstance(error, ArtifactCaptureError) else f"[{backend.name}] {error}"
        logger.warning("Capture warning (run %s): %s", self.run_id, message)
        self._warnings.append(message)

    def start(self) -> None:
        """Start every backend; a backend that fails to start is dropped."""
        self._output_dir.mkdir(parents=True, exist_ok=True)
        started = []
        for backend in self._backends:
            try:
                backend.start(self._handle, self._output_dir, self.run_id)
                started.append(backend)
            except Exception as e:
                self._warn(backend, e)
        self._backends = started

        if self._backends:
            self._worker = threading.Thread(
                target=self._run_worker,
                name=f"capture-{self.run_id[:8]}",
                daemon=True,
            )
            self._worker.start()
        logger.debug("Capture started for run %s: %s", self.run_id, self.active_backends)

    def _dispatch(self, call: Callable[[CaptureBackendInterface], list[Artifact]]) -> list[Artifact]:
        produced: list[Artifact] = []
        with self._lock:
            for backend in list(self._backends):
                try:
                    produced.extend(call(backend))
                    self._failures[backend.name] = 0
                except Exception as e:
                    self._warn(backend, e)
                    count = self._failures.get(backend.name, 0) + 1
                    self._failures[backend.name] = count
                    if count >= MAX_BACKEND_FAILURES:
                        self._warnings.append(
                            f"[{backend.name}] disabled after {count} consecutive failures"
                        )
                        self._backends.remove(backend)
                        self._stop_backend(backend)
            self._artifacts.extend(produced)
        return produced

    def _run_worker(self) -> None:
        while True:
            try:
                event = self._queue.get(timeout=self._interval)
            except queue.Empty:
                self._dispatch(lambda b: b.snapshot("periodic"))
                continue
            if event is _STOP:
                return
            index, step_id = event  # type: ignore[misc]
            self._dispatch(lambda b: b.on_step(index, step_id))

    def mark_step(self, step_index: int, step_id: str) -> None:
        """Signal a step boundary. Never blocks."""
        if self._worker is not None and not self._stopped:
            self._queue.put_nowait((step_index, step_id))

    def capture_evidence(self, label: str, step_index: int | None = None) -> list[Artifact]:
        """Take a snapshot immediately, e.g. when a step times out."""
        if self._stopped:
            return []
        return self._dispatch(lambda b: b.snapshot(label, step_index))

    def _stop_backend(self, backend: CaptureBackendInterface) -> None:
        try:
            self._artifacts.extend(backend.stop())
        except Exception as e:
            self._warn(backend, e)

    def stop(self) -> tuple[Artifact, ...]:
        """Flush and close all captures. Idempotent."""
        if self._stopped:
            return self._result
        self._stopped = True

        if self._worker is not None:
            self._queue.put(_STOP)
            self._worker.join(timeout=STOP_TIMEOUT)
            if self._worker.is_alive():
                self._warnings.append(
                    f"capture worker did not finish within {STOP_TIMEOUT:g}s"
                )

        for backend in self._backends:
            self._stop_backend(backend)
        self._backends = []

        self._result = tuple(self._artifacts)
        logger.debug(
            "Capture stopped for run %s: %d artifact(s), %d warning(s)",
            self.run_id,
            len(self._result),
            len(self._warnings),
        )
        return self._result


def start_capture(
    handle: EnvironmentHandle,
    backends: Sequence[CaptureBackendInterface],
    *,
    run_id: str,
    output_dir: Path,
    interval: float | None = None,
) -> CaptureSession:
    """Create and start a capture session for one run."""
    session = CaptureSession(run_id, handle, backends, output_dir, interval)
    session.start()
    return session


def stop_capture(session: CaptureSession) -> tuple[Artifact, ...]:
    """Flush and close a session, returning every artifact it produced."""
    return session.stop()
