"""
Domain interfaces (Ports) for the scenario engine.

These abstract base classes define the contracts adapters must satisfy:
automation drivers, environment provisioners, capture backends, graders,
run stores and run event sinks. They have no external dependencies.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from scenario_grader.domain.models import (
        Artifact,
        ComparisonResult,
        EnvironmentHandle,
        EnvironmentRequirements,
        GraderRequest,
        GraderResponse,
        Observation,
        RunEvent,
        RunRecord,
    )


class AutomationDriverInterface(ABC):
    """
    Port for UI automation against one editor instance.

    Element recognition lives behind this port. Implementations raise
    StepExecutionError (``transient=True`` when a retry may help) or
    StepTimeoutError when ``timeout`` seconds elapse.
    """

    @abstractmethod
    def perform(
        self,
        action: str,
        target: str | None,
        params: Mapping[str, Any],
        timeout: float,
    ) -> str:
        """
        Execute a named action.

        Args:
            action: Action name (e.g. "openCommandPalette")
            target: Selector or semantic description, if the action needs one
            params: Action arguments
            timeout: Seconds before the action times out

        Returns:
            Short description of what was done
        """

    @abstractmethod
    def wait(self, target: str | None, params: Mapping[str, Any], timeout: float) -> str:
        """Wait for a duration (``params["duration"]``) or for ``target`` to appear."""

    @abstractmethod
    def observe(self, target: str, timeout: float) -> "Observation":
        """
        Look up a target and report what is there.

        Returns:
            Observation; ``found=False`` when nothing matched within timeout
        """

    @abstractmethod
    def screenshot(self, path: Path, method: str) -> None:
        """
        Write a PNG of the editor window.

        Args:
            path: Destination file
            method: "electron" (native window capture) or "playwright" (page)
        """

    @abstractmethod
    def close(self) -> None:
        """Detach from the editor. Must be idempotent."""


class ProvisionerInterface(ABC):
    """Port for acquiring and releasing isolated editor environments."""

    @abstractmethod
    def acquire(self, requirements: "EnvironmentRequirements") -> "EnvironmentHandle":
        """
        Provision an editor instance.

        Args:
            requirements: Version channel, profile, workspace and isolation

        Returns:
            Handle scoped to a single run

        Raises:
            ProvisionError: If the version is unavailable or launch fails
        """

    @abstractmethod
    def release(self, handle: "EnvironmentHandle") -> None:
        """Tear the instance down and free its profile. Must be idempotent."""


class CaptureBackendInterface(ABC):
    """
    Port for a single evidence capture mechanism.

    Methods may raise ArtifactCaptureError; the capture session downgrades
    these to warnings.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier used in artifact metadata and warnings."""

    @abstractmethod
    def start(self, handle: "EnvironmentHandle", output_dir: Path, run_id: str) -> None:
        """Begin capturing into ``output_dir``."""

    @abstractmethod
    def on_step(self, step_index: int, step_id: str) -> list["Artifact"]:
        """React to a step boundary; returns any artifacts produced."""

    @abstractmethod
    def snapshot(self, label: str, step_index: int | None = None) -> list["Artifact"]:
        """Capture evidence right now (periodic tick or failure evidence)."""

    @abstractmethod
    def stop(self) -> list["Artifact"]:
        """Flush and close everything; returns the remaining artifacts."""


class GraderInterface(ABC):
    """Port for the language-model grader (a pure request/response call)."""

    @abstractmethod
    def grade(self, request: "GraderRequest") -> "GraderResponse":
        """
        Grade a run transcript against an expected outcome.

        Args:
            request: Transcript, artifact references and expected outcome

        Returns:
            GraderResponse; ``decision`` is None when the output was unusable

        Raises:
            EvaluationError: If the grader is unreachable
        """


class RunStoreInterface(ABC):
    """Port for persisting run records and comparison results."""

    @abstractmethod
    def artifact_dir(self, scenario_id: str, run_id: str) -> Path:
        """Directory where a run's artifacts are written."""

    @abstractmethod
    def checkpoint(self, record: "RunRecord") -> None:
        """Durably record in-progress state (orchestrated mode)."""

    @abstractmethod
    def save_run(self, record: "RunRecord") -> None:
        """Persist a run record."""

    @abstractmethod
    def load_run(self, scenario_id: str, run_id: str) -> "RunRecord":
        """
        Load a persisted run.

        Raises:
            KeyError: If the run is unknown
        """

    @abstractmethod
    def save_comparison(self, result: "ComparisonResult") -> None:
        """Persist a comparison result next to its runs."""

    @abstractmethod
    def list_runs(self, scenario_id: str | None = None) -> list["RunRecord"]:
        """All persisted runs, optionally for one scenario, oldest first."""


class RunEventSinkInterface(ABC):
    """Port for live run progress (console output, dashboards)."""

    @abstractmethod
    def handle(self, event: "RunEvent") -> None:
        """
        Receive one event.

        Called from the thread executing the run; parallel runs call
        concurrently, so implementations must be thread-safe.
        """
