"""Editor log capture: tails the editor's log directory into one file."""

import logging
from pathlib import Path

from scenario_grader.domain.exceptions import ArtifactCaptureError
from scenario_grader.domain.interfaces import CaptureBackendInterface
from scenario_grader.domain.models import Artifact, ArtifactKind, EnvironmentHandle, utc_now

logger = logging.getLogger(__name__)


class LogTailBackend(CaptureBackendInterface):
    """Copies new log lines to ``logs/editor.log`` at every step boundary."""

    def __init__(self, pattern: str = "*.log"):
        self._pattern = pattern
        self._source: Path | None = None
        self._dest: Path | None = None
        self._offsets: dict[Path, int] = {}
        self._run_id = ""

    @property
    def name(self) -> str:
        return "logs"

    def start(self, handle: EnvironmentHandle, output_dir: Path, run_id: str) -> None:
        self._source = Path(handle.log_dir)
        if not self._source.is_dir():
            raise ArtifactCaptureError(self.name, f"log directory missing: {self._source}")
        self._dest = output_dir / "logs" / "editor.log"
        self._dest.parent.mkdir(parents=True, exist_ok=True)
        self._dest.touch()
        self._run_id = run_id

    def _pull(self) -> None:
        if self._source is None or self._dest is None:
            return
        with open(self._dest, "ab") as out:
            for path in sorted(self._source.rglob(self._pattern)):
                offset = self._offsets.get(path, 0)
                size = path.stat().st_size
                if size <= offset:
                    continue
                with open(path, "rb") as f:
                    f.seek(offset)
                    chunk = f.read(size - offset)
                out.write(f"==> {path.relative_to(self._source)} <==\n".encode())
                out.write(chunk)
                if not chunk.endswith(b"\n"):
                    out.write(b"\n")
                self._offsets[path] = size

    def on_step(self, step_index: int, step_id: str) -> list[Artifact]:
        self._pull()
        return []

    def snapshot(self, label: str, step_index: int | None = None) -> list[Artifact]:
        self._pull()
        return []

    def stop(self) -> list[Artifact]:
        if self._dest is None:
            return []
        try:
            self._pull()
        except OSError as e:
            raise ArtifactCaptureError(self.name, f"final log flush failed: {e}") from e
        finally:
            self._source = None
        return [
            Artifact(
                kind=ArtifactKind.LOG,
                path=str(self._dest),
                method=self.name,
                captured_at=utc_now(),
                run_id=self._run_id,
                label="editor",
            )
        ]
