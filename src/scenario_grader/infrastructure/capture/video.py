"""
Screen recording via an ffmpeg subprocess.

ffmpeg finalises the container when it reads ``q`` on stdin, so stop sends
that and waits before falling back to a kill.
"""

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path

from scenario_grader.domain.exceptions import ArtifactCaptureError
from scenario_grader.domain.interfaces import CaptureBackendInterface
from scenario_grader.domain.models import Artifact, ArtifactKind, EnvironmentHandle, utc_now

logger = logging.getLogger(__name__)

STOP_TIMEOUT = 15.0


def grab_input_args(framerate: int) -> list[str]:
    """ffmpeg input arguments for grabbing the whole screen on this platform."""
    rate = str(framerate)
    if sys.platform == "darwin":
        return ["-f", "avfoundation", "-framerate", rate, "-i", "1:none"]
    if sys.platform == "win32":
        return ["-f", "gdigrab", "-framerate", rate, "-i", "desktop"]
    return ["-f", "x11grab", "-framerate", rate, "-i", os.environ.get("DISPLAY", ":0")]


class VideoBackend(CaptureBackendInterface):
    """Records the screen for the whole run into ``video/run.mp4``."""

    def __init__(self, ffmpeg: str = "ffmpeg", framerate: int = 10):
        self._ffmpeg = ffmpeg
        self._framerate = framerate
        self._process: subprocess.Popen | None = None
        self._path: Path | None = None
        self._run_id = ""

    @property
    def name(self) -> str:
        return "video"

    def start(self, handle: EnvironmentHandle, output_dir: Path, run_id: str) -> None:
        executable = shutil.which(self._ffmpeg)
        if executable is None:
            raise ArtifactCaptureError(self.name, f"{self._ffmpeg} not found on PATH")

        video_dir = output_dir / "video"
        video_dir.mkdir(parents=True, exist_ok=True)
        self._path = video_dir / "run.mp4"
        self._run_id = run_id
        args = [
            executable,
            "-hide_banner",
            *grab_input_args(self._framerate),
            "-c:v", "libx264",
            "-preset", "ultrafast",
            "-pix_fmt", "yuv420p",
            "-y", str(self._path),
        ]
        with open(video_dir / "ffmpeg.log", "wb") as log:
            self._process = subprocess.Popen(
                args, stdin=subprocess.PIPE, stdout=subprocess.DEVNULL, stderr=log
            )
        code = self._process.poll()
        if code is not None:
            raise ArtifactCaptureError(self.name, f"ffmpeg exited immediately with code {code}")
        logger.debug("Recording run %s to %s", run_id, self._path)

    def on_step(self, step_index: int, step_id: str) -> list[Artifact]:
        return []

    def snapshot(self, label: str, step_index: int | None = None) -> list[Artifact]:
        return []

    def stop(self) -> list[Artifact]:
        process, self._process = self._process, None
        if process is None:
            return []

        try:
            if process.stdin is not None:
                process.stdin.write(b"q")
                process.stdin.close()
        except OSError as e:
            logger.debug("ffmpeg stdin already closed: %s", e)
        try:
            process.wait(timeout=STOP_TIMEOUT)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            raise ArtifactCaptureError(
                self.name, f"ffmpeg did not stop within {STOP_TIMEOUT:g}s; recording may be truncated"
            )

        if self._path is None or not self._path.is_file() or self._path.stat().st_size == 0:
            raise ArtifactCaptureError(self.name, "no video was produced")
        return [
            Artifact(
                kind=ArtifactKind.VIDEO,
                path=str(self._path),
                method="ffmpeg",
                captured_at=utc_now(),
                run_id=self._run_id,
                label="run",
            )
        ]
