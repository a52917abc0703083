"""
Screenshot capture backend.

Takes one PNG per step boundary and on demand (failure evidence, periodic
ticks). When the preferred method fails the next one in its fallback order
is tried; only when every method fails is an ArtifactCaptureError raised.
"""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from PIL import ImageGrab

from scenario_grader.domain.exceptions import ArtifactCaptureError
from scenario_grader.domain.interfaces import AutomationDriverInterface, CaptureBackendInterface
from scenario_grader.domain.models import (
    Artifact,
    ArtifactKind,
    EnvironmentHandle,
    ScreenshotMethod,
    utc_now,
)

logger = logging.getLogger(__name__)

FALLBACK_ORDER: dict[ScreenshotMethod, tuple[ScreenshotMethod, ...]] = {
    ScreenshotMethod.ELECTRON: (
        ScreenshotMethod.ELECTRON,
        ScreenshotMethod.OS,
        ScreenshotMethod.PLAYWRIGHT,
    ),
    ScreenshotMethod.OS: (
        ScreenshotMethod.OS,
        ScreenshotMethod.ELECTRON,
        ScreenshotMethod.PLAYWRIGHT,
    ),
    ScreenshotMethod.PLAYWRIGHT: (
        ScreenshotMethod.PLAYWRIGHT,
        ScreenshotMethod.ELECTRON,
        ScreenshotMethod.OS,
    ),
}


class ScreenshotBackend(CaptureBackendInterface):
    """PNG screenshots via the editor (electron/playwright) or the OS."""

    def __init__(
        self,
        method: ScreenshotMethod = ScreenshotMethod.ELECTRON,
        grab: Callable[[], Any] | None = None,
    ):
        """
        Args:
            method: Preferred capture method
            grab: Returns a PIL image of the screen (default: ImageGrab.grab)
        """
        self._method = method
        self._grab = grab or ImageGrab.grab
        self._driver: AutomationDriverInterface | None = None
        self._dir: Path | None = None
        self._run_id = ""
        self._seq = 0

    @property
    def name(self) -> str:
        return "screenshots"

    def start(self, handle: EnvironmentHandle, output_dir: Path, run_id: str) -> None:
        self._driver = handle.driver
        self._dir = output_dir / "screenshots"
        self._dir.mkdir(parents=True, exist_ok=True)
        self._run_id = run_id

    def _shoot(self, method: ScreenshotMethod, path: Path) -> None:
        if method is ScreenshotMethod.OS:
            self._grab().save(path, "PNG")
        else:
            if self._driver is None:
                raise RuntimeError("no driver attached")
            self._driver.screenshot(path, method.value)

    def _capture(self, filename: str, step_index: int | None, label: str) -> Artifact:
        if self._dir is None:
            raise ArtifactCaptureError(self.name, "backend not started")
        path = self._dir / filename
        if path.exists():
            self._seq += 1
            path = path.with_name(f"{path.stem}_{self._seq:03d}.png")

        errors = []
        for method in FALLBACK_ORDER[self._method]:
            try:
                self._shoot(method, path)
            except Exception as e:
                logger.debug("Screenshot via %s failed: %s", method.value, e)
                errors.append(f"{method.value}: {e}")
                continue
            return Artifact(
                kind=ArtifactKind.SCREENSHOT,
                path=str(path),
                method=method.value,
                captured_at=utc_now(),
                run_id=self._run_id,
                step_index=step_index,
                label=label,
            )
        raise ArtifactCaptureError(
            self.name, f"all screenshot methods failed for {filename} ({'; '.join(errors)})"
        )

    def on_step(self, step_index: int, step_id: str) -> list[Artifact]:
        return [self._capture(f"{step_index:03d}_{step_id}.png", step_index, step_id)]

    def snapshot(self, label: str, step_index: int | None = None) -> list[Artifact]:
        return [self._capture(f"{label}.png", step_index, label)]

    def stop(self) -> list[Artifact]:
        self._driver = None
        return []
