"""Tests for ScreenshotBackend method fallback."""

import pytest
from PIL import Image

from scenario_grader.domain.exceptions import ArtifactCaptureError
from scenario_grader.domain.models import (
    ArtifactKind,
    EnvironmentHandle,
    IsolationMode,
    ScreenshotMethod,
    VersionChannel,
)
from scenario_grader.infrastructure.automation.mock import MockDriver
from scenario_grader.infrastructure.capture.screenshots import ScreenshotBackend


def _handle(tmp_path, driver: MockDriver) -> EnvironmentHandle:  # noqa: ANN001
    return EnvironmentHandle(
        handle_id="h-1",
        version=VersionChannel.STABLE,
        executable="/fake/code",
        profile_dir=str(tmp_path / "profile"),
        isolation=IsolationMode.FRESH_PROFILE,
        log_dir=str(tmp_path / "logs"),
        driver=driver,
    )


def _screen() -> Image.Image:
    return Image.new("RGB", (4, 4), "white")


def _broken_screen() -> Image.Image:
    raise OSError("no display")


class TestScreenshotBackend:
    """Tests for ScreenshotBackend."""

    def test_step_screenshot_named_by_index_and_id(self, tmp_path) -> None:  # noqa: ANN001
        driver = MockDriver()
        backend = ScreenshotBackend(grab=_screen)
        backend.start(_handle(tmp_path, driver), tmp_path / "out", "run-1")

        [artifact] = backend.on_step(2, "ask")

        assert artifact.path == str(tmp_path / "out" / "screenshots" / "002_ask.png")
        assert artifact.kind is ArtifactKind.SCREENSHOT
        assert artifact.method == "electron"
        assert artifact.step_index == 2
        assert artifact.run_id == "run-1"
        assert driver.calls == [("screenshot", "electron")]

    def test_falls_back_to_os_grab(self, tmp_path) -> None:  # noqa: ANN001
        """Electron failure falls through to the OS method."""
        driver = MockDriver(failing_screenshot_methods=["electron"])
        backend = ScreenshotBackend(grab=_screen)
        backend.start(_handle(tmp_path, driver), tmp_path / "out", "run-1")

        [artifact] = backend.snapshot("FAIL_ask", 1)

        assert artifact.method == "os"
        with Image.open(artifact.path) as image:
            assert image.format == "PNG"

    def test_preferred_method_goes_first(self, tmp_path) -> None:  # noqa: ANN001
        driver = MockDriver()
        backend = ScreenshotBackend(ScreenshotMethod.PLAYWRIGHT, grab=_screen)
        backend.start(_handle(tmp_path, driver), tmp_path / "out", "run-1")

        [artifact] = backend.snapshot("periodic")

        assert artifact.method == "playwright"

    def test_all_methods_failing_raises(self, tmp_path) -> None:  # noqa: ANN001
        driver = MockDriver(failing_screenshot_methods=["electron", "playwright"])
        backend = ScreenshotBackend(grab=_broken_screen)
        backend.start(_handle(tmp_path, driver), tmp_path / "out", "run-1")

        with pytest.raises(ArtifactCaptureError) as exc_info:
            backend.on_step(0, "open-chat")

        assert exc_info.value.backend == "screenshots"
        assert "no display" in str(exc_info.value)
        assert [c[1] for c in driver.calls] == ["electron", "playwright"]

    def test_repeated_label_does_not_overwrite(self, tmp_path) -> None:  # noqa: ANN001
        backend = ScreenshotBackend(grab=_screen)
        backend.start(_handle(tmp_path, MockDriver()), tmp_path / "out", "run-1")

        [first] = backend.snapshot("periodic")
        [second] = backend.snapshot("periodic")

        assert first.path != second.path

    def test_capture_before_start_raises(self) -> None:
        with pytest.raises(ArtifactCaptureError):
            ScreenshotBackend(grab=_screen).on_step(0, "x")
