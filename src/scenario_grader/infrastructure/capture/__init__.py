"""Evidence capture backends."""

from scenario_grader.infrastructure.capture.logs import LogTailBackend
from scenario_grader.infrastructure.capture.registry import (
    CaptureBackendRegistry,
    build_backends,
)
from scenario_grader.infrastructure.capture.screenshots import ScreenshotBackend
from scenario_grader.infrastructure.capture.video import VideoBackend

__all__ = [
    "CaptureBackendRegistry",
    "build_backends",
    "LogTailBackend",
    "ScreenshotBackend",
    "VideoBackend",
]
