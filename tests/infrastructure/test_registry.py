"""Tests for CaptureBackendRegistry - entry points-based backend discovery."""

import pytest

from scenario_grader.domain.models import CaptureOptions, ScreenshotMethod
from scenario_grader.infrastructure.capture.logs import LogTailBackend
from scenario_grader.infrastructure.capture.registry import (
    CaptureBackendRegistry,
    build_backends,
)
from scenario_grader.infrastructure.capture.screenshots import ScreenshotBackend
from scenario_grader.infrastructure.capture.video import VideoBackend


class AccessibilityBackend(LogTailBackend):
    """Stand-in plugin backend."""

    @property
    def name(self) -> str:
        return "accessibility"


@pytest.fixture(autouse=True)
def clean_registry():
    CaptureBackendRegistry.clear()
    yield
    CaptureBackendRegistry.clear()


class TestRegistryOperations:
    """Tests for registry get/create/available operations."""

    def test_builtins_are_available(self) -> None:
        """available() lists the built-in backends."""
        available = CaptureBackendRegistry.available()

        assert {"video", "screenshots", "logs"} <= set(available)

    def test_load_idempotent(self) -> None:
        """Multiple _load_entry_points() calls don't duplicate entries."""
        CaptureBackendRegistry._load_entry_points()
        count_after_first = len(CaptureBackendRegistry._backends)

        CaptureBackendRegistry._load_entry_points()

        assert len(CaptureBackendRegistry._backends) == count_after_first
        assert CaptureBackendRegistry._loaded is True

    def test_get_returns_backend_class(self) -> None:
        assert CaptureBackendRegistry.get("video") is VideoBackend

    def test_get_unknown_raises_key_error(self) -> None:
        """Unknown names list what is available."""
        with pytest.raises(KeyError, match="Available backends"):
            CaptureBackendRegistry.get("nonexistent")

    def test_create_passes_config(self) -> None:
        backend = CaptureBackendRegistry.create(
            "screenshots", method=ScreenshotMethod.OS
        )

        assert isinstance(backend, ScreenshotBackend)
        assert backend._method is ScreenshotMethod.OS

    def test_register_and_clear(self) -> None:
        """Manually registered backends disappear after clear()."""
        CaptureBackendRegistry.register("accessibility", AccessibilityBackend)
        assert CaptureBackendRegistry.get("accessibility") is AccessibilityBackend

        CaptureBackendRegistry.clear()

        with pytest.raises(KeyError):
            CaptureBackendRegistry.get("accessibility")


class TestBuildBackends:
    """Tests for build_backends."""

    def test_follows_capture_options(self) -> None:
        backends = build_backends(CaptureOptions(video=True, screenshots=True, logs=False))

        assert [b.name for b in backends] == ["video", "screenshots"]

    def test_disabled_options_build_nothing(self) -> None:
        assert build_backends(CaptureOptions.disabled()) == []

    def test_fresh_instances_per_call(self) -> None:
        first = build_backends(CaptureOptions())
        second = build_backends(CaptureOptions())

        assert all(a is not b for a, b in zip(first, second, strict=True))

    def test_extra_plugin_backends(self) -> None:
        CaptureBackendRegistry.register("accessibility", AccessibilityBackend)

        backends = build_backends(CaptureOptions.disabled(), extra=["accessibility"])

        assert [b.name for b in backends] == ["accessibility"]
