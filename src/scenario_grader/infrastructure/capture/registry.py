"""
Capture Backend Registry with Entry Points Discovery.

Built-in backends are always available. External packages can add more in
their pyproject.toml:

    [project.entry-points."scenario_grader.capture_backends"]
    accessibility = "mypackage.capture:AccessibilityTreeBackend"
"""

from collections.abc import Iterable
from importlib.metadata import entry_points
from typing import Any

from scenario_grader.domain.interfaces import CaptureBackendInterface
from scenario_grader.domain.models import CaptureOptions
from scenario_grader.infrastructure.capture.logs import LogTailBackend
from scenario_grader.infrastructure.capture.screenshots import ScreenshotBackend
from scenario_grader.infrastructure.capture.video import VideoBackend

ENTRY_POINT_GROUP = "scenario_grader.capture_backends"

BUILTIN_BACKENDS: dict[str, type[CaptureBackendInterface]] = {
    "video": VideoBackend,
    "screenshots": ScreenshotBackend,
    "logs": LogTailBackend,
}


class CaptureBackendRegistry:
    """
    Registry for CaptureBackendInterface implementations.

    Entry points are loaded lazily on first access.

    Example usage:
        backend = CaptureBackendRegistry.create("video", framerate=5)
    """

    _backends: dict[str, type[CaptureBackendInterface]] = dict(BUILTIN_BACKENDS)
    _loaded: bool = False

    @classmethod
    def _load_entry_points(cls) -> None:
        """Load backends from entry points (lazy, called once)."""
        if cls._loaded:
            return

        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                cls._backends[ep.name] = ep.load()
            except Exception as e:
                import warnings

                warnings.warn(
                    f"Failed to load capture backend '{ep.name}' from entry point: {e}",
                    stacklevel=2,
                )

        cls._loaded = True

    @classmethod
    def register(cls, name: str, backend_class: type[CaptureBackendInterface]) -> None:
        """Manually register a backend class (useful for testing)."""
        cls._backends[name] = backend_class

    @classmethod
    def get(cls, name: str) -> type[CaptureBackendInterface]:
        """
        Get a backend class by name.

        Raises:
            KeyError: If backend not found
        """
        cls._load_entry_points()
        if name not in cls._backends:
            available = ", ".join(cls._backends) or "(none)"
            raise KeyError(f"Capture backend '{name}' not found. Available backends: {available}")
        return cls._backends[name]

    @classmethod
    def create(cls, name: str, **config: Any) -> CaptureBackendInterface:
        """Create a fresh backend instance by name."""
        return cls.get(name)(**config)

    @classmethod
    def available(cls) -> list[str]:
        cls._load_entry_points()
        return list(cls._backends)

    @classmethod
    def clear(cls) -> None:
        """Drop manually registered backends and reload entry points on next access."""
        cls._backends = dict(BUILTIN_BACKENDS)
        cls._loaded = False


def build_backends(
    options: CaptureOptions, extra: Iterable[str] = ()
) -> list[CaptureBackendInterface]:
    """
    Create fresh backend instances for one run.

    Args:
        options: Which built-in backends are enabled
        extra: Additional registered backend names (plugins)
    """
    backends = []
    for name in options.backend_names:
        if name == "screenshots":
            backends.append(
                CaptureBackendRegistry.create(name, method=options.screenshot_method)
            )
        else:
            backends.append(CaptureBackendRegistry.create(name))
    for name in extra:
        backends.append(CaptureBackendRegistry.create(name))
    return backends
