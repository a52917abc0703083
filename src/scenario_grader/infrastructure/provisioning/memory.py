"""
In-memory provisioner for testing.

Hands out handles bound to drivers from a factory and records every
acquire/release in an event log that tests can share with other doubles.
"""

import shutil
import tempfile
import threading
import uuid
from collections.abc import Callable, Iterable
from pathlib import Path

from scenario_grader.domain.exceptions import ProvisionError
from scenario_grader.domain.interfaces import AutomationDriverInterface, ProvisionerInterface
from scenario_grader.domain.models import (
    EnvironmentHandle,
    EnvironmentRequirements,
    VersionChannel,
)


class InMemoryProvisioner(ProvisionerInterface):
    """Provisioner double with configurable channel availability."""

    def __init__(
        self,
        driver_factory: Callable[[], AutomationDriverInterface],
        available: Iterable[VersionChannel] = tuple(VersionChannel),
        events: list[str] | None = None,
    ):
        """
        Args:
            driver_factory: Creates the driver for each new handle
            available: Channels that can be provisioned
            events: Shared log; receives "acquire:<version>" / "release:<version>"
        """
        self._driver_factory = driver_factory
        self._available = set(available)
        self._lock = threading.Lock()
        self._active: dict[str, Path] = {}
        self.events = events if events is not None else []
        self.acquired: list[EnvironmentHandle] = []

    @property
    def active_count(self) -> int:
        return len(self._active)

    def acquire(self, requirements: EnvironmentRequirements) -> EnvironmentHandle:
        version = requirements.version
        with self._lock:
            self.events.append(f"acquire:{version.value}")
        if version not in self._available:
            raise ProvisionError(f"VS Code {version.value} is not installed", version=version.value)

        handle_id = str(uuid.uuid4())
        root = Path(tempfile.mkdtemp(prefix=f"env-{version.value}-"))
        (root / "logs").mkdir()
        handle = EnvironmentHandle(
            handle_id=handle_id,
            version=version,
            executable=f"/fake/{version.value}/code",
            profile_dir=str(root / "profile"),
            isolation=requirements.isolation,
            log_dir=str(root / "logs"),
            driver=self._driver_factory(),
            profile=requirements.profile,
            workspace=requirements.workspace,
        )
        with self._lock:
            self._active[handle_id] = root
            self.acquired.append(handle)
        return handle

    def release(self, handle: EnvironmentHandle) -> None:
        with self._lock:
            root = self._active.pop(handle.handle_id, None)
            if root is None:
                return
            self.events.append(f"release:{handle.version.value}")
        handle.driver.close()
        shutil.rmtree(root, ignore_errors=True)
