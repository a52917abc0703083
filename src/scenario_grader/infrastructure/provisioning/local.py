"""
Local VS Code provisioner.

Launches a real editor process per run with its own user-data and
extensions directories and a DevTools port, waits until it responds, and
attaches an automation driver. Profiles are isolated either by restoring a
named profile from its baseline (sandbox reset) or by creating a throwaway
profile (fresh profile).
"""

import logging
import os
import re
import shutil
import signal
import socket
import subprocess
import sys
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from scenario_grader.domain.exceptions import ProvisionError
from scenario_grader.domain.interfaces import AutomationDriverInterface, ProvisionerInterface
from scenario_grader.domain.models import (
    EnvironmentHandle,
    EnvironmentRequirements,
    IsolationMode,
    VersionChannel,
)

logger = logging.getLogger(__name__)

LAUNCH_ARGS = (
    "--disable-telemetry",
    "--skip-welcome",
    "--skip-release-notes",
    "--disable-workspace-trust",
    "--disable-updates",
    "--new-window",
)

KNOWN_INSTALL_PATHS: dict[str, dict[VersionChannel, tuple[str, ...]]] = {
    "linux": {
        VersionChannel.STABLE: ("/usr/bin/code", "/usr/share/code/code", "/snap/bin/code"),
        VersionChannel.INSIDERS: (
            "/usr/bin/code-insiders",
            "/usr/share/code-insiders/code-insiders",
            "/snap/bin/code-insiders",
        ),
    },
    "darwin": {
        VersionChannel.STABLE: (
            "/Applications/Visual Studio Code.app/Contents/MacOS/Electron",
        ),
        VersionChannel.INSIDERS: (
            "/Applications/Visual Studio Code - Insiders.app/Contents/MacOS/Electron",
        ),
    },
    "win32": {
        VersionChannel.STABLE: (
            r"%LOCALAPPDATA%\Programs\Microsoft VS Code\Code.exe",
        ),
        VersionChannel.INSIDERS: (
            r"%LOCALAPPDATA%\Programs\Microsoft VS Code Insiders\Code - Insiders.exe",
        ),
    },
}

PATH_COMMANDS = {
    VersionChannel.STABLE: "code",
    VersionChannel.INSIDERS: "code-insiders",
}

_PROFILE_NAME = re.compile(r"^[A-Za-z0-9._-]+$")

DriverFactory = Callable[[str], AutomationDriverInterface]


@dataclass
class LocalProvisionerConfig:
    """Configuration for LocalEditorProvisioner."""

    home: Path = field(default_factory=lambda: Path.home() / ".scenario-grader")
    executables: dict[str, str] = field(default_factory=dict)  # channel -> path
    launch_timeout: float = 60.0
    terminate_timeout: float = 10.0

    @property
    def profiles_root(self) -> Path:
        return self.home / "profiles"

    @property
    def runtime_root(self) -> Path:
        return self.home / "runtime"


@dataclass
class _Launch:
    """Per-handle bookkeeping needed for release."""

    process: subprocess.Popen
    run_root: Path
    profile_key: str | None


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _platform_key() -> str:
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


class LocalEditorProvisioner(ProvisionerInterface):
    """Provisions VS Code processes on this machine."""

    def __init__(
        self,
        config: LocalProvisionerConfig | None = None,
        driver_factory: DriverFactory | None = None,
    ):
        """
        Args:
            config: Paths, executable overrides and timeouts
            driver_factory: Attaches a driver to a DevTools URL
                (default: PlaywrightDriver)
        """
        self._config = config or LocalProvisionerConfig()
        self._driver_factory = driver_factory or self._playwright_driver
        self._lock = threading.Lock()
        self._profiles_in_use: set[str] = set()
        self._active: dict[str, _Launch] = {}

    def _playwright_driver(self, cdp_url: str) -> AutomationDriverInterface:
        from scenario_grader.infrastructure.automation.playwright_driver import (
            PlaywrightDriver,
        )

        return PlaywrightDriver(cdp_url, connect_timeout=self._config.launch_timeout)

    # ------------------------------------------------------------------
    # Executable resolution
    # ------------------------------------------------------------------

    def resolve_executable(self, version: VersionChannel) -> str:
        """
        Find the executable for a channel. Never falls back to another channel.

        Raises:
            ProvisionError: If the channel is not installed
        """
        override = self._config.executables.get(version.value)
        if override:
            if Path(override).is_file():
                return override
            raise ProvisionError(
                f"Configured {version.value} executable does not exist: {override}",
                version=version.value,
            )

        for candidate in KNOWN_INSTALL_PATHS.get(_platform_key(), {}).get(version, ()):
            path = Path(os.path.expandvars(candidate))
            if path.is_file():
                return str(path)

        found = shutil.which(PATH_COMMANDS[version])
        if found:
            return found

        raise ProvisionError(
            f"VS Code {version.value} is not installed",
            version=version.value,
            suggestions=(
                f"Install VS Code {version.value} or set executables.{version.value} "
                "in scenario-grader.json",
            ),
        )

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def _prepare_profile(
        self, requirements: EnvironmentRequirements, run_root: Path
    ) -> tuple[Path, str | None]:
        """Return (profile_dir, lock key) with the isolation mode applied."""
        if requirements.isolation is IsolationMode.FRESH_PROFILE:
            profile_dir = run_root / "profile"
            profile_dir.mkdir(parents=True)
            return profile_dir, None

        name = requirements.profile or "default"
        if not _PROFILE_NAME.match(name):
            raise ProvisionError(f"Invalid profile name: {name!r}")

        profile_dir = self._config.profiles_root / requirements.version.value / name
        key = str(profile_dir)
        with self._lock:
            if key in self._profiles_in_use:
                raise ProvisionError(
                    f"Profile {name!r} ({requirements.version.value}) is already in use",
                    version=requirements.version.value,
                    suggestions=("Use --fresh-profile for parallel runs",),
                )
            self._profiles_in_use.add(key)

        try:
            if requirements.isolation is IsolationMode.SANDBOX_RESET:
                self._reset_to_baseline(profile_dir)
            else:
                profile_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._unlock(key)
            raise ProvisionError(f"Cannot prepare profile {name!r}: {e}") from e
        return profile_dir, key

    def _reset_to_baseline(self, profile_dir: Path) -> None:
        baseline = profile_dir.with_name(profile_dir.name + ".baseline")
        if baseline.exists():
            if profile_dir.exists():
                shutil.rmtree(profile_dir)
            shutil.copytree(baseline, profile_dir)
            logger.debug("Restored profile %s from baseline", profile_dir)
        else:
            profile_dir.mkdir(parents=True, exist_ok=True)
            shutil.copytree(profile_dir, baseline)
            logger.info("Recorded baseline for profile %s", profile_dir)

    def _unlock(self, key: str | None) -> None:
        if key is None:
            return
        with self._lock:
            self._profiles_in_use.discard(key)

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    def _wait_responsive(self, process: subprocess.Popen, port: int) -> None:
        url = f"http://127.0.0.1:{port}/json/version"
        deadline = time.monotonic() + self._config.launch_timeout
        while time.monotonic() < deadline:
            code = process.poll()
            if code is not None:
                raise ProvisionError(f"Editor exited during startup with code {code}")
            try:
                response = httpx.get(url, timeout=2.0)
                if response.status_code == 200:
                    logger.debug("Editor responsive: %s", response.json().get("Browser"))
                    return
            except httpx.HTTPError as e:
                logger.debug("Waiting for DevTools on port %d: %s", port, e)
            time.sleep(0.5)
        raise ProvisionError(
            f"Editor did not respond within {self._config.launch_timeout:g}s"
        )

    def acquire(self, requirements: EnvironmentRequirements) -> EnvironmentHandle:
        executable = self.resolve_executable(requirements.version)

        handle_id = str(uuid.uuid4())
        run_root = self._config.runtime_root / handle_id
        log_dir = run_root / "logs"
        profile_key: str | None = None
        process: subprocess.Popen | None = None

        # Anything failing from here on must not leave the process, the run
        # directory or the profile lock behind
        try:
            log_dir.mkdir(parents=True)
            profile_dir, profile_key = self._prepare_profile(requirements, run_root)

            port = _free_port()
            args = [
                executable,
                *LAUNCH_ARGS,
                f"--user-data-dir={profile_dir / 'user-data'}",
                f"--extensions-dir={profile_dir / 'extensions'}",
                f"--logsPath={log_dir}",
                f"--remote-debugging-port={port}",
            ]
            if requirements.workspace:
                args.append(str(Path(requirements.workspace).expanduser()))

            logger.info("Launching %s (%s)", requirements.version.value, executable)
            with open(log_dir / "stdout.log", "wb") as stdout:
                process = subprocess.Popen(
                    args,
                    stdout=stdout,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL,
                    start_new_session=os.name == "posix",
                )
            self._wait_responsive(process, port)
            driver = self._driver_factory(f"http://127.0.0.1:{port}")
        except OSError as e:
            self._abandon(process, run_root, profile_key)
            raise ProvisionError(
                f"Cannot launch VS Code {requirements.version.value} ({executable}): {e}",
                version=requirements.version.value,
            ) from e
        except Exception:
            self._abandon(process, run_root, profile_key)
            raise

        handle = EnvironmentHandle(
            handle_id=handle_id,
            version=requirements.version,
            executable=executable,
            profile_dir=str(profile_dir),
            isolation=requirements.isolation,
            log_dir=str(log_dir),
            driver=driver,
            profile=requirements.profile,
            extensions_dir=str(profile_dir / "extensions"),
            workspace=requirements.workspace,
        )
        with self._lock:
            self._active[handle_id] = _Launch(
                process=process, run_root=run_root, profile_key=profile_key
            )
        return handle

    def _abandon(
        self, process: subprocess.Popen | None, run_root: Path, profile_key: str | None
    ) -> None:
        if process is not None:
            self._terminate(process)
        self._cleanup(run_root, profile_key)
        logger.debug("Abandoned launch in %s", run_root)

    def _terminate(self, process: subprocess.Popen) -> None:
        if process.poll() is not None:
            return
        try:
            if os.name == "posix":
                os.killpg(process.pid, signal.SIGTERM)
            else:
                process.terminate()
            process.wait(timeout=self._config.terminate_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Editor pid %d ignored SIGTERM; killing", process.pid)
            if os.name == "posix":
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
            process.wait()
        except ProcessLookupError:
            logger.debug("Editor pid %d already gone", process.pid)

    def _cleanup(self, run_root: Path, profile_key: str | None) -> None:
        shutil.rmtree(run_root, ignore_errors=True)
        self._unlock(profile_key)

    def release(self, handle: EnvironmentHandle) -> None:
        with self._lock:
            launch = self._active.pop(handle.handle_id, None)
        if launch is None:
            return

        errors = []
        try:
            handle.driver.close()
        except Exception as e:
            errors.append(f"driver close: {e}")
        try:
            self._terminate(launch.process)
        except OSError as e:
            errors.append(f"terminate: {e}")
        self._cleanup(launch.run_root, launch.profile_key)
        logger.info("Released %s environment %s", handle.version.value, handle.handle_id[:8])

        if errors:
            raise ProvisionError(f"Release of {handle.handle_id} incomplete: {'; '.join(errors)}")
