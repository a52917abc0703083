"""
Mock automation driver for testing without an editor.

Scripted failures are keyed by action name (perform), by target or "wait"
(wait), and by target (observe); each key holds a queue of exceptions that
are raised on successive calls before the driver starts succeeding.
"""

import threading
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from scenario_grader.domain.interfaces import AutomationDriverInterface
from scenario_grader.domain.models import Observation

# Placeholder PNG payload (signature plus 1x1 image)
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)


class MockDriver(AutomationDriverInterface):
    """Scriptable driver that records every call."""

    def __init__(
        self,
        failures: Mapping[str, Sequence[Exception]] | None = None,
        observations: Mapping[str, Observation] | None = None,
        delay: float = 0.0,
        failing_screenshot_methods: Sequence[str] = (),
    ):
        """
        Args:
            failures: Key -> exceptions raised on successive calls
            observations: Target -> what observe() reports (default: visible)
            delay: Seconds each perform/wait takes
            failing_screenshot_methods: Methods whose screenshots raise
        """
        self._failures = {k: list(v) for k, v in (failures or {}).items()}
        self._observations = dict(observations or {})
        self._delay = delay
        self._failing_methods = set(failing_screenshot_methods)
        self._lock = threading.Lock()
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    def _record(self, kind: str, key: str) -> None:
        with self._lock:
            self.calls.append((kind, key))
            pending = self._failures.get(key)
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error

    def perform(
        self, action: str, target: str | None, params: Mapping[str, Any], timeout: float
    ) -> str:
        self._record("perform", action)
        if self._delay:
            time.sleep(self._delay)
        return f"{action} done"

    def wait(self, target: str | None, params: Mapping[str, Any], timeout: float) -> str:
        self._record("wait", target or "wait")
        duration = params.get("duration")
        if self._delay or duration:
            time.sleep(self._delay or min(float(duration), timeout, 0.01))
        return f"waited for {target or duration}"

    def observe(self, target: str, timeout: float) -> Observation:
        self._record("observe", target)
        return self._observations.get(target, Observation(found=True, visible=True))

    def screenshot(self, path: Path, method: str) -> None:
        with self._lock:
            self.calls.append(("screenshot", method))
        if method in self._failing_methods:
            raise RuntimeError(f"{method} screenshot unavailable")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(PNG_BYTES)

    def close(self) -> None:
        self.closed = True
