"""UI automation drivers."""

from scenario_grader.infrastructure.automation.mock import MockDriver
from scenario_grader.infrastructure.automation.playwright_driver import PlaywrightDriver

__all__ = ["PlaywrightDriver", "MockDriver"]
