"""
Infrastructure layer for the scenario engine.

Contains adapters for external concerns (editor processes, UI automation,
capture, graders, persistence).
"""

from scenario_grader.infrastructure.automation import MockDriver, PlaywrightDriver
from scenario_grader.infrastructure.capture import CaptureBackendRegistry, build_backends
from scenario_grader.infrastructure.llm import MockGrader, OpenAIGrader
from scenario_grader.infrastructure.persistence import FilesystemRunStore, InMemoryRunStore
from scenario_grader.infrastructure.provisioning import (
    InMemoryProvisioner,
    LocalEditorProvisioner,
)

__all__ = [
    # Automation
    "PlaywrightDriver",
    "MockDriver",
    # Capture
    "CaptureBackendRegistry",
    "build_backends",
    # LLM
    "OpenAIGrader",
    "MockGrader",
    # Persistence
    "FilesystemRunStore",
    "InMemoryRunStore",
    # Provisioning
    "LocalEditorProvisioner",
    "InMemoryProvisioner",
]
