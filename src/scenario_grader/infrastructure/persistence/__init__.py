"""Run store implementations."""

from scenario_grader.infrastructure.persistence.filesystem import FilesystemRunStore
from scenario_grader.infrastructure.persistence.memory import InMemoryRunStore

__all__ = ["FilesystemRunStore", "InMemoryRunStore"]
