"""Editor environment provisioners."""

from scenario_grader.infrastructure.provisioning.local import LocalEditorProvisioner
from scenario_grader.infrastructure.provisioning.memory import InMemoryProvisioner

__all__ = ["LocalEditorProvisioner", "InMemoryProvisioner"]
