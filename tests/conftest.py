"""Shared pytest fixtures for scenario-grader tests."""

from collections.abc import Callable
from typing import Any

import pytest

from scenario_grader.application.judge import EvaluationJudge
from scenario_grader.application.orchestrator import OrchestratorConfig, ScenarioOrchestrator
from scenario_grader.application.steps import RetryPolicy
from scenario_grader.domain.interfaces import RunEventSinkInterface
from scenario_grader.domain.models import (
    CaptureOptions,
    ResolvedEnvironment,
    RunRecord,
    ScenarioDefinition,
    VersionChannel,
)
from scenario_grader.domain.validation import validate
from scenario_grader.infrastructure.automation.mock import MockDriver
from scenario_grader.infrastructure.persistence.memory import InMemoryRunStore
from scenario_grader.infrastructure.provisioning.memory import InMemoryProvisioner

# No backoff in tests
FAST_RETRY = RetryPolicy(max_retries=2, initial_delay=0.0, backoff=1.0, max_delay=0.0)


def scenario_document(**overrides: Any) -> dict[str, Any]:
    """A valid raw scenario document (what the YAML loader would produce)."""
    doc: dict[str, Any] = {
        "id": "copilot-chat-basic",
        "title": "Ask Copilot Chat a question",
        "owner": "ux-team",
        "tags": ["copilot", "chat"],
        "priority": "P0",
        "environment": {"version": "stable", "profile": "default"},
        "steps": [
            {"id": "open-chat", "kind": "action", "action": "openCopilotChat"},
            {
                "id": "ask",
                "kind": "action",
                "action": "sendChatMessage",
                "params": {"message": "How do I reverse a list?"},
                "timeout": 20,
            },
        ],
        "expected_outcome": "Copilot answers with a code sample",
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def scenario_doc() -> Callable[..., dict[str, Any]]:
    """Raw scenario document factory; keyword arguments replace top-level keys."""
    return scenario_document


@pytest.fixture
def make_scenario() -> Callable[..., ScenarioDefinition]:
    """Build a validated scenario from document overrides."""

    def _make(**overrides: Any) -> ScenarioDefinition:
        return validate(scenario_document(**overrides))

    return _make


@pytest.fixture
def sample_scenario(make_scenario) -> ScenarioDefinition:
    """Two action steps and a natural-language expected outcome."""
    return make_scenario()


@pytest.fixture
def sample_record(sample_scenario: ScenarioDefinition) -> RunRecord:
    """A fresh record in the provisioning state."""
    return RunRecord.begin(
        sample_scenario, ResolvedEnvironment(VersionChannel.STABLE, "default")
    )


@pytest.fixture
def events() -> list[str]:
    """Shared acquire/release event log."""
    return []


@pytest.fixture
def mock_driver() -> MockDriver:
    """Driver that succeeds at everything."""
    return MockDriver()


@pytest.fixture
def provisioner(mock_driver: MockDriver, events: list[str]) -> InMemoryProvisioner:
    """Provisioner handing out the shared mock driver."""
    return InMemoryProvisioner(lambda: mock_driver, events=events)


@pytest.fixture
def memory_store(tmp_path) -> InMemoryRunStore:
    """In-memory run store writing artifacts under tmp_path."""
    return InMemoryRunStore(tmp_path / "results")


@pytest.fixture
def make_orchestrator(
    provisioner: InMemoryProvisioner, memory_store: InMemoryRunStore, events: list[str]
) -> Callable[..., ScenarioOrchestrator]:
    """Orchestrator wired to in-memory doubles; capture disabled by default."""

    def _make(
        judge: EvaluationJudge | None = None,
        backend_factory=None,
        capture: CaptureOptions | None = None,
        provisioner_override: InMemoryProvisioner | None = None,
        driver: MockDriver | None = None,
        sink: RunEventSinkInterface | None = None,
        **config: Any,
    ) -> ScenarioOrchestrator:
        if driver is not None:
            provisioner_override = InMemoryProvisioner(lambda: driver, events=events)
        return ScenarioOrchestrator(
            provisioner=provisioner_override or provisioner,
            store=memory_store,
            judge=judge,
            backend_factory=backend_factory,
            config=OrchestratorConfig(
                retry=FAST_RETRY,
                capture=capture or CaptureOptions.disabled(),
                **config,
            ),
            events=sink,
            sleep=lambda _: None,
        )

    return _make
