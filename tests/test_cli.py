"""Tests for the scenario-grader command line."""

import json
from pathlib import Path

import click
import pytest
import yaml
from click.testing import CliRunner

from scenario_grader import cli
from scenario_grader.cli import (
    EXIT_FAILED,
    EXIT_INFRASTRUCTURE,
    EXIT_INVALID,
    EXIT_OK,
    _parse_versions,
    exit_code_for,
    main,
)
from scenario_grader.domain.exceptions import StepExecutionError
from scenario_grader.domain.models import (
    ResolvedEnvironment,
    RunRecord,
    RunStatus,
    VersionChannel,
)
from scenario_grader.infrastructure.automation.mock import MockDriver
from scenario_grader.infrastructure.provisioning.memory import InMemoryProvisioner


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def workspace(runner, tmp_path, scenario_doc):  # noqa: ANN001
    """Isolated cwd with one valid scenario under ./scenarios."""
    with runner.isolated_filesystem(temp_dir=tmp_path) as cwd:
        scenarios = Path(cwd) / "scenarios"
        scenarios.mkdir()
        (scenarios / "chat.yaml").write_text(yaml.safe_dump(scenario_doc()))
        yield Path(cwd)


@pytest.fixture
def fake_editor(monkeypatch):  # noqa: ANN001
    """Replace the local editor provisioner with an in-memory one."""

    def install(available=tuple(VersionChannel), failures=None) -> None:  # noqa: ANN001
        def driver() -> MockDriver:
            return MockDriver(failures={k: list(v) for k, v in (failures or {}).items()})

        monkeypatch.setattr(
            cli,
            "LocalEditorProvisioner",
            lambda _config: InMemoryProvisioner(driver, available=available),
        )

    return install


def _record(sample_scenario, status: RunStatus) -> RunRecord:
    record = RunRecord.begin(sample_scenario, ResolvedEnvironment(VersionChannel.STABLE, None))
    record.advance(RunStatus.FINALIZING)
    record.finish(status)
    return record


class TestExitCodeFor:
    """Tests for exit_code_for."""

    @pytest.mark.parametrize(
        ("statuses", "expected"),
        [
            ([RunStatus.PASSED, RunStatus.PASSED], EXIT_OK),
            ([RunStatus.PASSED, RunStatus.FAILED], EXIT_FAILED),
            ([RunStatus.SKIPPED], EXIT_FAILED),
            ([RunStatus.FAILED, RunStatus.ERRORED], EXIT_INFRASTRUCTURE),
            ([RunStatus.ERRORED, RunStatus.PASSED], EXIT_INFRASTRUCTURE),
            ([], EXIT_OK),
        ],
    )
    def test_mapping(self, sample_scenario, statuses, expected) -> None:  # noqa: ANN001
        records = [_record(sample_scenario, s) for s in statuses]

        assert exit_code_for(records) == expected


class TestParseVersions:
    """Tests for --compare parsing."""

    def test_two_versions(self) -> None:
        assert _parse_versions("stable, insiders") == [
            VersionChannel.STABLE,
            VersionChannel.INSIDERS,
        ]

    @pytest.mark.parametrize("value", ["stable", "stable,stable", "stable,nightly"])
    def test_invalid(self, value) -> None:  # noqa: ANN001
        with pytest.raises(click.BadParameter):
            _parse_versions(value)


class TestValidateOnly:
    """Tests for run --validate."""

    def test_valid_scenarios(self, runner, workspace) -> None:  # noqa: ANN001
        result = runner.invoke(main, ["run", "--all", "--validate"])

        assert result.exit_code == EXIT_OK, result.output
        assert "1 scenario(s) valid" in result.output

    def test_invalid_scenario_lists_issues(self, runner, workspace, scenario_doc) -> None:
        bad = scenario_doc(id="broken", steps=[{"id": "x", "kind": "teleport"}])
        (workspace / "scenarios" / "broken.yaml").write_text(yaml.safe_dump(bad))

        result = runner.invoke(main, ["run", "--all", "--validate"])

        assert result.exit_code == EXIT_INVALID
        assert "scenarios/broken.yaml" in result.output

    def test_strict_turns_warnings_into_errors(self, runner, workspace, scenario_doc) -> None:
        doc = scenario_doc()
        del doc["owner"]
        (workspace / "scenarios" / "chat.yaml").write_text(yaml.safe_dump(doc))

        lenient = runner.invoke(main, ["run", "copilot-chat-basic", "--validate"])
        strict = runner.invoke(main, ["run", "copilot-chat-basic", "--validate", "--strict"])

        assert lenient.exit_code == EXIT_OK
        assert strict.exit_code == EXIT_INVALID

    def test_select_by_tag(self, runner, workspace) -> None:  # noqa: ANN001
        assert runner.invoke(main, ["run", "--tag", "chat", "--validate"]).exit_code == EXIT_OK
        assert (
            runner.invoke(main, ["run", "--tag", "terminal", "--validate"]).exit_code
            == EXIT_INVALID
        )

    def test_unknown_scenario_id(self, runner, workspace) -> None:  # noqa: ANN001
        result = runner.invoke(main, ["run", "no-such-scenario", "--validate"])

        assert result.exit_code == EXIT_INVALID

    def test_nothing_selected_is_a_usage_error(self, runner, workspace) -> None:  # noqa: ANN001
        result = runner.invoke(main, ["run"])

        assert result.exit_code == 2
        assert "Specify a scenario id" in result.output

    def test_bad_config(self, runner, workspace) -> None:  # noqa: ANN001
        (workspace / "scenario-grader.json").write_text(json.dumps({"max_parallel": True}))

        result = runner.invoke(main, ["run", "--all", "--validate"])

        assert result.exit_code == EXIT_INVALID


class TestRun:
    """End-to-end runs against an in-memory editor."""

    def test_passing_run(self, runner, workspace, fake_editor) -> None:  # noqa: ANN001
        fake_editor()

        result = runner.invoke(main, ["run", "copilot-chat-basic", "--no-llm", "--no-artifacts"])

        assert result.exit_code == EXIT_OK, result.output
        assert "evaluating" in result.output
        runs = list((workspace / "ux-results" / "copilot-chat-basic").glob("*/run.json"))
        assert len(runs) == 1
        assert json.loads(runs[0].read_text())["status"] == "passed"

    def test_failing_step_exits_one(self, runner, workspace, fake_editor) -> None:  # noqa: ANN001
        fake_editor(failures={"sendChatMessage": [StepExecutionError("no response")]})

        result = runner.invoke(main, ["run", "--all", "--no-llm", "--no-artifacts"])

        assert result.exit_code == EXIT_FAILED

    def test_missing_version_exits_three(self, runner, workspace, fake_editor) -> None:
        fake_editor(available=[VersionChannel.STABLE])

        result = runner.invoke(
            main,
            ["run", "--all", "--no-llm", "--no-artifacts", "--vscode-version", "insiders"],
        )

        assert result.exit_code == EXIT_INFRASTRUCTURE

    def test_infrastructure_error_wins_over_failure(self, runner, workspace, fake_editor) -> None:
        """One version fails a step, the other cannot be provisioned: exit 3."""
        fake_editor(
            available=[VersionChannel.STABLE],
            failures={"sendChatMessage": [StepExecutionError("no response")]},
        )

        result = runner.invoke(
            main,
            ["run", "--all", "--no-llm", "--no-artifacts", "--compare", "stable,insiders"],
        )

        assert result.exit_code == EXIT_INFRASTRUCTURE
        comparisons = list((workspace / "ux-results").glob("*/comparisons/*.json"))
        assert len(comparisons) == 1

    def test_output_directory_option(self, runner, workspace, fake_editor) -> None:  # noqa: ANN001
        fake_editor()

        result = runner.invoke(
            main, ["run", "--all", "--no-llm", "--no-artifacts", "-o", "custom-results"]
        )

        assert result.exit_code == EXIT_OK
        assert (workspace / "custom-results" / "index.json").is_file()

    def test_bad_compare_value(self, runner, workspace) -> None:  # noqa: ANN001
        result = runner.invoke(main, ["run", "--all", "--compare", "stable"])

        assert result.exit_code == 2
