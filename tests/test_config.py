"""Tests for EngineConfig loading."""

import json

import pytest

from scenario_grader.config import EngineConfig, load_config
from scenario_grader.domain.exceptions import ConfigurationError
from scenario_grader.domain.models import CaptureOptions


def _write(path, data) -> None:  # noqa: ANN001
    path.write_text(data if isinstance(data, str) else json.dumps(data))


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_when_no_file(self, tmp_path, monkeypatch) -> None:  # noqa: ANN001
        monkeypatch.chdir(tmp_path)

        assert load_config() == EngineConfig()

    def test_reads_default_file_from_cwd(self, tmp_path, monkeypatch) -> None:  # noqa: ANN001
        monkeypatch.chdir(tmp_path)
        _write(tmp_path / "scenario-grader.json", {"max_parallel": 4, "extra_tags": ["perf"]})

        config = load_config()

        assert config.max_parallel == 4
        assert "perf" in config.known_tags
        assert "copilot" in config.known_tags

    def test_explicit_missing_path(self, tmp_path) -> None:  # noqa: ANN001
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "absent.json")

    @pytest.mark.parametrize(
        ("content", "message"),
        [
            ("{not json", "Invalid JSON"),
            ("[1, 2]", "Expected object"),
            ({"max_paralel": 2}, "Unknown key"),
            ({"max_parallel": "2"}, "expected int"),
            ({"max_parallel": True}, "boolean"),
            ({"direct_timeout": True}, "boolean"),
            ({"extra_tags": ["ok", 3]}, "list of strings"),
            ({"executables": {"stable": 1}}, "strings to strings"),
        ],
    )
    def test_rejects_bad_files(self, tmp_path, content, message) -> None:  # noqa: ANN001
        path = tmp_path / "config.json"
        _write(path, content)

        with pytest.raises(ConfigurationError, match=message):
            load_config(path)

    def test_unknown_key_suggests_valid_keys(self, tmp_path) -> None:  # noqa: ANN001
        path = tmp_path / "config.json"
        _write(path, {"paralel": 1})

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(path)

        assert "max_parallel" in exc_info.value.suggestions[0]

    def test_nullable_fields(self, tmp_path) -> None:  # noqa: ANN001
        path = tmp_path / "config.json"
        _write(path, {"screenshot_interval": None, "grader_base_url": None, "retry_backoff": 1})

        config = load_config(path)

        assert config.screenshot_interval is None
        assert config.retry_backoff == 1


class TestEngineConfigValidation:
    """Range checks in EngineConfig."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_parallel": 0},
            {"direct_timeout": -1.0},
            {"retry_max": -1},
            {"judge_invocations": 2, "judge_quorum": 3},
            {"screenshot_interval": 0},
            {"executables": {"nightly": "/opt/code"}},
        ],
    )
    def test_invalid_values(self, kwargs) -> None:  # noqa: ANN001
        with pytest.raises(ConfigurationError):
            EngineConfig(**kwargs)


class TestDerivedConfigs:
    """Tests for the per-component config builders."""

    def test_orchestrator_config(self) -> None:
        config = EngineConfig(retry_max=4, direct_timeout=120.0)
        capture = CaptureOptions(video=True)

        orchestrator = config.orchestrator_config(capture)

        assert orchestrator.retry.max_retries == 4
        assert orchestrator.direct_timeout == 120.0
        assert orchestrator.capture is capture

    def test_provisioner_config_expands_home(self) -> None:
        config = EngineConfig(home="~/grader-home", executables={"stable": "/opt/code"})

        provisioner = config.provisioner_config()

        assert "~" not in str(provisioner.home)
        assert provisioner.executables == {"stable": "/opt/code"}

    def test_grader_config(self) -> None:
        grader = EngineConfig(grader_model="gpt-4o-mini").grader_config()

        assert grader.model == "gpt-4o-mini"
        assert grader.api_key is None
