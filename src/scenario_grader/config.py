"""Configuration loading for scenario-grader."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from scenario_grader.application.orchestrator import OrchestratorConfig
from scenario_grader.application.steps import RetryPolicy
from scenario_grader.domain.exceptions import ConfigurationError
from scenario_grader.domain.models import CaptureOptions, VersionChannel
from scenario_grader.domain.validation import DEFAULT_TAGS
from scenario_grader.infrastructure.llm.openai_grader import OpenAIGraderConfig
from scenario_grader.infrastructure.provisioning.local import LocalProvisionerConfig

DEFAULT_CONFIG_FILE = "scenario-grader.json"

_OPTIONAL = (type(None),)
_NUMBER = (int, float)

# Accepted JSON types per key (bool is rejected where a number is expected)
_FIELD_TYPES: dict[str, tuple[type, ...]] = {
    "output_dir": (str,),
    "scenarios_dir": (str,),
    "home": (str, *_OPTIONAL),
    "max_parallel": (int,),
    "judge_invocations": (int,),
    "judge_quorum": (int,),
    "retry_max": (int,),
    "retry_initial_delay": _NUMBER,
    "retry_backoff": _NUMBER,
    "retry_max_delay": _NUMBER,
    "direct_timeout": _NUMBER,
    "orchestrated_timeout": _NUMBER,
    "orchestrate_above_steps": (int,),
    "orchestrate_above_seconds": _NUMBER,
    "screenshot_interval": (*_NUMBER, *_OPTIONAL),
    "watch_debounce": _NUMBER,
    "launch_timeout": _NUMBER,
    "executables": (dict,),
    "extra_tags": (list,),
    "capture_plugins": (list,),
    "grader_model": (str,),
    "grader_base_url": (str, *_OPTIONAL),
}

_POSITIVE = (
    "max_parallel",
    "judge_invocations",
    "judge_quorum",
    "retry_backoff",
    "direct_timeout",
    "orchestrated_timeout",
    "orchestrate_above_steps",
    "orchestrate_above_seconds",
    "launch_timeout",
)


@dataclass
class EngineConfig:
    """Settings for the engine; every field can be set in scenario-grader.json."""

    output_dir: str = "ux-results"
    scenarios_dir: str = "scenarios"
    home: str | None = None  # Profiles and runtime dirs (default: ~/.scenario-grader)
    max_parallel: int = 2
    judge_invocations: int = 3
    judge_quorum: int = 2
    retry_max: int = 2
    retry_initial_delay: float = 0.5
    retry_backoff: float = 2.0
    retry_max_delay: float = 5.0
    direct_timeout: float = 600.0
    orchestrated_timeout: float = 1800.0
    orchestrate_above_steps: int = 25
    orchestrate_above_seconds: float = 600.0
    screenshot_interval: float | None = None
    watch_debounce: float = 0.5
    launch_timeout: float = 60.0
    executables: dict[str, str] = field(default_factory=dict)
    extra_tags: list[str] = field(default_factory=list)
    capture_plugins: list[str] = field(default_factory=list)
    grader_model: str = "gpt-4o"
    grader_base_url: str | None = None

    def __post_init__(self) -> None:
        for name in _POSITIVE:
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"'{name}' must be positive")
        if self.retry_max < 0:
            raise ConfigurationError("'retry_max' must not be negative")
        if self.judge_quorum > self.judge_invocations:
            raise ConfigurationError("'judge_quorum' cannot exceed 'judge_invocations'")
        if self.screenshot_interval is not None and self.screenshot_interval <= 0:
            raise ConfigurationError("'screenshot_interval' must be positive")
        unknown = set(self.executables) - {v.value for v in VersionChannel}
        if unknown:
            raise ConfigurationError(
                f"'executables' has unknown channel(s): {', '.join(sorted(unknown))}"
            )

    @property
    def known_tags(self) -> frozenset[str]:
        return DEFAULT_TAGS | frozenset(self.extra_tags)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.retry_max,
            initial_delay=self.retry_initial_delay,
            backoff=self.retry_backoff,
            max_delay=self.retry_max_delay,
        )

    def orchestrator_config(self, capture: CaptureOptions) -> OrchestratorConfig:
        return OrchestratorConfig(
            direct_timeout=self.direct_timeout,
            orchestrated_timeout=self.orchestrated_timeout,
            orchestrate_above_steps=self.orchestrate_above_steps,
            orchestrate_above_seconds=self.orchestrate_above_seconds,
            retry=self.retry_policy(),
            capture=capture,
        )

    def provisioner_config(self) -> LocalProvisionerConfig:
        config = LocalProvisionerConfig(
            executables=dict(self.executables), launch_timeout=self.launch_timeout
        )
        if self.home:
            config.home = Path(self.home).expanduser()
        return config

    def grader_config(self) -> OpenAIGraderConfig:
        return OpenAIGraderConfig(model=self.grader_model, base_url=self.grader_base_url)


def _check_field(key: str, value: Any, path: Path) -> None:
    expected = _FIELD_TYPES[key]
    if isinstance(value, bool) and bool not in expected:
        raise ConfigurationError(f"{path}: '{key}' must not be a boolean")
    if not isinstance(value, expected):
        names = ", ".join("null" if t is type(None) else t.__name__ for t in expected)
        raise ConfigurationError(
            f"{path}: '{key}' has type {type(value).__name__}, expected {names}"
        )
    if isinstance(value, dict) and not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        raise ConfigurationError(f"{path}: '{key}' must map strings to strings")
    if isinstance(value, list) and not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"{path}: '{key}' must be a list of strings")


def load_config(path: Path | None = None) -> EngineConfig:
    """
    Load engine configuration from JSON.

    Args:
        path: Config file; when None, ./scenario-grader.json is used if present

    Returns:
        EngineConfig (defaults when no file exists)

    Raises:
        ConfigurationError: If the file is missing (explicit path), is not
            valid JSON, or has unknown keys or wrong types
    """
    if path is None:
        path = Path(DEFAULT_CONFIG_FILE)
        if not path.exists():
            return EngineConfig()
    elif not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected object in {path}, got {type(data).__name__}")

    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) in {path}: {', '.join(unknown)}",
            suggestions=(f"Valid keys: {', '.join(sorted(known))}",),
        )
    for key, value in data.items():
        _check_field(key, value, path)

    return EngineConfig(**data)
