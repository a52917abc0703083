"""
Scenario validation and canonical serialization.

``validate`` turns a raw mapping (as produced by the YAML loader) into a
ScenarioDefinition or raises ScenarioValidationError carrying every issue
found. ``serialize`` produces the canonical document, so that
``validate(serialize(scenario)) == scenario``.

Validation is pure: it never touches the filesystem, and a workspace path is
only checked for being well-formed, not for existing.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from scenario_grader.domain.exceptions import ScenarioValidationError
from scenario_grader.domain.models import (
    ArtifactKind,
    AssertionCheck,
    EnvironmentRequirements,
    ExpectedOutcome,
    IsolationMode,
    OutcomeAssertion,
    OutcomeCheck,
    Priority,
    ScenarioDefinition,
    Step,
    StepKind,
    StepStatus,
    VersionChannel,
    frozen_mapping,
)

DEFAULT_STEP_TIMEOUT = 30.0
LONG_STEP_TIMEOUT = 60.0  # Seconds; longer step timeouts draw a warning

DEFAULT_TAGS = frozenset(
    {
        "accessibility",
        "agent",
        "auth",
        "chat",
        "command-palette",
        "copilot",
        "debugging",
        "editor",
        "extensions",
        "inline-chat",
        "marketplace",
        "model-picker",
        "navigation",
        "onboarding",
        "performance",
        "regression",
        "settings",
        "smoke",
        "terminal",
        "workspace",
    }
)

KNOWN_ACTIONS = (
    "openCommandPalette",
    "openCopilotChat",
    "openInlineChat",
    "sendChatMessage",
    "typeText",
    "pressKey",
    "clickElement",
    "hover",
    "selectFromList",
    "selectAll",
    "openFile",
    "openSettings",
    "acceptSuggestion",
    "runTerminalCommand",
    "openExtensionsPanel",
    "searchExtensions",
)

# Action -> alternative argument names, at least one of which is required
ACTION_REQUIRED_ARGS: dict[str, tuple[str, ...]] = {
    "sendChatMessage": ("message",),
    "typeText": ("text",),
    "pressKey": ("key",),
    "clickElement": ("selector", "target"),
    "openFile": ("path",),
    "runTerminalCommand": ("command",),
    "searchExtensions": ("query",),
}

_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

_TOP_LEVEL_KEYS = frozenset(
    {
        "id",
        "title",
        "description",
        "tags",
        "priority",
        "owner",
        "environment",
        "default_timeout",
        "estimated_duration",
        "steps",
        "expected_outcome",
    }
)
_ENVIRONMENT_KEYS = frozenset({"version", "profile", "workspace", "isolation"})
_STEP_KEYS = frozenset(
    {
        "id",
        "kind",
        "target",
        "params",
        "timeout",
        "non_blocking",
        "description",
        "action",
        "check",
    }
)
_OUTCOME_KEYS = frozenset({"description", "assertions"})


class IssueSeverity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    """A single problem found in a scenario document."""

    path: str  # e.g. "steps[2].timeout"
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR
    suggestion: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity is IssueSeverity.ERROR

    def __str__(self) -> str:
        return f"{self.severity.value}: {self.path}: {self.message}"


class _Collector:
    """Accumulates issues while a document is walked."""

    def __init__(self) -> None:
        self.issues: list[ValidationIssue] = []

    def error(self, path: str, message: str, suggestion: str | None = None) -> None:
        self.issues.append(ValidationIssue(path, message, IssueSeverity.ERROR, suggestion))

    def warning(self, path: str, message: str, suggestion: str | None = None) -> None:
        self.issues.append(
            ValidationIssue(path, message, IssueSeverity.WARNING, suggestion)
        )


# =============================================================================
# FIELD HELPERS
# =============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _enum_value[E: Enum](
    enum_cls: type[E], value: Any, path: str, out: _Collector
) -> E | None:
    allowed = [member.value for member in enum_cls]
    if value in allowed:
        return enum_cls(value)
    out.error(path, f"must be one of {', '.join(allowed)}; got {value!r}")
    return None


def _optional_str(raw: Mapping[str, Any], key: str, path: str, out: _Collector) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        out.error(f"{path}{key}", f"must be a string; got {type(value).__name__}")
        return None
    return value


def _positive_number(
    raw: Mapping[str, Any], key: str, path: str, out: _Collector
) -> float | None:
    value = raw.get(key)
    if value is None:
        return None
    if not _is_number(value):
        out.error(f"{path}{key}", f"must be a number; got {value!r}")
        return None
    if value <= 0:
        out.error(f"{path}{key}", f"must be > 0; got {value}")
        return None
    return float(value)


def _unknown_keys(
    raw: Mapping[str, Any], allowed: frozenset[str], path: str, out: _Collector
) -> None:
    for key in raw:
        if key not in allowed:
            out.warning(
                f"{path}{key}",
                "unknown field is ignored",
                suggestion=f"Known fields: {', '.join(sorted(allowed))}",
            )


def _well_formed_path(value: str) -> bool:
    return bool(value.strip()) and not any(c in value for c in "\x00\n\r")


# =============================================================================
# SECTION PARSERS
# =============================================================================


def _parse_environment(raw: Any, out: _Collector) -> EnvironmentRequirements:
    if raw is None:
        return EnvironmentRequirements()
    if not isinstance(raw, Mapping):
        out.error("environment", "must be a mapping")
        return EnvironmentRequirements()

    _unknown_keys(raw, _ENVIRONMENT_KEYS, "environment.", out)

    version = VersionChannel.STABLE
    if "version" in raw:
        version = (
            _enum_value(VersionChannel, raw["version"], "environment.version", out)
            or version
        )

    isolation = IsolationMode.SANDBOX_RESET
    if "isolation" in raw:
        isolation = (
            _enum_value(IsolationMode, raw["isolation"], "environment.isolation", out)
            or isolation
        )

    profile = _optional_str(raw, "profile", "environment.", out)
    workspace = _optional_str(raw, "workspace", "environment.", out)
    if workspace is not None and not _well_formed_path(workspace):
        out.error("environment.workspace", "is not a well-formed path")
        workspace = None

    return EnvironmentRequirements(
        version=version, profile=profile, workspace=workspace, isolation=isolation
    )


def _check_action_args(
    action: str, target: str | None, params: Mapping[str, Any], path: str, out: _Collector
) -> None:
    if action not in KNOWN_ACTIONS:
        out.warning(
            f"{path}action",
            f"unknown action {action!r}",
            suggestion=f"Known actions: {', '.join(KNOWN_ACTIONS[:10])}...",
        )
        return

    required = ACTION_REQUIRED_ARGS.get(action)
    if not required:
        return
    available = {k for k, v in params.items() if v not in (None, "")}
    if "target" in required and target:
        available.add("target")
    if not available.intersection(required):
        names = " or ".join(f'"{r}"' for r in required)
        out.error(f"{path}params", f"{action} requires a {names} argument")


def _parse_step(
    raw: Any, index: int, default_timeout: float, out: _Collector
) -> Step | None:
    path = f"steps[{index}]."
    if not isinstance(raw, Mapping):
        out.error(f"steps[{index}]", "must be a mapping")
        return None

    _unknown_keys(raw, _STEP_KEYS, path, out)
    ok = True

    step_id = raw.get("id", f"step-{index + 1}")
    if not isinstance(step_id, str) or not _ID_PATTERN.match(step_id):
        out.error(f"{path}id", f"must be a slug (letters, digits, . _ -); got {step_id!r}")
        ok = False

    kind: StepKind | None = None
    if "kind" not in raw:
        out.error(f"{path}kind", "is required", suggestion="Use action, wait or assertion")
        ok = False
    else:
        kind = _enum_value(StepKind, raw["kind"], f"{path}kind", out)
        ok = ok and kind is not None

    timeout = default_timeout
    if "timeout" in raw:
        parsed = _positive_number(raw, "timeout", path, out)
        if parsed is None:
            ok = False
        else:
            timeout = parsed
    if timeout > LONG_STEP_TIMEOUT:
        out.warning(f"{path}timeout", f"{timeout:g}s is unusually long for one step")

    target = _optional_str(raw, "target", path, out)
    description = _optional_str(raw, "description", path, out) or ""

    params: Mapping[str, Any] = {}
    if raw.get("params") is not None:
        if not isinstance(raw["params"], Mapping) or not all(
            isinstance(k, str) for k in raw["params"]
        ):
            out.error(f"{path}params", "must be a mapping with string keys")
            ok = False
        else:
            params = raw["params"]

    non_blocking = raw.get("non_blocking", False)
    if not isinstance(non_blocking, bool):
        out.error(f"{path}non_blocking", "must be true or false")
        ok = False

    action = _optional_str(raw, "action", path, out)
    check: AssertionCheck | None = None

    if kind is StepKind.ACTION:
        if not action:
            out.error(f"{path}action", "is required for action steps")
            ok = False
        else:
            _check_action_args(action, target, params, path, out)
    elif action is not None:
        out.error(f"{path}action", "is only allowed on action steps")
        ok = False

    if kind is StepKind.ASSERTION:
        check = AssertionCheck.ELEMENT_VISIBLE
        if "check" in raw:
            check = _enum_value(AssertionCheck, raw["check"], f"{path}check", out)
            ok = ok and check is not None
        if not target:
            out.error(f"{path}target", "is required for assertion steps")
            ok = False
        if check in (AssertionCheck.TEXT_CONTAINS, AssertionCheck.TEXT_EQUALS) and not isinstance(
            params.get("expected"), str
        ):
            out.error(f"{path}params", f"{check.value} requires an \"expected\" string")
            ok = False
    elif "check" in raw:
        out.error(f"{path}check", "is only allowed on assertion steps")
        ok = False

    if kind is StepKind.WAIT:
        if "duration" in params and not (
            _is_number(params["duration"]) and params["duration"] > 0
        ):
            out.error(f"{path}params", "duration must be a positive number of seconds")
            ok = False
        elif "duration" not in params and not target:
            out.warning(
                f"{path}params",
                "wait step has neither a duration nor a target",
                suggestion="Add params.duration (seconds) or a target to wait for",
            )

    if not ok or kind is None:
        return None
    return Step(
        id=step_id,
        kind=kind,
        timeout=timeout,
        target=target,
        params=frozen_mapping(params),
        non_blocking=non_blocking,
        description=description,
        action=action if kind is StepKind.ACTION else None,
        check=check,
    )


def _parse_outcome_assertion(
    raw: Any, index: int, step_ids: set[str], out: _Collector
) -> OutcomeAssertion | None:
    path = f"expected_outcome.assertions[{index}]"
    if not isinstance(raw, Mapping):
        out.error(path, "must be a mapping")
        return None

    check = _enum_value(OutcomeCheck, raw.get("check"), f"{path}.check", out)
    subject = raw.get("subject")
    if not isinstance(subject, str) or not subject:
        out.error(f"{path}.subject", "is required")
        return None
    expected = _optional_str(raw, "expected", f"{path}.", out)
    if check is None:
        return None

    if check is OutcomeCheck.STEP_STATUS:
        if subject not in step_ids:
            out.error(f"{path}.subject", f"references unknown step {subject!r}")
            return None
        if expected not in {s.value for s in StepStatus}:
            out.error(f"{path}.expected", f"must be a step status; got {expected!r}")
            return None
    elif check is OutcomeCheck.ARTIFACT_PRESENT and subject not in {
        k.value for k in ArtifactKind
    }:
        out.error(f"{path}.subject", f"must be an artifact kind; got {subject!r}")
        return None

    return OutcomeAssertion(check=check, subject=subject, expected=expected)


def _parse_expected_outcome(
    raw: Any, step_ids: set[str], out: _Collector
) -> ExpectedOutcome | None:
    if isinstance(raw, str):
        return ExpectedOutcome(description=raw)
    if not isinstance(raw, Mapping):
        out.error("expected_outcome", "must be a string or a mapping")
        return None

    _unknown_keys(raw, _OUTCOME_KEYS, "expected_outcome.", out)
    description = _optional_str(raw, "description", "expected_outcome.", out) or ""

    raw_assertions = raw.get("assertions") or []
    if not isinstance(raw_assertions, list):
        out.error("expected_outcome.assertions", "must be a list")
        return None

    assertions = [
        _parse_outcome_assertion(a, i, step_ids, out) for i, a in enumerate(raw_assertions)
    ]
    if any(a is None for a in assertions):
        return None
    if not description and not assertions:
        out.error(
            "expected_outcome", "needs a description or at least one assertion"
        )
        return None
    return ExpectedOutcome(
        description=description,
        assertions=tuple(a for a in assertions if a is not None),
    )


def _parse_tags(raw: Any, known_tags: frozenset[str], out: _Collector) -> frozenset[str]:
    if raw is None or raw == []:
        out.warning(
            "tags",
            "scenario has no tags and cannot be selected with --tag",
        )
        return frozenset()
    if not isinstance(raw, list):
        out.error("tags", "must be a list")
        return frozenset()

    seen: set[str] = set()
    for i, tag in enumerate(raw):
        if not isinstance(tag, str) or tag not in known_tags:
            out.error(
                f"tags[{i}]",
                f"unknown tag {tag!r}",
                suggestion=f"Known tags: {', '.join(sorted(known_tags))}",
            )
            continue
        if tag in seen:
            out.warning(f"tags[{i}]", f"tag {tag!r} is listed more than once")
        seen.add(tag)
    return frozenset(seen)


# =============================================================================
# PUBLIC API
# =============================================================================


def _walk(
    raw: Any, known_tags: frozenset[str]
) -> tuple[ScenarioDefinition | None, list[ValidationIssue]]:
    out = _Collector()

    if not isinstance(raw, Mapping):
        out.error("<root>", f"scenario must be a mapping; got {type(raw).__name__}")
        return None, out.issues

    _unknown_keys(raw, _TOP_LEVEL_KEYS, "", out)

    scenario_id = raw.get("id")
    if scenario_id is None:
        out.error("id", "is required")
    elif not isinstance(scenario_id, str) or not _ID_PATTERN.match(scenario_id):
        out.error("id", f"must be a slug (letters, digits, . _ -); got {scenario_id!r}")

    title = raw.get("title")
    if not isinstance(title, str) or not title.strip():
        out.error("title", "is required")

    description = _optional_str(raw, "description", "", out) or ""

    priority = Priority.P1
    if "priority" in raw:
        priority = _enum_value(Priority, raw["priority"], "priority", out) or priority

    owner = _optional_str(raw, "owner", "", out)
    if not owner:
        out.warning("owner", "scenario has no owner")

    tags = _parse_tags(raw.get("tags"), known_tags, out)
    environment = _parse_environment(raw.get("environment"), out)

    default_timeout = DEFAULT_STEP_TIMEOUT
    if "default_timeout" in raw:
        default_timeout = _positive_number(raw, "default_timeout", "", out) or default_timeout
    estimated_duration = _positive_number(raw, "estimated_duration", "", out)

    steps: list[Step | None] = []
    raw_steps = raw.get("steps")
    if raw_steps is None:
        out.error("steps", "is required")
    elif not isinstance(raw_steps, list):
        out.error("steps", "must be a list")
    elif not raw_steps:
        out.error("steps", "must contain at least one step")
    else:
        steps = [
            _parse_step(s, i, default_timeout, out) for i, s in enumerate(raw_steps)
        ]

    step_ids: set[str] = set()
    for i, step in enumerate(steps):
        if step is None:
            continue
        if step.id in step_ids:
            out.error(f"steps[{i}].id", f"duplicate step id {step.id!r}")
        step_ids.add(step.id)

    expected: ExpectedOutcome | None = None
    if "expected_outcome" not in raw:
        out.error("expected_outcome", "is required")
    else:
        expected = _parse_expected_outcome(raw["expected_outcome"], step_ids, out)

    if any(i.is_error for i in out.issues) or expected is None:
        return None, out.issues

    scenario = ScenarioDefinition(
        id=scenario_id,
        title=title,
        description=description,
        tags=tags,
        priority=priority,
        owner=owner,
        environment=environment,
        steps=tuple(s for s in steps if s is not None),
        expected_outcome=expected,
        default_timeout=default_timeout,
        estimated_duration=estimated_duration,
    )
    return scenario, out.issues


def _finalize(issues: list[ValidationIssue], strict: bool) -> tuple[ValidationIssue, ...]:
    if strict:
        issues = [
            ValidationIssue(i.path, i.message, IssueSeverity.ERROR, i.suggestion)
            for i in issues
        ]
    return tuple(
        sorted(set(issues), key=lambda i: (i.path, i.severity.value, i.message))
    )


def check(
    raw: Any,
    *,
    strict: bool = False,
    known_tags: frozenset[str] = DEFAULT_TAGS,
) -> tuple[ValidationIssue, ...]:
    """
    Collect every issue in a raw scenario document.

    Args:
        raw: Parsed scenario document
        strict: Promote warnings to errors
        known_tags: Closed tag vocabulary

    Returns:
        All issues, deterministically ordered by path
    """
    _, issues = _walk(raw, known_tags)
    return _finalize(issues, strict)


def validate(
    raw: Any,
    *,
    strict: bool = False,
    known_tags: frozenset[str] = DEFAULT_TAGS,
) -> ScenarioDefinition:
    """
    Validate a raw scenario document.

    Args:
        raw: Parsed scenario document
        strict: Promote warnings (no owner, unused tags, ...) to errors
        known_tags: Closed tag vocabulary

    Returns:
        The validated ScenarioDefinition

    Raises:
        ScenarioValidationError: With the full list of issues
    """
    scenario, issues = _walk(raw, known_tags)
    final = _finalize(issues, strict)
    if scenario is None or any(i.is_error for i in final):
        scenario_id = raw.get("id") if isinstance(raw, Mapping) else None
        raise ScenarioValidationError(
            scenario_id if isinstance(scenario_id, str) else None, final
        )
    return scenario


def _step_to_dict(step: Step) -> dict[str, Any]:
    data: dict[str, Any] = {"id": step.id, "kind": step.kind.value, "timeout": step.timeout}
    if step.action is not None:
        data["action"] = step.action
    if step.check is not None:
        data["check"] = step.check.value
    if step.target is not None:
        data["target"] = step.target
    if step.params:
        data["params"] = dict(step.params)
    if step.non_blocking:
        data["non_blocking"] = True
    if step.description:
        data["description"] = step.description
    return data


def serialize(scenario: ScenarioDefinition) -> dict[str, Any]:
    """Canonical document for a scenario; the inverse of ``validate``."""
    env = scenario.environment
    environment: dict[str, Any] = {
        "version": env.version.value,
        "isolation": env.isolation.value,
    }
    if env.profile is not None:
        environment["profile"] = env.profile
    if env.workspace is not None:
        environment["workspace"] = env.workspace

    outcome: dict[str, Any] = {"description": scenario.expected_outcome.description}
    if scenario.expected_outcome.assertions:
        outcome["assertions"] = [
            {"check": a.check.value, "subject": a.subject}
            | ({"expected": a.expected} if a.expected is not None else {})
            for a in scenario.expected_outcome.assertions
        ]

    data: dict[str, Any] = {
        "id": scenario.id,
        "title": scenario.title,
        "description": scenario.description,
        "tags": sorted(scenario.tags),
        "priority": scenario.priority.value,
        "environment": environment,
        "default_timeout": scenario.default_timeout,
        "steps": [_step_to_dict(s) for s in scenario.steps],
        "expected_outcome": outcome,
    }
    if scenario.owner is not None:
        data["owner"] = scenario.owner
    if scenario.estimated_duration is not None:
        data["estimated_duration"] = scenario.estimated_duration
    return data
