"""
Scenario file loading.

Reads YAML scenario documents and hands them to the validator. Parsing
problems raise ScenarioLoadError; content problems raise
ScenarioValidationError with every issue found.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from scenario_grader.domain.exceptions import ScenarioLoadError
from scenario_grader.domain.models import ScenarioDefinition
from scenario_grader.domain.validation import DEFAULT_TAGS, serialize, validate

logger = logging.getLogger(__name__)

SCENARIO_SUFFIXES = (".yaml", ".yml")


def read_scenario_document(path: Path) -> Any:
    """
    Parse a scenario file without validating it.

    Raises:
        ScenarioLoadError: If the file is unreadable or not a YAML mapping
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ScenarioLoadError(str(path), e.strerror or str(e)) from e
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ScenarioLoadError(str(path), f"invalid YAML: {e}") from e
    if not isinstance(raw, dict):
        raise ScenarioLoadError(str(path), "top level must be a mapping")
    return raw


def load_scenario_file(
    path: Path, *, strict: bool = False, known_tags: frozenset[str] = DEFAULT_TAGS
) -> ScenarioDefinition:
    """
    Load and validate one scenario file.

    Raises:
        ScenarioLoadError: If the file cannot be parsed
        ScenarioValidationError: If the document is invalid
    """
    raw = read_scenario_document(path)
    scenario = validate(raw, strict=strict, known_tags=known_tags)
    logger.debug("Loaded scenario %s from %s", scenario.id, path)
    return scenario


def discover_scenarios(directory: Path) -> list[Path]:
    """Scenario files under ``directory``, sorted by path."""
    if not directory.is_dir():
        return []
    return sorted(
        p for p in directory.rglob("*") if p.is_file() and p.suffix in SCENARIO_SUFFIXES
    )


def dump_scenario(scenario: ScenarioDefinition) -> str:
    """Canonical YAML for a scenario (loads back to an equal scenario)."""
    return yaml.safe_dump(serialize(scenario), sort_keys=False, allow_unicode=True)
