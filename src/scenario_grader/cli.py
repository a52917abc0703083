"""
Command-line interface for scenario-grader.

Exit codes: 0 every run passed; 1 a run failed, was inconclusive or was
skipped; 2 scenario selection, loading, validation or configuration error;
3 infrastructure error (any errored run). 3 wins over 1.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from functools import wraps
from pathlib import Path
from typing import Any

import click

from scenario_grader import __version__
from scenario_grader.application.comparison import ComparisonEngine
from scenario_grader.application.judge import EvaluationJudge
from scenario_grader.application.orchestrator import ScenarioOrchestrator
from scenario_grader.application.watch import WatchController
from scenario_grader.config import EngineConfig, load_config
from scenario_grader.console import (
    ConsoleEventSink,
    console,
    print_comparison,
    print_exception,
    print_header,
    print_run_summary,
    print_success,
    print_validation_issues,
)
from scenario_grader.domain.exceptions import (
    ConfigurationError,
    EvaluationError,
    ScenarioGraderError,
    ScenarioLoadError,
    ScenarioValidationError,
)
from scenario_grader.domain.models import (
    CaptureOptions,
    EnvironmentRequirements,
    ExecutionMode,
    IsolationMode,
    RunRecord,
    RunStatus,
    ScenarioDefinition,
    ScreenshotMethod,
    VersionChannel,
)
from scenario_grader.domain.validation import check, validate
from scenario_grader.infrastructure.capture.registry import build_backends
from scenario_grader.infrastructure.llm.openai_grader import OpenAIGrader
from scenario_grader.infrastructure.loader import (
    SCENARIO_SUFFIXES,
    discover_scenarios,
    read_scenario_document,
)
from scenario_grader.infrastructure.persistence.filesystem import FilesystemRunStore
from scenario_grader.infrastructure.provisioning.local import LocalEditorProvisioner
from scenario_grader.infrastructure.watching import watchfiles_source
from scenario_grader.logging_setup import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_INFRASTRUCTURE = 3


def exit_code_for(records: Sequence[RunRecord]) -> int:
    """Map terminal run statuses to the process exit code."""
    if any(r.status is RunStatus.ERRORED for r in records):
        return EXIT_INFRASTRUCTURE
    if any(r.status is not RunStatus.PASSED for r in records):
        return EXIT_FAILED
    return EXIT_OK


def common_options[F: Callable[..., Any]](func: F) -> F:
    """
    Decorator adding options shared by every command.

    Options added:
        --scenarios-dir: Directory holding scenario YAML files
        --config: Path to scenario-grader.json
        --log-file: Path to log file
        -v/--verbose: Enable verbose logging
    """

    @click.option(
        "--scenarios-dir",
        default=None,
        type=click.Path(file_okay=False, path_type=Path),
        help="Scenario directory (default: ./scenarios)",
    )
    @click.option(
        "--config",
        "config_path",
        default=None,
        type=click.Path(dir_okay=False, path_type=Path),
        help="Path to scenario-grader.json (default: ./scenario-grader.json)",
    )
    @click.option(
        "--log-file",
        default=None,
        type=click.Path(dir_okay=False),
        help="Path to log file",
    )
    @click.option(
        "-v",
        "--verbose",
        is_flag=True,
        help="Enable verbose (DEBUG) logging to console",
    )
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


def _prepare(
    config_path: Path | None, verbose: bool, log_file: str | None
) -> EngineConfig:
    setup_logging(verbose=verbose, log_file=log_file)
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        print_exception(e)
        raise SystemExit(EXIT_INVALID) from e


@dataclass
class _Candidate:
    """A scenario file selected for a command, parsed but not yet validated."""

    path: Path
    raw: dict[str, Any]


def _select(
    scenarios_dir: Path,
    scenario_id: str | None,
    run_all: bool,
    tag: str | None,
) -> list[_Candidate]:
    """
    Pick scenario documents by file path, id, --all or --tag.

    Raises:
        ScenarioLoadError: If a named scenario cannot be found or parsed
        click.UsageError: If nothing selects a scenario
    """
    if scenario_id and Path(scenario_id).suffix in SCENARIO_SUFFIXES:
        path = Path(scenario_id)
        if not path.exists():
            path = scenarios_dir / path.name
        return [_Candidate(path, read_scenario_document(path))]

    if not (scenario_id or run_all or tag):
        raise click.UsageError("Specify a scenario id, --all or --tag")

    candidates = []
    for path in discover_scenarios(scenarios_dir):
        try:
            raw = read_scenario_document(path)
        except ScenarioLoadError:
            if run_all:
                raise
            logger.warning("Skipping unreadable scenario file %s", path)
            continue
        if scenario_id and scenario_id not in (raw.get("id"), path.stem):
            continue
        tags = raw.get("tags") or []
        if tag and (not isinstance(tags, list) or tag not in tags):
            continue
        candidates.append(_Candidate(path, raw))

    if not candidates:
        what = f"scenario '{scenario_id}'" if scenario_id else "scenarios"
        raise ScenarioLoadError(str(scenarios_dir), f"no matching {what} found")
    return candidates


def _validate_all(
    candidates: Sequence[_Candidate], config: EngineConfig, strict: bool, show: bool
) -> list[tuple[_Candidate, ScenarioDefinition]]:
    """Validate every candidate, printing all issues before failing."""
    valid = []
    failed = False
    for candidate in candidates:
        issues = check(candidate.raw, strict=strict, known_tags=config.known_tags)
        if show or any(i.is_error for i in issues):
            print_validation_issues(str(candidate.path), issues)
        try:
            scenario = validate(candidate.raw, strict=strict, known_tags=config.known_tags)
        except ScenarioValidationError:
            failed = True
            continue
        valid.append((candidate, scenario))
    if failed:
        raise SystemExit(EXIT_INVALID)
    return valid


@click.group()
@click.version_option(__version__, prog_name="scenario-grader")
def main() -> None:
    """Run UX scenarios against VS Code and grade the results."""


@main.command()
@click.argument("scenario_id", required=False)
@click.option("-a", "--all", "run_all", is_flag=True, help="Run all scenarios")
@click.option("-t", "--tag", default=None, help="Run scenarios with this tag")
@click.option(
    "--vscode-version",
    type=click.Choice([v.value for v in VersionChannel]),
    default=None,
    help="VS Code channel (default: the scenario's own)",
)
@click.option("-p", "--profile", default=None, help="VS Code profile name")
@click.option("--no-sandbox-reset", is_flag=True, help="Do not reset the profile before the run")
@click.option("--no-llm", is_flag=True, help="Disable language-model evaluation")
@click.option("--no-artifacts", is_flag=True, help="Disable artifact capture")
@click.option("--fresh-profile", is_flag=True, help="Use a throwaway profile")
@click.option("--video", is_flag=True, help="Record a video of the run")
@click.option(
    "--screenshot-method",
    type=click.Choice([m.value for m in ScreenshotMethod]),
    default=ScreenshotMethod.ELECTRON.value,
    show_default=True,
    help="Preferred screenshot method",
)
@click.option("-w", "--watch", is_flag=True, help="Rerun when scenario files change")
@click.option(
    "-o",
    "--output",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Results directory (default: ./ux-results)",
)
@click.option("--compare", default=None, help="Compare across versions, e.g. stable,insiders")
@click.option("--validate", "validate_only", is_flag=True, help="Only validate, do not run")
@click.option("--orchestrated", is_flag=True, help="Force orchestrated (checkpointed) mode")
@click.option("--strict", is_flag=True, help="Treat validation warnings as errors")
@common_options
def run(
    scenario_id: str | None,
    run_all: bool,
    tag: str | None,
    vscode_version: str | None,
    profile: str | None,
    no_sandbox_reset: bool,
    no_llm: bool,
    no_artifacts: bool,
    fresh_profile: bool,
    video: bool,
    screenshot_method: str,
    watch: bool,
    output: Path | None,
    compare: str | None,
    validate_only: bool,
    orchestrated: bool,
    strict: bool,
    scenarios_dir: Path | None,
    config_path: Path | None,
    log_file: str | None,
    verbose: bool,
) -> None:
    """Run scenarios (by id, file path, --all or --tag)."""
    config = _prepare(config_path, verbose, log_file)
    scenarios_root = scenarios_dir or Path(config.scenarios_dir)

    versions = _parse_versions(compare) if compare else None

    def load() -> list[tuple[_Candidate, ScenarioDefinition]]:
        try:
            candidates = _select(scenarios_root, scenario_id, run_all, tag)
        except ScenarioLoadError as e:
            print_exception(e)
            raise SystemExit(EXIT_INVALID) from e
        return _validate_all(candidates, config, strict, show=validate_only)

    selected = load()
    if validate_only:
        print_success(f"{len(selected)} scenario(s) valid")
        raise SystemExit(EXIT_OK)

    capture = (
        CaptureOptions.disabled()
        if no_artifacts
        else CaptureOptions(
            video=video,
            screenshot_method=ScreenshotMethod(screenshot_method),
            screenshot_interval=config.screenshot_interval,
        )
    )
    store = FilesystemRunStore(output or Path(config.output_dir))
    try:
        grader = None if no_llm else OpenAIGrader(config.grader_config())
    except EvaluationError as e:
        print_exception(e)
        raise SystemExit(EXIT_INFRASTRUCTURE) from e

    orchestrator = ScenarioOrchestrator(
        provisioner=LocalEditorProvisioner(config.provisioner_config()),
        store=store,
        judge=EvaluationJudge(grader, config.judge_invocations, config.judge_quorum),
        backend_factory=lambda options: build_backends(options, config.capture_plugins),
        config=config.orchestrator_config(capture),
        events=ConsoleEventSink(),
    )
    engine = ComparisonEngine(orchestrator, config.max_parallel, store=store)
    mode = ExecutionMode.ORCHESTRATED if orchestrated else None

    def requirements_for(scenario: ScenarioDefinition) -> EnvironmentRequirements:
        reqs = scenario.environment
        if vscode_version:
            reqs = replace(reqs, version=VersionChannel(vscode_version))
        if profile:
            reqs = replace(reqs, profile=profile)
        if fresh_profile:
            reqs = replace(reqs, isolation=IsolationMode.FRESH_PROFILE)
        elif no_sandbox_reset:
            reqs = replace(reqs, isolation=IsolationMode.NONE)
        return reqs

    def execute(
        batch: Sequence[tuple[_Candidate, ScenarioDefinition]],
        cancel: threading.Event | None = None,
    ) -> int:
        records: list[RunRecord] = []
        for _, scenario in batch:
            if cancel is not None and cancel.is_set():
                break
            print_header(scenario.title, f"{scenario.id} · {len(scenario.steps)} step(s)")
            reqs = requirements_for(scenario)
            if versions:
                result = engine.compare(
                    scenario, versions, requirements=reqs, mode=mode, cancel=cancel
                )
                for record in result.runs.values():
                    print_run_summary(record)
                print_comparison(result)
                records.extend(result.runs.values())
            else:
                record = orchestrator.run(scenario, requirements=reqs, mode=mode, cancel=cancel)
                print_run_summary(record)
                console.print(
                    f"  [dim]Results: {store.run_dir(record.scenario_id, record.run_id)}[/dim]"
                )
                records.append(record)
        code = exit_code_for(records)
        console.print(
            f"\n[bold]{len(records)} run(s)[/bold]: "
            f"{sum(r.status is RunStatus.PASSED for r in records)} passed, "
            f"{sum(r.status is RunStatus.FAILED for r in records)} failed, "
            f"{sum(r.status is RunStatus.ERRORED for r in records)} errored, "
            f"{sum(r.status is RunStatus.SKIPPED for r in records)} skipped"
        )
        return code

    if not watch:
        raise SystemExit(execute(selected))

    last_code = [EXIT_OK]

    def pipeline(cancel: threading.Event) -> None:
        try:
            batch = load()
        except SystemExit as e:
            last_code[0] = int(e.code or EXIT_INVALID)
            return
        last_code[0] = execute(batch, cancel)

    watch_paths = sorted({c.path.parent.resolve() for c, _ in selected})
    console.print(f"[cyan]Watching {', '.join(map(str, watch_paths))} (Ctrl+C to stop)[/cyan]")
    controller = WatchController(pipeline, debounce=config.watch_debounce)
    try:
        controller.watch(lambda: watchfiles_source(watch_paths), run_immediately=True)
    except KeyboardInterrupt:
        console.print("\n[yellow]Watch stopped[/yellow]")
    raise SystemExit(last_code[0])


def _parse_versions(value: str) -> list[VersionChannel]:
    names = [v.strip() for v in value.split(",") if v.strip()]
    try:
        versions = [VersionChannel(n) for n in names]
    except ValueError as e:
        raise click.BadParameter(
            f"{e}; expected a comma-separated list of "
            f"{', '.join(v.value for v in VersionChannel)}",
            param_hint="--compare",
        ) from e
    if len(versions) < 2 or len(set(versions)) != len(versions):
        raise click.BadParameter(
            "needs at least two distinct versions", param_hint="--compare"
        )
    return versions


def run_cli() -> None:
    """Console-script entry point; turns stray engine errors into exit codes."""
    try:
        main(standalone_mode=True)
    except ScenarioGraderError as e:
        print_exception(e)
        raise SystemExit(EXIT_INFRASTRUCTURE) from e
