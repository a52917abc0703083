"""Rich console utilities for scenario-grader."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from scenario_grader.domain.interfaces import RunEventSinkInterface
from scenario_grader.domain.models import RunEventType, RunStatus, StepStatus

if TYPE_CHECKING:
    from scenario_grader.domain.exceptions import ScenarioGraderError
    from scenario_grader.domain.models import ComparisonResult, RunEvent, RunRecord
    from scenario_grader.domain.validation import ValidationIssue

# Shared console instances
console = Console()
error_console = Console(stderr=True)

STATUS_STYLES = {
    RunStatus.PASSED: "bold green",
    RunStatus.FAILED: "bold red",
    RunStatus.ERRORED: "bold magenta",
    RunStatus.SKIPPED: "yellow",
}

STEP_MARKS = {
    StepStatus.SUCCEEDED: "[green]✓[/green]",
    StepStatus.FAILED: "[red]✗[/red]",
    StepStatus.TIMED_OUT: "[red]⏱[/red]",
    StepStatus.PENDING: "[dim]·[/dim]",
    StepStatus.EXECUTING: "[dim]…[/dim]",
}


def print_header(title: str, subtitle: str | None = None) -> None:
    """Print a styled header panel."""
    content = Text(title, style="bold blue")
    if subtitle:
        content.append(f"\n{subtitle}", style="dim")
    console.print(Panel(content, expand=False))


def print_error(message: str, hint: str | None = None) -> None:
    """Print formatted error message to stderr."""
    content = Text(f"ERROR: {message}", style="bold red")
    if hint:
        content.append(f"\n\nHint: {hint}", style="yellow")
    error_console.print(Panel(content, title="Error", border_style="red"))


def print_exception(error: ScenarioGraderError) -> None:
    """Print an engine error with its code and suggestions as hints."""
    hint = "\n".join(error.suggestions) if error.suggestions else None
    print_error(f"[{error.code}] {error}", hint)


def print_success(message: str) -> None:
    """Print success message."""
    console.print(Panel(message, title="Success", border_style="green"))


def print_validation_issues(source: str, issues: Sequence[ValidationIssue]) -> None:
    """Print a table of validation issues for one scenario file."""
    if not issues:
        console.print(f"[green]✓[/green] {source}")
        return

    errors = sum(1 for i in issues if i.is_error)
    mark = "[red]✗[/red]" if errors else "[yellow]![/yellow]"
    console.print(f"{mark} {source}: {errors} error(s), {len(issues) - errors} warning(s)")

    table = Table(show_header=True, box=None, padding=(0, 2))
    table.add_column("Severity", width=8)
    table.add_column("Path", style="cyan")
    table.add_column("Message")
    table.add_column("Suggestion", style="dim")
    for issue in issues:
        style = "red" if issue.is_error else "yellow"
        table.add_row(
            f"[{style}]{issue.severity.value}[/{style}]",
            issue.path,
            issue.message,
            issue.suggestion or "",
        )
    console.print(table)


def print_run_summary(record: RunRecord) -> None:
    """Print step outcomes, verdict and warnings for one run."""
    style = STATUS_STYLES.get(record.status, "bold")
    console.print(
        f"\n[bold]{record.scenario_id}[/bold] on {record.environment.version.value} "
        f"([dim]{record.run_id[:8]}, {record.mode.value}[/dim]): "
        f"[{style}]{record.status.value.upper()}[/{style}]"
    )

    if record.step_outcomes:
        table = Table(show_header=True, box=None, padding=(0, 2))
        table.add_column("", width=2)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Step", style="cyan")
        table.add_column("Attempts", justify="right")
        table.add_column("Detail")
        for o in record.step_outcomes:
            detail = o.error or o.detail
            if o.soft_failure:
                detail = f"[yellow](non-blocking)[/yellow] {detail}"
            table.add_row(STEP_MARKS[o.status], str(o.index), o.step_id, str(o.attempts), detail)
        console.print(table)

    if record.verdict is not None:
        v = record.verdict
        console.print(
            f"  Verdict: [bold]{v.decision.value}[/bold] "
            f"(confidence {v.confidence:.2f}, {v.invocations} grader call(s))"
        )
        console.print(f"  [dim]{v.rationale}[/dim]")
    if record.error:
        console.print(f"  [red]Error:[/red] {record.error}")
    for warning in record.warnings:
        console.print(f"  [yellow]Warning:[/yellow] {warning}")
    if record.artifacts:
        console.print(f"  [dim]{len(record.artifacts)} artifact(s) captured[/dim]")


def print_comparison(result: ComparisonResult) -> None:
    """Print a side-by-side step table plus the divergence summary."""
    versions = list(result.runs)
    table = Table(title=f"Comparison: {result.scenario_id}", show_header=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Step", style="cyan")
    for version in versions:
        table.add_column(version)

    outcomes = {v: {o.index: o for o in r.step_outcomes} for v, r in result.runs.items()}
    indices = sorted({i for per_run in outcomes.values() for i in per_run})
    for index in indices:
        step_id = next(
            (per_run[index].step_id for per_run in outcomes.values() if index in per_run), ""
        )
        cells = []
        for version in versions:
            outcome = outcomes[version].get(index)
            cells.append(STEP_MARKS[outcome.status] if outcome else "[dim]-[/dim]")
        marker = "[red]≠[/red] " if index in result.diff.divergent_steps else ""
        table.add_row(str(index), f"{marker}{step_id}", *cells)
    table.add_row(
        "",
        "[bold]status[/bold]",
        *(
            f"[{STATUS_STYLES.get(r.status, 'bold')}]{r.status.value}[/]"
            for r in result.runs.values()
        ),
    )
    console.print(table)

    if result.diff.is_empty:
        console.print("[green]No divergence between versions[/green]")
    else:
        console.print(f"[yellow]{result.diff.description}[/yellow]")


class ConsoleEventSink(RunEventSinkInterface):
    """Prints live run progress, one line per event.

    Lines carry the version so parallel comparison runs stay readable.
    """

    def __init__(self, target: Console | None = None) -> None:
        self._console = target or console
        self._lock = threading.Lock()

    def handle(self, event: RunEvent) -> None:
        line = self._format(event)
        if line is None:
            return
        with self._lock:
            self._console.print(f"[dim]{event.version:>8}[/dim] {line}")

    def _format(self, event: RunEvent) -> str | None:
        summary = escape(event.summary)
        step = f"[{event.step_index}] {escape(event.step_id or '')}"
        kind = event.event_type

        if kind is RunEventType.RUN_START:
            return f"[bold]run {event.run_id[:8]}[/bold] started [dim]({summary})[/dim]"
        if kind is RunEventType.STEP_START:
            step_kind = event.step_kind.value if event.step_kind else "step"
            return f"[dim]…[/dim] {step} [dim]{step_kind}[/dim]"
        if kind is RunEventType.STEP_COMPLETE:
            mark = STEP_MARKS[StepStatus(event.status)] if event.status else "?"
            detail = f" [dim]{summary}[/dim]" if summary else ""
            return f"{mark} {step}{detail}"
        if kind is RunEventType.EVIDENCE:
            return f"  [dim]evidence: {summary}[/dim]"
        if kind is RunEventType.EVALUATION_START:
            return "[dim]evaluating…[/dim]"
        if kind is RunEventType.EVALUATION_COMPLETE:
            return f"verdict [bold]{event.status}[/bold] [dim]({summary})[/dim]"
        if kind is RunEventType.ERROR:
            return f"[red]error:[/red] {summary}"
        if kind is RunEventType.RUN_COMPLETE and event.status:
            style = STATUS_STYLES.get(RunStatus(event.status), "bold")
            return f"run {event.run_id[:8]} [{style}]{event.status}[/{style}]"
        return None
