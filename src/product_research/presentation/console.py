"""Rich console rendering of research runs.

:class:`ConsoleDashboard` prints a run's status panel, its step history,
the per-field evidence table and the metrics collector's summary.
"""

from __future__ import annotations

import sys
from collections.abc import Mapping
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from product_research.domain.entities import FieldState, ResearchRun
from product_research.domain.enums import RunStatus, StepOutcome

_SPARK_CHARS = " " + "▁▂▃▄▅▆▇█"

_STATUS_STYLE = {
    RunStatus.PENDING: "dim",
    RunStatus.RUNNING: "cyan",
    RunStatus.PAUSED: "yellow",
    RunStatus.SUCCESS: "green",
    RunStatus.ERROR: "red",
    RunStatus.CANCELLED: "magenta",
}


def _sparkline(values: list[float], width: int = 40) -> str:
    """Unicode sparkline for *values*, down-sampled to *width* characters."""
    if not values:
        return ""
    if len(values) > width:
        bin_size = len(values) / width
        sampled: list[float] = []
        for i in range(width):
            chunk = values[int(i * bin_size):int((i + 1) * bin_size)]
            sampled.append(sum(chunk) / len(chunk) if chunk else 0.0)
        values = sampled
    lo, hi = min(values), max(values)
    span = hi - lo if hi != lo else 1.0
    top = len(_SPARK_CHARS) - 1
    return "".join(
        _SPARK_CHARS[max(0, min(top, int(((v - lo) / span) * top)))] for v in values
    )


def _confidence_colour(value: float) -> str:
    if value >= 0.8:
        return "green"
    if value >= 0.6:
        return "yellow"
    if value >= 0.4:
        return "orange3"
    return "red"


def _fmt(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, (tuple, list)):
        return ", ".join(str(v) for v in value)
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


class ConsoleDashboard:
    """Renders runs, fields and metrics with rich.

    Parameters
    ----------
    file:
        Output stream.  Defaults to ``sys.stdout``.
    width:
        Fixed console width; ``None`` lets rich detect it.
    """

    def __init__(self, file: Any = None, width: int | None = None) -> None:
        self._console = Console(file=file or sys.stdout, width=width)

    @property
    def console(self) -> Console:
        return self._console

    def print_run(self, run: ResearchRun) -> None:
        """Status panel followed by the step history table."""
        style = _STATUS_STYLE.get(run.status, "white")
        lines = [
            f"[bold]Run[/bold] {run.run_id}  subject={run.subject_id}  owner={run.owner_id}",
            f"[bold]Status[/bold] [{style}]{run.status.value}[/{style}]"
            f"  steps={run.step_count}  cost=${run.cost_spent:.3f}",
        ]
        if run.current_phase:
            lines.append(f"[bold]Phase[/bold] {run.current_phase}")
        if run.summary:
            lines.append(f"[bold]Summary[/bold] {run.summary}")
        if run.disposition:
            lines.append(f"[bold]Disposition[/bold] {run.disposition.value}")
        if run.error:
            lines.append(f"[red]Error[/red] {run.error}")
        if run.has_checkpoint:
            lines.append("[dim]checkpoint held[/dim]")
        self._console.print(Panel("\n".join(lines), title="Research run", expand=False))

        if not run.step_history:
            return
        table = Table(title="Step history", show_header=True, header_style="bold cyan")
        table.add_column("#", justify="right")
        table.add_column("Phase", style="bold")
        table.add_column("Outcome", justify="center")
        table.add_column("Duration (ms)", justify="right")
        for index, record in enumerate(run.step_history, start=1):
            colour = "green" if record.outcome is StepOutcome.SUCCESS else "red"
            table.add_row(
                str(index),
                record.phase,
                f"[{colour}]{record.outcome.value}[/{colour}]",
                f"{record.duration * 1000:.1f}",
            )
        self._console.print(table)
        durations = [r.duration for r in run.step_history]
        self._console.print(f"  [dim]durations[/dim] {_sparkline(durations)}")

    def print_fields(self, fields: Mapping[str, FieldState]) -> None:
        """Per-field value, confidence, source groups and conflicts."""
        table = Table(title="Fields", show_header=True, header_style="bold cyan")
        table.add_column("Field", style="bold")
        table.add_column("Req", justify="center")
        table.add_column("Value")
        table.add_column("Confidence", justify="right")
        table.add_column("Groups")
        table.add_column("Conflicts", justify="right")
        table.add_column("Done", justify="center")
        for name, state in fields.items():
            colour = _confidence_colour(state.confidence)
            groups = ", ".join(state.validation.groups) if state.validation else ""
            table.add_row(
                name,
                "*" if state.required else "",
                _fmt(state.value),
                f"[{colour}]{state.confidence:.2f}[/{colour}]",
                groups,
                str(state.conflict_count),
                "[green]yes[/green]" if state.complete else "[dim]no[/dim]",
            )
        self._console.print(table)

    def print_metrics(self, summary: Mapping[str, Any]) -> None:
        """Render :meth:`RunMetricsCollector.summary` output."""
        table = Table(title="Phase metrics", show_header=True, header_style="bold cyan")
        table.add_column("Phase", style="bold")
        table.add_column("Executions", justify="right")
        table.add_column("Failures", justify="right")
        table.add_column("Mean (ms)", justify="right")
        for name, stats in summary.get("phases", {}).items():
            table.add_row(
                name,
                str(stats["executions"]),
                str(stats["failures"]),
                f"{stats['mean_duration_s'] * 1000:.1f}",
            )
        self._console.print(table)
        outcomes = ", ".join(f"{k}={v}" for k, v in summary.get("outcomes", {}).items())
        self._console.print(
            f"  [dim]runs:[/dim] {summary.get('runs', 0)}  [dim]outcomes:[/dim] {outcomes or '-'}"
            f"  [dim]pauses:[/dim] {summary.get('pauses', 0)}"
            f"  [dim]resumes:[/dim] {summary.get('resumes', 0)}"
        )

    def print_mapping(self, title: str, data: Mapping[str, Any]) -> None:
        """Two-column key/value table (used for config dumps)."""
        table = Table(title=title, show_header=True, header_style="bold cyan")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            table.add_row(str(key), _fmt(value) if not isinstance(value, Mapping) else "")
            if isinstance(value, Mapping):
                for sub_key, sub_value in value.items():
                    table.add_row(f"  {sub_key}", _fmt(sub_value))
        self._console.print(table)
