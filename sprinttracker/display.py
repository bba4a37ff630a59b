"""Rich terminal formatting helpers."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, ProgressColumn, TextColumn
from rich.table import Table

from sprinttracker.charts import format_axis_label
from sprinttracker.formatting import format_duration, format_sprint_id
from sprinttracker.models import Chart, Metrics, Project, Sprint, TimePeriod

console = Console()

UNKNOWN_PROJECT = "Unknown Project"

_PERIOD_LABEL: dict[TimePeriod, str] = {
    TimePeriod.TODAY: "today",
    TimePeriod.THIS_WEEK: "this week",
    TimePeriod.LAST_WEEK: "last week",
    TimePeriod.THIS_MONTH: "this month",
    TimePeriod.LAST_MONTH: "last month",
    TimePeriod.THIS_YEAR: "this year",
    TimePeriod.LAST_YEAR: "last year",
}


def setup_logging(level: str = "WARNING") -> None:
    """Route log records through Rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def period_label(period: TimePeriod) -> str:
    return _PERIOD_LABEL[period]


def project_name(project_id: int, projects: list[Project]) -> str:
    """Resolve a project's name, falling back for deleted projects."""
    for project in projects:
        if project.id == project_id:
            return project.name
    return UNKNOWN_PROJECT


def print_project_list(projects: list[Project], title: str = "Projects") -> None:
    """Print projects in a panel."""
    if not projects:
        console.print(Panel("No projects.", title=title, border_style="dim"))
        return

    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("id", width=5)
    table.add_column("name")
    for project in projects:
        table.add_row(f"#{project.id}", project.name)
    console.print(Panel(table, title=title, border_style="blue"))


def print_sprint_list(
    sprints: list[Sprint], projects: list[Project], title: str = "Sprints"
) -> None:
    """Print sprints, most recent first, one row each."""
    if not sprints:
        console.print(Panel("No sprints found for this period.", title=title, border_style="dim"))
        return

    table = Table(box=None, pad_edge=False)
    table.add_column("Sprint", style="dim")
    table.add_column("Project")
    table.add_column("Duration", justify="right")
    table.add_column("Completed")
    table.add_column("Notes")
    for sprint in sprints:
        table.add_row(
            format_sprint_id(sprint.id),
            project_name(sprint.project_id, projects),
            format_duration(sprint.duration_seconds),
            sprint.completed_at.strftime("%a %d/%m"),
            sprint.notes or "No description",
        )
    console.print(Panel(table, title=title, border_style="blue"))


def print_metrics(metrics: Metrics, period: TimePeriod, scope: str = "All Projects") -> None:
    """Print the metrics panel for one period."""
    lines: list[str] = [
        f"Total time: {metrics.total_time_spent}",
        f"Average sprint: {metrics.average_sprint}",
        f"Sprints: {metrics.sprint_count}",
    ]
    title = f"{scope} · {period_label(period)}"
    console.print(Panel("\n".join(lines), title=title, border_style="green"))


def print_chart(chart: Chart, width: int = 30) -> None:
    """Print chart bars as horizontal blocks scaled to the axis maximum."""
    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("label", justify="right", style="dim")
    table.add_column("bar")
    table.add_column("value", justify="right")
    scale = width / chart.axis.domain_max
    for bar in chart.bars:
        if bar.is_future:
            table.add_row(bar.label, "[dim]" + "╱" * width + "[/dim]", "")
            continue
        blocks = "█" * int(bar.value * scale)
        table.add_row(bar.label, f"[blue]{blocks}[/blue]", bar.display_value if bar.value else "")
    ticks = " · ".join(format_axis_label(t, chart.axis.use_minutes) for t in chart.axis.ticks)
    console.print(Panel(table, title="Time spent", subtitle=ticks, border_style="blue"))


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]{message}[/green]")


def print_info(message: str) -> None:
    """Print an informational message."""
    console.print(f"[blue]{message}[/blue]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]{message}[/yellow]")


def create_timer_progress(countdown: bool = True) -> Progress:
    """Create a Rich progress bar for the timer."""
    columns: list[ProgressColumn] = [TextColumn("[bold blue]{task.description}")]
    if countdown:
        columns += [
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        ]
    columns.append(TextColumn("[bold]{task.fields[clock]}"))
    return Progress(*columns, console=console)
