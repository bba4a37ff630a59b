"""Chart bucketing, axis scaling and Matplotlib rendering for sprint analytics.

All figures use a dark theme consistent with the terminal palette.
"""

from __future__ import annotations

import calendar
import io
import math
from datetime import datetime
from typing import Optional

import matplotlib
matplotlib.use("Agg")  # non-interactive backend -- render to image buffers
import matplotlib.pyplot as plt
import numpy as np
from matplotlib.figure import Figure
from PIL import Image

from sprinttracker.formatting import format_duration
from sprinttracker.models import (
    AnalyticsSummary,
    AxisDomain,
    Chart,
    ChartBar,
    Project,
    Sprint,
    TimePeriod,
)
from sprinttracker.periods import compute_metrics, filter_sprints

# -- Palette ---------------------------------------------------------------
_BG = "#2b2b2b"
_FG = "#e0e0e0"
_BAR = "#0a68f5"
_FUTURE = "#555555"
_GRID = "#444444"

HOUR_BLOCKS: list[str] = [
    "0-3am", "3-6am", "6-9am", "9am-12pm", "12-3pm", "3-6pm", "6-9pm", "9pm-12am",
]
WEEKDAYS: list[str] = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
MONTHS: list[str] = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]

_DEFAULT_AXIS = AxisDomain(domain_max=3600, use_minutes=True, ticks=[0, 900, 1800, 2700, 3600])
_MIN_STEP = 900
# (upper bound of max value, step unit) in seconds
_STEP_TIERS: list[tuple[float, int]] = [
    (3600, 900),
    (7200, 1800),
    (14400, 3600),
    (math.inf, 7200),
]

_LABELLED_PERIODS = (TimePeriod.TODAY, TimePeriod.THIS_WEEK, TimePeriod.LAST_WEEK)
_MONTH_PERIODS = (TimePeriod.THIS_MONTH, TimePeriod.LAST_MONTH)
_WEEK_PERIODS = (TimePeriod.THIS_WEEK, TimePeriod.LAST_WEEK)
_YEAR_PERIODS = (TimePeriod.THIS_YEAR, TimePeriod.LAST_YEAR)


# -----------------------------------------------------------------------
# Axis
# -----------------------------------------------------------------------

def calculate_y_axis_domain(max_seconds: float) -> AxisDomain:
    """Pick a round step so four steps cover *max_seconds*; five ticks."""
    if max_seconds <= 0:
        return _DEFAULT_AXIS.model_copy(deep=True)

    unit = next(u for limit, u in _STEP_TIERS if max_seconds <= limit)
    step = max(math.ceil(max_seconds / (4 * unit)) * unit, _MIN_STEP)
    domain_max = step * 4
    return AxisDomain(
        domain_max=domain_max,
        use_minutes=domain_max <= 3600,
        ticks=[0, step, step * 2, step * 3, domain_max],
    )


def format_axis_label(value: float, use_minutes: bool) -> str:
    if use_minutes:
        return f"{round(value / 60)}m"
    return f"{round(value / 3600)}h"


# -----------------------------------------------------------------------
# Buckets
# -----------------------------------------------------------------------

def is_future(label: str, period: TimePeriod, now: Optional[datetime] = None) -> bool:
    """True when the bucket's window has not started yet.

    Only the current day/week/month/year can have future buckets.
    """
    now = now or datetime.now()
    if period is TimePeriod.TODAY:
        return HOUR_BLOCKS.index(label) * 3 > now.hour
    if period is TimePeriod.THIS_WEEK:
        return WEEKDAYS.index(label) > now.weekday()
    if period is TimePeriod.THIS_MONTH:
        return int(label) > now.day
    if period is TimePeriod.THIS_YEAR:
        return MONTHS.index(label) > now.month - 1
    return False


def _month_shown(period: TimePeriod, now: datetime) -> tuple[int, int]:
    if period is TimePeriod.LAST_MONTH:
        return (now.year - 1, 12) if now.month == 1 else (now.year, now.month - 1)
    return now.year, now.month


def _bucket_key(completed_at: datetime, period: TimePeriod) -> str:
    if period is TimePeriod.TODAY:
        return HOUR_BLOCKS[completed_at.hour // 3]
    if period in _WEEK_PERIODS:
        return WEEKDAYS[completed_at.weekday()]
    if period in _MONTH_PERIODS:
        return f"{completed_at.day:02d}"
    return MONTHS[completed_at.month - 1]


def _labels_for(period: TimePeriod, now: datetime) -> list[str]:
    if period is TimePeriod.TODAY:
        return list(HOUR_BLOCKS)
    if period in _WEEK_PERIODS:
        return list(WEEKDAYS)
    if period in _MONTH_PERIODS:
        year, month = _month_shown(period, now)
        days = calendar.monthrange(year, month)[1]
        return [f"{day:02d}" for day in range(1, days + 1)]
    return list(MONTHS)


def bucket_sprints(
    sprints: list[Sprint],
    period: TimePeriod,
    projects: list[Project],
    project_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> list[ChartBar]:
    """Group already-filtered sprints into chart bars.

    Without a project, one bar per project; with one, one bar per
    sub-period of *period* (every bucket present, empty or not).
    """
    now = now or datetime.now()

    if project_id is None:
        totals: dict[int, int] = {}
        for sprint in sprints:
            totals[sprint.project_id] = totals.get(sprint.project_id, 0) + sprint.duration_seconds
        return [
            ChartBar(
                label=project.name,
                value=totals.get(project.id, 0),
                display_value=format_duration(totals.get(project.id, 0)),
            )
            for project in projects
        ]

    grouped: dict[str, int] = {}
    for sprint in sprints:
        key = _bucket_key(sprint.completed_at, period)
        grouped[key] = grouped.get(key, 0) + sprint.duration_seconds

    bars: list[ChartBar] = []
    for label in _labels_for(period, now):
        value = grouped.get(label, 0)
        full_date = None
        if period in _MONTH_PERIODS:
            year, month = _month_shown(period, now)
            full_date = datetime(year, month, int(label)).strftime("%b %d")
        bars.append(
            ChartBar(
                label=label,
                value=value,
                display_value=format_duration(value) if value else "",
                is_future=is_future(label, period, now),
                full_date=full_date,
            )
        )
    return bars


def show_bar_label(bar: ChartBar, period: TimePeriod) -> bool:
    """Value labels appear only on day/week charts, for past non-empty bars."""
    return period in _LABELLED_PERIODS and bar.value > 0 and not bar.is_future


def build_chart(
    sprints: list[Sprint],
    period: TimePeriod,
    projects: list[Project],
    project_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Chart:
    bars = bucket_sprints(sprints, period, projects, project_id=project_id, now=now)
    max_seconds = max((b.value for b in bars if not b.is_future), default=0)
    return Chart(
        period=period,
        project_id=project_id,
        bars=bars,
        axis=calculate_y_axis_domain(max_seconds),
        show_bar_labels=period in _LABELLED_PERIODS,
    )


def summarize(
    sprints: list[Sprint],
    period: TimePeriod,
    projects: list[Project],
    project_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> AnalyticsSummary:
    """Filter sprints to the period/project, then compute metrics and chart."""
    now = now or datetime.now()
    selected = filter_sprints(sprints, period, now=now, project_id=project_id)
    return AnalyticsSummary(
        period=period,
        metrics=compute_metrics(selected),
        chart=build_chart(selected, period, projects, project_id=project_id, now=now),
    )


# -----------------------------------------------------------------------
# Rendering
# -----------------------------------------------------------------------

def _fig_to_pil(fig: Figure, dpi: int = 100) -> Image.Image:
    """Render a matplotlib Figure to a PIL Image and close it."""
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=dpi, bbox_inches="tight",
                facecolor=fig.get_facecolor(), edgecolor="none")
    plt.close(fig)
    buf.seek(0)
    return Image.open(buf)


def render_chart(
    chart: Chart,
    *,
    title: str = "Time Spent",
    size: tuple[int, int] = (640, 300),
    dpi: int = 100,
) -> Image.Image:
    """Draw a bar chart and return it as a PIL Image.

    Future buckets are drawn as full-height hatched placeholders without a value.
    """
    axis = chart.axis
    x = np.arange(len(chart.bars))
    heights = np.array(
        [0 if b.is_future else b.value for b in chart.bars], dtype=float
    )

    fig_w, fig_h = size[0] / dpi, size[1] / dpi
    fig = Figure(figsize=(fig_w, fig_h), dpi=dpi, facecolor=_BG)
    ax = fig.add_subplot(111)
    ax.set_facecolor(_BG)

    ax.bar(x, heights, width=0.8, color=_BAR)
    future = [i for i, b in enumerate(chart.bars) if b.is_future]
    if future:
        ax.bar(x[future], np.full(len(future), axis.domain_max), width=0.8,
               color="none", edgecolor=_FUTURE, hatch="//", linewidth=0)

    if chart.show_bar_labels:
        for i, bar in enumerate(chart.bars):
            if show_bar_label(bar, chart.period):
                ax.text(i, bar.value, bar.display_value, ha="center",
                        va="bottom", color=_FG, fontsize=8)

    ax.set_ylim(0, axis.domain_max)
    ax.set_yticks(axis.ticks)
    ax.set_yticklabels([format_axis_label(t, axis.use_minutes) for t in axis.ticks])
    ax.set_xticks(x)
    ax.set_xticklabels([b.label for b in chart.bars], fontsize=7)
    ax.set_title(title, color=_FG, fontsize=11, fontweight="bold")

    ax.tick_params(colors=_FG, labelsize=8)
    ax.spines["bottom"].set_color(_GRID)
    ax.spines["left"].set_visible(False)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.yaxis.grid(color=_GRID, linewidth=0.5, linestyle="--")
    ax.set_axisbelow(True)

    return _fig_to_pil(fig, dpi=dpi)
