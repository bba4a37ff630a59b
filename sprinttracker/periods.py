"""Time-period ranges, sprint filtering and aggregate metrics."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional

from sprinttracker.formatting import format_duration
from sprinttracker.models import Metrics, Sprint, TimePeriod

_ONE_MS = timedelta(milliseconds=1)


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _month_start(year: int, month: int) -> datetime:
    """First instant of a month; month may run past 12 or below 1."""
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return datetime(year, month, 1)


def period_range(period: TimePeriod, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """Return the inclusive [start, end] of a period relative to *now*.

    ``end`` is one millisecond before the next period starts. Weeks start
    on Monday.
    """
    now = now or datetime.now()
    today = _start_of_day(now)

    if period is TimePeriod.TODAY:
        start, nxt = today, today + timedelta(days=1)
    elif period in (TimePeriod.THIS_WEEK, TimePeriod.LAST_WEEK):
        start = today - timedelta(days=today.weekday())
        if period is TimePeriod.LAST_WEEK:
            start -= timedelta(weeks=1)
        nxt = start + timedelta(weeks=1)
    elif period in (TimePeriod.THIS_MONTH, TimePeriod.LAST_MONTH):
        offset = -1 if period is TimePeriod.LAST_MONTH else 0
        start = _month_start(now.year, now.month + offset)
        nxt = _month_start(now.year, now.month + offset + 1)
    else:
        year = now.year - 1 if period is TimePeriod.LAST_YEAR else now.year
        start, nxt = datetime(year, 1, 1), datetime(year + 1, 1, 1)

    return start, nxt - _ONE_MS


def filter_sprints(
    sprints: Iterable[Sprint],
    period: TimePeriod,
    now: Optional[datetime] = None,
    project_id: Optional[int] = None,
) -> list[Sprint]:
    """Keep sprints completed within the period (bounds inclusive) and project."""
    start, end = period_range(period, now)
    return [
        s
        for s in sprints
        if start <= s.completed_at <= end
        and (project_id is None or s.project_id == project_id)
    ]


def compute_metrics(sprints: list[Sprint]) -> Metrics:
    """Total, average and count over a sprint set."""
    total = sum(s.duration_seconds for s in sprints)
    count = len(sprints)
    average = total / count if count else 0.0
    return Metrics(
        total_seconds=total,
        average_seconds=average,
        sprint_count=count,
        total_time_spent=format_duration(total),
        average_sprint=format_duration(average),
    )
