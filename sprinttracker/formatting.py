"""Pure formatting and parsing helpers for durations and timer displays."""

from __future__ import annotations

import re

DEFAULT_TITLE = "Sprint Tracker"

_HOUR_RE = re.compile(r"(\d+)\s*h(?:ours?)?")
_MINUTE_RE = re.compile(r"(\d+)\s*m(?:in(?:utes?)?)?")
_NUMBER_RE = re.compile(r"(\d+)")


def format_duration(seconds: float) -> str:
    """Render a duration as "{h}h {m}m", or "{m}m" under an hour.

    Minutes are truncated, never rounded.
    """
    total = max(0, int(seconds))
    hours = total // 3600
    minutes = (total % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_clock(seconds: float) -> str:
    """Render seconds as zero-padded HH:MM:SS."""
    total = max(0, int(seconds))
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_title(seconds: float, project_name: str | None) -> str:
    """Window/tab title for a running timer: MM:SS, or HH:MM past the hour."""
    if not project_name:
        return DEFAULT_TITLE
    total = max(0, int(seconds))
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    if hours > 0:
        short = f"{hours:02d}:{minutes:02d}"
    else:
        short = f"{minutes:02d}:{secs:02d}"
    return f"⏱ {short} - {project_name}"


def parse_time_input(text: str) -> int:
    """Parse free text such as "1h 30m", "45m" or "20" into seconds.

    A bare number is taken as minutes. Returns 0 when nothing matches.
    """
    cleaned = text.lower().strip()
    hour_match = _HOUR_RE.search(cleaned)
    minute_match = _MINUTE_RE.search(cleaned)

    total_minutes = 0
    if hour_match:
        total_minutes += int(hour_match.group(1)) * 60
    if minute_match:
        total_minutes += int(minute_match.group(1))
    if not hour_match and not minute_match:
        number_match = _NUMBER_RE.search(cleaned)
        if number_match:
            total_minutes = int(number_match.group(1))
    return total_minutes * 60


def format_sprint_id(sprint_id: int | str) -> str:
    """Short display id, e.g. SPRINT-07."""
    return f"SPRINT-{str(sprint_id).zfill(2)[-2:].upper()}"
