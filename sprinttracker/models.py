"""Pydantic models: one definition for every data type the app passes around."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PROJECT_NAME_MAX = 100
NOTES_MAX = 2000
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
CODE_PATTERN = r"^\d{6}$"


class TimerState(str, enum.Enum):
    """Timer lifecycle states."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class TimerMode(str, enum.Enum):
    """Selectable timer modes: a stopwatch, fixed presets or a custom target."""

    STOPWATCH = "stopwatch"
    CUSTOM = "custom"
    MINUTES_15 = "15mins"
    MINUTES_30 = "30mins"
    HOUR_1 = "1h"
    HOURS_2 = "2h"

    @property
    def is_countdown(self) -> bool:
        return self is not TimerMode.STOPWATCH

    @property
    def preset_seconds(self) -> int:
        """Target for preset countdowns; 0 for stopwatch and custom."""
        return _PRESET_SECONDS.get(self, 0)


_PRESET_SECONDS: dict[TimerMode, int] = {
    TimerMode.MINUTES_15: 15 * 60,
    TimerMode.MINUTES_30: 30 * 60,
    TimerMode.HOUR_1: 60 * 60,
    TimerMode.HOURS_2: 120 * 60,
}


class SprintMode(str, enum.Enum):
    """How a sprint was timed."""

    COUNTDOWN = "countdown"
    STOPWATCH = "stopwatch"


class TimePeriod(str, enum.Enum):
    """Analytics periods."""

    TODAY = "today"
    THIS_WEEK = "this-week"
    LAST_WEEK = "last-week"
    THIS_MONTH = "this-month"
    LAST_MONTH = "last-month"
    THIS_YEAR = "this-year"
    LAST_YEAR = "last-year"


class EntityType(str, enum.Enum):
    """Entity kinds carried by change events."""

    PROJECT = "project"
    SPRINT = "sprint"


class ChangeKind(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


# ---------------------------------------------------------------------------
# Users & sessions
# ---------------------------------------------------------------------------


class User(BaseModel):
    """A user, identified by email."""

    id: int
    email: str
    created_at: datetime = Field(default_factory=datetime.now)
    last_login_at: Optional[datetime] = None


class Session(BaseModel):
    """An authenticated session bound to a single user."""

    user_id: int
    email: str
    token: str
    expires_at: datetime


class LoginCode(BaseModel):
    """The single active one-time code for an email address (stored hashed)."""

    email: str
    code_hash: str
    expires_at: datetime
    attempts: int = Field(default=0, ge=0)


class SignInRequest(BaseModel):
    """Input model for requesting a one-time code."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=254)


class VerifyRequest(BaseModel):
    """Input model for verifying a one-time code."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=254)
    code: str = Field(pattern=CODE_PATTERN)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class Project(BaseModel):
    """A named project owned by one user."""

    id: int
    user_id: int
    name: str
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class ProjectCreate(BaseModel):
    """Input model for creating or renaming a project."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=PROJECT_NAME_MAX)


# ---------------------------------------------------------------------------
# Sprints
# ---------------------------------------------------------------------------


class _SprintFields(BaseModel):
    project_id: int
    duration_seconds: int = Field(gt=0)
    started_at: datetime
    completed_at: datetime
    mode: SprintMode
    notes: Optional[str] = Field(default=None, max_length=NOTES_MAX)

    @field_validator("started_at", "completed_at")
    @classmethod
    def _as_local_time(cls, value: datetime) -> datetime:
        # Stored and compared as naive local time
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value

    @model_validator(mode="after")
    def _completed_after_start(self) -> "_SprintFields":
        if self.completed_at < self.started_at:
            raise ValueError("completed_at must not be earlier than started_at")
        return self


class Sprint(_SprintFields):
    """A completed, persisted work interval."""

    id: int
    user_id: int


class SprintCreate(_SprintFields):
    """Input model for recording a finished interval."""


class SprintUpdate(BaseModel):
    """Fields that may be edited after a sprint is recorded."""

    notes: Optional[str] = Field(default=None, max_length=NOTES_MAX)
    duration_seconds: Optional[int] = Field(default=None, gt=0)


class SprintFilter(BaseModel):
    """Optional narrowing for sprint listings."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    project_id: Optional[int] = None


# Legacy external keys -> canonical field names.
_LEGACY_SPRINT_KEYS: dict[str, str] = {
    "_id": "id",
    "userId": "user_id",
    "projectId": "project_id",
    "duration": "duration_seconds",
    "durationSec": "duration_seconds",
    "startTime": "started_at",
    "startedAt": "started_at",
    "endTime": "completed_at",
    "completedAt": "completed_at",
    "timerMode": "mode",
}


def normalize_sprint_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Translate a sprint record with legacy keys into canonical field names.

    Canonical keys already present win over their legacy aliases.
    """
    out: dict[str, Any] = {}
    for key, value in data.items():
        canonical = _LEGACY_SPRINT_KEYS.get(key)
        if canonical is None:
            out[key] = value
        else:
            out.setdefault(canonical, value)
    return out


# ---------------------------------------------------------------------------
# Timer
# ---------------------------------------------------------------------------


class TimerSnapshot(BaseModel):
    """Transient timer state (never persisted)."""

    state: TimerState
    mode: TimerMode
    target_time: int = Field(ge=0)
    elapsed_time: int = Field(ge=0)
    started_at: Optional[datetime] = None
    paused_accumulated_time: float = Field(default=0.0, ge=0)
    custom_target_seconds: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class Metrics(BaseModel):
    """Aggregates over a filtered sprint set."""

    total_seconds: int = Field(ge=0)
    average_seconds: float = Field(ge=0)
    sprint_count: int = Field(ge=0)
    total_time_spent: str
    average_sprint: str


class ChartBar(BaseModel):
    """One bucket of a bar chart."""

    label: str
    value: int = Field(ge=0)
    display_value: str = ""
    is_future: bool = False
    full_date: Optional[str] = None


class AxisDomain(BaseModel):
    """Y-axis scale: upper bound, tick positions and label unit."""

    domain_max: int = Field(gt=0)
    use_minutes: bool
    ticks: list[int]


class Chart(BaseModel):
    """A fully bucketed chart, ready to render."""

    period: TimePeriod
    project_id: Optional[int] = None
    bars: list[ChartBar] = Field(default_factory=list)
    axis: AxisDomain
    show_bar_labels: bool = False


class AnalyticsSummary(BaseModel):
    """Metrics and chart for one period / project selection."""

    period: TimePeriod
    metrics: Metrics
    chart: Chart


# ---------------------------------------------------------------------------
# Events & config
# ---------------------------------------------------------------------------


class ChangeEvent(BaseModel):
    """A create/update/delete notification for one entity."""

    event_id: str
    entity: EntityType
    kind: ChangeKind
    entity_id: int
    user_id: int
    payload: Optional[dict[str, Any]] = None


class AppConfig(BaseModel):
    """Application configuration (persisted to ~/.config/sprinttracker/config.json)."""

    db_path: Optional[str] = None  # None = use default (~/.local/share/sprinttracker/)
    session_secret: Optional[str] = None
    session_token: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    email_from: str = "sprint-tracker@localhost"
    log_level: str = "WARNING"
