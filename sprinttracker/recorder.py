"""Turns finished timer runs into persisted sprints.

Sprints that cannot be saved because of a transient failure are appended to
a JSON-lines buffer on disk and retried later with capped exponential
backoff, so a completed interval is not lost with the timer state.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel, ValidationError

from sprinttracker.errors import PersistenceError, SprintTrackerError
from sprinttracker.models import (
    Project,
    Session,
    Sprint,
    SprintCreate,
    SprintMode,
    TimerSnapshot,
)
from sprinttracker.services import SprintService

log = logging.getLogger(__name__)

RETRY_ATTEMPTS = 3
RETRY_BASE_DELAY = 0.5
RETRY_MAX_DELAY = 8.0


class RecordResult(BaseModel):
    """Outcome of handing one finished run to storage."""

    sprint: Optional[Sprint] = None
    buffered: bool = False
    error: Optional[str] = None

    @property
    def saved(self) -> bool:
        return self.sprint is not None


class _PendingEntry(BaseModel):
    user_id: int
    record: SprintCreate


class PendingBuffer:
    """Durable queue of sprints waiting to be saved."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, user_id: int, record: SprintCreate) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        entry = _PendingEntry(user_id=user_id, record=record)
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(entry.model_dump_json() + "\n")

    def load(self) -> list[_PendingEntry]:
        if not self.path.exists():
            return []
        entries: list[_PendingEntry] = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                entries.append(_PendingEntry(**json.loads(line)))
            except (json.JSONDecodeError, TypeError, ValidationError):
                log.warning("Skipping unreadable pending sprint: %s", line[:80])
        return entries

    def rewrite(self, entries: list[_PendingEntry]) -> None:
        if not entries:
            self.path.unlink(missing_ok=True)
            return
        self.path.write_text(
            "".join(e.model_dump_json() + "\n" for e in entries), encoding="utf-8"
        )

    def count(self, user_id: Optional[int] = None) -> int:
        return sum(1 for e in self.load() if user_id is None or e.user_id == user_id)


def backoff_delays(
    attempts: int = RETRY_ATTEMPTS,
    base: float = RETRY_BASE_DELAY,
    cap: float = RETRY_MAX_DELAY,
) -> list[float]:
    """Waits before each retry: base, 2*base, 4*base ... never above cap."""
    return [min(cap, base * 2**i) for i in range(max(0, attempts - 1))]


class SprintRecorder:
    """Completion handler for a SprintTimer.

    ``project`` and ``notes`` hold the user's current selection; notes are
    cleared after a successful save.
    """

    def __init__(
        self,
        sprints: SprintService,
        session: Session,
        buffer: Optional[PendingBuffer] = None,
        project: Optional[Project] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.sprints = sprints
        self.session = session
        self.buffer = buffer
        self.project = project
        self.notes = ""
        self.last_result: Optional[RecordResult] = None
        self._sleep = sleep

    def build_record(
        self, snapshot: TimerSnapshot, completed_at: datetime
    ) -> Optional[SprintCreate]:
        """The sprint for a finished run, or None if there is nothing to save."""
        if self.project is None or snapshot.elapsed_time <= 0:
            return None
        started_at = snapshot.started_at or completed_at
        return SprintCreate(
            project_id=self.project.id,
            duration_seconds=snapshot.elapsed_time,
            started_at=started_at,
            completed_at=max(completed_at, started_at),
            mode=SprintMode.COUNTDOWN if snapshot.mode.is_countdown else SprintMode.STOPWATCH,
            notes=self.notes.strip() or None,
        )

    def __call__(self, snapshot: TimerSnapshot, completed_at: datetime) -> None:
        self.last_result = self.record(snapshot, completed_at)

    def record(self, snapshot: TimerSnapshot, completed_at: datetime) -> RecordResult:
        try:
            record = self.build_record(snapshot, completed_at)
        except ValidationError as exc:
            message = "; ".join(err["msg"] for err in exc.errors())
            log.error("Sprint rejected: %s", message)
            return RecordResult(error=message)
        if record is None:
            log.info("Nothing to record (no project selected or no elapsed time)")
            return RecordResult()

        try:
            sprint = self.sprints.create(self.session, record)
        except PersistenceError as exc:
            log.error("Could not save sprint, keeping it for retry: %s", exc)
            if self.buffer is None:
                return RecordResult(error=str(exc))
            self.buffer.append(self.session.user_id, record)
            return RecordResult(buffered=True, error=str(exc))
        except SprintTrackerError as exc:
            log.error("Sprint rejected: %s", exc)
            return RecordResult(error=str(exc))

        self.notes = ""
        return RecordResult(sprint=sprint)

    def flush_pending(self, attempts: int = RETRY_ATTEMPTS) -> list[Sprint]:
        """Retry buffered sprints for this user. Returns those now saved.

        Transient failures are retried with backoff and stay buffered when
        retries run out; records that can never be saved are dropped.
        """
        if self.buffer is None:
            return []
        saved: list[Sprint] = []
        remaining = []
        for entry in self.buffer.load():
            if entry.user_id != self.session.user_id:
                remaining.append(entry)
                continue
            sprint = self._save_with_retry(entry.record, attempts)
            if sprint is None:
                remaining.append(entry)
            elif isinstance(sprint, Sprint):
                saved.append(sprint)
        self.buffer.rewrite(remaining)
        if saved:
            log.info("Saved %d buffered sprint(s)", len(saved))
        return saved

    def _save_with_retry(self, record: SprintCreate, attempts: int) -> Sprint | bool | None:
        """Sprint on success, None to keep buffering, False to drop the record."""
        delays = backoff_delays(attempts)
        for attempt in range(attempts):
            try:
                return self.sprints.create(self.session, record)
            except PersistenceError as exc:
                log.warning("Retry %d/%d failed: %s", attempt + 1, attempts, exc)
                if attempt < len(delays):
                    self._sleep(delays[attempt])
            except SprintTrackerError as exc:
                log.error("Dropping buffered sprint that cannot be saved: %s", exc)
                return False
        return None
