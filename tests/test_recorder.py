"""Tests for recording finished timer runs and the pending buffer."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from sprinttracker.errors import NotFoundError, PersistenceError
from sprinttracker.models import (
    Project,
    SprintCreate,
    SprintMode,
    TimerMode,
    TimerSnapshot,
    TimerState,
)
from sprinttracker.recorder import PendingBuffer, SprintRecorder, backoff_delays
from sprinttracker.services import ProjectService, SprintService
from sprinttracker.timer import SprintTimer

STARTED = datetime(2024, 3, 13, 10, 0)


def _snapshot(elapsed: int, mode: TimerMode = TimerMode.MINUTES_15) -> TimerSnapshot:
    return TimerSnapshot(
        state=TimerState.COMPLETED,
        mode=mode,
        target_time=mode.preset_seconds,
        elapsed_time=elapsed,
        started_at=STARTED,
    )


def _record(project_id: int = 1) -> SprintCreate:
    return SprintCreate(
        project_id=project_id,
        duration_seconds=900,
        started_at=STARTED,
        completed_at=STARTED + timedelta(minutes=15),
        mode=SprintMode.COUNTDOWN,
    )


@pytest.fixture
def project(conn, session) -> Project:
    return ProjectService(conn).create(session, "Thesis")


@pytest.fixture
def buffer(tmp_path: Path) -> PendingBuffer:
    return PendingBuffer(tmp_path / "pending.jsonl")


class TestBackoff:
    def test_doubles_until_cap(self) -> None:
        assert backoff_delays(attempts=6, base=1, cap=8) == [1, 2, 4, 8, 8]

    def test_single_attempt_never_waits(self) -> None:
        assert backoff_delays(attempts=1) == []


class TestPendingBuffer:
    def test_append_and_load(self, buffer: PendingBuffer) -> None:
        buffer.append(1, _record())
        buffer.append(2, _record())
        assert buffer.count() == 2
        assert buffer.count(1) == 1
        assert buffer.load()[0].record.duration_seconds == 900

    def test_unreadable_lines_skipped(self, buffer: PendingBuffer) -> None:
        buffer.append(1, _record())
        with buffer.path.open("a") as fh:
            fh.write("{broken\n")
        assert buffer.count() == 1

    def test_rewrite_empty_removes_file(self, buffer: PendingBuffer) -> None:
        buffer.append(1, _record())
        buffer.rewrite([])
        assert not buffer.path.exists()
        assert buffer.load() == []


class TestRecord:
    def test_fifteen_minute_sprint_saved(self, conn, session, project: Project, clock) -> None:
        sprints = SprintService(conn)
        recorder = SprintRecorder(sprints, session, project=project)
        recorder.notes = "  intro chapter  "
        timer = SprintTimer(TimerMode.MINUTES_15, clock=clock, on_complete=recorder)

        timer.start()
        started = clock.now
        clock.advance(15 * 60)
        timer.tick()

        result = recorder.last_result
        assert result is not None and result.saved
        sprint = result.sprint
        assert sprint.duration_seconds == 900
        assert sprint.mode is SprintMode.COUNTDOWN
        assert sprint.started_at == started
        assert sprint.completed_at == started + timedelta(minutes=15)
        assert sprint.notes == "intro chapter"
        assert recorder.notes == ""
        assert len(sprints.list(session)) == 1

    def test_stopwatch_mode_recorded(self, conn, session, project: Project) -> None:
        recorder = SprintRecorder(SprintService(conn), session, project=project)
        result = recorder.record(_snapshot(42, TimerMode.STOPWATCH), STARTED + timedelta(seconds=42))
        assert result.sprint is not None
        assert result.sprint.mode is SprintMode.STOPWATCH

    def test_no_project_records_nothing(self, conn, session) -> None:
        recorder = SprintRecorder(SprintService(conn), session)
        result = recorder.record(_snapshot(300), STARTED + timedelta(minutes=5))
        assert not result.saved
        assert result.error is None

    def test_zero_elapsed_records_nothing(self, conn, session, project: Project) -> None:
        recorder = SprintRecorder(SprintService(conn), session, project=project)
        assert not recorder.record(_snapshot(0), STARTED).saved

    def test_overlong_notes_reported_not_raised(
        self, conn, session, project: Project, buffer: PendingBuffer
    ) -> None:
        sprints = SprintService(conn)
        recorder = SprintRecorder(sprints, session, buffer=buffer, project=project)
        recorder.notes = "y" * 2001
        result = recorder.record(_snapshot(600, TimerMode.STOPWATCH), STARTED + timedelta(minutes=10))
        assert not result.saved
        assert result.error
        assert sprints.list(session) == []

    def test_overlong_notes_do_not_escape_the_timer(
        self, conn, session, project: Project, clock
    ) -> None:
        recorder = SprintRecorder(SprintService(conn), session, project=project)
        recorder.notes = "y" * 2001
        timer = SprintTimer(TimerMode.STOPWATCH, clock=clock, on_complete=recorder)
        timer.start()
        clock.advance(600)
        timer.complete()
        assert timer.state is TimerState.IDLE
        assert recorder.last_result is not None and recorder.last_result.error

    def test_transient_failure_buffered(self, session, project: Project, buffer: PendingBuffer) -> None:
        sprints = MagicMock()
        sprints.create.side_effect = PersistenceError("locked")
        recorder = SprintRecorder(sprints, session, buffer=buffer, project=project)
        recorder.notes = "keep"
        result = recorder.record(_snapshot(900), STARTED + timedelta(minutes=15))
        assert result.buffered
        assert buffer.count(session.user_id) == 1
        assert recorder.notes == "keep"

    def test_permanent_failure_not_buffered(self, session, project: Project, buffer: PendingBuffer) -> None:
        sprints = MagicMock()
        sprints.create.side_effect = NotFoundError("Project #1 not found.")
        recorder = SprintRecorder(sprints, session, buffer=buffer, project=project)
        result = recorder.record(_snapshot(900), STARTED + timedelta(minutes=15))
        assert not result.buffered
        assert result.error == "Project #1 not found."
        assert buffer.count() == 0


class TestFlushPending:
    def test_saves_buffered_sprints(
        self, conn, session, project: Project, buffer: PendingBuffer
    ) -> None:
        buffer.append(session.user_id, _record(project.id))
        recorder = SprintRecorder(SprintService(conn), session, buffer=buffer)
        saved = recorder.flush_pending()
        assert len(saved) == 1
        assert buffer.count() == 0

    def test_other_users_entries_left_alone(
        self, conn, session, other_session, project: Project, buffer: PendingBuffer
    ) -> None:
        buffer.append(other_session.user_id, _record(project.id))
        recorder = SprintRecorder(SprintService(conn), session, buffer=buffer)
        assert recorder.flush_pending() == []
        assert buffer.count(other_session.user_id) == 1

    def test_retries_with_backoff_then_keeps(self, session, buffer: PendingBuffer) -> None:
        buffer.append(session.user_id, _record())
        sprints = MagicMock()
        sprints.create.side_effect = PersistenceError("locked")
        sleep = MagicMock()
        recorder = SprintRecorder(sprints, session, buffer=buffer, sleep=sleep)

        assert recorder.flush_pending(attempts=3) == []
        assert sprints.create.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]
        assert buffer.count() == 1

    def test_recovers_after_transient_failure(
        self, conn, session, project: Project, buffer: PendingBuffer
    ) -> None:
        buffer.append(session.user_id, _record(project.id))
        real = SprintService(conn)
        sprints = MagicMock()
        sprints.create.side_effect = [PersistenceError("locked"), real.create(session, _record(project.id))]
        recorder = SprintRecorder(sprints, session, buffer=buffer, sleep=MagicMock())
        assert len(recorder.flush_pending()) == 1
        assert buffer.count() == 0

    def test_unsaveable_record_dropped(self, conn, session, buffer: PendingBuffer) -> None:
        buffer.append(session.user_id, _record(project_id=999))
        recorder = SprintRecorder(SprintService(conn), session, buffer=buffer)
        assert recorder.flush_pending() == []
        assert buffer.count() == 0
