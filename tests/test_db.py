"""Tests for the database layer."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from sprinttracker import db
from sprinttracker.errors import ConflictError
from sprinttracker.models import (
    LoginCode,
    ProjectCreate,
    SprintCreate,
    SprintFilter,
    SprintMode,
    SprintUpdate,
)

BASE = datetime(2024, 3, 13, 9, 0)


def _sprint_in(project_id: int, completed_at: datetime = BASE, seconds: int = 900, notes=None) -> SprintCreate:
    return SprintCreate(
        project_id=project_id,
        duration_seconds=seconds,
        started_at=completed_at - timedelta(seconds=seconds),
        completed_at=completed_at,
        mode=SprintMode.COUNTDOWN,
        notes=notes,
    )


class TestUsers:
    def test_record_login_creates_once(self, conn) -> None:
        first = db.record_login(conn, "ada@example.com")
        again = db.record_login(conn, "ada@example.com")
        assert first.id == again.id
        assert again.last_login_at is not None

    def test_get_nonexistent(self, conn) -> None:
        assert db.get_user(conn, 9999) is None


class TestLoginCodes:
    def test_new_code_replaces_old(self, conn) -> None:
        expires = datetime.now() + timedelta(minutes=10)
        db.save_login_code(conn, LoginCode(email="a@b.co", code_hash="one", expires_at=expires))
        db.increment_code_attempts(conn, "a@b.co")
        db.save_login_code(conn, LoginCode(email="a@b.co", code_hash="two", expires_at=expires))
        code = db.get_login_code(conn, "a@b.co")
        assert code is not None
        assert code.code_hash == "two"
        assert code.attempts == 0

    def test_delete(self, conn) -> None:
        db.save_login_code(
            conn, LoginCode(email="a@b.co", code_hash="x", expires_at=datetime.now())
        )
        db.delete_login_code(conn, "a@b.co")
        assert db.get_login_code(conn, "a@b.co") is None


class TestRevokedSessions:
    def test_revoke(self, conn) -> None:
        assert not db.is_session_revoked(conn, "abc")
        db.revoke_session(conn, "abc", datetime.now() + timedelta(days=1))
        assert db.is_session_revoked(conn, "abc")

    def test_expired_revocations_pruned(self, conn) -> None:
        db.revoke_session(conn, "old", datetime.now() - timedelta(days=1))
        db.revoke_session(conn, "new", datetime.now() + timedelta(days=1))
        assert not db.is_session_revoked(conn, "old")


class TestProjects:
    def test_add_and_list(self, conn, session) -> None:
        db.add_project(conn, session.user_id, ProjectCreate(name="Thesis"))
        db.add_project(conn, session.user_id, ProjectCreate(name="Reading"))
        names = [p.name for p in db.list_projects(conn, session.user_id)]
        assert sorted(names) == ["Reading", "Thesis"]

    def test_duplicate_name_ignores_case(self, conn, session) -> None:
        db.add_project(conn, session.user_id, ProjectCreate(name="Thesis"))
        with pytest.raises(ConflictError):
            db.add_project(conn, session.user_id, ProjectCreate(name="THESIS"))

    def test_same_name_for_different_users(self, conn, session, other_session) -> None:
        db.add_project(conn, session.user_id, ProjectCreate(name="Thesis"))
        project = db.add_project(conn, other_session.user_id, ProjectCreate(name="Thesis"))
        assert project.user_id == other_session.user_id

    def test_projects_scoped_to_owner(self, conn, session, other_session) -> None:
        project = db.add_project(conn, session.user_id, ProjectCreate(name="Thesis"))
        assert db.get_project(conn, other_session.user_id, project.id) is None
        assert db.list_projects(conn, other_session.user_id) == []

    def test_find_project(self, conn, session) -> None:
        project = db.add_project(conn, session.user_id, ProjectCreate(name="Thesis"))
        found = db.find_project(conn, session.user_id, " thesis ")
        assert found is not None
        assert found.id == project.id

    def test_rename(self, conn, session) -> None:
        project = db.add_project(conn, session.user_id, ProjectCreate(name="Thesis"))
        renamed = db.rename_project(conn, session.user_id, project.id, ProjectCreate(name="Dissertation"))
        assert renamed is not None
        assert renamed.name == "Dissertation"

    def test_rename_to_own_name_in_other_case(self, conn, session) -> None:
        project = db.add_project(conn, session.user_id, ProjectCreate(name="Thesis"))
        renamed = db.rename_project(conn, session.user_id, project.id, ProjectCreate(name="thesis"))
        assert renamed is not None
        assert renamed.name == "thesis"

    def test_rename_nonexistent(self, conn, session) -> None:
        assert db.rename_project(conn, session.user_id, 999, ProjectCreate(name="X")) is None

    def test_delete_keeps_sprints(self, conn, session) -> None:
        project = db.add_project(conn, session.user_id, ProjectCreate(name="Thesis"))
        db.add_sprint(conn, session.user_id, _sprint_in(project.id))
        assert db.delete_project(conn, session.user_id, project.id)
        assert len(db.list_sprints(conn, session.user_id)) == 1

    def test_delete_nonexistent(self, conn, session) -> None:
        assert not db.delete_project(conn, session.user_id, 999)


class TestSprints:
    def test_add_and_get(self, conn, session) -> None:
        sprint = db.add_sprint(conn, session.user_id, _sprint_in(1, notes="intro"))
        fetched = db.get_sprint(conn, session.user_id, sprint.id)
        assert fetched is not None
        assert fetched.duration_seconds == 900
        assert fetched.completed_at == BASE
        assert fetched.notes == "intro"

    def test_list_most_recent_first(self, conn, session) -> None:
        db.add_sprint(conn, session.user_id, _sprint_in(1, BASE))
        db.add_sprint(conn, session.user_id, _sprint_in(1, BASE + timedelta(hours=1)))
        sprints = db.list_sprints(conn, session.user_id)
        assert sprints[0].completed_at > sprints[1].completed_at

    def test_filter_bounds_inclusive(self, conn, session) -> None:
        db.add_sprint(conn, session.user_id, _sprint_in(1, BASE))
        db.add_sprint(conn, session.user_id, _sprint_in(1, BASE + timedelta(hours=2)))
        db.add_sprint(conn, session.user_id, _sprint_in(1, BASE + timedelta(hours=3)))
        filters = SprintFilter(start=BASE, end=BASE + timedelta(hours=2))
        assert len(db.list_sprints(conn, session.user_id, filters)) == 2

    def test_filter_by_project_and_limit(self, conn, session) -> None:
        for i in range(3):
            db.add_sprint(conn, session.user_id, _sprint_in(1, BASE + timedelta(minutes=i)))
        db.add_sprint(conn, session.user_id, _sprint_in(2))
        assert len(db.list_sprints(conn, session.user_id, SprintFilter(project_id=1))) == 3
        assert len(db.list_sprints(conn, session.user_id, limit=2)) == 2

    def test_sprints_scoped_to_owner(self, conn, session, other_session) -> None:
        sprint = db.add_sprint(conn, session.user_id, _sprint_in(1))
        assert db.get_sprint(conn, other_session.user_id, sprint.id) is None
        assert db.list_sprints(conn, other_session.user_id) == []
        assert not db.delete_sprint(conn, other_session.user_id, sprint.id)

    def test_update_only_set_fields(self, conn, session) -> None:
        sprint = db.add_sprint(conn, session.user_id, _sprint_in(1, notes="keep me"))
        updated = db.update_sprint(conn, session.user_id, sprint.id, SprintUpdate(duration_seconds=1200))
        assert updated is not None
        assert updated.duration_seconds == 1200
        assert updated.notes == "keep me"

    def test_update_explicit_none_duration_ignored(self, conn, session) -> None:
        sprint = db.add_sprint(conn, session.user_id, _sprint_in(1))
        updated = db.update_sprint(
            conn, session.user_id, sprint.id, SprintUpdate(duration_seconds=None, notes="x")
        )
        assert updated is not None
        assert updated.duration_seconds == 900
        assert updated.notes == "x"

    def test_update_nonexistent(self, conn, session) -> None:
        assert db.update_sprint(conn, session.user_id, 999, SprintUpdate(notes="x")) is None

    def test_delete(self, conn, session) -> None:
        sprint = db.add_sprint(conn, session.user_id, _sprint_in(1))
        assert db.delete_sprint(conn, session.user_id, sprint.id)
        assert db.get_sprint(conn, session.user_id, sprint.id) is None
