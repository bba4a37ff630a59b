"""Project and sprint operations scoped to an explicit session."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional, Union

from sprinttracker import db
from sprinttracker.errors import NotFoundError, PersistenceError
from sprinttracker.events import EventBus, new_event
from sprinttracker.models import (
    ChangeKind,
    EntityType,
    Project,
    ProjectCreate,
    Session,
    Sprint,
    SprintCreate,
    SprintFilter,
    SprintUpdate,
    TimePeriod,
    normalize_sprint_fields,
)
from sprinttracker.periods import period_range

log = logging.getLogger(__name__)


@contextmanager
def _storage() -> Iterator[None]:
    """Report database hiccups (locked file, disk full) as transient errors."""
    try:
        yield
    except sqlite3.OperationalError as exc:
        log.error("Storage failure: %s", exc)
        raise PersistenceError("Storage is temporarily unavailable.") from exc


class _Service:
    def __init__(self, conn: sqlite3.Connection, bus: Optional[EventBus] = None) -> None:
        self.conn = conn
        self.bus = bus

    def _publish(
        self,
        entity: EntityType,
        kind: ChangeKind,
        entity_id: int,
        session: Session,
        payload: Optional[dict[str, Any]] = None,
    ) -> None:
        if self.bus is not None:
            self.bus.publish(new_event(entity, kind, entity_id, session.user_id, payload))


class ProjectService(_Service):
    """CRUD for a user's projects."""

    def list(self, session: Session) -> list[Project]:
        with _storage():
            return db.list_projects(self.conn, session.user_id)

    def get(self, session: Session, project_id: int) -> Project:
        with _storage():
            project = db.get_project(self.conn, session.user_id, project_id)
        if project is None:
            raise NotFoundError(f"Project #{project_id} not found.")
        return project

    def create(self, session: Session, name: str) -> Project:
        """Create a project; names are unique per user, ignoring case."""
        project_in = ProjectCreate(name=name)
        with _storage():
            project = db.add_project(self.conn, session.user_id, project_in)
        log.info("Created project %s for user %s", project.id, session.user_id)
        self._publish(
            EntityType.PROJECT, ChangeKind.CREATED, project.id, session,
            project.model_dump(mode="json"),
        )
        return project

    def get_or_create(self, session: Session, name: str) -> Project:
        """Pick an existing project by name or create it on the fly."""
        project_in = ProjectCreate(name=name)
        with _storage():
            existing = db.find_project(self.conn, session.user_id, project_in.name)
        return existing or self.create(session, project_in.name)

    def rename(self, session: Session, project_id: int, name: str) -> Project:
        project_in = ProjectCreate(name=name)
        with _storage():
            project = db.rename_project(self.conn, session.user_id, project_id, project_in)
        if project is None:
            raise NotFoundError(f"Project #{project_id} not found.")
        self._publish(
            EntityType.PROJECT, ChangeKind.UPDATED, project.id, session,
            project.model_dump(mode="json"),
        )
        return project

    def delete(self, session: Session, project_id: int) -> None:
        """Delete a project. Sprints recorded against it are kept."""
        with _storage():
            deleted = db.delete_project(self.conn, session.user_id, project_id)
        if not deleted:
            raise NotFoundError(f"Project #{project_id} not found.")
        log.info("Deleted project %s for user %s", project_id, session.user_id)
        self._publish(EntityType.PROJECT, ChangeKind.DELETED, project_id, session)


class SprintService(_Service):
    """Recording, listing and editing sprints."""

    def list(
        self,
        session: Session,
        filters: Optional[SprintFilter] = None,
        period: Optional[TimePeriod] = None,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[Sprint]:
        """List sprints; a period overrides any start/end in *filters*."""
        if period is not None:
            start, end = period_range(period, now)
            project_id = filters.project_id if filters else None
            filters = SprintFilter(start=start, end=end, project_id=project_id)
        with _storage():
            return db.list_sprints(self.conn, session.user_id, filters, limit=limit)

    def get(self, session: Session, sprint_id: int) -> Sprint:
        with _storage():
            sprint = db.get_sprint(self.conn, session.user_id, sprint_id)
        if sprint is None:
            raise NotFoundError(f"Sprint #{sprint_id} not found.")
        return sprint

    def create(self, session: Session, record: Union[SprintCreate, dict[str, Any]]) -> Sprint:
        """Record a sprint. Dicts may use legacy field names."""
        if not isinstance(record, SprintCreate):
            record = SprintCreate(**normalize_sprint_fields(record))
        with _storage():
            if db.get_project(self.conn, session.user_id, record.project_id) is None:
                raise NotFoundError(f"Project #{record.project_id} not found.")
            sprint = db.add_sprint(self.conn, session.user_id, record)
        log.info(
            "Recorded sprint %s (%ss, project %s)",
            sprint.id, sprint.duration_seconds, sprint.project_id,
        )
        self._publish(
            EntityType.SPRINT, ChangeKind.CREATED, sprint.id, session,
            sprint.model_dump(mode="json"),
        )
        return sprint

    def update(self, session: Session, sprint_id: int, changes: SprintUpdate) -> Sprint:
        """Edit notes and/or duration. Blank notes are cleared.

        ``changes`` is revalidated into a copy, so fields set by assignment
        after construction still meet their limits before anything is written.
        """
        changes = SprintUpdate.model_validate(changes.model_dump(exclude_unset=True))
        if changes.notes is not None:
            changes.notes = changes.notes.strip() or None
        with _storage():
            sprint = db.update_sprint(self.conn, session.user_id, sprint_id, changes)
        if sprint is None:
            raise NotFoundError(f"Sprint #{sprint_id} not found.")
        self._publish(
            EntityType.SPRINT, ChangeKind.UPDATED, sprint.id, session,
            sprint.model_dump(mode="json"),
        )
        return sprint

    def delete(self, session: Session, sprint_id: int) -> None:
        with _storage():
            deleted = db.delete_sprint(self.conn, session.user_id, sprint_id)
        if not deleted:
            raise NotFoundError(f"Sprint #{sprint_id} not found.")
        self._publish(EntityType.SPRINT, ChangeKind.DELETED, sprint_id, session)
