"""SQLite database layer. All public functions return Pydantic models."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from sprinttracker.config import get_db_path as _config_get_db_path
from sprinttracker.errors import ConflictError
from sprinttracker.models import (
    LoginCode,
    Project,
    ProjectCreate,
    Sprint,
    SprintCreate,
    SprintFilter,
    SprintMode,
    SprintUpdate,
    User,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    email         TEXT    NOT NULL UNIQUE,
    created_at    TEXT    NOT NULL,
    last_login_at TEXT
);

CREATE TABLE IF NOT EXISTS login_codes (
    email       TEXT    PRIMARY KEY,
    code_hash   TEXT    NOT NULL,
    expires_at  TEXT    NOT NULL,
    attempts    INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS revoked_sessions (
    token_hash  TEXT PRIMARY KEY,
    expires_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name        TEXT    NOT NULL,
    created_at  TEXT    NOT NULL,
    updated_at  TEXT    NOT NULL
);

-- project_id deliberately has no foreign key: sprints outlive their project.
CREATE TABLE IF NOT EXISTS sprints (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id          INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    project_id       INTEGER NOT NULL,
    duration_seconds INTEGER NOT NULL,
    started_at       TEXT    NOT NULL,
    completed_at     TEXT    NOT NULL,
    mode             TEXT    NOT NULL,
    notes            TEXT
);

CREATE INDEX IF NOT EXISTS idx_projects_user ON projects(user_id);
CREATE INDEX IF NOT EXISTS idx_sprints_user_completed ON sprints(user_id, completed_at);
CREATE INDEX IF NOT EXISTS idx_sprints_user_project
    ON sprints(user_id, project_id, completed_at);
"""


def _ts(moment: datetime) -> str:
    """Fixed-width ISO timestamp so string order matches time order."""
    return moment.isoformat(timespec="microseconds")


def _get_db_path() -> Path:
    """Return the database file path from config (or default)."""
    return _config_get_db_path()


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Open a connection and ensure the schema exists."""
    path = db_path or _get_db_path()
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.executescript(_SCHEMA)
    return conn


# ---------------------------------------------------------------------------
# Users & login codes
# ---------------------------------------------------------------------------


def _row_to_user(row: sqlite3.Row) -> User:
    """Convert a database row to a User model."""
    return User(
        id=row["id"],
        email=row["email"],
        created_at=datetime.fromisoformat(row["created_at"]),
        last_login_at=(
            datetime.fromisoformat(row["last_login_at"]) if row["last_login_at"] else None
        ),
    )


def get_user(conn: sqlite3.Connection, user_id: int) -> Optional[User]:
    """Fetch a single user by ID."""
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return _row_to_user(row) if row else None


def record_login(conn: sqlite3.Connection, email: str) -> User:
    """Create the user on first sign-in and stamp the login time."""
    now = _ts(datetime.now())
    conn.execute(
        """INSERT INTO users (email, created_at, last_login_at) VALUES (?, ?, ?)
           ON CONFLICT(email) DO UPDATE SET last_login_at = excluded.last_login_at""",
        (email, now, now),
    )
    conn.commit()
    row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
    return _row_to_user(row)


def save_login_code(conn: sqlite3.Connection, code: LoginCode) -> None:
    """Store the active code for an email, replacing any earlier one."""
    conn.execute(
        """INSERT INTO login_codes (email, code_hash, expires_at, attempts)
           VALUES (?, ?, ?, ?)
           ON CONFLICT(email) DO UPDATE SET
               code_hash = excluded.code_hash,
               expires_at = excluded.expires_at,
               attempts = excluded.attempts""",
        (code.email, code.code_hash, _ts(code.expires_at), code.attempts),
    )
    conn.commit()


def get_login_code(conn: sqlite3.Connection, email: str) -> Optional[LoginCode]:
    row = conn.execute("SELECT * FROM login_codes WHERE email = ?", (email,)).fetchone()
    if row is None:
        return None
    return LoginCode(
        email=row["email"],
        code_hash=row["code_hash"],
        expires_at=datetime.fromisoformat(row["expires_at"]),
        attempts=row["attempts"],
    )


def increment_code_attempts(conn: sqlite3.Connection, email: str) -> None:
    conn.execute("UPDATE login_codes SET attempts = attempts + 1 WHERE email = ?", (email,))
    conn.commit()


def delete_login_code(conn: sqlite3.Connection, email: str) -> None:
    conn.execute("DELETE FROM login_codes WHERE email = ?", (email,))
    conn.commit()


def revoke_session(
    conn: sqlite3.Connection,
    token_hash: str,
    expires_at: datetime,
    now: Optional[datetime] = None,
) -> None:
    """Remember a signed-out token until it would have expired anyway."""
    conn.execute(
        "INSERT OR REPLACE INTO revoked_sessions (token_hash, expires_at) VALUES (?, ?)",
        (token_hash, _ts(expires_at)),
    )
    conn.execute(
        "DELETE FROM revoked_sessions WHERE expires_at < ?", (_ts(now or datetime.now()),)
    )
    conn.commit()


def is_session_revoked(conn: sqlite3.Connection, token_hash: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM revoked_sessions WHERE token_hash = ?", (token_hash,)
    ).fetchone()
    return row is not None


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def _row_to_project(row: sqlite3.Row) -> Project:
    """Convert a database row to a Project model."""
    return Project(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _name_taken(
    conn: sqlite3.Connection, user_id: int, name: str, exclude_id: Optional[int] = None
) -> bool:
    """Case-insensitive duplicate check within one user's projects."""
    rows = conn.execute(
        "SELECT id, name FROM projects WHERE user_id = ?", (user_id,)
    ).fetchall()
    wanted = name.casefold()
    return any(r["name"].casefold() == wanted and r["id"] != exclude_id for r in rows)


def add_project(conn: sqlite3.Connection, user_id: int, project_in: ProjectCreate) -> Project:
    """Insert a new project; raises ConflictError on a duplicate name."""
    if _name_taken(conn, user_id, project_in.name):
        raise ConflictError(f'A project named "{project_in.name}" already exists.')
    now = _ts(datetime.now())
    cur = conn.execute(
        "INSERT INTO projects (user_id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
        (user_id, project_in.name, now, now),
    )
    conn.commit()
    row = conn.execute("SELECT * FROM projects WHERE id = ?", (cur.lastrowid,)).fetchone()
    return _row_to_project(row)


def get_project(conn: sqlite3.Connection, user_id: int, project_id: int) -> Optional[Project]:
    """Fetch one of a user's projects."""
    row = conn.execute(
        "SELECT * FROM projects WHERE id = ? AND user_id = ?", (project_id, user_id)
    ).fetchone()
    return _row_to_project(row) if row else None


def find_project(conn: sqlite3.Connection, user_id: int, name: str) -> Optional[Project]:
    """Look up a project by name, ignoring case."""
    wanted = name.strip().casefold()
    for project in list_projects(conn, user_id):
        if project.name.casefold() == wanted:
            return project
    return None


def list_projects(conn: sqlite3.Connection, user_id: int) -> list[Project]:
    """List a user's projects, newest first."""
    rows = conn.execute(
        "SELECT * FROM projects WHERE user_id = ? ORDER BY created_at DESC, id DESC",
        (user_id,),
    ).fetchall()
    return [_row_to_project(r) for r in rows]


def rename_project(
    conn: sqlite3.Connection, user_id: int, project_id: int, project_in: ProjectCreate
) -> Optional[Project]:
    """Rename a project; None if it does not exist for this user."""
    if get_project(conn, user_id, project_id) is None:
        return None
    if _name_taken(conn, user_id, project_in.name, exclude_id=project_id):
        raise ConflictError(f'A project named "{project_in.name}" already exists.')
    conn.execute(
        "UPDATE projects SET name = ?, updated_at = ? WHERE id = ? AND user_id = ?",
        (project_in.name, _ts(datetime.now()), project_id, user_id),
    )
    conn.commit()
    return get_project(conn, user_id, project_id)


def delete_project(conn: sqlite3.Connection, user_id: int, project_id: int) -> bool:
    """Delete a project. Its sprints are kept."""
    cur = conn.execute(
        "DELETE FROM projects WHERE id = ? AND user_id = ?", (project_id, user_id)
    )
    conn.commit()
    return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Sprints
# ---------------------------------------------------------------------------


def _row_to_sprint(row: sqlite3.Row) -> Sprint:
    """Convert a database row to a Sprint model."""
    return Sprint(
        id=row["id"],
        user_id=row["user_id"],
        project_id=row["project_id"],
        duration_seconds=row["duration_seconds"],
        started_at=datetime.fromisoformat(row["started_at"]),
        completed_at=datetime.fromisoformat(row["completed_at"]),
        mode=SprintMode(row["mode"]),
        notes=row["notes"],
    )


def add_sprint(conn: sqlite3.Connection, user_id: int, sprint_in: SprintCreate) -> Sprint:
    """Record a finished interval and return it as a model."""
    cur = conn.execute(
        """INSERT INTO sprints
               (user_id, project_id, duration_seconds, started_at, completed_at, mode, notes)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            user_id,
            sprint_in.project_id,
            sprint_in.duration_seconds,
            _ts(sprint_in.started_at),
            _ts(sprint_in.completed_at),
            sprint_in.mode.value,
            sprint_in.notes,
        ),
    )
    conn.commit()
    row = conn.execute("SELECT * FROM sprints WHERE id = ?", (cur.lastrowid,)).fetchone()
    return _row_to_sprint(row)


def get_sprint(conn: sqlite3.Connection, user_id: int, sprint_id: int) -> Optional[Sprint]:
    row = conn.execute(
        "SELECT * FROM sprints WHERE id = ? AND user_id = ?", (sprint_id, user_id)
    ).fetchone()
    return _row_to_sprint(row) if row else None


def list_sprints(
    conn: sqlite3.Connection,
    user_id: int,
    filters: Optional[SprintFilter] = None,
    limit: Optional[int] = None,
) -> list[Sprint]:
    """List a user's sprints, most recently completed first."""
    query = "SELECT * FROM sprints WHERE user_id = ?"
    params: list[str | int] = [user_id]
    if filters is not None:
        if filters.start is not None:
            query += " AND completed_at >= ?"
            params.append(_ts(filters.start))
        if filters.end is not None:
            query += " AND completed_at <= ?"
            params.append(_ts(filters.end))
        if filters.project_id is not None:
            query += " AND project_id = ?"
            params.append(filters.project_id)
    query += " ORDER BY completed_at DESC, id DESC"
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    rows = conn.execute(query, params).fetchall()
    return [_row_to_sprint(r) for r in rows]


def update_sprint(
    conn: sqlite3.Connection, user_id: int, sprint_id: int, changes: SprintUpdate
) -> Optional[Sprint]:
    """Apply note/duration edits. Only fields that were set are written."""
    if get_sprint(conn, user_id, sprint_id) is None:
        return None
    fields = changes.model_dump(exclude_unset=True)
    if fields.get("duration_seconds", 0) is None:
        del fields["duration_seconds"]
    if fields:
        assignments = ", ".join(f"{name} = ?" for name in fields)
        conn.execute(
            f"UPDATE sprints SET {assignments} WHERE id = ? AND user_id = ?",
            (*fields.values(), sprint_id, user_id),
        )
        conn.commit()
    return get_sprint(conn, user_id, sprint_id)


def delete_sprint(conn: sqlite3.Connection, user_id: int, sprint_id: int) -> bool:
    cur = conn.execute("DELETE FROM sprints WHERE id = ? AND user_id = ?", (sprint_id, user_id))
    conn.commit()
    return cur.rowcount > 0
