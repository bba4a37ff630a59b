"""Shared fixtures: a temporary database, signed-in sessions and a fake clock."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator

import pytest

from sprinttracker import db
from sprinttracker.models import Session


class FakeClock:
    """Manually advanced stand-in for ``datetime.now``."""

    def __init__(self, start: datetime = datetime(2024, 3, 13, 10, 0, 0)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_session(conn: sqlite3.Connection, email: str) -> Session:
    user = db.record_login(conn, email)
    return Session(
        user_id=user.id,
        email=user.email,
        token=f"test-token-{user.id}",
        expires_at=datetime.now() + timedelta(days=1),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def conn(tmp_path: Path) -> Iterator[sqlite3.Connection]:
    """Provide a fresh database connection for each test."""
    connection = db.get_connection(tmp_path / "test.db")
    yield connection
    connection.close()


@pytest.fixture
def session(conn: sqlite3.Connection) -> Session:
    return make_session(conn, "ada@example.com")


@pytest.fixture
def other_session(conn: sqlite3.Connection) -> Session:
    return make_session(conn, "grace@example.com")
