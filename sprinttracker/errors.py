"""Domain errors shared by the services, the CLI and the HTTP layer."""

from __future__ import annotations


class SprintTrackerError(Exception):
    """Base class for all expected, user-facing failures."""

    status_code = 400


class UnauthorizedError(SprintTrackerError):
    """No session, an expired session, or a bad one-time code."""

    status_code = 401


class NotFoundError(SprintTrackerError):
    """The entity does not exist or belongs to another user."""

    status_code = 404


class ConflictError(SprintTrackerError):
    """The change clashes with existing data (e.g. a duplicate project name)."""

    status_code = 409


class TimerError(SprintTrackerError):
    """A timer operation was attempted from a state that does not allow it."""

    status_code = 409


class PersistenceError(SprintTrackerError):
    """A transient storage or delivery failure; the action may be retried."""

    status_code = 503
