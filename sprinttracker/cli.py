"""Sprint Tracker CLI -- time focused work against projects."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import NoReturn, Optional

import typer
from pydantic import ValidationError

from sprinttracker import config as cfg
from sprinttracker import db, display
from sprinttracker.auth import AuthService, ConsoleMailer, Mailer, SmtpMailer
from sprinttracker.charts import render_chart, summarize
from sprinttracker.errors import SprintTrackerError, UnauthorizedError
from sprinttracker.formatting import format_duration, format_sprint_id, parse_time_input
from sprinttracker.models import (
    NOTES_MAX,
    Project,
    Session,
    SprintUpdate,
    TimePeriod,
    TimerMode,
)
from sprinttracker.recorder import PendingBuffer, RecordResult, SprintRecorder
from sprinttracker.services import ProjectService, SprintService
from sprinttracker.timer import SprintTimer, run_timer

app = typer.Typer(
    name="sprinttracker",
    help="Time focused work against your projects and see where it went.",
    no_args_is_help=True,
)
project_app = typer.Typer(help="Manage projects.", no_args_is_help=True)
app.add_typer(project_app, name="project")


def _now() -> datetime:
    return datetime.now()


def _conn() -> sqlite3.Connection:
    """Get a database connection (convenience wrapper)."""
    return db.get_connection()


def _mailer() -> Mailer:
    config = cfg.load_config()
    if config.smtp_host:
        return SmtpMailer(config.smtp_host, config.smtp_port, sender=config.email_from)
    return ConsoleMailer()


def _auth(conn: sqlite3.Connection) -> AuthService:
    return AuthService(conn, cfg.get_session_secret(), _mailer())


def _session(conn: sqlite3.Connection) -> Session:
    """The signed-in session, or exit with a hint to sign in."""
    token = cfg.load_config().session_token
    try:
        return _auth(conn).require_session(token)
    except UnauthorizedError:
        display.print_warning("Not signed in. Run: sprinttracker signin EMAIL")
        conn.close()
        raise typer.Exit(1)


def _fail(conn: sqlite3.Connection, message: str) -> NoReturn:
    display.print_warning(message)
    conn.close()
    raise typer.Exit(1)


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(err["msg"] for err in exc.errors())


def _resolve_project(
    conn: sqlite3.Connection, session: Session, name: Optional[str]
) -> Optional[Project]:
    if name is None:
        return None
    project = db.find_project(conn, session.user_id, name)
    if project is None:
        _fail(conn, f'Project "{name}" not found.')
    return project


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Time focused work against your projects and see where it went."""
    display.setup_logging("DEBUG" if verbose else cfg.load_config().log_level)


# ---------------------------------------------------------------------------
# Sign-in
# ---------------------------------------------------------------------------


@app.command()
def signin(email: str = typer.Argument(..., help="Your email address")) -> None:
    """Sign in with a one-time code sent to your email."""
    conn = _conn()
    auth = _auth(conn)
    try:
        auth.request_code(email)
    except ValidationError:
        _fail(conn, f"'{email}' does not look like an email address.")
    except SprintTrackerError as exc:
        _fail(conn, str(exc))

    display.print_info(f"A 6-digit code was sent to {email}. It expires in 10 minutes.")
    code = typer.prompt("Code")
    try:
        session = auth.verify_code(email, code.strip())
    except ValidationError:
        _fail(conn, "Codes are 6 digits.")
    except SprintTrackerError as exc:
        _fail(conn, str(exc))

    cfg.set_session_token(session.token)
    display.print_success(f"Signed in as {session.email}.")
    conn.close()


@app.command()
def signout() -> None:
    """Sign out and forget the stored session."""
    conn = _conn()
    _auth(conn).sign_out(cfg.load_config().session_token)
    cfg.set_session_token(None)
    display.print_success("Signed out.")
    conn.close()


@app.command()
def whoami() -> None:
    """Show who is signed in."""
    conn = _conn()
    session = _session(conn)
    display.print_info(f"Signed in as {session.email} until {session.expires_at:%Y-%m-%d}.")
    conn.close()


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@project_app.command("add")
def project_add(name: str = typer.Argument(..., help="Project name")) -> None:
    """Create a project."""
    conn = _conn()
    session = _session(conn)
    try:
        project = ProjectService(conn).create(session, name)
    except ValidationError as exc:
        _fail(conn, _validation_message(exc))
    except SprintTrackerError as exc:
        _fail(conn, str(exc))
    display.print_success(f"Added project #{project.id}: {project.name}")
    conn.close()


@project_app.command("list")
def project_list() -> None:
    """List your projects."""
    conn = _conn()
    session = _session(conn)
    display.print_project_list(ProjectService(conn).list(session))
    conn.close()


@project_app.command("rename")
def project_rename(
    project_id: int = typer.Argument(..., help="ID of the project"),
    name: str = typer.Argument(..., help="New name"),
) -> None:
    """Rename a project."""
    conn = _conn()
    session = _session(conn)
    try:
        project = ProjectService(conn).rename(session, project_id, name)
    except ValidationError as exc:
        _fail(conn, _validation_message(exc))
    except SprintTrackerError as exc:
        _fail(conn, str(exc))
    display.print_success(f"Renamed project #{project.id} to {project.name}")
    conn.close()


@project_app.command("delete")
def project_delete(
    project_id: int = typer.Argument(..., help="ID of the project"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a project. Its recorded sprints are kept."""
    conn = _conn()
    session = _session(conn)
    projects = ProjectService(conn)
    try:
        project = projects.get(session, project_id)
    except SprintTrackerError as exc:
        _fail(conn, str(exc))
    if not yes:
        typer.confirm(f'Delete "{project.name}"?', default=False, abort=True)
    projects.delete(session, project_id)
    display.print_success(f'"{project.name}" has been deleted.')
    conn.close()


# ---------------------------------------------------------------------------
# Timer
# ---------------------------------------------------------------------------


def _report(result: Optional[RecordResult]) -> None:
    if result is None or (not result.saved and result.error is None):
        display.print_info("Nothing recorded.")
    elif result.saved:
        sprint = result.sprint
        display.print_success(
            f"Recorded {format_sprint_id(sprint.id)}: {format_duration(sprint.duration_seconds)}"
        )
    elif result.buffered:
        display.print_warning(
            f"Could not save the sprint ({result.error}). "
            "It is kept locally; run: sprinttracker sync"
        )
    else:
        display.print_warning(f"Could not save the sprint: {result.error}")


@app.command()
def start(
    project_name: str = typer.Option(
        ..., "--project", "-p", help="Project to track (created if new)"
    ),
    mode: TimerMode = typer.Option(TimerMode.MINUTES_15, "--mode", "-m", help="Timer mode"),
    duration: Optional[str] = typer.Option(
        None, "--duration", "-d", help='Custom countdown, e.g. "1h 30m" (implies --mode custom)'
    ),
    notes: str = typer.Option("", "--notes", "-n", help="What you are working on"),
) -> None:
    """Start a countdown or stopwatch. Ctrl-C stops it and records the sprint."""
    conn = _conn()
    session = _session(conn)
    sprints = SprintService(conn)
    buffer = PendingBuffer(cfg.get_pending_path())
    if len(notes.strip()) > NOTES_MAX:
        _fail(conn, f"Notes are limited to {NOTES_MAX} characters.")

    try:
        project = ProjectService(conn).get_or_create(session, project_name)
    except ValidationError as exc:
        _fail(conn, _validation_message(exc))
    except SprintTrackerError as exc:
        _fail(conn, str(exc))

    recorder = SprintRecorder(sprints, session, buffer=buffer, project=project)
    recorder.notes = notes
    recorder.flush_pending()

    timer = SprintTimer(mode, clock=_now, on_complete=recorder, project_name=project.name)
    if duration is not None or mode is TimerMode.CUSTOM:
        try:
            timer.set_custom_target(duration or "")
        except ValueError:
            _fail(conn, f'Could not read a duration from "{duration or ""}". Try "1h 30m".')

    if timer.mode.is_countdown:
        display.print_info(f"{project.name}: {format_duration(timer.target_time)} countdown.")
    else:
        display.print_info(f"{project.name}: stopwatch running. Ctrl-C to stop.")

    run_timer(timer, label=project.name)
    _report(recorder.last_result)
    conn.close()


@app.command()
def sync() -> None:
    """Retry saving sprints that could not be recorded earlier."""
    conn = _conn()
    session = _session(conn)
    buffer = PendingBuffer(cfg.get_pending_path())
    recorder = SprintRecorder(SprintService(conn), session, buffer=buffer)
    saved = recorder.flush_pending()
    left = buffer.count(session.user_id)
    if saved:
        display.print_success(f"Saved {len(saved)} pending sprint{'s' if len(saved) != 1 else ''}.")
    if left:
        display.print_warning(f"{left} sprint{'s' if left != 1 else ''} still pending.")
    if not saved and not left:
        display.print_info("Nothing pending.")
    conn.close()


# ---------------------------------------------------------------------------
# Sprints & analytics
# ---------------------------------------------------------------------------


@app.command(name="sprints")
def list_sprints(
    period: TimePeriod = typer.Option(TimePeriod.THIS_WEEK, "--period", help="Time period"),
    project_name: Optional[str] = typer.Option(None, "--project", "-p", help="Only this project"),
) -> None:
    """List recorded sprints."""
    conn = _conn()
    session = _session(conn)
    project = _resolve_project(conn, session, project_name)
    sprints = SprintService(conn).list(session, period=period, now=_now())
    if project is not None:
        sprints = [s for s in sprints if s.project_id == project.id]
    display.print_sprint_list(sprints, ProjectService(conn).list(session))
    conn.close()


@app.command()
def edit(
    sprint_id: int = typer.Argument(..., help="ID of the sprint"),
    duration: Optional[str] = typer.Option(None, "--duration", "-d", help='New duration, e.g. "45m"'),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="New notes (empty clears)"),
) -> None:
    """Edit a sprint's duration or notes."""
    conn = _conn()
    session = _session(conn)
    fields: dict = {}
    if duration is not None:
        seconds = parse_time_input(duration)
        if seconds <= 0:
            _fail(conn, "Please enter a valid duration.")
        fields["duration_seconds"] = seconds
    if notes is not None:
        fields["notes"] = notes
    try:
        sprint = SprintService(conn).update(session, sprint_id, SprintUpdate(**fields))
    except ValidationError as exc:
        _fail(conn, _validation_message(exc))
    except SprintTrackerError as exc:
        _fail(conn, str(exc))
    display.print_success(
        f"Updated {format_sprint_id(sprint.id)}: {format_duration(sprint.duration_seconds)}"
    )
    conn.close()


@app.command(name="delete")
def delete_sprint(sprint_id: int = typer.Argument(..., help="ID of the sprint")) -> None:
    """Delete a sprint."""
    conn = _conn()
    session = _session(conn)
    try:
        SprintService(conn).delete(session, sprint_id)
    except SprintTrackerError as exc:
        _fail(conn, str(exc))
    display.print_success(f"{format_sprint_id(sprint_id)} has been deleted.")
    conn.close()


@app.command()
def stats(
    period: TimePeriod = typer.Option(TimePeriod.THIS_WEEK, "--period", help="Time period"),
    project_name: Optional[str] = typer.Option(None, "--project", "-p", help="Only this project"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Also save the chart as PNG"),
) -> None:
    """Show time spent, average sprint and a chart for a period."""
    conn = _conn()
    session = _session(conn)
    project = _resolve_project(conn, session, project_name)
    now = _now()
    summary = summarize(
        SprintService(conn).list(session, period=period, now=now),
        period,
        ProjectService(conn).list(session),
        project_id=project.id if project else None,
        now=now,
    )
    display.print_metrics(summary.metrics, period, scope=project.name if project else "All Projects")
    display.print_chart(summary.chart)
    if out:
        render_chart(summary.chart).save(out)
        display.print_success(f"Chart saved to {out}")
    conn.close()


@app.command()
def chart(
    out: str = typer.Argument("sprint-chart.png", help="PNG file to write"),
    period: TimePeriod = typer.Option(TimePeriod.THIS_WEEK, "--period", help="Time period"),
    project_name: Optional[str] = typer.Option(None, "--project", "-p", help="Only this project"),
) -> None:
    """Save the time-spent chart for a period as a PNG image."""
    conn = _conn()
    session = _session(conn)
    project = _resolve_project(conn, session, project_name)
    now = _now()
    summary = summarize(
        SprintService(conn).list(session, period=period, now=now),
        period,
        ProjectService(conn).list(session),
        project_id=project.id if project else None,
        now=now,
    )
    title = f"{project.name if project else 'All Projects'} · {display.period_label(period)}"
    render_chart(summary.chart, title=title).save(out)
    display.print_success(f"Chart saved to {out}")
    conn.close()


# ---------------------------------------------------------------------------
# Configuration & server
# ---------------------------------------------------------------------------


@app.command()
def config(
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Set a custom database file path"),
    smtp_host: Optional[str] = typer.Option(None, "--smtp-host", help="SMTP relay for sign-in codes"),
    reset: bool = typer.Option(False, "--reset", help="Reset to default local DB"),
    show: bool = typer.Option(False, "--show", help="Show current config"),
) -> None:
    """Configure where data is stored and how codes are sent."""
    if db_path:
        result = cfg.set_db_path(db_path)
        display.print_success(f"Database path set to: {result.db_path}")
    elif smtp_host:
        current = cfg.load_config()
        current.smtp_host = smtp_host
        cfg.save_config(current)
        display.print_success(f"Sign-in codes will be sent via {smtp_host}.")
    elif reset:
        cfg.reset_db_path()
        display.print_success("Reset to default local database.")
    elif show:
        current = cfg.load_config()
        resolved = cfg.get_db_path()
        if current.db_path:
            display.print_info(f"Database: {current.db_path}")
        else:
            display.print_info(f"Database: {resolved} (default)")
        display.print_info(f"Sign-in codes: {current.smtp_host or 'logged to console'}")
    else:
        display.print_info("Use --db-path, --smtp-host, --reset, or --show.")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", help="Port to listen on"),
    insecure_cookies: bool = typer.Option(
        False, "--insecure-cookies", help="Allow the session cookie over plain HTTP"
    ),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    from sprinttracker.web import create_app

    uvicorn.run(create_app(cookie_secure=not insecure_cookies), host=host, port=port)
