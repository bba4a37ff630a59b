"""FastAPI application: JSON API, session cookie handling and page redirects."""

from __future__ import annotations

import io
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from pydantic import ValidationError

from sprinttracker import config as cfg
from sprinttracker import db
from sprinttracker.auth import SESSION_TTL, AuthService, ConsoleMailer, Mailer, SmtpMailer
from sprinttracker.charts import render_chart, summarize
from sprinttracker.errors import SprintTrackerError
from sprinttracker.events import EventBus
from sprinttracker.models import (
    AnalyticsSummary,
    ProjectCreate,
    Session,
    SignInRequest,
    SprintFilter,
    SprintUpdate,
    TimePeriod,
    VerifyRequest,
)
from sprinttracker.services import ProjectService, SprintService

log = logging.getLogger(__name__)

COOKIE_NAME = "st_session"
AUTH_PAGE = "/auth"

_HOME_HTML = """<!doctype html>
<title>Sprint Tracker</title>
<h1>Sprint Tracker</h1>
<p>Signed in. Use the <code>/api</code> endpoints or the <code>sprinttracker</code> CLI.</p>
"""

_AUTH_HTML = """<!doctype html>
<title>Sprint Tracker · Sign in</title>
<h1>Sign in</h1>
<p>POST your email to <code>/api/auth/signin</code>, then the emailed code to
<code>/api/auth/verify-signin</code>.</p>
"""


def _default_mailer() -> Mailer:
    config = cfg.load_config()
    if config.smtp_host:
        return SmtpMailer(config.smtp_host, config.smtp_port, sender=config.email_from)
    return ConsoleMailer()


def create_app(
    db_path: Optional[Path] = None,
    secret: Optional[str] = None,
    mailer: Optional[Mailer] = None,
    cookie_secure: bool = True,
) -> FastAPI:
    """Build the application. Arguments default to the user's configuration."""
    app = FastAPI(title="Sprint Tracker")
    app.state.db_path = db_path or cfg.get_db_path()
    app.state.secret = secret or cfg.get_session_secret()
    app.state.mailer = mailer or _default_mailer()
    app.state.bus = EventBus()
    app.state.cookie_secure = cookie_secure

    # -- dependencies -----------------------------------------------------

    def get_conn(request: Request) -> Iterator[sqlite3.Connection]:
        conn = db.get_connection(request.app.state.db_path)
        try:
            yield conn
        finally:
            conn.close()

    def get_auth(request: Request, conn: sqlite3.Connection = Depends(get_conn)) -> AuthService:
        return AuthService(conn, request.app.state.secret, request.app.state.mailer)

    def get_session(request: Request, auth: AuthService = Depends(get_auth)) -> Session:
        return auth.require_session(_request_token(request))

    def get_projects(request: Request, conn: sqlite3.Connection = Depends(get_conn)) -> ProjectService:
        return ProjectService(conn, request.app.state.bus)

    def get_sprints(request: Request, conn: sqlite3.Connection = Depends(get_conn)) -> SprintService:
        return SprintService(conn, request.app.state.bus)

    # -- error mapping ----------------------------------------------------

    @app.exception_handler(SprintTrackerError)
    async def _domain_error(request: Request, exc: SprintTrackerError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        message = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
            for err in exc.errors()
        )
        return JSONResponse({"error": message}, status_code=422)

    # -- page redirects ---------------------------------------------------

    @app.middleware("http")
    async def _redirect_pages(request: Request, call_next):
        path = request.url.path
        if path.startswith("/api") or path.startswith("/docs") or path == "/openapi.json":
            return await call_next(request)
        conn = db.get_connection(request.app.state.db_path)
        try:
            auth = AuthService(conn, request.app.state.secret, request.app.state.mailer)
            signed_in = auth.get_current_session(_request_token(request)) is not None
        finally:
            conn.close()
        on_auth_page = path.startswith(AUTH_PAGE)
        if not signed_in and not on_auth_page:
            return RedirectResponse(AUTH_PAGE, status_code=307)
        if signed_in and on_auth_page:
            return RedirectResponse("/", status_code=307)
        return await call_next(request)

    @app.get("/", response_class=HTMLResponse)
    def home() -> str:
        return _HOME_HTML

    @app.get(AUTH_PAGE, response_class=HTMLResponse)
    def auth_page() -> str:
        return _AUTH_HTML

    # -- auth -------------------------------------------------------------

    @app.post("/api/auth/signin")
    def signin(body: SignInRequest, auth: AuthService = Depends(get_auth)) -> dict[str, Any]:
        auth.request_code(body.email)
        return {"ok": True}

    @app.post("/api/auth/verify-signin")
    def verify_signin(
        body: VerifyRequest, request: Request, auth: AuthService = Depends(get_auth)
    ) -> JSONResponse:
        session = auth.verify_code(body.email, body.code)
        response = JSONResponse(
            {"ok": True, "user": {"id": session.user_id, "email": session.email}}
        )
        response.set_cookie(
            COOKIE_NAME,
            session.token,
            max_age=int(SESSION_TTL.total_seconds()),
            httponly=True,
            secure=request.app.state.cookie_secure,
            samesite="lax",
            path="/",
        )
        return response

    @app.get("/api/auth/session")
    def current_session(request: Request, auth: AuthService = Depends(get_auth)) -> dict[str, Any]:
        user = auth.get_current_user(_request_token(request))
        return {"user": {"id": user.id, "email": user.email} if user else None}

    @app.post("/api/auth/signout")
    def signout(request: Request, auth: AuthService = Depends(get_auth)) -> JSONResponse:
        auth.sign_out(_request_token(request))
        response = JSONResponse({"ok": True})
        response.delete_cookie(
            COOKIE_NAME,
            path="/",
            httponly=True,
            secure=request.app.state.cookie_secure,
            samesite="lax",
        )
        return response

    # -- projects ---------------------------------------------------------

    @app.get("/api/projects")
    def list_projects(
        session: Session = Depends(get_session), projects: ProjectService = Depends(get_projects)
    ) -> dict[str, Any]:
        return {"items": projects.list(session)}

    @app.post("/api/projects", status_code=201)
    def create_project(
        body: ProjectCreate,
        session: Session = Depends(get_session),
        projects: ProjectService = Depends(get_projects),
    ) -> dict[str, Any]:
        return {"item": projects.create(session, body.name)}

    @app.patch("/api/projects/{project_id}")
    def rename_project(
        project_id: int,
        body: ProjectCreate,
        session: Session = Depends(get_session),
        projects: ProjectService = Depends(get_projects),
    ) -> dict[str, Any]:
        return {"item": projects.rename(session, project_id, body.name)}

    @app.delete("/api/projects/{project_id}")
    def delete_project(
        project_id: int,
        session: Session = Depends(get_session),
        projects: ProjectService = Depends(get_projects),
    ) -> dict[str, Any]:
        projects.delete(session, project_id)
        return {"ok": True}

    # -- sprints ----------------------------------------------------------

    @app.get("/api/sprints")
    def list_sprints(
        period: Optional[TimePeriod] = None,
        project_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = Query(500, ge=1, le=5000),
        session: Session = Depends(get_session),
        sprints: SprintService = Depends(get_sprints),
    ) -> dict[str, Any]:
        filters = SprintFilter(start=start, end=end, project_id=project_id)
        return {"items": sprints.list(session, filters, period=period, limit=limit)}

    @app.post("/api/sprints", status_code=201)
    def create_sprint(
        body: dict[str, Any] = Body(...),
        session: Session = Depends(get_session),
        sprints: SprintService = Depends(get_sprints),
    ) -> dict[str, Any]:
        return {"item": sprints.create(session, body)}

    @app.patch("/api/sprints/{sprint_id}")
    def update_sprint(
        sprint_id: int,
        body: SprintUpdate,
        session: Session = Depends(get_session),
        sprints: SprintService = Depends(get_sprints),
    ) -> dict[str, Any]:
        return {"item": sprints.update(session, sprint_id, body)}

    @app.delete("/api/sprints/{sprint_id}")
    def delete_sprint(
        sprint_id: int,
        session: Session = Depends(get_session),
        sprints: SprintService = Depends(get_sprints),
    ) -> dict[str, Any]:
        sprints.delete(session, sprint_id)
        return {"ok": True}

    # -- analytics --------------------------------------------------------

    def _summary(
        period: TimePeriod,
        project_id: Optional[int],
        session: Session,
        projects: ProjectService,
        sprints: SprintService,
    ) -> AnalyticsSummary:
        now = datetime.now()
        return summarize(
            sprints.list(session, period=period, now=now),
            period,
            projects.list(session),
            project_id=project_id,
            now=now,
        )

    @app.get("/api/analytics")
    def analytics(
        period: TimePeriod = TimePeriod.TODAY,
        project_id: Optional[int] = None,
        session: Session = Depends(get_session),
        projects: ProjectService = Depends(get_projects),
        sprints: SprintService = Depends(get_sprints),
    ) -> AnalyticsSummary:
        return _summary(period, project_id, session, projects, sprints)

    @app.get("/api/analytics/chart.png")
    def analytics_chart(
        period: TimePeriod = TimePeriod.TODAY,
        project_id: Optional[int] = None,
        session: Session = Depends(get_session),
        projects: ProjectService = Depends(get_projects),
        sprints: SprintService = Depends(get_sprints),
    ) -> Response:
        summary = _summary(period, project_id, session, projects, sprints)
        buf = io.BytesIO()
        render_chart(summary.chart).save(buf, format="PNG")
        return Response(buf.getvalue(), media_type="image/png")

    return app


def _request_token(request: Request) -> Optional[str]:
    """Session token from the cookie, or from an ``Authorization: Bearer`` header."""
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get(COOKIE_NAME)
