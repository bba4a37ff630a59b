"""Email one-time-code sign-in and signed session tokens."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import smtplib
import sqlite3
from datetime import datetime, timedelta
from email.message import EmailMessage
from typing import Callable, Optional, Protocol

from sprinttracker import db
from sprinttracker.errors import PersistenceError, UnauthorizedError
from sprinttracker.models import LoginCode, Session, SignInRequest, User, VerifyRequest

log = logging.getLogger(__name__)

CODE_TTL = timedelta(minutes=10)
SESSION_TTL = timedelta(days=30)
MAX_CODE_ATTEMPTS = 5


def hash_code(email: str, code: str) -> str:
    """Hash of an email/code pair; the plain code is never stored."""
    digest = hashlib.sha256(f"{email}:{code}".encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def generate_code() -> str:
    """A random six-digit code."""
    return str(100000 + secrets.randbelow(900000))


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def _signature(payload: str, secret: str) -> str:
    mac = hmac.new(secret.encode(), payload.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(mac).rstrip(b"=").decode()


def create_session_token(user_id: int, secret: str, expires_at: datetime) -> str:
    """Token of the form ``<user_id>.<expiry>.<signature>``."""
    payload = f"{user_id}.{int(expires_at.timestamp())}"
    return f"{payload}.{_signature(payload, secret)}"


def read_session_token(token: str, secret: str, now: datetime) -> Optional[tuple[int, datetime]]:
    """Return (user_id, expires_at) for a genuine, unexpired token, else None."""
    try:
        payload, signature = token.rsplit(".", 1)
        user_part, expiry_part = payload.split(".")
        user_id, expiry = int(user_part), int(expiry_part)
    except ValueError:
        return None
    if not hmac.compare_digest(signature, _signature(payload, secret)):
        return None
    expires_at = datetime.fromtimestamp(expiry)
    if expires_at <= now:
        return None
    return user_id, expires_at


def token_fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Mail delivery
# ---------------------------------------------------------------------------


class Mailer(Protocol):
    def send_code(self, email: str, code: str) -> None: ...


class ConsoleMailer:
    """Logs codes instead of mailing them (local use and development)."""

    def send_code(self, email: str, code: str) -> None:
        log.warning("Sign-in code for %s: %s", email, code)


class SmtpMailer:
    """Sends codes through an SMTP relay with STARTTLS."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        sender: str = "sprint-tracker@localhost",
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password

    def send_code(self, email: str, code: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = email
        message["Subject"] = "Your Sprint Tracker sign-in code"
        message.set_content(f"Your code is {code}")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
                smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise PersistenceError("Could not send the sign-in code. Try again.") from exc


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class AuthService:
    """Issues and checks one-time codes; mints and validates sessions."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        secret: str,
        mailer: Optional[Mailer] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.conn = conn
        self.secret = secret
        self.mailer = mailer or ConsoleMailer()
        self.clock = clock

    def request_code(self, email: str) -> None:
        """Email a fresh code; any earlier code for this address stops working."""
        request = SignInRequest(email=email)
        address = request.email.lower()
        code = generate_code()
        db.save_login_code(
            self.conn,
            LoginCode(
                email=address,
                code_hash=hash_code(address, code),
                expires_at=self.clock() + CODE_TTL,
            ),
        )
        self.mailer.send_code(address, code)
        log.info("Issued sign-in code for %s", address)

    def verify_code(self, email: str, code: str) -> Session:
        """Exchange a valid code for a session; the code is consumed."""
        request = VerifyRequest(email=email, code=code)
        address = request.email.lower()
        record = db.get_login_code(self.conn, address)
        if record is None or record.expires_at < self.clock():
            raise UnauthorizedError("Invalid or expired code.")
        if record.attempts >= MAX_CODE_ATTEMPTS:
            db.delete_login_code(self.conn, address)
            raise UnauthorizedError("Too many attempts. Request a new code.")
        if not hmac.compare_digest(record.code_hash, hash_code(address, request.code)):
            db.increment_code_attempts(self.conn, address)
            raise UnauthorizedError("Invalid code.")

        user = db.record_login(self.conn, address)
        db.delete_login_code(self.conn, address)
        expires_at = self.clock() + SESSION_TTL
        log.info("User %s signed in", user.id)
        return Session(
            user_id=user.id,
            email=user.email,
            token=create_session_token(user.id, self.secret, expires_at),
            expires_at=expires_at,
        )

    def get_current_session(self, token: Optional[str]) -> Optional[Session]:
        """Resolve a token to its session, or None if it is not valid."""
        if not token:
            return None
        parsed = read_session_token(token, self.secret, self.clock())
        if parsed is None or db.is_session_revoked(self.conn, token_fingerprint(token)):
            return None
        user_id, expires_at = parsed
        user = db.get_user(self.conn, user_id)
        if user is None:
            return None
        return Session(user_id=user.id, email=user.email, token=token, expires_at=expires_at)

    def get_current_user(self, token: Optional[str]) -> Optional[User]:
        session = self.get_current_session(token)
        return db.get_user(self.conn, session.user_id) if session else None

    def require_session(self, token: Optional[str]) -> Session:
        session = self.get_current_session(token)
        if session is None:
            raise UnauthorizedError("Sign in to continue.")
        return session

    def sign_out(self, token: Optional[str]) -> None:
        """Revoke a token. Unknown or already-invalid tokens are ignored."""
        session = self.get_current_session(token)
        if session is None:
            return
        db.revoke_session(
            self.conn, token_fingerprint(session.token), session.expires_at, now=self.clock()
        )
        log.info("User %s signed out", session.user_id)
