"""Application configuration management."""

from __future__ import annotations

import json
import logging
import os
import secrets
from pathlib import Path

from pydantic import ValidationError

from sprinttracker.models import AppConfig

log = logging.getLogger(__name__)

_CONFIG_DIR = Path.home() / ".config" / "sprinttracker"
_DATA_DIR = Path.home() / ".local" / "share" / "sprinttracker"
_CONFIG_FILE = _CONFIG_DIR / "config.json"

ENV_DB_PATH = "SPRINTTRACKER_DB"
ENV_SECRET = "SPRINTTRACKER_SECRET"


def load_config() -> AppConfig:
    """Load config from disk, returning defaults if none exists."""
    if _CONFIG_FILE.exists():
        try:
            data = json.loads(_CONFIG_FILE.read_text())
            return AppConfig(**data)
        except (json.JSONDecodeError, TypeError, ValidationError):
            log.warning("Ignoring unreadable config file %s", _CONFIG_FILE)
    return AppConfig()


def save_config(config: AppConfig) -> Path:
    """Write config to disk. Returns the config file path."""
    _CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    _CONFIG_FILE.write_text(config.model_dump_json(indent=2))
    return _CONFIG_FILE


def get_data_dir() -> Path:
    """Directory holding the default database and the pending-sprint buffer."""
    _DATA_DIR.mkdir(parents=True, exist_ok=True)
    return _DATA_DIR


def get_db_path() -> Path:
    """Resolve the database path from the environment, config, or default."""
    env_path = os.environ.get(ENV_DB_PATH)
    if env_path:
        p = Path(env_path).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    config = load_config()
    if config.db_path is not None:
        p = Path(config.db_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    return get_data_dir() / "sprinttracker.db"


def set_db_path(path: str) -> AppConfig:
    """Set a custom database path and save config."""
    resolved = Path(path).expanduser().resolve()
    # Ensure it ends with a filename
    if resolved.is_dir():
        resolved = resolved / "sprinttracker.db"
    resolved.parent.mkdir(parents=True, exist_ok=True)
    config = load_config()
    config.db_path = str(resolved)
    save_config(config)
    return config


def reset_db_path() -> AppConfig:
    """Reset to the default local database path."""
    config = load_config()
    config.db_path = None
    save_config(config)
    return config


def get_pending_path() -> Path:
    """JSON-lines file where sprints that failed to save wait for a retry."""
    return get_db_path().parent / "pending.jsonl"


def get_session_secret() -> str:
    """Return the session signing secret, generating and saving one if needed."""
    env_secret = os.environ.get(ENV_SECRET)
    if env_secret:
        return env_secret
    config = load_config()
    if config.session_secret is None:
        config.session_secret = secrets.token_urlsafe(32)
        save_config(config)
        log.info("Generated a new session secret in %s", _CONFIG_FILE)
    return config.session_secret


def set_session_token(token: str | None) -> AppConfig:
    """Remember (or forget, with None) the CLI's signed-in session token."""
    config = load_config()
    config.session_token = token
    save_config(config)
    return config
