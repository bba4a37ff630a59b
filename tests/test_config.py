"""Tests for the config module."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from sprinttracker.config import (
    ENV_DB_PATH,
    ENV_SECRET,
    get_db_path,
    get_pending_path,
    get_session_secret,
    load_config,
    reset_db_path,
    save_config,
    set_db_path,
    set_session_token,
)
from sprinttracker.models import AppConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(ENV_DB_PATH, raising=False)
    monkeypatch.delenv(ENV_SECRET, raising=False)


def _patch_config_paths(tmp_path: Path):
    """Return context managers that redirect config and data dirs to tmp_path."""
    cfg_dir = tmp_path / "config"
    cfg_file = cfg_dir / "config.json"
    return (
        patch("sprinttracker.config._CONFIG_DIR", cfg_dir),
        patch("sprinttracker.config._CONFIG_FILE", cfg_file),
        patch("sprinttracker.config._DATA_DIR", tmp_path / "data"),
    )


class TestLoadSaveConfig:
    def test_load_default_when_missing(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            config = load_config()
            assert config.db_path is None
            assert config.log_level == "WARNING"

    def test_save_and_load_roundtrip(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            cfg = AppConfig(db_path="/tmp/test.db", smtp_host="mail.example.com")
            path = save_config(cfg)
            assert path.exists()

            loaded = load_config()
            assert loaded.db_path == "/tmp/test.db"
            assert loaded.smtp_host == "mail.example.com"

    def test_load_handles_corrupt_file(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            cfg_dir = tmp_path / "config"
            cfg_dir.mkdir(parents=True, exist_ok=True)
            (cfg_dir / "config.json").write_text("not valid json{{{")
            config = load_config()
            assert config.db_path is None  # falls back to default


class TestDbPath:
    def test_default_path(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            path = get_db_path()
            assert path == tmp_path / "data" / "sprinttracker.db"

    def test_env_overrides_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            set_db_path(str(tmp_path / "configured.db"))
            monkeypatch.setenv(ENV_DB_PATH, str(tmp_path / "env" / "env.db"))
            assert get_db_path() == tmp_path / "env" / "env.db"

    def test_set_db_path(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            custom = tmp_path / "custom" / "my.db"
            cfg = set_db_path(str(custom))
            assert cfg.db_path == str(custom)
            assert get_db_path() == custom

    def test_set_db_path_directory(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            d = tmp_path / "somedir"
            d.mkdir()
            cfg = set_db_path(str(d))
            assert cfg.db_path is not None
            assert cfg.db_path.endswith("sprinttracker.db")

    def test_reset_db_path(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            set_db_path(str(tmp_path / "custom.db"))
            cfg = reset_db_path()
            assert cfg.db_path is None

    def test_pending_file_sits_beside_database(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            set_db_path(str(tmp_path / "custom" / "my.db"))
            assert get_pending_path() == tmp_path / "custom" / "pending.jsonl"


class TestSession:
    def test_secret_generated_once(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            first = get_session_secret()
            assert len(first) >= 32
            assert get_session_secret() == first

    def test_secret_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            monkeypatch.setenv(ENV_SECRET, "from-env")
            assert get_session_secret() == "from-env"
            assert load_config().session_secret is None

    def test_store_and_forget_token(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            set_session_token("abc")
            assert load_config().session_token == "abc"
            set_session_token(None)
            assert load_config().session_token is None
