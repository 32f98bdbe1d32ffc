"""Tests for config module."""

from pathlib import Path

import pytest

from knowsys_mcp.config import Config

ENV_VARS = (
    "KNOWSYS_ROOT",
    "KNOWSYS_BACKEND",
    "KNOWSYS_INDEX",
    "KNOWSYS_DEFAULT_LIMIT",
    "KNOWSYS_ARCHIVE_DAYS",
    "KNOWSYS_VERIFY_SOURCES",
    "KNOWSYS_READ_ONLY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_config_defaults():
    """Test config loads with defaults when no env vars set."""
    config = Config.from_env()
    assert config.root == Path(".aiknowsys").absolute()
    assert config.backend == "json"
    assert config.index_path == config.root / "context-index.json"
    assert config.default_limit == 20
    assert config.archive_days == 30
    assert config.verify_sources is True
    assert config.read_only is False


def test_config_from_env(monkeypatch):
    """Test config loads from environment variables."""
    monkeypatch.setenv("KNOWSYS_ROOT", "/custom/knowsys")
    monkeypatch.setenv("KNOWSYS_BACKEND", "sqlite")
    monkeypatch.setenv("KNOWSYS_INDEX", "/custom/db.sqlite")
    monkeypatch.setenv("KNOWSYS_DEFAULT_LIMIT", "50")
    monkeypatch.setenv("KNOWSYS_ARCHIVE_DAYS", "90")

    config = Config.from_env()
    assert config.root == Path("/custom/knowsys")
    assert config.backend == "sqlite"
    assert config.index_path == Path("/custom/db.sqlite")
    assert config.default_limit == 50
    assert config.archive_days == 90


def test_config_index_follows_backend(monkeypatch):
    """Test the default index file depends on the backend."""
    monkeypatch.setenv("KNOWSYS_ROOT", "/custom/knowsys")
    monkeypatch.setenv("KNOWSYS_BACKEND", "SQLite")
    config = Config.from_env()
    assert config.backend == "sqlite"
    assert config.index_path == Path("/custom/knowsys/knowledge.db")


def test_config_derived_paths(monkeypatch):
    """Test pointer directory and team index live under the root."""
    monkeypatch.setenv("KNOWSYS_ROOT", "/custom/knowsys")
    config = Config.from_env()
    assert config.pointer_dir == Path("/custom/knowsys/plans")
    assert config.team_index_path == Path("/custom/knowsys/CURRENT_PLAN.md")


def test_config_from_env_creates_new_instances():
    """Test Config.from_env() creates new instances each time."""
    config1 = Config.from_env()
    config2 = Config.from_env()
    assert config1 is not config2


def test_config_tilde_expansion(monkeypatch):
    """Test config expands tilde in paths."""
    monkeypatch.setenv("KNOWSYS_ROOT", "~/custom/knowsys")
    config = Config.from_env()
    assert "~" not in str(config.root)
    assert config.root.is_absolute()


def test_config_invalid_backend(monkeypatch):
    """Test config raises error for an unknown backend."""
    monkeypatch.setenv("KNOWSYS_BACKEND", "postgres")
    with pytest.raises(ValueError, match="Invalid KNOWSYS_BACKEND"):
        Config.from_env()


@pytest.mark.parametrize("value", ["not_a_number", "0", "-5"])
def test_config_invalid_default_limit(monkeypatch, value):
    """Test config raises error for a non-positive or non-numeric limit."""
    monkeypatch.setenv("KNOWSYS_DEFAULT_LIMIT", value)
    with pytest.raises(ValueError, match="Invalid KNOWSYS_DEFAULT_LIMIT"):
        Config.from_env()


def test_config_invalid_archive_days(monkeypatch):
    """Test config raises error for a non-numeric archive age."""
    monkeypatch.setenv("KNOWSYS_ARCHIVE_DAYS", "a month")
    with pytest.raises(ValueError, match="Invalid KNOWSYS_ARCHIVE_DAYS"):
        Config.from_env()


@pytest.mark.parametrize("value,expected", [("true", True), ("1", True), ("YES", True), ("false", False), ("0", False)])
def test_config_read_only_from_env(monkeypatch, value, expected):
    """Test read-only flag parsing."""
    monkeypatch.setenv("KNOWSYS_READ_ONLY", value)
    assert Config.from_env().read_only is expected


def test_config_invalid_flag(monkeypatch):
    """Test config raises error for an unrecognized boolean."""
    monkeypatch.setenv("KNOWSYS_VERIFY_SOURCES", "maybe")
    with pytest.raises(ValueError, match="Invalid KNOWSYS_VERIFY_SOURCES"):
        Config.from_env()


def test_config_overrides(monkeypatch):
    """Test CLI overrides take precedence over env vars."""
    monkeypatch.setenv("KNOWSYS_READ_ONLY", "false")
    monkeypatch.setenv("KNOWSYS_BACKEND", "json")
    config = Config.from_env(read_only_override=True, backend_override="sqlite")
    assert config.read_only is True
    assert config.backend == "sqlite"
    assert config.index_path.name == "knowledge.db"
