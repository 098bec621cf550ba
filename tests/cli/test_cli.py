"""Tests for the relmap command line interface."""

from __future__ import annotations

import importlib
import json
import logging
import sqlite3
import sys
import textwrap

import pytest
import structlog
from typer.testing import CliRunner

import relmap
from relmap.cli.app import app

runner = CliRunner()

APP_MODULE = "relmap_cli_app"

APP_SOURCE = textwrap.dedent(
    """
    from relmap.core.config import Configuration, RelmapSettings
    from relmap.core.migrations import sql_migration

    from _support.models import POST, USER


    def build_config():
        return Configuration(RelmapSettings()).dialect("sqlite").add_entities(USER, POST)


    MIGRATIONS = [
        sql_migration("001", "create notes", up="CREATE TABLE notes (id INTEGER PRIMARY KEY)", down="DROP TABLE notes"),
        sql_migration("002", "add body", up="ALTER TABLE notes ADD COLUMN body TEXT"),
    ]

    FIRST_ONLY = MIGRATIONS[:1]

    NOT_A_CONFIG = 42
    """
)


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Silence structlog so command output stays parseable.

    The CLI callback would configure structlog with logger caching, which
    outlives the test; it is replaced with a no-op.
    """
    cli_module = importlib.import_module("relmap.cli.app")
    monkeypatch.setattr(cli_module, "configure_logging", lambda **kwargs: None)
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(logging.CRITICAL))
    yield
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def app_module(tmp_path, monkeypatch):
    """An importable module holding a configuration and migrations."""
    (tmp_path / f"{APP_MODULE}.py").write_text(APP_SOURCE, encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))
    monkeypatch.delitem(sys.modules, APP_MODULE, raising=False)


def _tables(path) -> set[str]:
    conn = sqlite3.connect(path)
    try:
        return {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    finally:
        conn.close()


CONFIG = f"{APP_MODULE}:build_config"
MIGRATIONS = f"{APP_MODULE}:MIGRATIONS"


class TestRoot:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.startswith("relmap ")

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "schema" in result.output
        assert "migrate" in result.output

    def test_package_version(self):
        assert relmap.__version__ == "0.1.0"


class TestSchemaCommands:
    def test_show(self):
        result = runner.invoke(app, ["schema", "show", "--config", CONFIG])
        assert result.exit_code == 0, result.output
        assert "CREATE TABLE users (id INTEGER, username TEXT NOT NULL" in result.output
        assert "CREATE TABLE posts" in result.output

    def test_show_other_dialect(self):
        result = runner.invoke(app, ["schema", "show", "-c", CONFIG, "--dialect", "postgresql"])
        assert result.exit_code == 0, result.output
        assert "id SERIAL" in result.output

    def test_show_drop_json(self):
        result = runner.invoke(app, ["schema", "show", "-c", CONFIG, "--drop", "--json"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["dialect"] == "sqlite"
        assert len(payload["statements"]) == 2
        assert all(s.startswith("DROP TABLE") for s in payload["statements"])

    def test_create_drop_recreate(self, tmp_path):
        db = str(tmp_path / "cli.db")

        result = runner.invoke(app, ["schema", "create", "-c", CONFIG, "--database", db])
        assert result.exit_code == 0, result.output
        assert "Schema created (2 tables)" in result.output
        assert {"users", "posts"} <= _tables(db)

        result = runner.invoke(app, ["schema", "recreate", "-c", CONFIG, "-d", db])
        assert result.exit_code == 0, result.output
        assert "Schema recreated (2 tables)" in result.output
        assert {"users", "posts"} <= _tables(db)

        result = runner.invoke(app, ["schema", "drop", "-c", CONFIG, "-d", db])
        assert result.exit_code == 0, result.output
        assert "Schema dropped (2 tables)" in result.output
        assert not {"users", "posts"} & _tables(db)

    def test_create_twice_fails(self, tmp_path):
        db = str(tmp_path / "cli.db")
        runner.invoke(app, ["schema", "create", "-c", CONFIG, "-d", db])
        result = runner.invoke(app, ["schema", "create", "-c", CONFIG, "-d", db])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_create_without_database(self):
        result = runner.invoke(app, ["schema", "create", "-c", CONFIG])
        assert result.exit_code == 1
        assert "No connection source configured" in result.output

    @pytest.mark.parametrize(
        "target",
        ["nonsense", "missing_module_xyz:CONFIG", f"{APP_MODULE}:NOPE", f"{APP_MODULE}:NOT_A_CONFIG"],
    )
    def test_bad_config_target(self, target):
        result = runner.invoke(app, ["schema", "show", "-c", target])
        assert result.exit_code == 1
        assert "Error" in result.output


class TestMigrateCommands:
    def test_up_then_up_again(self, tmp_path):
        db = str(tmp_path / "m.db")

        result = runner.invoke(app, ["migrate", "up", "-m", MIGRATIONS, "-d", db])
        assert result.exit_code == 0, result.output
        assert "Applied 001" in result.output
        assert "Applied 002" in result.output
        assert "2 applied, 0 already up to date" in result.output

        result = runner.invoke(app, ["migrate", "up", "-m", MIGRATIONS, "-d", db, "--json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"applied": [], "skipped": ["001", "002"]}

    def test_status(self, tmp_path):
        db = str(tmp_path / "m.db")
        result = runner.invoke(app, ["migrate", "status", "-m", MIGRATIONS, "-d", db, "--json"])
        assert result.exit_code == 0, result.output
        assert [r["status"] for r in json.loads(result.output)] == ["pending", "pending"]

        runner.invoke(app, ["migrate", "up", "-m", MIGRATIONS, "-d", db])
        result = runner.invoke(app, ["migrate", "status", "-m", MIGRATIONS, "-d", db, "--json"])
        rows = json.loads(result.output)
        assert [r["status"] for r in rows] == ["applied", "applied"]
        assert all(r["applied_at"] for r in rows)

    def test_status_table(self, tmp_path):
        result = runner.invoke(app, ["migrate", "status", "-m", MIGRATIONS, "-d", str(tmp_path / "m.db")])
        assert result.exit_code == 0, result.output
        assert "Migrations" in result.output
        assert "pending" in result.output

    def test_rollback(self, tmp_path):
        db = str(tmp_path / "m.db")
        result = runner.invoke(app, ["migrate", "rollback", "-m", MIGRATIONS, "-d", db])
        assert result.exit_code == 0, result.output
        assert "Nothing to roll back" in result.output

        runner.invoke(app, ["migrate", "up", "-m", MIGRATIONS, "-d", db])
        result = runner.invoke(app, ["migrate", "rollback", "-m", MIGRATIONS, "-d", db])
        assert result.exit_code == 1
        assert "not reversible" in result.output

    def test_rollback_reversible(self, tmp_path):
        db = str(tmp_path / "m.db")
        first_only = f"{APP_MODULE}:FIRST_ONLY"
        runner.invoke(app, ["migrate", "up", "-m", first_only, "-d", db])
        assert "notes" in _tables(db)

        result = runner.invoke(app, ["migrate", "rollback", "-m", first_only, "-d", db])
        assert result.exit_code == 0, result.output
        assert "Rolled back 001" in result.output
        assert "notes" not in _tables(db)

    def test_bad_migrations_target(self, tmp_path):
        result = runner.invoke(app, ["migrate", "up", "-m", f"{APP_MODULE}:NOT_A_CONFIG", "-d", str(tmp_path / "m.db")])
        assert result.exit_code == 1
        assert "non-migration" in result.output
