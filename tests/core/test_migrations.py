"""Tests for the versioned migration manager."""

from __future__ import annotations

import pytest

from relmap.core.errors import MigrationError
from relmap.core.migrations import (
    MIGRATIONS_TABLE,
    Migration,
    MigrationManager,
    MigrationResult,
    sql_migration,
)


def _tables(provider) -> set[str]:
    conn = provider.acquire()
    try:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        return {row[0] for row in rows}
    finally:
        provider.release(conn)


def _count(provider, sql: str) -> int:
    conn = provider.acquire()
    try:
        return conn.execute(sql).fetchone()[0]
    finally:
        provider.release(conn)


CREATE_USERS = sql_migration(
    "001",
    "create users",
    up="CREATE TABLE users (id INTEGER PRIMARY KEY, username TEXT NOT NULL)",
    down="DROP TABLE users",
)
ADD_EMAIL = sql_migration(
    "002",
    "add email",
    up=["ALTER TABLE users ADD COLUMN email TEXT", "CREATE INDEX idx_users_email ON users (email)"],
    down=["DROP INDEX idx_users_email"],
)
SEED = Migration(
    "003",
    "seed admin",
    up=lambda conn: conn.execute("INSERT INTO users (username) VALUES (?)", ("admin",)),
)


@pytest.fixture
def manager(provider, dialect) -> MigrationManager:
    return MigrationManager(provider, dialect, [CREATE_USERS, ADD_EMAIL])


class TestRegistration:
    def test_registration_order(self, manager):
        assert [m.version for m in manager.migrations] == ["001", "002"]

    def test_add_migration_is_fluent(self, manager):
        assert manager.add_migration(SEED) is manager

    def test_duplicate_version(self, manager):
        with pytest.raises(MigrationError, match="Duplicate migration version: 001") as exc_info:
            manager.add_migration(sql_migration("001", "again", up="SELECT 1"))
        assert exc_info.value.version == "001"

    def test_reversible(self):
        assert CREATE_USERS.reversible
        assert not SEED.reversible


class TestMigrate:
    def test_applies_in_order(self, manager, provider):
        result = manager.migrate()
        assert result == MigrationResult(applied=["001", "002"], skipped=[])
        assert {"users", MIGRATIONS_TABLE} <= _tables(provider)
        assert _count(provider, f"SELECT COUNT(*) FROM {MIGRATIONS_TABLE}") == 2

    def test_second_run_is_a_no_op(self, manager, provider):
        manager.migrate()
        before = [(r.version, r.applied_at) for r in manager.get_applied()]
        result = manager.migrate()
        assert result.applied == []
        assert result.skipped == ["001", "002"]
        assert [(r.version, r.applied_at) for r in manager.get_applied()] == before

    def test_new_migration_applied_later(self, manager):
        manager.migrate()
        manager.add_migration(SEED)
        assert manager.get_pending() == ["003"]
        assert manager.migrate().applied == ["003"]
        assert manager.get_pending() == []

    def test_applied_records(self, manager):
        manager.migrate()
        records = manager.get_applied()
        assert [r.version for r in records] == ["001", "002"]
        assert all(r.applied_at is not None for r in records)

    def test_is_applied(self, manager):
        assert not manager.is_applied("001")
        manager.migrate()
        assert manager.is_applied("001")
        assert not manager.is_applied("999")

    def test_down_never_runs_during_migrate(self, provider, dialect):
        calls = []
        migration = Migration(
            "001",
            "tracked",
            up=lambda conn: calls.append("up"),
            down=lambda conn: calls.append("down"),
        )
        MigrationManager(provider, dialect, [migration]).migrate()
        assert calls == ["up"]

    def test_failure_rolls_back_and_stops(self, provider, dialect):
        def half_done(conn):
            conn.execute("INSERT INTO users (username) VALUES ('partial')")
            raise RuntimeError("boom")

        broken = Migration("002", "broken", up=half_done)
        manager = MigrationManager(provider, dialect, [CREATE_USERS, broken, SEED])

        with pytest.raises(MigrationError, match="Migration 002 failed: broken") as exc_info:
            manager.migrate()

        assert exc_info.value.version == "002"
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert manager.is_applied("001")
        assert not manager.is_applied("002")
        assert not manager.is_applied("003")
        assert _count(provider, "SELECT COUNT(*) FROM users") == 0

    def test_failing_sql(self, provider, dialect):
        manager = MigrationManager(provider, dialect, [sql_migration("001", "bad", up="CREATE TABLE (")])
        with pytest.raises(MigrationError):
            manager.migrate()
        assert manager.get_applied() == []


class TestRollback:
    def test_rollback_last(self, manager, provider):
        manager.migrate()
        assert manager.rollback_last() == "002"
        assert manager.get_pending() == ["002"]
        assert "users" in _tables(provider)

        assert manager.rollback_last() == "001"
        assert "users" not in _tables(provider)

    def test_rollback_with_nothing_applied(self, manager):
        assert manager.rollback_last() is None

    def test_irreversible_migration(self, manager):
        manager.add_migration(SEED)
        manager.migrate()
        with pytest.raises(MigrationError, match="not reversible"):
            manager.rollback_last()
        assert manager.is_applied("003")

    def test_failed_down_keeps_record(self, provider, dialect):
        migration = sql_migration("001", "users", up="CREATE TABLE t (id INTEGER)", down="DROP TABLE nope")
        manager = MigrationManager(provider, dialect, [migration])
        manager.migrate()
        with pytest.raises(MigrationError, match="Failed to revert migration 001"):
            manager.rollback_last()
        assert manager.is_applied("001")
