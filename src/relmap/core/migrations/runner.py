"""Versioned migration manager.

Applies registered migrations in registration order, each in its own
transaction, and records every applied version in ``schema_migrations``.
A failing migration is rolled back and raises ``MigrationError``; the ones
after it are not attempted. Reverse callables only run through an explicit
``rollback_last()``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from relmap.core.dialect import Dialect
from relmap.core.errors import MigrationError, RelmapError
from relmap.core.logging import get_logger
from relmap.core.protocols import Connection, ConnectionProvider
from relmap.core.timing import PerformanceMonitor, log_sql
from relmap.core.transaction import Transaction

logger = get_logger(__name__)

MIGRATIONS_TABLE = "schema_migrations"

MigrationStep = Callable[[Connection], None]


@dataclass(frozen=True)
class Migration:
    """One schema change.

    ``up`` receives the migration's connection and must not commit; the
    manager commits after recording the version.
    """

    version: str
    description: str
    up: MigrationStep
    down: MigrationStep | None = None

    @property
    def reversible(self) -> bool:
        return self.down is not None


def sql_migration(
    version: str,
    description: str,
    up: Sequence[str] | str,
    down: Sequence[str] | str | None = None,
) -> Migration:
    """Build a migration from SQL statements.

    Example::

        sql_migration(
            "002",
            "index usernames",
            up="CREATE INDEX idx_users_username ON users (username)",
            down="DROP INDEX idx_users_username",
        )
    """

    def _runner(statements: Sequence[str] | str) -> MigrationStep:
        batch = [statements] if isinstance(statements, str) else list(statements)

        def run(conn: Connection) -> None:
            for statement in batch:
                conn.execute(statement)

        return run

    return Migration(
        version=version,
        description=description,
        up=_runner(up),
        down=_runner(down) if down is not None else None,
    )


@dataclass
class MigrationRecord:
    """Record of a single applied migration."""

    version: str
    applied_at: Any


@dataclass
class MigrationResult:
    """Result of a migration run."""

    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class MigrationManager:
    """Applies versioned migrations.

    Parameters
    ----------
    provider
        Connection source; one connection is held per call.
    dialect
        Placeholders, timestamp default and transaction start.
    migrations
        Initial migrations, registered in order.

    Example::

        manager = MigrationManager(provider, SQLiteDialect())
        manager.add_migration(sql_migration("001", "users", up=CREATE_USERS))
        result = manager.migrate()
        print(f"Applied {len(result.applied)} migrations")
    """

    def __init__(
        self,
        provider: ConnectionProvider,
        dialect: Dialect,
        migrations: Iterable[Migration] = (),
        *,
        monitor: PerformanceMonitor | None = None,
        show_sql: bool = False,
    ) -> None:
        self.provider = provider
        self.dialect = dialect
        self.monitor = monitor
        self.show_sql = show_sql
        self._migrations: list[Migration] = []
        for migration in migrations:
            self.add_migration(migration)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_migration(self, migration: Migration) -> MigrationManager:
        """Register ``migration``; registration order is application order.

        Raises:
            MigrationError: If the version is already registered.
        """
        if any(m.version == migration.version for m in self._migrations):
            raise MigrationError(
                f"Duplicate migration version: {migration.version}", version=migration.version
            )
        self._migrations.append(migration)
        return self

    @property
    def migrations(self) -> tuple[Migration, ...]:
        return tuple(self._migrations)

    def migrate(self) -> MigrationResult:
        """Apply every unapplied migration in order.

        Raises:
            MigrationError: On the first failure, after rolling that
                migration back.
        """
        result = MigrationResult()
        conn = self.provider.acquire()
        try:
            self._ensure_migrations_table(conn)
            for migration in self._migrations:
                if self._is_applied(conn, migration.version):
                    result.skipped.append(migration.version)
                    continue
                self._apply(conn, migration)
                result.applied.append(migration.version)
        finally:
            self.provider.release(conn)

        logger.info("migration.completed", applied=len(result.applied), skipped=len(result.skipped))
        return result

    def get_applied(self) -> list[MigrationRecord]:
        """Applied migrations, oldest first."""
        conn = self.provider.acquire()
        try:
            self._ensure_migrations_table(conn)
            cursor = self._run(
                conn,
                "get_applied",
                f"SELECT version, applied_at FROM {MIGRATIONS_TABLE} ORDER BY applied_at, version",
            )
            return [MigrationRecord(version=row[0], applied_at=row[1]) for row in cursor.fetchall()]
        finally:
            self.provider.release(conn)

    def get_pending(self) -> list[str]:
        """Registered versions not yet applied, in registration order."""
        applied = {r.version for r in self.get_applied()}
        return [m.version for m in self._migrations if m.version not in applied]

    def is_applied(self, version: str) -> bool:
        conn = self.provider.acquire()
        try:
            self._ensure_migrations_table(conn)
            return self._is_applied(conn, version)
        finally:
            self.provider.release(conn)

    def rollback_last(self) -> str | None:
        """Revert the most recently registered applied migration.

        Runs its ``down`` step and deletes its record in one transaction.
        Returns the reverted version, or ``None`` if nothing is applied.

        Raises:
            MigrationError: If the migration has no ``down`` step or it fails.
        """
        applied = {r.version for r in self.get_applied()}
        candidates = [m for m in self._migrations if m.version in applied]
        if not candidates:
            return None
        migration = candidates[-1]
        if migration.down is None:
            raise MigrationError(
                f"Migration {migration.version} is not reversible", version=migration.version
            )

        conn = self.provider.acquire()
        try:
            transaction = Transaction(conn, self.dialect).begin()
            try:
                migration.down(conn)
                self._run(
                    conn,
                    "migration_unrecord",
                    f"DELETE FROM {MIGRATIONS_TABLE} WHERE version = {self.dialect.placeholder(0)}",
                    (migration.version,),
                )
                transaction.commit()
            except Exception as e:
                self._rollback_quietly(transaction, migration.version)
                raise MigrationError(
                    f"Failed to revert migration {migration.version}",
                    version=migration.version,
                    cause=e,
                ) from e
        finally:
            self.provider.release(conn)

        logger.info("migration.rolled_back", version=migration.version, description=migration.description)
        return migration.version

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run(self, conn: Connection, operation: str, sql: str, params: tuple = ()) -> Any:
        with log_sql(operation, sql, monitor=self.monitor, show_sql=self.show_sql):
            return conn.execute(sql, params)

    def _ensure_migrations_table(self, conn: Connection) -> None:
        sql = (
            f"CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} ("
            f"version VARCHAR(255) PRIMARY KEY, "
            f"applied_at TIMESTAMP {self.dialect.timestamp_default_now()})"
        )
        try:
            self._run(conn, "migration_table", sql)
            conn.commit()
        except Exception as e:
            raise MigrationError(
                f"Failed to create {MIGRATIONS_TABLE}", cause=e
            ).with_context(sql=sql) from e

    def _is_applied(self, conn: Connection, version: str) -> bool:
        cursor = self._run(
            conn,
            "migration_check",
            f"SELECT COUNT(*) FROM {MIGRATIONS_TABLE} WHERE version = {self.dialect.placeholder(0)}",
            (version,),
        )
        return cursor.fetchone()[0] > 0

    def _apply(self, conn: Connection, migration: Migration) -> None:
        logger.info("migration.applying", version=migration.version, description=migration.description)
        transaction = Transaction(conn, self.dialect).begin()
        try:
            migration.up(conn)
            self._run(
                conn,
                "migration_record",
                f"INSERT INTO {MIGRATIONS_TABLE} (version) VALUES ({self.dialect.placeholder(0)})",
                (migration.version,),
            )
            transaction.commit()
        except Exception as e:
            self._rollback_quietly(transaction, migration.version)
            logger.error("migration.failed", version=migration.version, error=str(e))
            raise MigrationError(
                f"Migration {migration.version} failed: {migration.description}",
                version=migration.version,
                cause=e,
            ) from e
        logger.info("migration.applied", version=migration.version)

    def _rollback_quietly(self, transaction: Transaction, version: str) -> None:
        # The original failure is what gets raised; a rollback failure is only logged
        if not transaction.is_active:
            return
        try:
            transaction.rollback()
        except RelmapError as e:
            logger.error("migration.rollback_failed", version=version, error=str(e))


__all__ = [
    "Migration",
    "MigrationManager",
    "MigrationRecord",
    "MigrationResult",
    "MIGRATIONS_TABLE",
    "sql_migration",
]
