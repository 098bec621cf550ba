"""Versioned schema migrations for relmap.

Manifesto:
    Schemas evolve through ordered, named changes that apply at most once.
    Each migration runs in its own transaction and is recorded in
    ``schema_migrations`` before the next one starts.

Modules
-------
runner    MigrationManager with migrate() / get_pending() / rollback_last()

Tags:
    relmap, migrations, schema, database, idempotent, DDL

Doc-Types:
    package-overview
"""

from relmap.core.migrations.runner import (
    MIGRATIONS_TABLE,
    Migration,
    MigrationManager,
    MigrationRecord,
    MigrationResult,
    sql_migration,
)

__all__ = [
    "MIGRATIONS_TABLE",
    "Migration",
    "MigrationManager",
    "MigrationRecord",
    "MigrationResult",
    "sql_migration",
]
