"""
CLI utility helpers: object loading, connection setup and output formatting.
"""

from __future__ import annotations

import importlib
import json
from collections.abc import Iterable
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from relmap.core.config import Configuration
from relmap.core.connection import SQLiteConnectionProvider, create_provider
from relmap.core.dialect import Dialect, dialect_for_url, get_dialect
from relmap.core.errors import ConfigError, RelmapError
from relmap.core.migrations import Migration
from relmap.core.protocols import ConnectionProvider

console = Console()
err_console = Console(stderr=True)


# ── Loading user objects ─────────────────────────────────────────────────


def load_object(target: str) -> Any:
    """Resolve ``package.module:attribute``.

    A zero-argument callable is called and its result returned.
    """
    module_name, sep, attribute = target.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigError(f"Expected 'module:attribute', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import module '{module_name}'", cause=e) from e

    obj: Any = module
    for part in attribute.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise ConfigError(f"'{module_name}' has no attribute '{attribute}'", cause=e) from e
    if callable(obj) and not isinstance(obj, (type, Configuration)):
        obj = obj()
    return obj


def load_configuration(target: str) -> Configuration:
    obj = load_object(target)
    if not isinstance(obj, Configuration):
        raise ConfigError(f"{target} is not a Configuration (got {type(obj).__name__})")
    return obj


def load_migrations(target: str) -> list[Migration]:
    obj = load_object(target)
    migrations = list(obj) if isinstance(obj, Iterable) else [obj]
    for migration in migrations:
        if not isinstance(migration, Migration):
            raise ConfigError(f"{target} contains a non-migration: {migration!r}")
    return migrations


# ── Connection helper ────────────────────────────────────────────────────


def open_database(database: str, dialect: str | None = None) -> tuple[ConnectionProvider, Dialect]:
    """Provider and dialect for ``--database``.

    A URL (``postgresql://...``) goes through SQLAlchemy; anything else is
    treated as a SQLite file path.
    """
    if "://" in database:
        provider: ConnectionProvider = create_provider(database)
        resolved = get_dialect(dialect) if dialect else dialect_for_url(database)
    else:
        provider = SQLiteConnectionProvider(database)
        resolved = get_dialect(dialect or "sqlite")
    return provider, resolved


def apply_database(configuration: Configuration, database: str | None, dialect: str | None) -> Configuration:
    """Apply ``--database`` / ``--dialect`` overrides to a loaded configuration."""
    if dialect:
        configuration.dialect(dialect)
    if database:
        provider, resolved = open_database(database, dialect)
        configuration.connection_provider(provider)
        configuration.dialect(resolved)
    return configuration


# ── Output helpers ───────────────────────────────────────────────────────


def fail(error: RelmapError | str) -> None:
    """Print an error and exit with status 1."""
    err_console.print(f"[bold red]Error[/bold red]: {escape(str(error))}", highlight=False)
    raise typer.Exit(code=1)


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def render_table(title: str, columns: list[str], rows: list[list[Any]]) -> None:
    table = Table(title=title)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*[str(v) if v is not None else "-" for v in row])
    console.print(table)
