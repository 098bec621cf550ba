"""
CLI: ``relmap migrate`` -- apply, inspect and revert versioned migrations.
"""

from __future__ import annotations

import typer

from relmap.cli.utils import console, fail, load_migrations, open_database, print_json, render_table
from relmap.core.errors import RelmapError
from relmap.core.migrations import MigrationManager

app = typer.Typer(no_args_is_help=True)

MigrationsOption = typer.Option(..., "--migrations", "-m", help="Migrations as module:attribute")
DatabaseOption = typer.Option(..., "--database", "-d", help="Database URL or SQLite file path")
DialectOption = typer.Option(None, "--dialect", help="Dialect name; inferred from the URL by default")


def _manager(migrations: str, database: str, dialect: str | None) -> MigrationManager:
    loaded = load_migrations(migrations)
    provider, resolved = open_database(database, dialect)
    return MigrationManager(provider, resolved, loaded)


@app.command()
def up(
    migrations: str = MigrationsOption,
    database: str = DatabaseOption,
    dialect: str | None = DialectOption,
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Apply every pending migration."""
    try:
        manager = _manager(migrations, database, dialect)
    except RelmapError as e:
        fail(e)
        return
    try:
        result = manager.migrate()
    except RelmapError as e:
        fail(e)
        return
    finally:
        manager.provider.close()

    if json_out:
        print_json({"applied": result.applied, "skipped": result.skipped})
        return
    for version in result.applied:
        console.print(f"[green]✓[/green] Applied {version}")
    console.print(f"{len(result.applied)} applied, {len(result.skipped)} already up to date")


@app.command()
def status(
    migrations: str = MigrationsOption,
    database: str = DatabaseOption,
    dialect: str | None = DialectOption,
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Show which migrations are applied."""
    try:
        manager = _manager(migrations, database, dialect)
    except RelmapError as e:
        fail(e)
        return
    try:
        applied = {r.version: r.applied_at for r in manager.get_applied()}
    except RelmapError as e:
        fail(e)
        return
    finally:
        manager.provider.close()

    rows = [
        [m.version, m.description, "applied" if m.version in applied else "pending", applied.get(m.version)]
        for m in manager.migrations
    ]
    if json_out:
        print_json(
            [{"version": r[0], "description": r[1], "status": r[2], "applied_at": r[3]} for r in rows]
        )
        return
    render_table("Migrations", ["Version", "Description", "Status", "Applied At"], rows)


@app.command()
def rollback(
    migrations: str = MigrationsOption,
    database: str = DatabaseOption,
    dialect: str | None = DialectOption,
) -> None:
    """Revert the most recently applied migration."""
    try:
        manager = _manager(migrations, database, dialect)
    except RelmapError as e:
        fail(e)
        return
    try:
        version = manager.rollback_last()
    except RelmapError as e:
        fail(e)
        return
    finally:
        manager.provider.close()

    if version is None:
        console.print("[yellow]Nothing to roll back[/yellow]")
    else:
        console.print(f"[green]✓[/green] Rolled back {version}")
