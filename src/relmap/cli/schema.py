"""
CLI: ``relmap schema`` -- preview, create and drop entity tables.
"""

from __future__ import annotations

import typer

from relmap.cli.utils import apply_database, console, fail, load_configuration, print_json
from relmap.core.errors import RelmapError
from relmap.core.metadata import MetadataRegistry
from relmap.core.schema import SchemaGenerator

app = typer.Typer(no_args_is_help=True)

ConfigOption = typer.Option(..., "--config", "-c", help="Configuration as module:attribute")
DatabaseOption = typer.Option(None, "--database", "-d", help="Database URL or SQLite file path")
DialectOption = typer.Option(None, "--dialect", help="Dialect name (generic, mysql, postgresql, sqlite)")

_DONE = {"create": "created", "drop": "dropped", "recreate": "recreated"}


def _generator(config: str, database: str | None, dialect: str | None, *, connect: bool) -> SchemaGenerator:
    configuration = apply_database(load_configuration(config), database, dialect)
    registry = MetadataRegistry(configuration.entities)
    provider = configuration.get_connection_provider() if connect else None
    return SchemaGenerator(registry, configuration.get_dialect(), provider)


@app.command()
def show(
    config: str = ConfigOption,
    dialect: str | None = DialectOption,
    drop: bool = typer.Option(False, "--drop", help="Show DROP statements instead"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Print the DDL for every registered entity."""
    try:
        generator = _generator(config, None, dialect, connect=False)
        statements = generator.drop_statements() if drop else generator.create_statements()
    except RelmapError as e:
        fail(e)
        return

    if json_out:
        print_json({"dialect": generator.dialect.name, "statements": statements})
        return
    for statement in statements:
        console.print(f"{statement};", markup=False, highlight=False, soft_wrap=True)


def _run(config: str, database: str | None, dialect: str | None, action: str) -> None:
    try:
        generator = _generator(config, database, dialect, connect=True)
    except RelmapError as e:
        fail(e)
        return
    try:
        getattr(generator, f"{action}_schema")()
    except RelmapError as e:
        fail(e)
    finally:
        generator.provider.close()  # type: ignore[union-attr]
    console.print(f"[green]✓[/green] Schema {_DONE[action]} ({len(generator.registry)} tables)")


@app.command()
def create(
    config: str = ConfigOption,
    database: str | None = DatabaseOption,
    dialect: str | None = DialectOption,
) -> None:
    """Create every entity table."""
    _run(config, database, dialect, "create")


@app.command()
def drop(
    config: str = ConfigOption,
    database: str | None = DatabaseOption,
    dialect: str | None = DialectOption,
) -> None:
    """Drop every entity table."""
    _run(config, database, dialect, "drop")


@app.command()
def recreate(
    config: str = ConfigOption,
    database: str | None = DatabaseOption,
    dialect: str | None = DialectOption,
) -> None:
    """Drop and create every entity table."""
    _run(config, database, dialect, "recreate")
