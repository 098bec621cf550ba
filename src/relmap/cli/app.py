"""
Root Typer application for the relmap CLI.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

import typer
from typer import Typer

import relmap
from relmap.cli.migrate import app as migrate_app
from relmap.cli.schema import app as schema_app
from relmap.core.config import get_settings
from relmap.core.logging import configure_logging

app = Typer(
    name="relmap",
    help="relmap: schema and migration tooling for mapped entities.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("relmap")
        except PackageNotFoundError:
            v = relmap.__version__
        typer.echo(f"relmap {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log at the configured level instead of WARNING."),
) -> None:
    """relmap CLI: preview and apply schemas, run migrations."""
    settings = get_settings()
    configure_logging(
        level=settings.log_level if verbose else "WARNING",
        json_format=settings.json_logs,
    )


app.add_typer(schema_app, name="schema", help="Entity table DDL.")
app.add_typer(migrate_app, name="migrate", help="Versioned migrations.")
