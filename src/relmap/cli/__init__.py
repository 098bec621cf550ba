"""
CLI layer for relmap.

Provides a Typer application whose sub-commands load a user
``Configuration`` or migration list from ``module:attribute`` and delegate
to ``relmap.core``. This package handles only terminal transport:
argument parsing, coloured output and table formatting.

Entry point::

    relmap --help
"""

from relmap.cli.app import app

__all__ = ["app"]
