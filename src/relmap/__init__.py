"""
relmap - an embeddable object-relational mapping engine.

Maps plain python records to relational tables across SQLite, PostgreSQL,
MySQL and ANSI databases, generates DDL from explicit mapping metadata, and
tracks versioned schema migrations.
"""

__version__ = "0.1.0"

from relmap.core import *  # noqa
