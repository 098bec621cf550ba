"""
Shared pytest fixtures and configuration for relmap tests.

This module provides:
- Environment isolation for ``RELMAP_*`` settings
- File-backed SQLite providers under ``tmp_path``
- A registry, schema and session wired to the sample ``User``/``Post`` entities
- A session factory built through ``Configuration``

Usage:
    def test_round_trip(session):
        user = session.save(User(username="alice", email="alice@example.com"))
        assert session.find_by_id(User, user.id) is user
"""

import os
import sys
from pathlib import Path
from typing import Generator

import pytest

# Ensure relmap package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from relmap.core.config import Configuration, RelmapSettings, clear_settings_cache
from relmap.core.connection import SQLiteConnectionProvider
from relmap.core.dialect import SQLiteDialect
from relmap.core.factory import SessionFactory
from relmap.core.metadata import MetadataRegistry
from relmap.core.schema import SchemaGenerator
from relmap.core.session import Session

from _support.models import POST, USER


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without an explicit marker as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Environment Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """
    Strip ``RELMAP_*`` variables and run from an empty directory.

    Keeps a developer's environment or ``.env`` file out of the tests and
    clears the settings cache before and after each test.
    """
    for key in list(os.environ):
        if key.startswith("RELMAP_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def dialect() -> SQLiteDialect:
    return SQLiteDialect()


@pytest.fixture
def provider(tmp_path: Path) -> Generator[SQLiteConnectionProvider, None, None]:
    """SQLite provider backed by a file in ``tmp_path``."""
    p = SQLiteConnectionProvider(tmp_path / "relmap.db")
    yield p
    p.close()


@pytest.fixture
def registry() -> MetadataRegistry:
    return MetadataRegistry([USER, POST])


@pytest.fixture
def schema(registry: MetadataRegistry, dialect: SQLiteDialect, provider: SQLiteConnectionProvider) -> SchemaGenerator:
    """Schema generator with the ``users`` and ``posts`` tables created."""
    generator = SchemaGenerator(registry, dialect, provider)
    generator.create_schema()
    return generator


@pytest.fixture
def session(
    registry: MetadataRegistry,
    dialect: SQLiteDialect,
    provider: SQLiteConnectionProvider,
    schema: SchemaGenerator,
) -> Generator[Session, None, None]:
    s = Session(registry, dialect, provider)
    yield s
    s.close()


@pytest.fixture
def open_session(
    registry: MetadataRegistry,
    dialect: SQLiteDialect,
    provider: SQLiteConnectionProvider,
    schema: SchemaGenerator,
) -> Generator:
    """Factory for extra sessions on the same database; all closed at teardown."""
    opened: list[Session] = []

    def _open(**kwargs) -> Session:
        s = Session(registry, dialect, provider, **kwargs)
        opened.append(s)
        return s

    yield _open
    for s in opened:
        s.close()


@pytest.fixture
def factory(tmp_path: Path) -> Generator[SessionFactory, None, None]:
    """Session factory over a fresh SQLite file with the schema created on build."""
    f = (
        Configuration(RelmapSettings())
        .connection_provider(SQLiteConnectionProvider(tmp_path / "factory.db"))
        .dialect("sqlite")
        .add_entities(USER, POST)
        .set_property("relmap.schema_action", "create")
        .build_session_factory()
    )
    yield f
    f.close_all()
