"""
Canonical protocol definitions for relmap.

The mapping engine never imports a database driver. It talks to a
``ConnectionProvider`` that hands out objects satisfying ``Connection``;
whatever pooling, credentials or driver sit behind that are the host's
concern.

Manifesto:
    Protocols define contracts without inheritance:

    - **Decoupling:** Session and migrations depend on shape, not driver
    - **Testability:** Any object matching the protocol works
    - **Portability:** Same session code on SQLite, PostgreSQL and MySQL

Architecture:
    ::

        protocols.py
        ├── Cursor              result handle returned by execute()
        ├── Connection          one DB-API style connection
        └── ConnectionProvider  acquire()/release()/close() source

        Implementations (relmap.core.connection):
        ├── DBAPIConnection               wraps any DB-API 2.0 connection
        ├── SQLiteConnectionProvider      stdlib sqlite3
        └── SQLAlchemyConnectionProvider  pooled connections from an Engine

Guardrails:
    ❌ DON'T: Reach for sqlite3 / psycopg inside session code
    ✅ DO: Depend on Connection and let the provider choose the driver

    ❌ DON'T: Hold a connection past Session.close()
    ✅ DO: Release it back to the provider that issued it

Tags:
    protocol, connection, provider, database, relmap

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

Params = Sequence[Any] | Mapping[str, Any]


@runtime_checkable
class Cursor(Protocol):
    """Result handle returned by ``Connection.execute``."""

    @property
    def description(self) -> Any:
        """DB-API column descriptions (``None`` for statements without rows)."""
        ...

    @property
    def rowcount(self) -> int:
        ...

    def fetchone(self) -> Any:
        ...

    def fetchall(self) -> list:
        ...


@runtime_checkable
class Connection(Protocol):
    """
    Minimal synchronous connection interface used by sessions.

    ``execute`` returns a fresh cursor per statement, so a caller may run a
    nested query while it still holds rows from an outer one.

    Examples:
        >>> cursor = conn.execute("SELECT id, username FROM users WHERE id = ?", (1,))
        >>> cursor.fetchone()
        (1, 'alice')
        >>> conn.commit()
    """

    def execute(self, sql: str, params: Params = ()) -> Cursor:
        """Execute one SQL statement with bound parameters."""
        ...

    def executemany(self, sql: str, params: Sequence[Params]) -> Cursor:
        """Execute one SQL statement for several parameter sets."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the current transaction."""
        ...

    def close(self) -> None:
        """Close the underlying connection (or return it to its pool)."""
        ...


@runtime_checkable
class ConnectionProvider(Protocol):
    """
    Source of connections. Must tolerate concurrent ``acquire()`` calls.

    Pool sizing, credentials and reconnect policy belong to the provider.
    """

    def acquire(self) -> Connection:
        """Obtain a connection for exclusive use by one session."""
        ...

    def release(self, connection: Connection) -> None:
        """Return a connection obtained from ``acquire``."""
        ...

    def close(self) -> None:
        """Release every resource the provider holds."""
        ...


__all__ = [
    "Params",
    "Cursor",
    "Connection",
    "ConnectionProvider",
]
