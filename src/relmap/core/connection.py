"""Connection providers.

Two concrete sources of ``Connection`` objects:

- ``SQLiteConnectionProvider``: one stdlib ``sqlite3`` connection per
  ``acquire()``, in driver autocommit mode so transactions are opened
  explicitly by relmap. ``:memory:`` databases use a shared-cache URI kept
  alive by a keeper connection, so every session sees the same data.
- ``SQLAlchemyConnectionProvider``: pooled DB-API connections taken from a
  SQLAlchemy ``Engine`` (``engine.raw_connection()``); ``release`` returns
  them to the pool.

``create_provider(url, ...)`` builds the SQLAlchemy provider from a URL and
credentials, which is what ``Configuration.database()`` uses.

Usage::

    from relmap.core.connection import SQLiteConnectionProvider

    provider = SQLiteConnectionProvider("app.db")
    conn = provider.acquire()
    conn.execute("SELECT 1").fetchone()
    provider.release(conn)
"""

from __future__ import annotations

import sqlite3
import threading
import uuid
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy.engine import URL, Engine, make_url

from relmap.core.errors import ConfigError, PersistenceError
from relmap.core.logging import get_logger
from relmap.core.protocols import Params

logger = get_logger(__name__)


class DBAPIConnection:
    """Adapter: any DB-API 2.0 connection → ``Connection`` protocol.

    Each ``execute`` opens a new cursor. ``fetchone``/``fetchall`` read the
    most recent one, mirroring drivers that expose them on the connection.
    """

    def __init__(self, raw: Any) -> None:
        self._raw = raw
        self._cursor: Any = None

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: Params = ()) -> Any:
        cursor = self._raw.cursor()
        cursor.execute(sql, params)
        self._cursor = cursor
        return cursor

    def executemany(self, sql: str, params: Sequence[Params]) -> Any:
        cursor = self._raw.cursor()
        cursor.executemany(sql, params)
        self._cursor = cursor
        return cursor

    def fetchone(self) -> Any:
        return self._cursor.fetchone() if self._cursor is not None else None

    def fetchall(self) -> list:
        return self._cursor.fetchall() if self._cursor is not None else []

    def commit(self) -> None:
        self._raw.commit()

    def rollback(self) -> None:
        self._raw.rollback()

    def close(self) -> None:
        self._cursor = None
        self._raw.close()

    # -- convenience -------------------------------------------------------

    @property
    def raw(self) -> Any:
        """Access the underlying driver connection."""
        return self._raw

    def __repr__(self) -> str:
        return f"DBAPIConnection({self._raw!r})"


class SQLiteConnectionProvider:
    """Hands out fresh ``sqlite3`` connections to one database file.

    Parameters
    ----------
    path
        Database file, or ``":memory:"`` for a private in-memory database
        shared by every connection of this provider.
    timeout
        Seconds to wait on a locked database.
    """

    def __init__(self, path: str | Path = ":memory:", *, timeout: float = 5.0) -> None:
        self.path = str(path)
        self.timeout = timeout
        self._keeper: sqlite3.Connection | None = None
        self._closed = False
        self._lock = threading.Lock()

        if self.path == ":memory:":
            self._target = f"file:relmap-{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._uri = True
            self._keeper = self._connect()
        else:
            self._target = self.path
            self._uri = False

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(
            self._target,
            uri=self._uri,
            timeout=self.timeout,
            isolation_level=None,
            check_same_thread=False,
        )

    def acquire(self) -> DBAPIConnection:
        with self._lock:
            if self._closed:
                raise PersistenceError("Connection provider is closed").with_context(
                    database=self.path
                )
        try:
            return DBAPIConnection(self._connect())
        except sqlite3.Error as e:
            raise PersistenceError(
                f"Failed to open SQLite database: {self.path}", cause=e
            ) from e

    def release(self, connection: DBAPIConnection) -> None:
        connection.close()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._keeper is not None:
                self._keeper.close()
                self._keeper = None
        logger.debug("provider.closed", database=self.path)

    def __repr__(self) -> str:
        return f"SQLiteConnectionProvider({self.path!r})"


def create_engine(
    url: str,
    *,
    echo: bool = False,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    pool_timeout: int | None = None,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql://…``, ``mysql+pymysql://…``)
    echo:
        If ``True``, SQLAlchemy logs all SQL itself.
    pool_size, max_overflow, pool_timeout:
        Connection pool parameters (ignored for SQLite).
    **kwargs:
        Extra arguments forwarded to ``sqlalchemy.create_engine``.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        return _sa_create_engine(url, echo=echo, **kwargs)

    pool_kwargs: dict[str, Any] = {}
    if pool_size is not None:
        pool_kwargs["pool_size"] = pool_size
    if max_overflow is not None:
        pool_kwargs["max_overflow"] = max_overflow
    if pool_timeout is not None:
        pool_kwargs["pool_timeout"] = pool_timeout

    return _sa_create_engine(url, echo=echo, **pool_kwargs, **kwargs)


def _is_sqlite_memory(url: URL) -> bool:
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


class SQLAlchemyConnectionProvider:
    """Pooled connections from a SQLAlchemy ``Engine``.

    Only the engine's pool and driver are used; SQL is still generated by
    relmap's dialects.
    """

    def __init__(self, engine: Engine) -> None:
        if _is_sqlite_memory(engine.url):
            raise ConfigError(
                "In-memory SQLite cannot be pooled; use SQLiteConnectionProvider"
            ).with_context(database=str(engine.url))
        self.engine = engine
        self._closed = False

    def acquire(self) -> DBAPIConnection:
        if self._closed:
            raise PersistenceError("Connection provider is closed").with_context(
                database=self.engine.url.render_as_string(hide_password=True)
            )
        try:
            return DBAPIConnection(self.engine.raw_connection())
        except Exception as e:
            raise PersistenceError(
                "Failed to acquire connection from pool",
                cause=e,
            ).with_context(database=self.engine.url.render_as_string(hide_password=True)) from e

    def release(self, connection: DBAPIConnection) -> None:
        # Returns the DB-API connection to the pool
        connection.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.engine.dispose()
        logger.debug("provider.closed", database=self.engine.url.render_as_string(hide_password=True))

    def __repr__(self) -> str:
        return f"SQLAlchemyConnectionProvider({self.engine.url.render_as_string(hide_password=True)!r})"


def create_provider(
    url: str,
    username: str | None = None,
    password: str | None = None,
    **engine_options: Any,
) -> SQLAlchemyConnectionProvider | SQLiteConnectionProvider:
    """Build a pooled provider from a URL and optional credentials.

    Credentials given here override any embedded in the URL. An in-memory
    SQLite URL (``sqlite://``) gets a ``SQLiteConnectionProvider`` so that
    each session still owns its own connection.

    Raises:
        ConfigError: If the URL cannot be parsed.
    """
    try:
        parsed = make_url(url)
    except Exception as e:
        raise ConfigError(f"Invalid database URL: {url!r}", cause=e) from e
    if username is not None:
        parsed = parsed.set(username=username)
    if password is not None:
        parsed = parsed.set(password=password)
    if _is_sqlite_memory(parsed):
        return SQLiteConnectionProvider(":memory:")
    engine = create_engine(parsed.render_as_string(hide_password=False), **engine_options)
    return SQLAlchemyConnectionProvider(engine)


__all__ = [
    "DBAPIConnection",
    "SQLiteConnectionProvider",
    "SQLAlchemyConnectionProvider",
    "create_engine",
    "create_provider",
]
