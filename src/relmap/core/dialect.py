"""SQL dialect abstraction for the mapping engine.

Provides a ``Dialect`` protocol and four independent implementations
(Generic/ANSI, MySQL, PostgreSQL, SQLite). The session, schema generator,
query builder and migration manager never branch on the database: every
vendor difference (limit syntax, identity columns, sequences, type
keywords, quoting, placeholders) is a method here.

Manifesto:
    Mapping code must produce valid SQL on every supported backend without
    knowing which backend it talks to.

    - **One interface:** Dialect protocol for all SQL fragments
    - **No inheritance:** each dialect is a standalone class
    - **Registry:** get_dialect(name) / dialect_for_url(url)
    - **Testable:** every fragment is a pure string function

Architecture::

    ┌──────────────────────────────────────────────────────────────────┐
    │                     Dialect Abstraction Layer                     │
    └──────────────────────────────────────────────────────────────────┘

    Session / SchemaGenerator / QueryBuilder:
    ┌────────────────────────────────────────────────────────────────┐
    │  sql = d.limit_clause("SELECT ... FROM users", 10, 20)        │
    │  ddl = f"{name} {d.column_type(col)} {d.identity_column_string()}"
    └────────────────────────────────────────────────────────────────┘
                              │
                              ▼
    ┌──────────────┐ ┌──────────────┐ ┌──────────────┐ ┌──────────────┐
    │ Generic      │ │ MySQL        │ │ PostgreSQL   │ │ SQLite       │
    │ LIMIT n      │ │ LIMIT o, n   │ │ LIMIT n      │ │ LIMIT n      │
    │  OFFSET o    │ │ AUTO_INCR.   │ │  OFFSET o    │ │  OFFSET o    │
    │ IDENTITY     │ │ `quoted`     │ │ SERIAL       │ │ rowid alias  │
    └──────────────┘ └──────────────┘ └──────────────┘ └──────────────┘

Examples:
    >>> from relmap.core.dialect import get_dialect
    >>> d = get_dialect("mysql")
    >>> d.limit_clause("SELECT * FROM users", 10, 20)
    'SELECT * FROM users LIMIT 20, 10'
    >>> get_dialect("postgresql").limit_clause("SELECT * FROM users", 10, 20)
    'SELECT * FROM users LIMIT 10 OFFSET 20'

Guardrails:
    ❌ DON'T: Write vendor syntax in the session or schema generator
    ✅ DO: Add a Dialect method and implement it for all four dialects

    ❌ DON'T: Interpolate values into SQL
    ✅ DO: Use placeholder()/named_placeholder() and bind parameters

Tags:
    dialect, sql, abstraction, portability, ddl, relmap

Doc-Types:
    - API Reference
    - Database Portability Guide
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from relmap.core.errors import ConfigError, UnsupportedFeatureError
from relmap.core.types import SqlType

if TYPE_CHECKING:
    from relmap.core.metadata import ColumnMetadata

# ANSI keyword strings shared by the built-in dialects
CREATE_TABLE = "CREATE TABLE"
DROP_TABLE = "DROP TABLE IF EXISTS"
PRIMARY_KEY = "PRIMARY KEY"
FOREIGN_KEY = "FOREIGN KEY"
UNIQUE = "UNIQUE"
NOT_NULL = "NOT NULL"


def _escape(literal: str) -> str:
    return literal.replace("'", "''")


def _with_limit(sql: str, limit: int | None, offset: int | None) -> str:
    """``LIMIT n OFFSET o`` form used by every dialect except MySQL."""
    if limit is None:
        return sql
    if offset:
        return f"{sql} LIMIT {int(limit)} OFFSET {int(offset)}"
    return f"{sql} LIMIT {int(limit)}"


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Every method returns a SQL fragment (string) valid for the target
    database, or raises ``UnsupportedFeatureError`` when the database has
    no equivalent.
    """

    @property
    def name(self) -> str:
        """Dialect name (e.g. ``'sqlite'``)."""
        ...

    # -- Placeholders ------------------------------------------------------

    def placeholder(self, index: int) -> str:
        """Single positional placeholder (0-based index)."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholder list."""
        ...

    def named_placeholder(self, name: str) -> str:
        """Named placeholder bound from a mapping of parameters."""
        ...

    # -- Paging ------------------------------------------------------------

    def limit_clause(self, sql: str, limit: int | None, offset: int | None = None) -> str:
        """Append a row limit and optional offset to ``sql``.

        No limit means no clause; an offset is only rendered with a limit.
        """
        ...

    # -- Identity / sequences ----------------------------------------------

    @property
    def supports_sequences(self) -> bool:
        """True if ``sequence_next_value`` is available."""
        ...

    def identity_column_string(self) -> str:
        """DDL fragment appended to a generated primary-key column."""
        ...

    def sequence_next_value(self, sequence_name: str) -> str:
        """Statement returning the next value of ``sequence_name``."""
        ...

    def identity_select_string(self, table: str, column: str) -> str:
        """Statement returning the key generated by the last INSERT on this connection."""
        ...

    # -- Types -------------------------------------------------------------

    def column_type(self, column: ColumnMetadata, reference: bool = False) -> str:
        """Native column type for ``column``.

        ``reference=True`` renders the type of a foreign-key column that
        points at ``column``; auto-increment types are never used there.
        """
        ...

    def insert_default_values(self, table: str) -> str:
        """INSERT for a row whose only column is a generated key."""
        ...

    def adapt_value(self, value: Any) -> Any:
        """Convert a python value into one the driver can bind."""
        ...

    # -- Quoting -----------------------------------------------------------

    def quote(self, identifier: str) -> str:
        ...

    def escape(self, literal: str) -> str:
        ...

    # -- DDL keywords ------------------------------------------------------

    def create_table_string(self) -> str:
        ...

    def drop_table_string(self) -> str:
        ...

    def primary_key_string(self) -> str:
        ...

    def foreign_key_string(self) -> str:
        ...

    def unique_string(self) -> str:
        ...

    def not_null_string(self) -> str:
        ...

    def timestamp_default_now(self) -> str:
        """DDL ``DEFAULT`` clause for a timestamp column."""
        ...

    # -- Transactions ------------------------------------------------------

    def begin_transaction_sql(self) -> str | None:
        """Statement that opens a transaction, or None when the driver does it implicitly."""
        ...


# =========================================================================
# Concrete Dialect Implementations
# =========================================================================


class GenericDialect:
    """ANSI-like dialect: ``?`` placeholders, ``GENERATED BY DEFAULT AS IDENTITY``."""

    @property
    def name(self) -> str:
        return "generic"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def named_placeholder(self, name: str) -> str:
        return f":{name}"

    def limit_clause(self, sql: str, limit: int | None, offset: int | None = None) -> str:
        return _with_limit(sql, limit, offset)

    @property
    def supports_sequences(self) -> bool:
        return True

    def identity_column_string(self) -> str:
        return "GENERATED BY DEFAULT AS IDENTITY"

    def sequence_next_value(self, sequence_name: str) -> str:
        return f"SELECT NEXT VALUE FOR {sequence_name}"

    def identity_select_string(self, table: str, column: str) -> str:  # noqa: ARG002
        return "SELECT IDENTITY()"

    def column_type(self, column: ColumnMetadata, reference: bool = False) -> str:  # noqa: ARG002
        if column.column_definition:
            return column.column_definition
        t = column.sql_type
        if t is SqlType.STRING:
            return f"VARCHAR({column.length})"
        if t is SqlType.TEXT:
            return "CLOB"
        if t is SqlType.DOUBLE and column.precision > 0:
            return f"DECIMAL({column.precision},{column.scale})"
        if t is SqlType.DECIMAL:
            return f"DECIMAL({column.precision},{column.scale})" if column.precision > 0 else "DECIMAL"
        return {
            SqlType.SMALLINT: "SMALLINT",
            SqlType.INTEGER: "INTEGER",
            SqlType.BIGINT: "BIGINT",
            SqlType.FLOAT: "REAL",
            SqlType.DOUBLE: "DOUBLE PRECISION",
            SqlType.BOOLEAN: "BOOLEAN",
            SqlType.DATE: "DATE",
            SqlType.TIME: "TIME",
            SqlType.TIMESTAMP: "TIMESTAMP",
            SqlType.BINARY: "BLOB",
        }.get(t, "VARCHAR(255)")

    def insert_default_values(self, table: str) -> str:
        return f"INSERT INTO {table} DEFAULT VALUES"

    def adapt_value(self, value: Any) -> Any:
        return value

    def quote(self, identifier: str) -> str:
        return f'"{identifier}"'

    def escape(self, literal: str) -> str:
        return _escape(literal)

    def create_table_string(self) -> str:
        return CREATE_TABLE

    def drop_table_string(self) -> str:
        return DROP_TABLE

    def primary_key_string(self) -> str:
        return PRIMARY_KEY

    def foreign_key_string(self) -> str:
        return FOREIGN_KEY

    def unique_string(self) -> str:
        return UNIQUE

    def not_null_string(self) -> str:
        return NOT_NULL

    def timestamp_default_now(self) -> str:
        return "DEFAULT CURRENT_TIMESTAMP"

    def begin_transaction_sql(self) -> str | None:
        return None


class MySQLDialect:
    """MySQL / MariaDB dialect: ``%s`` placeholders, backtick quoting, ``LIMIT o, n``."""

    @property
    def name(self) -> str:
        return "mysql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def named_placeholder(self, name: str) -> str:
        return f"%({name})s"

    def limit_clause(self, sql: str, limit: int | None, offset: int | None = None) -> str:
        if limit is None:
            return sql
        if offset:
            return f"{sql} LIMIT {int(offset)}, {int(limit)}"
        return f"{sql} LIMIT {int(limit)}"

    @property
    def supports_sequences(self) -> bool:
        return False

    def identity_column_string(self) -> str:
        return "AUTO_INCREMENT"

    def sequence_next_value(self, sequence_name: str) -> str:
        raise UnsupportedFeatureError(self.name, "sequences").with_context(sequence=sequence_name)

    def identity_select_string(self, table: str, column: str) -> str:  # noqa: ARG002
        return "SELECT LAST_INSERT_ID()"

    def column_type(self, column: ColumnMetadata, reference: bool = False) -> str:  # noqa: ARG002
        if column.column_definition:
            return column.column_definition
        t = column.sql_type
        if t is SqlType.STRING:
            return f"VARCHAR({column.length})"
        if t is SqlType.DOUBLE and column.precision > 0:
            return f"DECIMAL({column.precision},{column.scale})"
        if t is SqlType.DECIMAL:
            return f"DECIMAL({column.precision},{column.scale})" if column.precision > 0 else "DECIMAL"
        return {
            SqlType.TEXT: "TEXT",
            SqlType.SMALLINT: "SMALLINT",
            SqlType.INTEGER: "INT",
            SqlType.BIGINT: "BIGINT",
            SqlType.FLOAT: "FLOAT",
            SqlType.DOUBLE: "DOUBLE",
            SqlType.BOOLEAN: "BOOLEAN",
            SqlType.DATE: "DATE",
            SqlType.TIME: "TIME",
            SqlType.TIMESTAMP: "TIMESTAMP",
            SqlType.BINARY: "BLOB",
        }.get(t, "TEXT")

    def insert_default_values(self, table: str) -> str:
        return f"INSERT INTO {table} () VALUES ()"

    def adapt_value(self, value: Any) -> Any:
        return value

    def quote(self, identifier: str) -> str:
        return f"`{identifier}`"

    def escape(self, literal: str) -> str:
        return _escape(literal)

    def create_table_string(self) -> str:
        return CREATE_TABLE

    def drop_table_string(self) -> str:
        return DROP_TABLE

    def primary_key_string(self) -> str:
        return PRIMARY_KEY

    def foreign_key_string(self) -> str:
        return FOREIGN_KEY

    def unique_string(self) -> str:
        return UNIQUE

    def not_null_string(self) -> str:
        return NOT_NULL

    def timestamp_default_now(self) -> str:
        return "DEFAULT CURRENT_TIMESTAMP"

    def begin_transaction_sql(self) -> str | None:
        return None


class PostgreSQLDialect:
    """PostgreSQL dialect: ``%s`` placeholders (psycopg), serial identity types.

    Generated keys use ``SERIAL``/``BIGSERIAL`` column types, so the identity
    fragment itself is empty.
    """

    _SERIAL_TYPES = {
        SqlType.SMALLINT: "SMALLSERIAL",
        SqlType.INTEGER: "SERIAL",
        SqlType.BIGINT: "BIGSERIAL",
    }

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def named_placeholder(self, name: str) -> str:
        return f"%({name})s"

    def limit_clause(self, sql: str, limit: int | None, offset: int | None = None) -> str:
        return _with_limit(sql, limit, offset)

    @property
    def supports_sequences(self) -> bool:
        return True

    def identity_column_string(self) -> str:
        return ""

    def sequence_next_value(self, sequence_name: str) -> str:
        return f"SELECT nextval('{_escape(sequence_name)}')"

    def identity_select_string(self, table: str, column: str) -> str:
        return f"SELECT currval(pg_get_serial_sequence('{_escape(table)}', '{_escape(column)}'))"

    def column_type(self, column: ColumnMetadata, reference: bool = False) -> str:
        if column.column_definition:
            return column.column_definition
        t = column.sql_type
        if not reference and column.primary_key and column.uses_identity and t in self._SERIAL_TYPES:
            return self._SERIAL_TYPES[t]
        if t is SqlType.STRING:
            return f"VARCHAR({column.length})"
        if t is SqlType.DOUBLE and column.precision > 0:
            return f"NUMERIC({column.precision},{column.scale})"
        if t is SqlType.DECIMAL:
            return f"NUMERIC({column.precision},{column.scale})" if column.precision > 0 else "NUMERIC"
        return {
            SqlType.TEXT: "TEXT",
            SqlType.SMALLINT: "SMALLINT",
            SqlType.INTEGER: "INTEGER",
            SqlType.BIGINT: "BIGINT",
            SqlType.FLOAT: "REAL",
            SqlType.DOUBLE: "DOUBLE PRECISION",
            SqlType.BOOLEAN: "BOOLEAN",
            SqlType.DATE: "DATE",
            SqlType.TIME: "TIME",
            SqlType.TIMESTAMP: "TIMESTAMP",
            SqlType.BINARY: "BYTEA",
        }.get(t, "TEXT")

    def insert_default_values(self, table: str) -> str:
        return f"INSERT INTO {table} DEFAULT VALUES"

    def adapt_value(self, value: Any) -> Any:
        return value

    def quote(self, identifier: str) -> str:
        return f'"{identifier}"'

    def escape(self, literal: str) -> str:
        return _escape(literal)

    def create_table_string(self) -> str:
        return CREATE_TABLE

    def drop_table_string(self) -> str:
        return DROP_TABLE

    def primary_key_string(self) -> str:
        return PRIMARY_KEY

    def foreign_key_string(self) -> str:
        return FOREIGN_KEY

    def unique_string(self) -> str:
        return UNIQUE

    def not_null_string(self) -> str:
        return NOT_NULL

    def timestamp_default_now(self) -> str:
        return "DEFAULT NOW()"

    def begin_transaction_sql(self) -> str | None:
        return None


class SQLiteDialect:
    """SQLite dialect: ``?`` placeholders, rowid-alias identity, text dates.

    An ``INTEGER`` column declared as the table's single primary key is an
    alias for the rowid, so generated keys need no extra DDL fragment.
    """

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def named_placeholder(self, name: str) -> str:
        return f":{name}"

    def limit_clause(self, sql: str, limit: int | None, offset: int | None = None) -> str:
        return _with_limit(sql, limit, offset)

    @property
    def supports_sequences(self) -> bool:
        return False

    def identity_column_string(self) -> str:
        return ""

    def sequence_next_value(self, sequence_name: str) -> str:
        raise UnsupportedFeatureError(self.name, "sequences").with_context(sequence=sequence_name)

    def identity_select_string(self, table: str, column: str) -> str:  # noqa: ARG002
        return "SELECT last_insert_rowid()"

    def column_type(self, column: ColumnMetadata, reference: bool = False) -> str:  # noqa: ARG002
        if column.column_definition:
            return column.column_definition
        t = column.sql_type
        if t in (SqlType.SMALLINT, SqlType.INTEGER, SqlType.BIGINT, SqlType.BOOLEAN):
            return "INTEGER"
        if t in (SqlType.FLOAT, SqlType.DOUBLE):
            return "REAL"
        if t is SqlType.DECIMAL:
            return "NUMERIC"
        if t is SqlType.BINARY:
            return "BLOB"
        return "TEXT"

    def insert_default_values(self, table: str) -> str:
        return f"INSERT INTO {table} DEFAULT VALUES"

    def adapt_value(self, value: Any) -> Any:
        # sqlite3's default date adapters are deprecated; store ISO text
        if isinstance(value, (dt.datetime, dt.date, dt.time)):
            return value.isoformat()
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, Enum):
            return value.name
        return value

    def quote(self, identifier: str) -> str:
        return f'"{identifier}"'

    def escape(self, literal: str) -> str:
        return _escape(literal)

    def create_table_string(self) -> str:
        return CREATE_TABLE

    def drop_table_string(self) -> str:
        return DROP_TABLE

    def primary_key_string(self) -> str:
        return PRIMARY_KEY

    def foreign_key_string(self) -> str:
        return FOREIGN_KEY

    def unique_string(self) -> str:
        return UNIQUE

    def not_null_string(self) -> str:
        return NOT_NULL

    def timestamp_default_now(self) -> str:
        return "DEFAULT CURRENT_TIMESTAMP"

    def begin_transaction_sql(self) -> str | None:
        return "BEGIN"


# =========================================================================
# Registry / Factory
# =========================================================================

# Pre-instantiated singletons (dialects are stateless)
_DIALECTS: dict[str, Dialect] = {
    "generic": GenericDialect(),
    "ansi": GenericDialect(),
    "h2": GenericDialect(),
    "mysql": MySQLDialect(),
    "mariadb": MySQLDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),
    "sqlite": SQLiteDialect(),
}


def get_dialect(name: str) -> Dialect:
    """Get a dialect by name.

    Args:
        name: One of ``'generic'``, ``'mysql'``, ``'postgresql'``,
              ``'sqlite'`` or a registered alias.

    Raises:
        ConfigError: If ``name`` is not recognised.
    """
    key = name.lower()
    if key not in _DIALECTS:
        raise ConfigError(
            f"Unknown dialect '{name}'. Supported: {sorted(_DIALECTS)}"
        )
    return _DIALECTS[key]


def register_dialect(name: str, dialect: Dialect) -> None:
    """Register a custom dialect implementation under ``name``."""
    _DIALECTS[name.lower()] = dialect


def dialect_for_url(url: str) -> Dialect:
    """Infer the dialect from a connection URL scheme.

    ``postgresql+psycopg://...`` and ``postgresql://...`` both resolve to
    PostgreSQL; the driver part after ``+`` is ignored.

    Raises:
        ConfigError: If the URL has no scheme or the scheme is unknown.
    """
    if "://" not in url and not url.startswith("sqlite:"):
        raise ConfigError(f"Cannot infer dialect from URL without a scheme: {url!r}")
    scheme = url.split(":", 1)[0].split("+", 1)[0].lower()
    if scheme not in _DIALECTS:
        raise ConfigError(f"Cannot infer dialect from URL scheme '{scheme}'")
    return _DIALECTS[scheme]


__all__ = [
    "Dialect",
    "GenericDialect",
    "MySQLDialect",
    "PostgreSQLDialect",
    "SQLiteDialect",
    "get_dialect",
    "register_dialect",
    "dialect_for_url",
]
