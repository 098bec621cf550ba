"""Tests for the Dialect abstraction layer."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

import relmap.core.dialect as dialect_module
from relmap.core.dialect import (
    Dialect,
    GenericDialect,
    MySQLDialect,
    PostgreSQLDialect,
    SQLiteDialect,
    dialect_for_url,
    get_dialect,
    register_dialect,
)
from relmap.core.errors import ConfigError, UnsupportedFeatureError
from relmap.core.mapping import GenerationType
from relmap.core.metadata import ColumnMetadata
from relmap.core.types import SqlType


def _column(sql_type: SqlType, **kwargs) -> ColumnMetadata:
    defaults = {"field_name": "c", "column_name": "c", "python_type": object, "sql_type": sql_type}
    defaults.update(kwargs)
    return ColumnMetadata(**defaults)


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture(params=["generic", "mysql", "postgresql", "sqlite"])
def any_dialect(request: pytest.FixtureRequest) -> Dialect:
    """Parametric fixture: run each test against every dialect."""
    return get_dialect(request.param)


@pytest.fixture
def generic() -> GenericDialect:
    return GenericDialect()


@pytest.fixture
def mysql() -> MySQLDialect:
    return MySQLDialect()


@pytest.fixture
def pg() -> PostgreSQLDialect:
    return PostgreSQLDialect()


@pytest.fixture
def sqlite() -> SQLiteDialect:
    return SQLiteDialect()


# =========================================================================
# Common behaviour
# =========================================================================


class TestCommon:
    def test_satisfies_protocol(self, any_dialect):
        assert isinstance(any_dialect, Dialect)

    def test_placeholders_count(self, any_dialect):
        text = any_dialect.placeholders(3)
        assert text.count(any_dialect.placeholder(0)) == 3
        assert text.count(",") == 2

    def test_no_limit_leaves_sql_alone(self, any_dialect):
        assert any_dialect.limit_clause("SELECT 1", None, 10) == "SELECT 1"

    def test_keywords(self, any_dialect):
        assert any_dialect.create_table_string() == "CREATE TABLE"
        assert any_dialect.drop_table_string() == "DROP TABLE IF EXISTS"
        assert any_dialect.primary_key_string() == "PRIMARY KEY"
        assert any_dialect.foreign_key_string() == "FOREIGN KEY"
        assert any_dialect.unique_string() == "UNIQUE"
        assert any_dialect.not_null_string() == "NOT NULL"

    def test_escape_doubles_quotes(self, any_dialect):
        assert "''" in any_dialect.escape("O'Brien")

    def test_column_definition_override(self, any_dialect):
        column = _column(SqlType.STRING, column_definition="CHAR(2) NOT NULL")
        assert any_dialect.column_type(column) == "CHAR(2) NOT NULL"


# =========================================================================
# Limit / offset
# =========================================================================


class TestLimitClause:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("generic", "SELECT * FROM users LIMIT 10 OFFSET 20"),
            ("postgresql", "SELECT * FROM users LIMIT 10 OFFSET 20"),
            ("sqlite", "SELECT * FROM users LIMIT 10 OFFSET 20"),
            ("mysql", "SELECT * FROM users LIMIT 20, 10"),
        ],
    )
    def test_limit_with_offset(self, name, expected):
        assert get_dialect(name).limit_clause("SELECT * FROM users", 10, 20) == expected

    @pytest.mark.parametrize("name", ["generic", "mysql", "postgresql", "sqlite"])
    def test_limit_without_offset(self, name):
        assert get_dialect(name).limit_clause("SELECT * FROM users", 5) == "SELECT * FROM users LIMIT 5"


# =========================================================================
# Per-dialect fragments
# =========================================================================


class TestGenericDialect:
    def test_identity(self, generic):
        assert generic.identity_column_string() == "GENERATED BY DEFAULT AS IDENTITY"
        assert generic.identity_select_string("users", "id") == "SELECT IDENTITY()"

    def test_sequences(self, generic):
        assert generic.supports_sequences is True
        assert generic.sequence_next_value("users_seq") == "SELECT NEXT VALUE FOR users_seq"

    def test_placeholders(self, generic):
        assert generic.placeholder(0) == "?"
        assert generic.named_placeholder("age") == ":age"

    def test_column_types(self, generic):
        assert generic.column_type(_column(SqlType.STRING, length=80)) == "VARCHAR(80)"
        assert generic.column_type(_column(SqlType.TEXT)) == "CLOB"
        assert generic.column_type(_column(SqlType.DOUBLE)) == "DOUBLE PRECISION"
        assert generic.column_type(_column(SqlType.DOUBLE, precision=10, scale=2)) == "DECIMAL(10,2)"
        assert generic.column_type(_column(SqlType.BINARY)) == "BLOB"


class TestMySQLDialect:
    def test_identity(self, mysql):
        assert mysql.identity_column_string() == "AUTO_INCREMENT"
        assert mysql.identity_select_string("users", "id") == "SELECT LAST_INSERT_ID()"

    def test_sequences_unsupported(self, mysql):
        assert mysql.supports_sequences is False
        with pytest.raises(UnsupportedFeatureError) as exc_info:
            mysql.sequence_next_value("users_seq")
        assert exc_info.value.context.metadata["sequence"] == "users_seq"

    def test_placeholders(self, mysql):
        assert mysql.placeholder(3) == "%s"
        assert mysql.named_placeholder("age") == "%(age)s"

    def test_quote_uses_backticks(self, mysql):
        assert mysql.quote("order") == "`order`"

    def test_column_types(self, mysql):
        assert mysql.column_type(_column(SqlType.INTEGER)) == "INT"
        assert mysql.column_type(_column(SqlType.DOUBLE)) == "DOUBLE"
        assert mysql.column_type(_column(SqlType.TEXT)) == "TEXT"

    def test_insert_default_values(self, mysql):
        assert mysql.insert_default_values("tags") == "INSERT INTO tags () VALUES ()"

    def test_no_explicit_begin(self, mysql):
        assert mysql.begin_transaction_sql() is None


class TestPostgreSQLDialect:
    def test_identity_select_uses_serial_sequence(self, pg):
        assert pg.identity_select_string("users", "id") == (
            "SELECT currval(pg_get_serial_sequence('users', 'id'))"
        )

    def test_sequences(self, pg):
        assert pg.sequence_next_value("users_seq") == "SELECT nextval('users_seq')"

    def test_serial_for_identity_key(self, pg):
        pk = _column(SqlType.INTEGER, primary_key=True, generation=GenerationType.IDENTITY)
        assert pg.column_type(pk) == "SERIAL"
        assert pg.column_type(pk, reference=True) == "INTEGER"

    def test_bigserial_for_bigint_key(self, pg):
        pk = _column(SqlType.BIGINT, primary_key=True, generation=GenerationType.AUTO)
        assert pg.column_type(pk) == "BIGSERIAL"

    def test_assigned_key_is_plain(self, pg):
        pk = _column(SqlType.INTEGER, primary_key=True)
        assert pg.column_type(pk) == "INTEGER"

    def test_column_types(self, pg):
        assert pg.column_type(_column(SqlType.BINARY)) == "BYTEA"
        assert pg.column_type(_column(SqlType.DECIMAL, precision=12, scale=2)) == "NUMERIC(12,2)"

    def test_timestamp_default(self, pg):
        assert pg.timestamp_default_now() == "DEFAULT NOW()"


class TestSQLiteDialect:
    def test_sequences_unsupported(self, sqlite):
        with pytest.raises(UnsupportedFeatureError):
            sqlite.sequence_next_value("users_seq")

    def test_identity(self, sqlite):
        assert sqlite.identity_column_string() == ""
        assert sqlite.identity_select_string("users", "id") == "SELECT last_insert_rowid()"

    @pytest.mark.parametrize(
        "sql_type,expected",
        [
            (SqlType.INTEGER, "INTEGER"),
            (SqlType.BOOLEAN, "INTEGER"),
            (SqlType.DOUBLE, "REAL"),
            (SqlType.DECIMAL, "NUMERIC"),
            (SqlType.BINARY, "BLOB"),
            (SqlType.STRING, "TEXT"),
            (SqlType.TIMESTAMP, "TEXT"),
        ],
    )
    def test_column_types(self, sqlite, sql_type, expected):
        assert sqlite.column_type(_column(sql_type)) == expected

    def test_adapt_value(self, sqlite):
        assert sqlite.adapt_value(dt.date(2024, 1, 2)) == "2024-01-02"
        assert sqlite.adapt_value(Decimal("1.50")) == "1.50"
        assert sqlite.adapt_value(7) == 7

    def test_begins_explicitly(self, sqlite):
        assert sqlite.begin_transaction_sql() == "BEGIN"


# =========================================================================
# Registry
# =========================================================================


class TestRegistry:
    @pytest.mark.parametrize(
        "name,cls",
        [
            ("generic", GenericDialect),
            ("ANSI", GenericDialect),
            ("h2", GenericDialect),
            ("mariadb", MySQLDialect),
            ("postgres", PostgreSQLDialect),
            ("SQLite", SQLiteDialect),
        ],
    )
    def test_get_dialect_aliases(self, name, cls):
        assert isinstance(get_dialect(name), cls)

    def test_unknown_dialect(self):
        with pytest.raises(ConfigError, match="Unknown dialect"):
            get_dialect("oracle")

    def test_register_dialect(self, monkeypatch):
        monkeypatch.setattr(dialect_module, "_DIALECTS", dict(dialect_module._DIALECTS))
        custom = GenericDialect()
        register_dialect("Derby", custom)
        assert get_dialect("derby") is custom

    @pytest.mark.parametrize(
        "url,cls",
        [
            ("postgresql://localhost/app", PostgreSQLDialect),
            ("postgresql+psycopg://localhost/app", PostgreSQLDialect),
            ("mysql+pymysql://root@localhost/app", MySQLDialect),
            ("sqlite:///app.db", SQLiteDialect),
        ],
    )
    def test_dialect_for_url(self, url, cls):
        assert isinstance(dialect_for_url(url), cls)

    def test_dialect_for_url_without_scheme(self):
        with pytest.raises(ConfigError):
            dialect_for_url("app.db")

    def test_dialect_for_unknown_scheme(self):
        with pytest.raises(ConfigError, match="oracle"):
            dialect_for_url("oracle://localhost/xe")
