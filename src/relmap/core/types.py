"""Semantic SQL types and python value conversion.

``SqlType`` is the dialect-neutral type recorded in column metadata.
Dialects render it to a native keyword; this module only knows how to
infer it from a python type and how to turn driver values back into the
python type a field declares.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any

from relmap.core.errors import MappingError


class SqlType(str, Enum):
    """Dialect-neutral column type."""

    STRING = "STRING"
    TEXT = "TEXT"
    SMALLINT = "SMALLINT"
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    FLOAT = "FLOAT"
    DOUBLE = "DOUBLE"
    DECIMAL = "DECIMAL"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TIME = "TIME"
    TIMESTAMP = "TIMESTAMP"
    BINARY = "BINARY"


# Order matters: bool before int, datetime before date.
_PYTHON_TO_SQL: list[tuple[type, SqlType]] = [
    (bool, SqlType.BOOLEAN),
    (int, SqlType.INTEGER),
    (float, SqlType.DOUBLE),
    (Decimal, SqlType.DECIMAL),
    (str, SqlType.STRING),
    (bytes, SqlType.BINARY),
    (bytearray, SqlType.BINARY),
    (dt.datetime, SqlType.TIMESTAMP),
    (dt.date, SqlType.DATE),
    (dt.time, SqlType.TIME),
]

INTEGER_TYPES = frozenset({SqlType.SMALLINT, SqlType.INTEGER, SqlType.BIGINT})


def is_basic_type(python_type: Any) -> bool:
    """True if values of ``python_type`` map to a single column."""
    if not isinstance(python_type, type):
        return False
    if issubclass(python_type, Enum):
        return True
    return any(issubclass(python_type, candidate) for candidate, _ in _PYTHON_TO_SQL)


def infer_sql_type(python_type: Any) -> SqlType:
    """Infer the semantic SQL type for a python field type.

    Raises:
        MappingError: If the type has no single-column representation.
    """
    if isinstance(python_type, type):
        if issubclass(python_type, Enum):
            return SqlType.STRING
        for candidate, sql_type in _PYTHON_TO_SQL:
            if issubclass(python_type, candidate):
                return sql_type
    raise MappingError(f"Unsupported field type: {python_type!r}")


def to_db(value: Any) -> Any:
    """Convert a field value to something every driver can bind.

    Enums are stored by name. Everything else passes through; dialects
    apply their own adaptation on top (see ``Dialect.adapt_value``).
    """
    if isinstance(value, Enum):
        return value.name
    return value


def from_db(value: Any, python_type: Any) -> Any:
    """Convert a driver value to the python type a field declares.

    Drivers differ in what they return (SQLite hands back text for dates
    and integers for booleans), so conversion keys off the declared type
    rather than the value.
    """
    if value is None or not isinstance(python_type, type):
        return value
    if isinstance(value, python_type):
        # bool is an int and datetime is a date; both still need converting
        if not (python_type is int and isinstance(value, bool)) and not (
            python_type is dt.date and isinstance(value, dt.datetime)
        ):
            return value

    if issubclass(python_type, Enum):
        if isinstance(value, str):
            return python_type[value]
        return python_type(value)
    if python_type is bool:
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "t", "yes", "y")
        return bool(value)
    if python_type is int:
        return int(value)
    if python_type is float:
        return float(value)
    if python_type is Decimal:
        return Decimal(str(value))
    if python_type is str:
        if isinstance(value, (bytes, bytearray)):
            return value.decode("utf-8")
        return str(value)
    if python_type is dt.datetime:
        if isinstance(value, str):
            return dt.datetime.fromisoformat(value)
        if isinstance(value, dt.date):
            return dt.datetime(value.year, value.month, value.day)
    if python_type is dt.date:
        if isinstance(value, dt.datetime):
            return value.date()
        if isinstance(value, str):
            return dt.date.fromisoformat(value[:10])
    if python_type is dt.time and isinstance(value, str):
        return dt.time.fromisoformat(value)
    if python_type is bytes and isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return value


__all__ = [
    "SqlType",
    "INTEGER_TYPES",
    "is_basic_type",
    "infer_sql_type",
    "to_db",
    "from_db",
]
