"""
Structured error types for relmap.

Every failure the mapping engine raises is a ``RelmapError`` subclass that
carries a category, an ``ErrorContext`` (entity type, table, SQL text, id,
migration version) and the chained driver exception. Callers catch one
family per concern instead of parsing driver messages.

Manifesto:
    - **Typed Error Hierarchy:** Mapping, persistence, query, transaction
      and migration failures are distinct types
    - **Rich Context:** Errors name the entity, SQL and id involved
    - **Error Chaining:** The driver exception is preserved as ``cause``
    - **No Hidden Retries:** Nothing in relmap retries automatically

Architecture:
    ::

        ┌───────────────────────────────────────────────────────────────┐
        │                         RelmapError                            │
        │               (category, context, cause)                       │
        ├───────────────────────────────────────────────────────────────┤
        │                                                                │
        │  MappingError        PersistenceError      QueryError          │
        │  (MAPPING)           (PERSISTENCE)         (QUERY)             │
        │      │                   │                     │               │
        │  ConfigError         SessionClosedError    NoResultError       │
        │  (CONFIG)            MigrationError        NonUniqueResult     │
        │                      (MIGRATION)                               │
        │                                                                │
        │  TransactionError    UnsupportedFeatureError                   │
        │  (TRANSACTION)       (DIALECT)                                 │
        └───────────────────────────────────────────────────────────────┘

Examples:
    >>> err = PersistenceError("Failed to save User").with_context(
    ...     entity="User", sql="INSERT INTO users ..."
    ... )
    >>> err.context.entity
    'User'
    >>> err.to_dict()["category"]
    'PERSISTENCE'

Guardrails:
    ❌ DON'T: Let raw driver exceptions escape a session operation
    ✅ DO: Wrap them in PersistenceError / QueryError with cause=

    ❌ DON'T: Treat a missing row as an error
    ✅ DO: Return None from lookups, raise only on real failures

Tags:
    error-handling, exception-hierarchy, error-context, relmap

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories for classification and log routing."""

    MAPPING = "MAPPING"            # Metadata build, accessors
    CONFIG = "CONFIG"              # Missing dialect/connection, bad settings
    DIALECT = "DIALECT"            # Capability not offered by a dialect
    PERSISTENCE = "PERSISTENCE"    # CRUD and DDL execution
    QUERY = "QUERY"                # Raw SQL and typed queries
    TRANSACTION = "TRANSACTION"    # Transaction state machine
    MIGRATION = "MIGRATION"        # Versioned migrations
    INTERNAL = "INTERNAL"          # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only fields that are set appear in ``to_dict()``. Anything that has no
    dedicated field goes into ``metadata``.

    Attributes:
        entity: Entity type name (e.g. ``"User"``)
        table: Table name involved
        sql: SQL text that failed
        entity_id: Primary-key value involved
        field: Mapped field name
        version: Migration version
        operation: Session/schema operation (``"save"``, ``"create_schema"``)
        metadata: Additional key-value pairs
    """

    entity: str | None = None
    table: str | None = None
    sql: str | None = None
    entity_id: Any = None
    field: str | None = None
    version: str | None = None
    operation: str | None = None

    metadata: dict[str, Any] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["entity", "table", "sql", "entity_id", "field", "version", "operation"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RelmapError(Exception):
    """
    Base exception for all relmap errors.

    Subclasses set ``default_category``. The context is printed after the
    message so a bare traceback still shows which entity and SQL failed.

    Examples:
        >>> try:
        ...     raise ValueError("boom")
        ... except ValueError as e:
        ...     error = RelmapError("Mapping failed", cause=e)
        >>> error.cause
        ValueError('boom')
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RelmapError:
        """
        Add context to this error (fluent API).

        Usage:
            raise PersistenceError("Failed").with_context(entity="User", entity_id=7)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        context_dict = self.context.to_dict()
        if not context_dict:
            return self.message
        details = ", ".join(f"{k}={v!r}" for k, v in context_dict.items())
        return f"{self.message} [{details}]"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# MAPPING / CONFIGURATION ERRORS
# =============================================================================


class MappingError(RelmapError):
    """Entity metadata is invalid or a mapped field cannot be accessed."""

    default_category = ErrorCategory.MAPPING


class ConfigError(MappingError):
    """Configuration is incomplete or invalid (no dialect, no connection source)."""

    default_category = ErrorCategory.CONFIG


class UnsupportedFeatureError(RelmapError):
    """The active dialect does not offer the requested capability."""

    default_category = ErrorCategory.DIALECT

    def __init__(self, dialect: str, feature: str, message: str | None = None):
        self.dialect = dialect
        self.feature = feature
        super().__init__(message or f"{dialect} does not support {feature}")


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================


class PersistenceError(RelmapError):
    """A SQL statement failed during CRUD or DDL execution."""

    default_category = ErrorCategory.PERSISTENCE


class SessionClosedError(PersistenceError):
    """Operation attempted on a closed session or session factory."""

    def __init__(self, message: str = "Session is closed", **kwargs: Any):
        super().__init__(message, **kwargs)


class MigrationError(PersistenceError):
    """A migration could not be registered, applied or reverted."""

    default_category = ErrorCategory.MIGRATION

    def __init__(self, message: str, *, version: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.version = version
        if version is not None:
            self.context.version = version


# =============================================================================
# QUERY ERRORS
# =============================================================================


class QueryError(RelmapError):
    """Caller-supplied SQL failed to execute or map."""

    default_category = ErrorCategory.QUERY

    def __init__(self, message: str, *, sql: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.sql = sql
        if sql is not None:
            self.context.sql = sql


class NoResultError(QueryError):
    """A single result was requested but the query returned no rows."""


class NonUniqueResultError(QueryError):
    """A single result was requested but the query returned several rows."""


# =============================================================================
# TRANSACTION ERRORS
# =============================================================================


class TransactionError(RelmapError):
    """Illegal transaction state transition or commit/rollback failure."""

    default_category = ErrorCategory.TRANSACTION


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, RelmapError):
        return error.category
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "RelmapError",
    "MappingError",
    "ConfigError",
    "UnsupportedFeatureError",
    "PersistenceError",
    "SessionClosedError",
    "MigrationError",
    "QueryError",
    "NoResultError",
    "NonUniqueResultError",
    "TransactionError",
    "categorize_error",
]
