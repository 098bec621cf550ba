"""
Session: one unit of work on one connection.

A ``Session`` persists and loads entities through the metadata registry and
the active dialect. It keeps a private identity cache so the same row is the
same object for the lifetime of the session, and it owns at most one
``Transaction``.

Manifesto:
    - **One connection per session:** acquired lazily, released on close
    - **Identity:** repeated lookups of an id return the same instance
    - **Auto-commit outside transactions:** each mutation commits at once
    - **Bound parameters only:** values never enter SQL text

Architecture:
    ::

        SessionFactory.open_session()
                │
                ▼
        ┌──────────────────────────────────────────────────────────┐
        │ Session                                                   │
        │   save / update / save_or_update / delete                 │
        │   find_by_id / find_all         ← identity cache          │
        │   create_query / execute_update ← caller SQL, bound params│
        │   begin_transaction → Transaction (one at a time)         │
        └──────────────────────────────────────────────────────────┘
                │ Dialect (SQL fragments)   │ Connection (driver)
                ▼                            ▼

    Loading a Post with a many-to-one ``user``:

        SELECT id, title, user_id FROM posts WHERE id = ?
          → map basic columns, cache Post
          → find_by_id(User, user_id)   (cache hit or one more SELECT)

Examples:
    >>> with factory.open_session() as session:
    ...     user = session.save(User(username="alice", email="a@example.com"))
    ...     session.find_by_id(User, user.id) is user
    True

Guardrails:
    ❌ DON'T: Share a Session between threads
    ✅ DO: Open one session per unit of work

    ❌ DON'T: Format values into create_query SQL
    ✅ DO: Pass params and use dialect placeholders

Tags:
    session, unit-of-work, identity-map, crud, relmap

Doc-Types:
    - API Reference
    - Persistence Guide
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping, Sequence
from enum import Enum
from typing import Any, TypeVar

from relmap.core.dialect import Dialect
from relmap.core.errors import (
    MappingError,
    PersistenceError,
    QueryError,
    RelmapError,
    SessionClosedError,
    TransactionError,
)
from relmap.core.logging import get_logger
from relmap.core.mapping import GenerationType
from relmap.core.metadata import EntityMetadata, MetadataRegistry, RelationshipMetadata
from relmap.core.protocols import Connection, ConnectionProvider, Params
from relmap.core.query import QueryBuilder, TypedQuery
from relmap.core.timing import PerformanceMonitor, log_sql
from relmap.core.transaction import Transaction
from relmap.core.types import from_db, to_db

logger = get_logger(__name__)

T = TypeVar("T")


class RelationshipLoadPolicy(str, Enum):
    """What happens when a relationship cannot be resolved while mapping a row."""

    BEST_EFFORT = "best_effort"  # log and leave the field unset
    FAIL_FAST = "fail_fast"      # raise PersistenceError


class SessionState(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


def _rows(cursor: Any) -> list[dict[str, Any]]:
    """Fetch every row as a dict keyed by lower-cased column name."""
    if cursor.description is None:
        return []
    names = [d[0].lower() for d in cursor.description]
    return [dict(zip(names, row)) for row in cursor.fetchall()]


def _convert(meta: EntityMetadata, field: str, value: Any, python_type: Any) -> Any:
    try:
        return from_db(value, python_type)
    except (ValueError, TypeError, LookupError, ArithmeticError) as e:
        raise MappingError(f"Cannot convert column value for field '{field}'", cause=e).with_context(
            entity=meta.entity_name, field=field, value=value
        ) from e


class Session:
    """Unit of work bound to one connection.

    Parameters
    ----------
    registry
        Entity metadata.
    dialect
        SQL fragments for the target database.
    provider
        Source of the session's connection.
    relationship_policy
        Failure handling for relationship resolution during row mapping.
    monitor
        Optional statement statistics collector.
    show_sql
        Log every statement at INFO instead of DEBUG.
    on_close
        Called once when the session closes.
    """

    def __init__(
        self,
        registry: MetadataRegistry,
        dialect: Dialect,
        provider: ConnectionProvider,
        *,
        relationship_policy: RelationshipLoadPolicy = RelationshipLoadPolicy.BEST_EFFORT,
        monitor: PerformanceMonitor | None = None,
        show_sql: bool = False,
        on_close: Callable[[Session], None] | None = None,
    ) -> None:
        self.registry = registry
        self.dialect = dialect
        self.relationship_policy = RelationshipLoadPolicy(relationship_policy)
        self.monitor = monitor
        self.show_sql = show_sql
        self.session_id = uuid.uuid4().hex[:8]
        self.state = SessionState.OPEN

        self._provider = provider
        self._on_close = on_close
        self._connection: Connection | None = None
        self._transaction: Transaction | None = None
        self._cache: dict[tuple[type, Any], Any] = {}

        logger.debug("session.opened", session_id=self.session_id)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN

    @property
    def transaction(self) -> Transaction | None:
        """The active transaction, or None."""
        return self._transaction

    def _check_open(self, operation: str) -> None:
        if not self.is_open:
            raise SessionClosedError().with_context(operation=operation)

    def _conn(self) -> Connection:
        if self._connection is None:
            self._connection = self._provider.acquire()
        return self._connection

    # ------------------------------------------------------------------
    # Statement execution
    # ------------------------------------------------------------------

    def _bind(self, value: Any) -> Any:
        return self.dialect.adapt_value(to_db(value))

    def _bind_params(self, params: Params | None) -> Params:
        if params is None:
            return ()
        if isinstance(params, Mapping):
            return {key: self._bind(value) for key, value in params.items()}
        return tuple(self._bind(value) for value in params)

    def _execute(
        self,
        operation: str,
        sql: str,
        params: Params | None = None,
        *,
        metadata: EntityMetadata | None = None,
        entity_id: Any = None,
        error_cls: type[RelmapError] = PersistenceError,
    ) -> Any:
        self._check_open(operation)
        conn = self._conn()
        bound = self._bind_params(params)
        entity = metadata.entity_name if metadata is not None else None
        try:
            with log_sql(
                operation,
                sql,
                monitor=self.monitor,
                show_sql=self.show_sql,
                session_id=self.session_id,
            ):
                return conn.execute(sql, bound)
        except RelmapError:
            self._rollback_implicit(conn, operation)
            raise
        except Exception as e:
            self._rollback_implicit(conn, operation)
            target = f" {entity}" if entity else ""
            kwargs: dict[str, Any] = {"sql": sql} if issubclass(error_cls, QueryError) else {}
            raise error_cls(
                f"Failed to {operation.replace('_', ' ')}{target}", cause=e, **kwargs
            ).with_context(
                entity=entity,
                table=metadata.full_table_name if metadata is not None else None,
                sql=sql,
                entity_id=entity_id,
                operation=operation,
            ) from e

    def _rollback_implicit(self, conn: Connection, operation: str) -> None:
        """Undo the driver's implicit transaction after a failed statement."""
        if self._transaction is not None:
            return
        try:
            conn.rollback()
        except Exception as e:
            logger.warning(
                "session.rollback_failed", operation=operation, session_id=self.session_id, error=str(e)
            )

    def _autocommit(self, operation: str) -> None:
        if self._transaction is not None:
            return
        conn = self._conn()
        try:
            conn.commit()
        except Exception as e:
            self._rollback_implicit(conn, operation)
            raise PersistenceError(f"Failed to commit {operation.replace('_', ' ')}", cause=e).with_context(
                operation=operation
            ) from e

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def save(self, entity: T) -> T:
        """INSERT ``entity`` and cache it under its (possibly generated) key."""
        self._check_open("save")
        meta = self.registry.get(type(entity))
        pk = meta.primary_key

        if pk.generation is GenerationType.SEQUENCE:
            sequence = pk.generator or f"{meta.table_name}_seq"
            cursor = self._execute("next_value", self.dialect.sequence_next_value(sequence), metadata=meta)
            pk.set_value(entity, from_db(cursor.fetchone()[0], pk.python_type))

        columns: list[str] = []
        values: list[Any] = []
        for column in meta.columns.values():
            if column.primary_key and column.uses_identity:
                continue
            columns.append(column.column_name)
            values.append(column.get_value(entity))
        for relationship in meta.join_relationships:
            columns.append(relationship.join_column)  # type: ignore[arg-type]
            values.append(self._related_key(relationship, entity))

        if columns:
            sql = (
                f"INSERT INTO {meta.full_table_name} ({', '.join(columns)}) "
                f"VALUES ({self.dialect.placeholders(len(columns))})"
            )
        else:
            sql = self.dialect.insert_default_values(meta.full_table_name)
        self._execute("save", sql, values, metadata=meta)

        if pk.uses_identity:
            identity_sql = self.dialect.identity_select_string(meta.full_table_name, pk.column_name)
            row = self._execute("identity", identity_sql, metadata=meta).fetchone()
            pk.set_value(entity, from_db(row[0], pk.python_type))

        self._autocommit("save")

        key = meta.get_id(entity)
        if key is not None:
            self._cache[(meta.entity_type, key)] = entity
        logger.debug("session.saved", entity=meta.entity_name, entity_id=key, session_id=self.session_id)
        return entity

    def update(self, entity: T) -> T:
        """UPDATE every non-key column and foreign key of ``entity``."""
        self._check_open("update")
        meta = self.registry.get(type(entity))
        key = meta.get_id(entity)
        if key is None:
            raise MappingError("Cannot update an entity without a primary key").with_context(
                entity=meta.entity_name, operation="update"
            )

        assignments: list[str] = []
        values: list[Any] = []
        for column in meta.columns.values():
            if column.primary_key:
                continue
            assignments.append(f"{column.column_name} = {self.dialect.placeholder(len(values))}")
            values.append(column.get_value(entity))
        for relationship in meta.join_relationships:
            assignments.append(f"{relationship.join_column} = {self.dialect.placeholder(len(values))}")
            values.append(self._related_key(relationship, entity))
        if not assignments:
            return entity

        values.append(key)
        sql = (
            f"UPDATE {meta.full_table_name} SET {', '.join(assignments)} "
            f"WHERE {meta.primary_key.column_name} = {self.dialect.placeholder(len(values) - 1)}"
        )
        self._execute("update", sql, values, metadata=meta, entity_id=key)
        self._autocommit("update")
        logger.debug("session.updated", entity=meta.entity_name, entity_id=key, session_id=self.session_id)
        return entity

    def save_or_update(self, entity: T) -> T:
        """``update`` if the key exists in storage, else ``save``."""
        self._check_open("save_or_update")
        meta = self.registry.get(type(entity))
        key = meta.get_id(entity)
        if key is not None and self._exists(meta, key):
            return self.update(entity)
        return self.save(entity)

    def delete(self, entity: Any) -> None:
        """DELETE ``entity`` by key and evict it from the cache."""
        self._check_open("delete")
        meta = self.registry.get(type(entity))
        key = meta.get_id(entity)
        if key is None:
            raise MappingError("Cannot delete an entity without a primary key").with_context(
                entity=meta.entity_name, operation="delete"
            )
        sql = (
            f"DELETE FROM {meta.full_table_name} "
            f"WHERE {meta.primary_key.column_name} = {self.dialect.placeholder(0)}"
        )
        self._execute("delete", sql, (key,), metadata=meta, entity_id=key)
        self._autocommit("delete")
        self._cache.pop((meta.entity_type, key), None)
        logger.debug("session.deleted", entity=meta.entity_name, entity_id=key, session_id=self.session_id)

    def find_by_id(self, entity_type: type[T], entity_id: Any) -> T | None:
        """Load one entity by key; None when no row matches."""
        self._check_open("find_by_id")
        meta = self.registry.get(entity_type)
        if entity_id is None:
            return None
        cached = self._cache.get((meta.entity_type, entity_id))
        if cached is not None:
            return cached

        sql = (
            f"SELECT {', '.join(meta.column_names)} FROM {meta.full_table_name} "
            f"WHERE {meta.primary_key.column_name} = {self.dialect.placeholder(0)}"
        )
        rows = _rows(self._execute("find_by_id", sql, (entity_id,), metadata=meta, entity_id=entity_id))
        if not rows:
            return None
        return self._map_row(meta, rows[0], cache=True)

    def find_all(self, entity_type: type[T]) -> list[T]:
        """Load every row; rows already cached return the cached instance."""
        self._check_open("find_all")
        meta = self.registry.get(entity_type)
        sql = f"SELECT {', '.join(meta.column_names)} FROM {meta.full_table_name}"
        rows = _rows(self._execute("find_all", sql, metadata=meta))

        pk = meta.primary_key
        results = []
        for row in rows:
            key = _convert(meta, pk.field_name, row.get(pk.column_name.lower()), pk.python_type)
            cached = self._cache.get((meta.entity_type, key)) if key is not None else None
            results.append(cached if cached is not None else self._map_row(meta, row, cache=True))
        return results

    def contains(self, entity: Any) -> bool:
        """True if ``entity`` is the cached instance for its key."""
        meta = self.registry.find(type(entity))
        if meta is None:
            return False
        key = meta.get_id(entity)
        return key is not None and self._cache.get((meta.entity_type, key)) is entity

    def _exists(self, meta: EntityMetadata, key: Any) -> bool:
        sql = (
            f"SELECT 1 FROM {meta.full_table_name} "
            f"WHERE {meta.primary_key.column_name} = {self.dialect.placeholder(0)}"
        )
        return self._execute("exists", sql, (key,), metadata=meta, entity_id=key).fetchone() is not None

    def _related_key(self, relationship: RelationshipMetadata, entity: Any) -> Any:
        related = relationship.get_value(entity)
        if related is None:
            return None
        return self.registry.get(type(related)).get_id(related)

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _map_row(self, meta: EntityMetadata, row: dict[str, Any], *, cache: bool) -> Any:
        instance = meta.new_instance()
        for column in meta.columns.values():
            name = column.column_name.lower()
            if name in row:
                column.set_value(instance, _convert(meta, column.field_name, row[name], column.python_type))

        # Cached before relationships resolve so reference cycles terminate
        key = meta.get_id(instance)
        if cache and key is not None:
            self._cache[(meta.entity_type, key)] = instance

        for relationship in meta.join_relationships:
            foreign_key = row.get(relationship.join_column.lower())  # type: ignore[union-attr]
            if foreign_key is not None:
                self._resolve(meta, relationship, instance, foreign_key)
        return instance

    def _resolve(
        self,
        meta: EntityMetadata,
        relationship: RelationshipMetadata,
        instance: Any,
        foreign_key: Any,
    ) -> None:
        try:
            target_meta = self.registry.get(relationship.target)
            target_id = _convert(meta, relationship.field_name, foreign_key, target_meta.primary_key.python_type)
            related = self.find_by_id(relationship.target, target_id)
        except RelmapError as e:
            if self.relationship_policy is RelationshipLoadPolicy.FAIL_FAST:
                raise PersistenceError(
                    f"Failed to load relationship '{relationship.field_name}'", cause=e
                ).with_context(
                    entity=meta.entity_name,
                    field=relationship.field_name,
                    entity_id=meta.get_id(instance),
                    foreign_key=foreign_key,
                ) from e
            logger.warning(
                "relationship.resolve_failed",
                entity=meta.entity_name,
                field=relationship.field_name,
                entity_id=meta.get_id(instance),
                foreign_key=foreign_key,
                error=str(e),
            )
            return

        if related is None:
            logger.debug(
                "relationship.target_missing",
                entity=meta.entity_name,
                field=relationship.field_name,
                foreign_key=foreign_key,
            )
            return
        relationship.set_value(instance, related)

    # ------------------------------------------------------------------
    # Caller SQL
    # ------------------------------------------------------------------

    def create_query(self, sql: str, entity_type: type[T], params: Params | None = None) -> list[T]:
        """Run caller SQL and map every row; the identity cache is bypassed."""
        self._check_open("create_query")
        meta = self.registry.get(entity_type)
        rows = _rows(self._execute("query", sql, params, metadata=meta, error_cls=QueryError))
        return [self._map_row(meta, row, cache=False) for row in rows]

    def execute_update(self, sql: str, params: Params | None = None) -> int:
        """Run caller DML/DDL and return the affected-row count."""
        self._check_open("execute_update")
        cursor = self._execute("execute_update", sql, params, error_cls=QueryError)
        self._autocommit("execute_update")
        return cursor.rowcount

    def query(self, entity_type: type) -> QueryBuilder:
        """A query builder for ``entity_type`` using this session's dialect."""
        return QueryBuilder(self.registry.get(entity_type), self.dialect)

    def typed_query(
        self, sql: str, entity_type: type[T], params: Mapping[str, Any] | Sequence[Any] | None = None
    ) -> TypedQuery[T]:
        return TypedQuery(self, sql, entity_type, params)

    # ------------------------------------------------------------------
    # Transactions and lifecycle
    # ------------------------------------------------------------------

    def begin_transaction(self) -> Transaction:
        """Start a transaction; auto-commit is suspended until it finishes.

        Raises:
            TransactionError: If a transaction is already active.
        """
        self._check_open("begin_transaction")
        if self._transaction is not None and self._transaction.is_active:
            raise TransactionError("Transaction already active").with_context(
                operation="begin_transaction", session_id=self.session_id
            )
        transaction = Transaction(self._conn(), self.dialect, on_complete=self._transaction_finished)
        transaction.begin()
        self._transaction = transaction
        return transaction

    def _transaction_finished(self, transaction: Transaction) -> None:
        if self._transaction is transaction:
            self._transaction = None

    def flush(self) -> None:
        """Statements execute immediately, so there is nothing to flush."""
        self._check_open("flush")

    def clear(self) -> None:
        """Empty the identity cache."""
        self._cache.clear()

    def close(self) -> None:
        """Roll back any active transaction and release the connection. Idempotent."""
        if not self.is_open:
            return
        self.state = SessionState.CLOSED
        try:
            if self._transaction is not None and self._transaction.is_active:
                logger.warning("session.rollback_on_close", session_id=self.session_id)
                self._transaction.rollback()
        finally:
            self._transaction = None
            self._cache.clear()
            if self._connection is not None:
                connection, self._connection = self._connection, None
                self._provider.release(connection)
            if self._on_close is not None:
                self._on_close(self)
            logger.debug("session.closed", session_id=self.session_id)

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Session(id={self.session_id}, state={self.state.value}, cached={len(self._cache)})"


__all__ = ["Session", "SessionState", "RelationshipLoadPolicy"]
