"""Schema generation from entity metadata.

``SchemaGenerator`` renders one ``CREATE TABLE`` per registered entity:

    CREATE TABLE users (id INTEGER, username VARCHAR(255) NOT NULL, ...,
                        PRIMARY KEY (id), UNIQUE (username), UNIQUE (email))

Foreign-key columns take the type of the target's primary key (``BIGINT``
when the target is not registered). No ``FOREIGN KEY`` constraints are
emitted. Tables are created in registration order and dropped in reverse.
Each statement is committed as it runs; a failure raises
``PersistenceError`` and leaves earlier tables in place.

Statement generation needs no connection, so ``create_statements()`` works
for previewing DDL (``relmap schema show``).
"""

from __future__ import annotations

from relmap.core.dialect import Dialect
from relmap.core.errors import ConfigError, PersistenceError
from relmap.core.logging import get_logger
from relmap.core.metadata import ColumnMetadata, EntityMetadata, MetadataRegistry, RelationshipMetadata
from relmap.core.protocols import ConnectionProvider
from relmap.core.timing import PerformanceMonitor, log_sql
from relmap.core.types import SqlType

logger = get_logger(__name__)

# Used when a foreign key points at an entity that is not registered
_FALLBACK_REFERENCE = ColumnMetadata(
    field_name="id", column_name="id", python_type=int, sql_type=SqlType.BIGINT
)


class SchemaGenerator:
    """Creates and drops entity tables.

    Parameters
    ----------
    registry
        Metadata for every entity to manage.
    dialect
        Renders types and keywords.
    provider
        Connection source for executing DDL. Optional when only statements
        are generated.
    """

    def __init__(
        self,
        registry: MetadataRegistry,
        dialect: Dialect,
        provider: ConnectionProvider | None = None,
        *,
        monitor: PerformanceMonitor | None = None,
        show_sql: bool = False,
    ) -> None:
        self.registry = registry
        self.dialect = dialect
        self.provider = provider
        self.monitor = monitor
        self.show_sql = show_sql

    # ------------------------------------------------------------------
    # Statement generation
    # ------------------------------------------------------------------

    def column_definition(self, column: ColumnMetadata) -> str:
        parts = [column.column_name, self.dialect.column_type(column)]
        if column.primary_key and column.uses_identity:
            identity = self.dialect.identity_column_string()
            if identity:
                parts.append(identity)
        if not column.nullable:
            parts.append(self.dialect.not_null_string())
        return " ".join(parts)

    def join_column_definition(self, relationship: RelationshipMetadata) -> str:
        target = self.registry.find(relationship.target)
        reference = target.primary_key if target is not None else _FALLBACK_REFERENCE
        parts = [relationship.join_column, self.dialect.column_type(reference, reference=True)]
        if not relationship.optional:
            parts.append(self.dialect.not_null_string())
        return " ".join(parts)  # type: ignore[arg-type]

    def create_table_sql(self, metadata: EntityMetadata) -> str:
        d = self.dialect
        definitions = [self.column_definition(c) for c in metadata.columns.values()]
        definitions.extend(self.join_column_definition(r) for r in metadata.join_relationships)
        definitions.append(f"{d.primary_key_string()} ({metadata.primary_key.column_name})")
        definitions.extend(
            f"{d.unique_string()} ({c.column_name})"
            for c in metadata.columns.values()
            if c.unique and not c.primary_key
        )
        return f"{d.create_table_string()} {metadata.full_table_name} ({', '.join(definitions)})"

    def drop_table_sql(self, metadata: EntityMetadata) -> str:
        return f"{self.dialect.drop_table_string()} {metadata.full_table_name}"

    def create_statements(self) -> list[str]:
        return [self.create_table_sql(m) for m in self.registry]

    def drop_statements(self) -> list[str]:
        return [self.drop_table_sql(m) for m in reversed(list(self.registry))]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def create_schema(self) -> None:
        """Create every table, in registration order."""
        self._execute_all(
            "create_table",
            [(m, self.create_table_sql(m)) for m in self.registry],
        )
        logger.info("schema.created", tables=len(self.registry), dialect=self.dialect.name)

    def drop_schema(self) -> None:
        """Drop every table (if present), in reverse registration order."""
        self._execute_all(
            "drop_table",
            [(m, self.drop_table_sql(m)) for m in reversed(list(self.registry))],
        )
        logger.info("schema.dropped", tables=len(self.registry), dialect=self.dialect.name)

    def recreate_schema(self) -> None:
        self.drop_schema()
        self.create_schema()

    def _execute_all(self, operation: str, statements: list[tuple[EntityMetadata, str]]) -> None:
        if self.provider is None:
            raise ConfigError("No connection provider configured for schema execution")

        conn = self.provider.acquire()
        try:
            for metadata, sql in statements:
                try:
                    with log_sql(
                        operation,
                        sql,
                        monitor=self.monitor,
                        show_sql=self.show_sql,
                        table=metadata.full_table_name,
                    ):
                        conn.execute(sql)
                        conn.commit()
                except Exception as e:
                    raise PersistenceError(
                        f"Failed to {operation.replace('_', ' ')} {metadata.full_table_name}",
                        cause=e,
                    ).with_context(
                        entity=metadata.entity_name,
                        table=metadata.full_table_name,
                        sql=sql,
                        operation=operation,
                    ) from e
                logger.debug(f"schema.{operation}", table=metadata.full_table_name)
        finally:
            self.provider.release(conn)


__all__ = ["SchemaGenerator"]
