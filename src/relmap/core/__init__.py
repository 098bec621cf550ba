"""relmap core -- mapping metadata, dialects, sessions and migrations.

Manifesto:
    Mapping decisions are data, vendor differences live in one dialect
    object, and every statement binds its values. The host application owns
    connections (through a provider) and log sinks; relmap owns SQL.

Architecture::

    Layer 1 -- Types & Errors
        errors.py          RelmapError hierarchy with entity/SQL context
        types.py           SqlType + python value conversion
        protocols.py       Connection, Cursor, ConnectionProvider
        logging.py         structlog configuration
        timing.py          log_sql() + PerformanceMonitor

    Layer 2 -- Mapping & Dialects
        mapping.py         Entity / Id / Column / ManyToOne declarations
        metadata.py        EntityMetadata + MetadataRegistry
        dialect.py         Generic, MySQL, PostgreSQL, SQLite

    Layer 3 -- Execution
        connection.py      SQLite and SQLAlchemy connection providers
        transaction.py     Transaction state machine
        session.py         Session (CRUD, identity cache, raw SQL)
        query.py           QueryBuilder + TypedQuery
        schema.py          SchemaGenerator (create/drop DDL)
        migrations/        MigrationManager (schema_migrations)

    Layer 4 -- Assembly
        config/            RelmapSettings + Configuration builder
        factory.py         SessionFactory + SessionContext

Tags:
    relmap, orm, core, package-overview

Doc-Types:
    package-overview
"""

from relmap.core.config import Configuration, RelmapSettings, SchemaAction, get_settings
from relmap.core.connection import (
    DBAPIConnection,
    SQLAlchemyConnectionProvider,
    SQLiteConnectionProvider,
    create_provider,
)
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
from relmap.core.errors import (
    ConfigError,
    MappingError,
    MigrationError,
    NonUniqueResultError,
    NoResultError,
    PersistenceError,
    QueryError,
    RelmapError,
    SessionClosedError,
    TransactionError,
    UnsupportedFeatureError,
)
from relmap.core.factory import SessionContext, SessionFactory
from relmap.core.mapping import (
    CascadeType,
    Column,
    Entity,
    FetchType,
    GenerationType,
    Id,
    ManyToOne,
    OneToMany,
    OneToOne,
    RelationshipType,
)
from relmap.core.metadata import ColumnMetadata, EntityMetadata, MetadataRegistry, RelationshipMetadata
from relmap.core.migrations import Migration, MigrationManager, MigrationResult, sql_migration
from relmap.core.protocols import Connection, ConnectionProvider
from relmap.core.query import QueryBuilder, SortOrder, TypedQuery
from relmap.core.schema import SchemaGenerator
from relmap.core.session import RelationshipLoadPolicy, Session
from relmap.core.transaction import Transaction, TransactionState
from relmap.core.types import SqlType

__all__ = [
    # config
    "Configuration",
    "RelmapSettings",
    "SchemaAction",
    "get_settings",
    # connection
    "DBAPIConnection",
    "SQLAlchemyConnectionProvider",
    "SQLiteConnectionProvider",
    "create_provider",
    "Connection",
    "ConnectionProvider",
    # dialect
    "Dialect",
    "GenericDialect",
    "MySQLDialect",
    "PostgreSQLDialect",
    "SQLiteDialect",
    "dialect_for_url",
    "get_dialect",
    "register_dialect",
    # errors
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
    # mapping / metadata
    "Entity",
    "Id",
    "Column",
    "ManyToOne",
    "OneToOne",
    "OneToMany",
    "GenerationType",
    "RelationshipType",
    "CascadeType",
    "FetchType",
    "SqlType",
    "ColumnMetadata",
    "EntityMetadata",
    "RelationshipMetadata",
    "MetadataRegistry",
    # execution
    "Session",
    "SessionFactory",
    "SessionContext",
    "RelationshipLoadPolicy",
    "Transaction",
    "TransactionState",
    "QueryBuilder",
    "TypedQuery",
    "SortOrder",
    "SchemaGenerator",
    "Migration",
    "MigrationManager",
    "MigrationResult",
    "sql_migration",
]
