"""Session factory.

``SessionFactory`` is built once per database from a ``Configuration``. It
owns the metadata registry, the dialect, the connection provider and the
performance monitor, and hands out sessions that share them.

There is no per-thread "current session": callers who want one keep a
``SessionContext`` and ask ``current_session(context)``.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from relmap.core.config.settings import SchemaAction
from relmap.core.errors import SessionClosedError
from relmap.core.logging import get_logger
from relmap.core.metadata import EntityMetadata, MetadataRegistry
from relmap.core.migrations import Migration, MigrationManager
from relmap.core.query import QueryBuilder
from relmap.core.schema import SchemaGenerator
from relmap.core.session import Session
from relmap.core.timing import PerformanceMonitor

if TYPE_CHECKING:
    from relmap.core.config.configuration import Configuration

logger = get_logger(__name__)


@dataclass
class SessionContext:
    """Caller-held slot for a current session (e.g. one per request or thread)."""

    session: Session | None = None


class SessionFactory:
    """Creates sessions that share metadata, dialect and connections.

    Building the factory validates every entity mapping and applies the
    configured schema action (``create``, ``recreate``, ``create-drop``).

    Example::

        factory = (
            Configuration()
            .database("sqlite:///app.db")
            .add_entity(USER)
            .build_session_factory()
        )
        with factory.open_session() as session:
            session.save(User(username="alice", email="alice@example.com"))
        factory.close_all()
    """

    def __init__(self, configuration: Configuration) -> None:
        self.settings = configuration.effective_settings()
        self.dialect = configuration.get_dialect()
        self.provider = configuration.get_connection_provider()
        self.registry = MetadataRegistry(configuration.entities)
        self.monitor = PerformanceMonitor(
            enabled=self.settings.monitor_enabled,
            slow_query_ms=self.settings.slow_query_ms,
        )
        self._sessions: set[Session] = set()
        self._lock = threading.Lock()
        self._closed = False

        logger.info(
            "session_factory.built",
            dialect=self.dialect.name,
            entities=[m.entity_name for m in self.registry],
            schema_action=self.settings.schema_action.value,
        )

        action = self.settings.schema_action
        if action is SchemaAction.CREATE:
            self.create_schema()
        elif action in (SchemaAction.RECREATE, SchemaAction.CREATE_DROP):
            self.recreate_schema()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @property
    def is_closed(self) -> bool:
        return self._closed

    def open_session(self) -> Session:
        """Open a new session.

        Raises:
            SessionClosedError: If the factory has been closed.
        """
        with self._lock:
            if self._closed:
                raise SessionClosedError("Session factory is closed").with_context(operation="open_session")
            session = Session(
                self.registry,
                self.dialect,
                self.provider,
                relationship_policy=self.settings.relationship_policy,
                monitor=self.monitor,
                show_sql=self.settings.show_sql,
                on_close=self._forget,
            )
            self._sessions.add(session)
        return session

    def current_session(self, context: SessionContext) -> Session:
        """The open session held by ``context``, opening one if needed."""
        if context.session is None or not context.session.is_open:
            context.session = self.open_session()
        return context.session

    def _forget(self, session: Session) -> None:
        with self._lock:
            self._sessions.discard(session)

    def close_all(self) -> None:
        """Close every open session, apply ``create-drop``, close the provider. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            sessions = list(self._sessions)

        for session in sessions:
            session.close()
        try:
            if self.settings.schema_action is SchemaAction.CREATE_DROP:
                self.drop_schema()
        finally:
            self.provider.close()
            if self.monitor.enabled:
                self.monitor.log_stats()
            logger.info("session_factory.closed", sessions_closed=len(sessions))

    def __enter__(self) -> SessionFactory:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close_all()

    # ------------------------------------------------------------------
    # Schema, migrations, queries
    # ------------------------------------------------------------------

    def schema_generator(self) -> SchemaGenerator:
        return SchemaGenerator(
            self.registry,
            self.dialect,
            self.provider,
            monitor=self.monitor,
            show_sql=self.settings.show_sql,
        )

    def create_schema(self) -> None:
        self.schema_generator().create_schema()

    def drop_schema(self) -> None:
        self.schema_generator().drop_schema()

    def recreate_schema(self) -> None:
        self.schema_generator().recreate_schema()

    def migration_manager(self, migrations: Iterable[Migration] = ()) -> MigrationManager:
        return MigrationManager(
            self.provider,
            self.dialect,
            migrations,
            monitor=self.monitor,
            show_sql=self.settings.show_sql,
        )

    def metadata(self, entity_type: type) -> EntityMetadata:
        return self.registry.get(entity_type)

    def query_builder(self, entity_type: type) -> QueryBuilder:
        return QueryBuilder(self.registry.get(entity_type), self.dialect)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"SessionFactory(dialect={self.dialect.name}, entities={len(self.registry)}, {state})"


__all__ = ["SessionFactory", "SessionContext"]
