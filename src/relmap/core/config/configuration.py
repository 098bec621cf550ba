"""Fluent configuration builder.

``Configuration`` collects everything a ``SessionFactory`` needs: a
connection source, a dialect, the entity declarations and settings
overrides. Dialect and provider are checked when the factory is built,
not when they are set.

Usage::

    factory = (
        Configuration()
        .database("postgresql://localhost/app", "app", "secret")
        .add_entities(USER, POST)
        .set_property("relmap.show_sql", True)
        .build_session_factory()
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from relmap.core.connection import create_provider
from relmap.core.dialect import Dialect, dialect_for_url, get_dialect
from relmap.core.errors import ConfigError
from relmap.core.logging import get_logger
from relmap.core.mapping import Entity
from relmap.core.protocols import ConnectionProvider

from .settings import RelmapSettings, get_settings

if TYPE_CHECKING:
    from relmap.core.factory import SessionFactory

logger = get_logger(__name__)

_PROPERTY_PREFIX = "relmap."


class Configuration:
    """Builder for a session factory.

    Parameters
    ----------
    settings
        Base settings. Defaults to ``get_settings()`` (environment and
        ``.env``).
    """

    def __init__(self, settings: RelmapSettings | None = None) -> None:
        self._settings = settings
        self._provider: ConnectionProvider | None = None
        self._dialect: Dialect | None = None
        self._entities: list[Entity] = []
        self._properties: dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Fluent setters
    # ------------------------------------------------------------------

    def database(self, url: str, username: str | None = None, password: str | None = None) -> Configuration:
        """Use a pooled SQLAlchemy provider for ``url``.

        The dialect is inferred from the URL scheme unless one was set
        explicitly.
        """
        settings = self.effective_settings()
        self._provider = create_provider(
            url,
            username,
            password,
            echo=settings.echo,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
        )
        if self._dialect is None:
            self._dialect = dialect_for_url(url)
        logger.debug("configuration.database", dialect=self._dialect.name)
        return self

    def connection_provider(self, provider: ConnectionProvider) -> Configuration:
        self._provider = provider
        return self

    def dialect(self, dialect: Dialect | str) -> Configuration:
        self._dialect = get_dialect(dialect) if isinstance(dialect, str) else dialect
        return self

    def add_entity(self, entity: Entity) -> Configuration:
        """Register an entity declaration; a type already registered is ignored."""
        if all(existing.cls is not entity.cls for existing in self._entities):
            self._entities.append(entity)
        return self

    def add_entities(self, *entities: Entity) -> Configuration:
        for entity in entities:
            self.add_entity(entity)
        return self

    def set_property(self, key: str, value: Any) -> Configuration:
        """Set a free-form property.

        Keys naming a ``RelmapSettings`` field (optionally prefixed with
        ``relmap.``) override that setting.
        """
        self._properties[key] = value
        return self

    def get_property(self, key: str, default: Any = None) -> Any:
        return self._properties.get(key, default)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def properties(self) -> dict[str, Any]:
        return dict(self._properties)

    @property
    def entities(self) -> list[Entity]:
        return list(self._entities)

    def effective_settings(self) -> RelmapSettings:
        """Base settings with matching properties applied.

        Raises:
            ConfigError: If a property value fails validation.
        """
        base = self._settings or get_settings()
        overrides = {}
        for key, value in self._properties.items():
            name = key[len(_PROPERTY_PREFIX):] if key.startswith(_PROPERTY_PREFIX) else key
            if name in RelmapSettings.model_fields:
                overrides[name] = value
        if not overrides:
            return base
        try:
            return RelmapSettings(**{**base.model_dump(), **overrides})
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration property: {e.errors()[0]['loc']}", cause=e) from e

    def get_dialect(self) -> Dialect:
        """The explicit dialect, else one named or inferred from settings.

        Raises:
            ConfigError: If no dialect can be determined.
        """
        if self._dialect is not None:
            return self._dialect
        settings = self.effective_settings()
        if settings.dialect:
            return get_dialect(settings.dialect)
        if settings.database_url:
            return dialect_for_url(settings.database_url)
        raise ConfigError("No dialect configured")

    def get_connection_provider(self) -> ConnectionProvider:
        """The configured provider, else one built from ``database_url``.

        Raises:
            ConfigError: If there is no connection source.
        """
        if self._provider is not None:
            return self._provider
        settings = self.effective_settings()
        if settings.database_url:
            self.database(settings.database_url, settings.database_username, settings.database_password)
            return self._provider  # type: ignore[return-value]
        raise ConfigError("No connection source configured")

    def build_session_factory(self) -> SessionFactory:
        from relmap.core.factory import SessionFactory

        return SessionFactory(self)

    def __repr__(self) -> str:
        dialect = self._dialect.name if self._dialect is not None else None
        return f"Configuration(dialect={dialect!r}, entities={len(self._entities)})"


__all__ = ["Configuration"]
