"""
Entity metadata model.

Turns ``Entity`` declarations into frozen ``EntityMetadata``: table name,
column mappings, the single primary key, relationships and bound field
accessors. The ``MetadataRegistry`` is built once when a session factory
is created and is read-only afterwards, so sessions on different threads
share it without locking.

Manifesto:
    Mapping decisions are made once, up front, and stored as data.
    Sessions and the schema generator never inspect classes; they only read
    metadata.

    - **Fail early:** a missing or duplicated primary key fails the build
    - **Immutable:** frozen dataclasses and read-only mappings
    - **Explicit access:** every field has a bound getter/setter

Architecture:
    ::

        Entity(User, Id(...), Column(...), ManyToOne(...))
                │
                ▼  MetadataRegistry([...])
        ┌─────────────────────────────────────────────────────┐
        │ EntityMetadata                                      │
        │   table_name / full_table_name                      │
        │   columns: {field → ColumnMetadata}                 │
        │   primary_key: ColumnMetadata                       │
        │   relationships: {field → RelationshipMetadata}     │
        └─────────────────────────────────────────────────────┘

Examples:
    >>> registry = MetadataRegistry([USER, POST])
    >>> registry.get(Post).relationships["user"].join_column
    'user_id'
    >>> registry.get(User).primary_key.column_name
    'id'

Guardrails:
    ❌ DON'T: Mutate metadata after the registry is built
    ✅ DO: Declare everything on the Entity before building the factory

Tags:
    metadata, mapping, entity, relmap

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import dataclasses
import operator
import types
import typing
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from relmap.core.errors import MappingError
from relmap.core.mapping import (
    CascadeType,
    Column,
    Entity,
    FetchType,
    GenerationType,
    Id,
    Relationship,
    RelationshipType,
)
from relmap.core.types import SqlType, infer_sql_type, is_basic_type

_IDENTITY_GENERATION = frozenset({GenerationType.AUTO, GenerationType.IDENTITY, GenerationType.TABLE})
_JOIN_KINDS = frozenset({RelationshipType.MANY_TO_ONE, RelationshipType.ONE_TO_ONE})


def _attribute_setter(name: str) -> Callable[[Any, Any], None]:
    def setter(entity: Any, value: Any) -> None:
        setattr(entity, name, value)

    return setter


@dataclass(frozen=True)
class ColumnMetadata:
    """One basic field mapped to one column."""

    field_name: str
    column_name: str
    python_type: Any
    sql_type: SqlType
    nullable: bool = True
    unique: bool = False
    length: int = 255
    precision: int = 0
    scale: int = 0
    column_definition: str | None = None
    primary_key: bool = False
    generation: GenerationType = GenerationType.NONE
    generator: str | None = None
    getter: Callable[[Any], Any] = field(default=None, repr=False, compare=False)  # type: ignore[assignment]
    setter: Callable[[Any, Any], None] = field(default=None, repr=False, compare=False)  # type: ignore[assignment]

    @property
    def generated(self) -> bool:
        return self.generation is not GenerationType.NONE

    @property
    def uses_identity(self) -> bool:
        """True if the database assigns the value during INSERT."""
        return self.generation in _IDENTITY_GENERATION

    def get_value(self, entity: Any) -> Any:
        try:
            return self.getter(entity)
        except Exception as e:
            raise MappingError(
                f"Cannot read field '{self.field_name}'", cause=e
            ).with_context(entity=type(entity).__name__, field=self.field_name) from e

    def set_value(self, entity: Any, value: Any) -> None:
        try:
            self.setter(entity, value)
        except Exception as e:
            raise MappingError(
                f"Cannot write field '{self.field_name}'", cause=e
            ).with_context(entity=type(entity).__name__, field=self.field_name) from e


@dataclass(frozen=True)
class RelationshipMetadata:
    """A reference from one entity to another.

    Many-to-one and owning one-to-one relationships store the related key
    in ``join_column`` on this entity's table.
    """

    field_name: str
    kind: RelationshipType
    target: type
    mapped_by: str | None = None
    cascade: frozenset[CascadeType] = frozenset()
    fetch: FetchType = FetchType.LAZY
    optional: bool = True
    join_column: str | None = None
    referenced_column: str | None = None
    getter: Callable[[Any], Any] = field(default=None, repr=False, compare=False)  # type: ignore[assignment]
    setter: Callable[[Any, Any], None] = field(default=None, repr=False, compare=False)  # type: ignore[assignment]

    @property
    def owning(self) -> bool:
        return self.mapped_by is None

    @property
    def has_join_column(self) -> bool:
        return self.join_column is not None

    def get_value(self, entity: Any) -> Any:
        try:
            return self.getter(entity)
        except Exception as e:
            raise MappingError(
                f"Cannot read relationship '{self.field_name}'", cause=e
            ).with_context(entity=type(entity).__name__, field=self.field_name) from e

    def set_value(self, entity: Any, value: Any) -> None:
        try:
            self.setter(entity, value)
        except Exception as e:
            raise MappingError(
                f"Cannot write relationship '{self.field_name}'", cause=e
            ).with_context(entity=type(entity).__name__, field=self.field_name) from e


@dataclass(frozen=True)
class EntityMetadata:
    """Everything the engine knows about one entity type."""

    entity_type: type
    entity_name: str
    table_name: str
    columns: Mapping[str, ColumnMetadata]
    primary_key: ColumnMetadata
    relationships: Mapping[str, RelationshipMetadata]
    schema: str | None = None
    catalog: str | None = None
    factory: Callable[[], Any] | None = field(default=None, repr=False, compare=False)

    @property
    def full_table_name(self) -> str:
        return ".".join(part for part in (self.catalog, self.schema, self.table_name) if part)

    @property
    def join_relationships(self) -> tuple[RelationshipMetadata, ...]:
        """Relationships backed by a foreign-key column on this table."""
        return tuple(r for r in self.relationships.values() if r.has_join_column)

    @property
    def column_names(self) -> list[str]:
        """Basic columns followed by foreign-key columns, in declaration order."""
        names = [c.column_name for c in self.columns.values()]
        names.extend(r.join_column for r in self.join_relationships)  # type: ignore[misc]
        return names

    def new_instance(self) -> Any:
        """Create a blank instance for row mapping."""
        if self.factory is not None:
            return self.factory()
        instance = self.entity_type.__new__(self.entity_type)
        for column in self.columns.values():
            column.set_value(instance, None)
        for relationship in self.relationships.values():
            relationship.set_value(instance, [] if relationship.kind is RelationshipType.ONE_TO_MANY else None)
        return instance

    def get_id(self, entity: Any) -> Any:
        return self.primary_key.get_value(entity)

    def set_id(self, entity: Any, value: Any) -> None:
        self.primary_key.set_value(entity, value)


# =========================================================================
# Building
# =========================================================================


def _unwrap_optional(annotation: Any) -> Any:
    """``X | None`` / ``Optional[X]`` → ``X``."""
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _field_hints(cls: type) -> dict[str, Any]:
    try:
        return typing.get_type_hints(cls)
    except (NameError, TypeError):
        # Unresolvable forward references; fall back to raw annotations
        return {
            name: value
            for name, value in getattr(cls, "__annotations__", {}).items()
            if not isinstance(value, str)
        }


def _build_column(definition: Column, hints: dict[str, Any], entity_name: str) -> ColumnMetadata:
    python_type = definition.python_type
    if python_type is None:
        python_type = _unwrap_optional(hints.get(definition.name))
    if python_type is None:
        raise MappingError(
            f"Cannot determine the type of field '{definition.name}'"
        ).with_context(entity=entity_name, field=definition.name)

    try:
        sql_type = definition.sql_type or infer_sql_type(python_type)
    except MappingError as e:
        raise e.with_context(entity=entity_name, field=definition.name)

    is_id = isinstance(definition, Id)
    return ColumnMetadata(
        field_name=definition.name,
        column_name=definition.column_name or definition.name,
        python_type=python_type,
        sql_type=sql_type,
        nullable=definition.nullable,
        unique=definition.unique,
        length=definition.length,
        precision=definition.precision,
        scale=definition.scale,
        column_definition=definition.column_definition,
        primary_key=is_id,
        generation=definition.generation if is_id else GenerationType.NONE,  # type: ignore[attr-defined]
        generator=definition.generator if is_id else None,  # type: ignore[attr-defined]
        getter=definition.getter or operator.attrgetter(definition.name),
        setter=definition.setter or _attribute_setter(definition.name),
    )


def _relationship_target(definition: Relationship, hints: dict[str, Any]) -> type | str | None:
    if definition.target is not None:
        return definition.target
    field_type = definition.field_type or hints.get(definition.name)
    field_type = _unwrap_optional(field_type)
    if definition.kind is RelationshipType.ONE_TO_MANY:
        args = typing.get_args(field_type)
        return args[0] if args else None
    return field_type


def _inferred_columns(cls: type, declared: set[str], hints: dict[str, Any]) -> list[Column]:
    if not dataclasses.is_dataclass(cls):
        return []
    inferred = []
    for f in dataclasses.fields(cls):
        if f.name in declared:
            continue
        python_type = _unwrap_optional(hints.get(f.name, f.type))
        if is_basic_type(python_type):
            inferred.append(Column(f.name, python_type))
    return inferred


@dataclass
class _PendingEntity:
    definition: Entity
    columns: dict[str, ColumnMetadata]
    primary_key: ColumnMetadata
    relationships: list[tuple[Relationship, type | str | None]]


def _build_pending(definition: Entity) -> _PendingEntity:
    entity_name = definition.entity_name
    hints = _field_hints(definition.cls)

    names = [f.name for f in definition.fields]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise MappingError(f"Fields declared more than once: {duplicates}").with_context(entity=entity_name)

    ids = [f for f in definition.fields if isinstance(f, Id)]
    if not ids:
        raise MappingError("Entity has no primary key").with_context(entity=entity_name)
    if len(ids) > 1:
        raise MappingError(
            f"Entity declares {len(ids)} primary keys; exactly one is supported"
        ).with_context(entity=entity_name)

    column_defs = [f for f in definition.fields if isinstance(f, Column)]
    relationship_defs = [f for f in definition.fields if isinstance(f, Relationship)]
    if definition.infer_columns:
        column_defs.extend(_inferred_columns(definition.cls, set(names), hints))

    columns = {c.name: _build_column(c, hints, entity_name) for c in column_defs}
    primary_key = columns[ids[0].name]

    seen_columns: dict[str, str] = {}
    for column in columns.values():
        if column.column_name in seen_columns:
            raise MappingError(
                f"Column '{column.column_name}' mapped by both "
                f"'{seen_columns[column.column_name]}' and '{column.field_name}'"
            ).with_context(entity=entity_name)
        seen_columns[column.column_name] = column.field_name

    return _PendingEntity(
        definition=definition,
        columns=columns,
        primary_key=primary_key,
        relationships=[(r, _relationship_target(r, hints)) for r in relationship_defs],
    )


class MetadataRegistry:
    """Read-only metadata for every registered entity, in registration order.

    Parameters
    ----------
    definitions
        Entity declarations. A type declared twice keeps its first
        declaration.

    Raises
    ------
    MappingError
        If any declaration is invalid or a relationship target cannot be
        resolved.
    """

    def __init__(self, definitions: Iterable[Entity]) -> None:
        pending: dict[type, _PendingEntity] = {}
        for definition in definitions:
            if definition.cls not in pending:
                pending[definition.cls] = _build_pending(definition)

        by_name = {p.definition.entity_name: cls for cls, p in pending.items()}
        by_name.update({cls.__name__: cls for cls in pending if cls.__name__ not in by_name})

        self._entities: dict[type, EntityMetadata] = {}
        for cls, p in pending.items():
            relationships = {
                rel.name: self._build_relationship(rel, target, p.definition.entity_name, by_name)
                for rel, target in p.relationships
            }
            self._entities[cls] = EntityMetadata(
                entity_type=cls,
                entity_name=p.definition.entity_name,
                table_name=p.definition.table or p.definition.entity_name,
                schema=p.definition.schema,
                catalog=p.definition.catalog,
                columns=types.MappingProxyType(p.columns),
                primary_key=p.primary_key,
                relationships=types.MappingProxyType(relationships),
                factory=p.definition.factory,
            )
        self._by_name = {meta.entity_name: meta for meta in self._entities.values()}

    @staticmethod
    def _build_relationship(
        definition: Relationship,
        target: type | str | None,
        entity_name: str,
        by_name: dict[str, type],
    ) -> RelationshipMetadata:
        if isinstance(target, str):
            if target not in by_name:
                raise MappingError(
                    f"Relationship '{definition.name}' targets unknown entity '{target}'"
                ).with_context(entity=entity_name, field=definition.name)
            target = by_name[target]
        if not isinstance(target, type):
            raise MappingError(
                f"Cannot determine the target of relationship '{definition.name}'"
            ).with_context(entity=entity_name, field=definition.name)

        join_column = None
        referenced_column = None
        if definition.kind in _JOIN_KINDS and definition.mapped_by is None:
            join_column = definition.join_column or f"{definition.name}_id"
            referenced_column = definition.referenced_column or "id"

        return RelationshipMetadata(
            field_name=definition.name,
            kind=definition.kind,
            target=target,
            mapped_by=definition.mapped_by,
            cascade=frozenset(definition.cascade),
            fetch=definition.fetch or definition.default_fetch,
            optional=definition.optional,
            join_column=join_column,
            referenced_column=referenced_column,
            getter=definition.getter or operator.attrgetter(definition.name),
            setter=definition.setter or _attribute_setter(definition.name),
        )

    def get(self, entity_type: type) -> EntityMetadata:
        """Metadata for ``entity_type``.

        Raises:
            MappingError: If the type is not registered.
        """
        try:
            return self._entities[entity_type]
        except KeyError:
            name = getattr(entity_type, "__name__", repr(entity_type))
            raise MappingError(f"Entity class not registered: {name}").with_context(entity=name) from None

    def find(self, entity_type: type) -> EntityMetadata | None:
        return self._entities.get(entity_type)

    def get_by_name(self, name: str) -> EntityMetadata:
        try:
            return self._by_name[name]
        except KeyError:
            raise MappingError(f"Entity not registered: {name}").with_context(entity=name) from None

    @property
    def entity_types(self) -> tuple[type, ...]:
        return tuple(self._entities)

    def __iter__(self) -> Iterator[EntityMetadata]:
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._entities

    def __repr__(self) -> str:
        return f"MetadataRegistry({[m.entity_name for m in self]})"


__all__ = [
    "ColumnMetadata",
    "RelationshipMetadata",
    "EntityMetadata",
    "MetadataRegistry",
]
