"""Explicit mapping declarations.

Callers describe each entity with an ``Entity`` object listing its fields.
Nothing is discovered by reflection except, for dataclasses, the basic
columns that were not declared (``infer_columns=True``). The metadata
registry (``relmap.core.metadata``) turns these declarations into frozen
``EntityMetadata``.

Example::

    @dataclass
    class User:
        id: int | None = None
        username: str | None = None
        email: str | None = None
        age: int | None = None

    @dataclass
    class Post:
        id: int | None = None
        title: str | None = None
        user: User | None = None

    USER = Entity(
        User,
        Id("id", int, generation=GenerationType.IDENTITY),
        Column("username", str, nullable=False, unique=True),
        Column("email", str, nullable=False, unique=True),
        table="users",
    )
    POST = Entity(
        Post,
        Id("id", int, generation=GenerationType.IDENTITY),
        ManyToOne("user", User),
        table="posts",
    )
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from relmap.core.types import SqlType


class GenerationType(str, Enum):
    """How a primary-key value is produced."""

    NONE = "NONE"          # assigned by the caller
    AUTO = "AUTO"          # database default (identity column)
    IDENTITY = "IDENTITY"  # identity / auto-increment column
    SEQUENCE = "SEQUENCE"  # fetched from a named sequence before INSERT
    TABLE = "TABLE"        # treated like IDENTITY


class RelationshipType(str, Enum):
    ONE_TO_ONE = "ONE_TO_ONE"
    ONE_TO_MANY = "ONE_TO_MANY"
    MANY_TO_ONE = "MANY_TO_ONE"


class CascadeType(str, Enum):
    ALL = "ALL"
    PERSIST = "PERSIST"
    MERGE = "MERGE"
    REMOVE = "REMOVE"
    REFRESH = "REFRESH"
    DETACH = "DETACH"


class FetchType(str, Enum):
    LAZY = "LAZY"
    EAGER = "EAGER"


Getter = Callable[[Any], Any]
Setter = Callable[[Any, Any], None]


@dataclass(frozen=True)
class Column:
    """A basic field stored in one column."""

    name: str
    python_type: Any = None
    column_name: str | None = None
    nullable: bool = True
    unique: bool = False
    length: int = 255
    precision: int = 0
    scale: int = 0
    column_definition: str | None = None
    sql_type: SqlType | None = None
    getter: Getter | None = None
    setter: Setter | None = None


@dataclass(frozen=True)
class Id(Column):
    """The primary-key field. Exactly one per entity."""

    generation: GenerationType = GenerationType.NONE
    generator: str | None = None


@dataclass(frozen=True)
class Relationship:
    """A reference to another entity.

    ``target`` may be a class or the class name of another registered
    entity. When omitted it is taken from ``field_type`` (for one-to-many,
    the element type of ``list[X]``).
    """

    kind: ClassVar[RelationshipType]
    default_fetch: ClassVar[FetchType] = FetchType.LAZY

    name: str
    target: type | str | None = None
    field_type: Any = None
    mapped_by: str | None = None
    cascade: frozenset[CascadeType] = field(default_factory=frozenset)
    fetch: FetchType | None = None
    optional: bool = True
    join_column: str | None = None
    referenced_column: str | None = None
    getter: Getter | None = None
    setter: Setter | None = None


@dataclass(frozen=True)
class ManyToOne(Relationship):
    kind: ClassVar[RelationshipType] = RelationshipType.MANY_TO_ONE
    default_fetch: ClassVar[FetchType] = FetchType.EAGER


@dataclass(frozen=True)
class OneToOne(Relationship):
    kind: ClassVar[RelationshipType] = RelationshipType.ONE_TO_ONE
    default_fetch: ClassVar[FetchType] = FetchType.EAGER


@dataclass(frozen=True)
class OneToMany(Relationship):
    kind: ClassVar[RelationshipType] = RelationshipType.ONE_TO_MANY


class Entity:
    """Mapping declaration for one entity type.

    Parameters
    ----------
    cls
        The record type.
    *fields
        ``Id``, ``Column`` and relationship declarations.
    table
        Table name. Defaults to ``name``, then ``cls.__name__``.
    name
        Entity name, used for lookups by name and as the table fallback.
    schema, catalog
        Optional qualifiers prefixed to the table name.
    factory
        Zero-argument callable creating blank instances for row mapping.
    infer_columns
        For dataclasses, add a default ``Column`` for every undeclared field
        whose type is a basic type.
    """

    def __init__(
        self,
        cls: type,
        *fields: Column | Relationship,
        table: str | None = None,
        name: str | None = None,
        schema: str | None = None,
        catalog: str | None = None,
        factory: Callable[[], Any] | None = None,
        infer_columns: bool = True,
    ) -> None:
        self.cls = cls
        self.fields = tuple(fields)
        self.table = table
        self.name = name
        self.schema = schema
        self.catalog = catalog
        self.factory = factory
        self.infer_columns = infer_columns

    @property
    def entity_name(self) -> str:
        return self.name or self.cls.__name__

    def __repr__(self) -> str:
        return f"Entity({self.cls.__name__}, table={self.table!r}, fields={len(self.fields)})"


__all__ = [
    "GenerationType",
    "RelationshipType",
    "CascadeType",
    "FetchType",
    "Column",
    "Id",
    "Relationship",
    "ManyToOne",
    "OneToOne",
    "OneToMany",
    "Entity",
]
