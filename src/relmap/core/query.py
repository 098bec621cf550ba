"""Query building and typed queries.

``QueryBuilder`` assembles a SELECT from fragments and never executes
anything; ``build()`` returns the SQL and ``parameters`` the named values
to bind. ``TypedQuery`` runs SQL through a session and offers list and
single-result access, applying paging through the dialect.

Example::

    builder = session.query(User).alias("u")
    builder.where(f"u.age >= {builder.param('min_age')}", min_age=18)
    builder.and_(f"u.email LIKE {builder.param('domain')}", domain="%@example.com")
    builder.order_by("u.username").limit(10).offset(20)

    users = session.create_query(builder.build(), User, builder.parameters)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from relmap.core.dialect import Dialect
from relmap.core.errors import NonUniqueResultError, NoResultError, QueryError
from relmap.core.metadata import EntityMetadata

if TYPE_CHECKING:
    from relmap.core.session import Session

T = TypeVar("T")


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class QueryBuilder:
    """Fluent SELECT builder for one entity table.

    Connectives passed to ``and_``/``or_`` and the fragments themselves are
    literal SQL text; values belong in ``parameters``.
    """

    def __init__(self, metadata: EntityMetadata, dialect: Dialect) -> None:
        self.metadata = metadata
        self.dialect = dialect
        self._alias: str | None = None
        self._distinct = False
        self._columns: list[str] = []
        self._where: list[str] = []
        self._order_by: list[str] = []
        self._limit: int | None = None
        self._offset: int | None = None
        self._parameters: dict[str, Any] = {}

    def alias(self, alias: str) -> QueryBuilder:
        self._alias = alias
        return self

    def distinct(self, value: bool = True) -> QueryBuilder:
        self._distinct = value
        return self

    def select(self, *columns: str) -> QueryBuilder:
        self._columns.extend(columns)
        return self

    def where(self, fragment: str, **params: Any) -> QueryBuilder:
        """Add a condition. Calls after the first are joined with AND."""
        if self._where:
            return self.and_(fragment, **params)
        self._where.append(fragment)
        self._parameters.update(params)
        return self

    def and_(self, fragment: str, **params: Any) -> QueryBuilder:
        return self._connect("AND", fragment, params)

    def or_(self, fragment: str, **params: Any) -> QueryBuilder:
        return self._connect("OR", fragment, params)

    def _connect(self, connective: str, fragment: str, params: dict[str, Any]) -> QueryBuilder:
        self._where.append(f"{connective} {fragment}" if self._where else fragment)
        self._parameters.update(params)
        return self

    def order_by(self, column: str, direction: SortOrder | str = SortOrder.ASC) -> QueryBuilder:
        if not isinstance(direction, SortOrder):
            direction = SortOrder(direction.upper())
        self._order_by.append(f"{column} {direction.value}")
        return self

    def order_by_desc(self, column: str) -> QueryBuilder:
        return self.order_by(column, SortOrder.DESC)

    def limit(self, limit: int) -> QueryBuilder:
        self._limit = limit
        return self

    def offset(self, offset: int) -> QueryBuilder:
        """Skip rows; only rendered together with ``limit``."""
        self._offset = offset
        return self

    def param(self, name: str) -> str:
        """Placeholder text for a named parameter in this dialect."""
        return self.dialect.named_placeholder(name)

    def set_parameter(self, name: str, value: Any) -> QueryBuilder:
        self._parameters[name] = value
        return self

    @property
    def parameters(self) -> dict[str, Any]:
        return dict(self._parameters)

    def _default_columns(self) -> list[str]:
        prefix = f"{self._alias}." if self._alias else ""
        return [f"{prefix}{name}" for name in self.metadata.column_names]

    def build(self) -> str:
        parts = ["SELECT"]
        if self._distinct:
            parts.append("DISTINCT")
        parts.append(", ".join(self._columns or self._default_columns()))
        parts.append(f"FROM {self.metadata.full_table_name}")
        if self._alias:
            parts.append(self._alias)
        if self._where:
            parts.append("WHERE " + " ".join(self._where))
        if self._order_by:
            parts.append("ORDER BY " + ", ".join(self._order_by))
        return self.dialect.limit_clause(" ".join(parts), self._limit, self._offset)

    def __str__(self) -> str:
        return self.build()


class TypedQuery(Generic[T]):
    """Caller SQL bound to an entity type, executed through a session.

    Parameters are always bound. Paging set with ``set_max_results`` and
    ``set_first_result`` is appended through the dialect.
    """

    def __init__(
        self,
        session: Session,
        sql: str,
        entity_type: type[T],
        params: Mapping[str, Any] | Sequence[Any] | None = None,
    ) -> None:
        self._session = session
        self._sql = sql
        self._entity_type = entity_type
        self._named: dict[str, Any] = {}
        self._positional: list[Any] = []
        if isinstance(params, Mapping):
            self._named.update(params)
        elif params is not None:
            self._positional.extend(params)
        self._max_results: int | None = None
        self._first_result: int | None = None

    def set_parameter(self, name: str, value: Any) -> TypedQuery[T]:
        if self._positional:
            raise QueryError("Cannot mix named and positional parameters", sql=self._sql)
        self._named[name] = value
        return self

    def set_max_results(self, max_results: int) -> TypedQuery[T]:
        self._max_results = max_results
        return self

    def set_first_result(self, first_result: int) -> TypedQuery[T]:
        self._first_result = first_result
        return self

    @property
    def query_string(self) -> str:
        return self._session.dialect.limit_clause(self._sql, self._max_results, self._first_result)

    @property
    def parameters(self) -> Mapping[str, Any] | Sequence[Any]:
        return dict(self._named) if self._named else tuple(self._positional)

    def result_list(self) -> list[T]:
        return self._session.create_query(self.query_string, self._entity_type, self.parameters)

    def single_result(self) -> T:
        """Exactly one row.

        Raises:
            NoResultError: The query returned no rows.
            NonUniqueResultError: The query returned more than one row.
        """
        results = self.result_list()
        if not results:
            raise NoResultError("No result found", sql=self.query_string)
        if len(results) > 1:
            raise NonUniqueResultError(
                f"More than one result found ({len(results)} rows)", sql=self.query_string
            )
        return results[0]

    def single_result_or_none(self) -> T | None:
        results = self.result_list()
        if len(results) > 1:
            raise NonUniqueResultError(
                f"More than one result found ({len(results)} rows)", sql=self.query_string
            )
        return results[0] if results else None


__all__ = ["QueryBuilder", "TypedQuery", "SortOrder"]
