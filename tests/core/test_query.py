"""Tests for QueryBuilder and TypedQuery."""

from __future__ import annotations

import pytest

from relmap.core.dialect import get_dialect
from relmap.core.errors import NonUniqueResultError, NoResultError, QueryError
from relmap.core.query import QueryBuilder, SortOrder

from _support.models import User


@pytest.fixture
def builder(registry) -> QueryBuilder:
    return QueryBuilder(registry.get(User), get_dialect("sqlite"))


@pytest.fixture
def populated(session):
    for name, age in [("alice", 30), ("bob", 17), ("carol", 45), ("dave", 30)]:
        session.save(User(username=name, email=f"{name}@example.com", age=age))
    return session


class TestQueryBuilder:
    def test_default_select(self, builder):
        assert builder.build() == "SELECT id, username, email, age FROM users"

    def test_alias_prefixes_default_columns(self, builder):
        assert builder.alias("u").build() == "SELECT u.id, u.username, u.email, u.age FROM users u"

    def test_select_and_distinct(self, builder):
        assert builder.select("age").distinct().build() == "SELECT DISTINCT age FROM users"

    def test_where_collects_parameters(self, builder):
        builder.where(f"age >= {builder.param('min_age')}", min_age=18)
        assert builder.build().endswith("WHERE age >= :min_age")
        assert builder.parameters == {"min_age": 18}

    def test_connectives(self, builder):
        builder.select("id").where("age > 18").and_("email LIKE :d", d="%@x.com").or_("username = :n", n="root")
        assert builder.build() == "SELECT id FROM users WHERE age > 18 AND email LIKE :d OR username = :n"

    def test_repeated_where_joins_with_and(self, builder):
        builder.select("id").where("age > 18").where("age < 65")
        assert builder.build() == "SELECT id FROM users WHERE age > 18 AND age < 65"

    def test_order_by(self, builder):
        builder.select("id").order_by("username").order_by_desc("age").order_by("email", "desc")
        assert builder.build() == "SELECT id FROM users ORDER BY username ASC, age DESC, email DESC"

    def test_order_by_enum(self, builder):
        assert builder.select("id").order_by("age", SortOrder.DESC).build() == "SELECT id FROM users ORDER BY age DESC"

    def test_limit_and_offset(self, builder):
        assert builder.select("id").limit(10).offset(20).build() == "SELECT id FROM users LIMIT 10 OFFSET 20"

    def test_offset_without_limit_is_ignored(self, builder):
        assert builder.select("id").offset(5).build() == "SELECT id FROM users"

    def test_mysql_paging(self, registry):
        builder = QueryBuilder(registry.get(User), get_dialect("mysql"))
        builder.select("id").where(f"age = {builder.param('age')}", age=30).limit(5).offset(10)
        assert builder.build() == "SELECT id FROM users WHERE age = %(age)s LIMIT 10, 5"

    def test_parameters_is_a_copy(self, builder):
        builder.set_parameter("x", 1)
        builder.parameters["x"] = 2
        assert builder.parameters == {"x": 1}

    def test_str_builds(self, builder):
        assert str(builder) == builder.build()

    def test_session_query_runs(self, populated):
        builder = populated.query(User)
        builder.where(f"age = {builder.param('age')}", age=30).order_by("username")
        users = populated.create_query(builder.build(), User, builder.parameters)
        assert [u.username for u in users] == ["alice", "dave"]


class TestTypedQuery:
    def test_result_list(self, populated):
        users = populated.typed_query("SELECT * FROM users ORDER BY username", User).result_list()
        assert [u.username for u in users] == ["alice", "bob", "carol", "dave"]

    def test_paging(self, populated):
        query = populated.typed_query("SELECT * FROM users ORDER BY username", User)
        query.set_max_results(2).set_first_result(1)
        assert query.query_string == "SELECT * FROM users ORDER BY username LIMIT 2 OFFSET 1"
        assert [u.username for u in query.result_list()] == ["bob", "carol"]

    def test_named_parameters(self, populated):
        query = populated.typed_query("SELECT * FROM users WHERE username = :name", User)
        query.set_parameter("name", "carol")
        assert query.single_result().age == 45

    def test_positional_parameters(self, populated):
        query = populated.typed_query("SELECT * FROM users WHERE age = ?", User, [17])
        assert query.parameters == (17,)
        assert query.single_result().username == "bob"

    def test_mixing_parameter_styles(self, populated):
        query = populated.typed_query("SELECT * FROM users WHERE age = ?", User, [17])
        with pytest.raises(QueryError, match="Cannot mix"):
            query.set_parameter("name", "bob")

    def test_single_result_none(self, populated):
        query = populated.typed_query("SELECT * FROM users WHERE age > ?", User, [100])
        with pytest.raises(NoResultError, match="No result found"):
            query.single_result()
        assert query.single_result_or_none() is None

    def test_single_result_many(self, populated):
        query = populated.typed_query("SELECT * FROM users WHERE age = ?", User, [30])
        with pytest.raises(NonUniqueResultError, match=r"\(2 rows\)"):
            query.single_result()
        with pytest.raises(NonUniqueResultError):
            query.single_result_or_none()

    def test_cached_instance_reused_by_find_but_not_query(self, populated):
        alice = populated.find_by_id(User, 1)
        loaded = populated.typed_query("SELECT * FROM users WHERE id = ?", User, [1]).single_result()
        assert loaded == alice
        assert loaded is not alice
