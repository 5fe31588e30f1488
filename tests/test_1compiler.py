"""
Tests the query compiler, for every dialect. No database is needed for these.
"""
import re

import pytest

from asyncrecord.orm.compiler import QueryCompiler, QueryState, get_dialect
from asyncrecord.orm.operators import ColumnClause, OrderClause, RawClause
from asyncrecord.orm.query import QueryBuilder

DIALECTS = ["sqlite3", "postgresql", "mysql"]

PLACEHOLDERS = {
    "sqlite3": re.compile(r"\?"),
    "postgresql": re.compile(r"\$(\d+)"),
    "mysql": re.compile(r"%s"),
}


class Offline(object):
    """
    An executor that can only compile.
    """

    def __init__(self, dialect: str):
        self.dialect = get_dialect(dialect)

    async def raw(self, sql, params=None):
        raise AssertionError("Offline executors cannot run {}".format(sql))


def users(dialect: str = "sqlite3") -> QueryBuilder:
    return QueryBuilder(Offline(dialect), "users")


def test_get_dialect():
    dialect = get_dialect("postgresql")
    assert dialect.name == "postgresql"
    # instances are passed through
    assert get_dialect(dialect) is dialect


def test_select_all():
    assert users().to_sql() == ("SELECT * FROM users", [])


def test_select_sqlite():
    query = users().where("name", "Laura").where("age", ">=", 18).order_by_desc("id") \
        .limit(10).offset(20)

    assert query.to_sql() == (
        "SELECT * FROM users WHERE name = ? AND age >= ? ORDER BY id DESC LIMIT ? OFFSET ?",
        ["Laura", 18, 10, 20]
    )


def test_select_postgresql():
    query = users("postgresql").select("id", "name").where("name", "Laura") \
        .where("age", ">=", 18).order_by("name").limit(10).offset(20)

    assert query.to_sql() == (
        "SELECT id, name FROM users WHERE name = $1 AND age >= $2 ORDER BY name ASC "
        "LIMIT $3 OFFSET $4",
        ["Laura", 18, 10, 20]
    )


def test_select_mysql():
    query = users("mysql").distinct().select("email").where("age", "<", 30)

    assert query.to_sql() == ("SELECT DISTINCT email FROM users WHERE age < %s", [30])


def test_first_clause_has_no_combinator():
    sql, params = users().or_where("a", 1).where("b", 2).to_sql()

    assert sql == "SELECT * FROM users WHERE a = ? AND b = ?"
    assert params == [1, 2]


def test_nested_where():
    query = users("postgresql").where("a", 1) \
        .or_where(lambda q: q.where("b", 2).where("c", 3))

    assert query.to_sql() == ("SELECT * FROM users WHERE a = $1 OR (b = $2 AND c = $3)",
                              [1, 2, 3])


def test_empty_nested_where_is_skipped():
    assert users().where(lambda q: None).to_sql() == ("SELECT * FROM users", [])


def test_where_dict():
    sql, params = users().where({"name": "Laura", "age": 18}).to_sql()

    assert sql == "SELECT * FROM users WHERE name = ? AND age = ?"
    assert params == ["Laura", 18]


def test_where_null():
    sql, params = users().where("deleted_at", None).where("email", "!=", None) \
        .or_where_null("name").to_sql()

    assert sql == "SELECT * FROM users WHERE deleted_at IS NULL AND email IS NOT NULL " \
                  "OR name IS NULL"
    assert params == []


def test_where_in():
    sql, params = users("postgresql").where_in("id", [1, 2, 3]).where_not_in("role", ["x"]) \
        .to_sql()

    assert sql == "SELECT * FROM users WHERE id IN ($1, $2, $3) AND role NOT IN ($4)"
    assert params == [1, 2, 3, "x"]


def test_where_in_empty():
    assert users().where_in("id", []).to_sql() == ("SELECT * FROM users WHERE 1 = 0", [])
    assert users().where_not_in("id", []).to_sql() == ("SELECT * FROM users WHERE 1 = 1", [])


def test_where_between():
    sql, params = users().where_between("age", (18, 30)).where_not_between("id", [5, 6]) \
        .to_sql()

    assert sql == "SELECT * FROM users WHERE age BETWEEN ? AND ? AND id NOT BETWEEN ? AND ?"
    assert params == [18, 30, 5, 6]


def test_where_raw_advances_placeholders():
    query = users("postgresql").where("a", 1).where_raw("b = $2", [2]).where("c", 3)

    assert query.to_sql() == ("SELECT * FROM users WHERE a = $1 AND (b = $2) AND c = $3",
                              [1, 2, 3])


@pytest.mark.parametrize("dialect, expected", [
    ("sqlite3", "LOWER(name) LIKE LOWER(?)"),
    ("mysql", "LOWER(name) LIKE LOWER(%s)"),
    ("postgresql", "name ILIKE $1"),
])
def test_ilike(dialect, expected):
    sql, params = users(dialect).where("name", "ilike", "%laura%").to_sql()

    assert sql == "SELECT * FROM users WHERE {}".format(expected)
    assert params == ["%laura%"]


def test_ilike_rewritten_in_nested_group():
    sql, _ = users().where(lambda q: q.where("name", "ILIKE", "a%")).to_sql()

    assert sql == "SELECT * FROM users WHERE (LOWER(name) LIKE LOWER(?))"


def test_unknown_operator():
    with pytest.raises(TypeError):
        users().where("a", "~~", 1)


def test_unknown_direction():
    with pytest.raises(TypeError):
        users().order_by("a", "sideways")


def test_unknown_combinator():
    with pytest.raises(TypeError):
        ColumnClause("a", "=", 1, combinator="XOR")


def test_joins():
    query = users().select("users.*").join("posts", "posts.user_id", "users.id") \
        .left_join("profiles", "profiles.user_id", "=", "users.id") \
        .cross_join("roles")

    assert query.to_sql()[0] == (
        "SELECT users.* FROM users INNER JOIN posts ON posts.user_id = users.id "
        "LEFT JOIN profiles ON profiles.user_id = users.id CROSS JOIN roles"
    )


def test_join_needs_predicate():
    with pytest.raises(TypeError):
        users().join("posts", "")


def test_group_by_having():
    query = QueryBuilder(Offline("postgresql"), "posts").select("user_id", "COUNT(*)") \
        .where("status", "published").group_by("user_id").having("COUNT(*) > $2", [2])

    assert query.to_sql() == (
        "SELECT user_id, COUNT(*) FROM posts WHERE status = $1 GROUP BY user_id "
        "HAVING (COUNT(*) > $2)",
        ["published", 2]
    )


@pytest.mark.parametrize("dialect, expected", [
    ("sqlite3", ("SELECT * FROM users LIMIT ? OFFSET ?", [-1, 5])),
    ("postgresql", ("SELECT * FROM users OFFSET $1", [5])),
    ("mysql", ("SELECT * FROM users LIMIT %s OFFSET %s", [18446744073709551615, 5])),
])
def test_offset_without_limit(dialect, expected):
    assert users(dialect).offset(5).to_sql() == expected


def test_for_page():
    _, params = users().for_page(3, 10).to_sql()

    assert params == [10, 20]


@pytest.mark.parametrize("dialect, mode, expected", [
    ("postgresql", "update", "FOR UPDATE"),
    ("postgresql", "share", "FOR SHARE"),
    ("mysql", "update", "FOR UPDATE"),
    ("mysql", "share", "LOCK IN SHARE MODE"),
])
def test_locks(dialect, mode, expected):
    query = users(dialect)
    if mode == "update":
        query.lock_for_update()
    else:
        query.lock_for_share()

    assert query.to_sql()[0] == "SELECT * FROM users {}".format(expected)


def test_sqlite_has_no_locks():
    assert users().lock_for_update().to_sql() == ("SELECT * FROM users", [])


def test_count_drops_order_and_paging():
    state = QueryState("users")
    state.wheres.append(ColumnClause("age", ">", 18))
    state.orders.append(OrderClause("id"))
    state.limit = 5
    state.offset = 10

    compiler = QueryCompiler("postgresql")
    assert compiler.compile_count(state) == ("SELECT COUNT(*) AS aggregate FROM users "
                                             "WHERE age > $1", [18])


def test_count_distinct():
    state = QueryState("users")
    state.selects = ["email"]
    state.distinct = True

    assert QueryCompiler("sqlite3").compile_count(state) == (
        "SELECT COUNT(DISTINCT email) AS aggregate FROM users", []
    )


def test_exists():
    state = QueryState("users")
    state.wheres.append(ColumnClause("id", "=", 1))

    assert QueryCompiler("sqlite3").compile_exists(state) == (
        "SELECT EXISTS(SELECT 1 FROM users WHERE id = ? LIMIT ?) AS aggregate", [1, 1]
    )


def test_insert_many_rows():
    rows = [{"name": "a"}, {"name": "b", "email": "e"}]

    assert QueryCompiler("postgresql").compile_insert("users", rows) == (
        "INSERT INTO users (name, email) VALUES ($1, $2), ($3, $4) RETURNING *",
        ["a", None, "b", "e"]
    )


def test_insert_without_returning():
    rows = [{"name": "a"}]

    assert QueryCompiler("sqlite3").compile_insert("users", rows) == (
        "INSERT INTO users (name) VALUES (?)", ["a"]
    )
    assert QueryCompiler("postgresql").compile_insert("users", rows, returning=False) == (
        "INSERT INTO users (name) VALUES ($1)", ["a"]
    )


def test_insert_default_values():
    assert QueryCompiler("mysql").compile_insert("users", [{}]) == (
        "INSERT INTO users DEFAULT VALUES", []
    )


def test_update():
    state = QueryState("users")
    state.wheres.append(ColumnClause("id", "=", 1))

    assert QueryCompiler("postgresql").compile_update(state, {"name": "x", "age": 3}) == (
        "UPDATE users SET name = $1, age = $2 WHERE id = $3 RETURNING *", ["x", 3, 1]
    )
    assert QueryCompiler("sqlite3").compile_update(state, {"name": "x"}) == (
        "UPDATE users SET name = ? WHERE id = ?", ["x", 1]
    )


def test_update_and_delete_skip_joins():
    query = users().join("posts", "posts.user_id", "users.id").where("users.id", 1)
    compiler = QueryCompiler("sqlite3")

    assert compiler.compile_delete(query.state) == ("DELETE FROM users WHERE users.id = ?", [1])
    assert compiler.compile_update(query.state, {"name": "x"}) == (
        "UPDATE users SET name = ? WHERE users.id = ?", ["x", 1]
    )


def test_delete():
    state = QueryState("users")
    state.wheres.append(RawClause("age < $1", [18]))

    assert QueryCompiler("postgresql").compile_delete(state) == (
        "DELETE FROM users WHERE (age < $1) RETURNING *", [18]
    )


def test_clone_is_independent():
    base = users().where("a", 1)
    branch = base.clone().where("b", 2).limit(3)

    assert base.to_sql() == ("SELECT * FROM users WHERE a = ?", [1])
    assert branch.to_sql() == ("SELECT * FROM users WHERE a = ? AND b = ? LIMIT ?", [1, 2, 3])


def test_qualify():
    query = users()

    assert query.qualify("id") == "users.id"
    assert query.qualify("posts.id") == "posts.id"


@pytest.mark.parametrize("dialect", DIALECTS)
def test_placeholders_match_params(dialect):
    query = users(dialect).select("users.*") \
        .join("posts", "posts.user_id", "users.id") \
        .where("name", "Laura") \
        .or_where(lambda q: q.where_in("id", [1, 2, 3]).where_between("age", (1, 99))) \
        .where_not_in("role", []) \
        .where("email", "LIKE", "%@example.com") \
        .where_null("deleted_at") \
        .group_by("users.id") \
        .order_by("name") \
        .for_page(2, 25)

    sql, params = query.to_sql()
    found = PLACEHOLDERS[dialect].findall(sql)
    assert len(found) == len(params) == 9

    if dialect == "postgresql":
        # numbered in order, starting at 1
        assert [int(index) for index in found] == list(range(1, len(params) + 1))


@pytest.mark.parametrize("dialect", DIALECTS)
def test_numbering_restarts_per_compile(dialect):
    query = users(dialect).where("a", 1)

    assert query.to_sql() == query.to_sql()
