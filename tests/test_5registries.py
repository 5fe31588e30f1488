"""
Tests the cast, scope and hook registries on their own.
"""
import datetime
import decimal

import pytest

from asyncrecord.exc import CastError
from asyncrecord.orm.casts import BUILTIN_CASTS, Cast, CastRegistry
from asyncrecord.orm.compiler import get_dialect
from asyncrecord.orm.hooks import HOOK_NAMES, HookRunner
from asyncrecord.orm.query import QueryBuilder
from asyncrecord.orm.scopes import SOFT_DELETE_SCOPE, ScopeRegistry, SoftDeleteScope

UTC = datetime.timezone.utc


class Offline(object):
    dialect = get_dialect("sqlite3")


def test_builtin_casts():
    registry = CastRegistry({name: name for name in BUILTIN_CASTS})

    assert registry.serialize("boolean", True) == 1
    assert registry.serialize("boolean", "false") == 0
    assert registry.deserialize("boolean", 1) is True
    assert registry.deserialize("boolean", "0") is False

    assert registry.serialize("integer", "12") == 12
    assert registry.deserialize("float", "1.5") == 1.5

    assert registry.serialize("json", {"a": [1, 2]}) == '{"a": [1, 2]}'
    assert registry.deserialize("json", '{"a": [1, 2]}') == {"a": [1, 2]}

    assert registry.serialize("date", datetime.date(2020, 2, 1)) == "2020-02-01"
    assert registry.deserialize("date", "2020-02-01T10:00:00") == datetime.date(2020, 2, 1)

    moment = datetime.datetime(2020, 2, 1, 10, 30)
    assert registry.serialize("datetime", moment) == "2020-02-01T10:30:00"
    assert registry.deserialize("datetime", "2020-02-01T10:30:00") == moment


@pytest.mark.parametrize("value", ["dark", "123", '{"a": 1}'])
def test_json_cast_keeps_value(value):
    registry = CastRegistry({"settings": "json"})

    stored = registry.serialize("settings", value)
    assert isinstance(stored, str)
    read = registry.deserialize("settings", stored)
    assert read == value
    assert type(read) is type(value)


def test_json_cast_unencodable():
    registry = CastRegistry({"settings": "json"})

    with pytest.raises(CastError):
        registry.serialize("settings", object())


def test_timestamp_cast():
    registry = CastRegistry({"at": "timestamp"})
    moment = datetime.datetime(2020, 1, 1, tzinfo=UTC)

    assert registry.serialize("at", moment) == 1577836800000
    # naive datetimes are taken as UTC
    assert registry.serialize("at", moment.replace(tzinfo=None)) == 1577836800000
    assert registry.deserialize("at", 1577836800000) == moment


def test_none_passes_through():
    registry = CastRegistry({name: name for name in BUILTIN_CASTS})

    for name in BUILTIN_CASTS:
        assert registry.serialize(name, None) is None
        assert registry.deserialize(name, None) is None


def test_uncast_keys_pass_through():
    registry = CastRegistry({"a": "integer"})

    assert "a" in registry
    assert "b" not in registry
    assert registry.serialize("b", "12") == "12"


def test_custom_cast():
    cast = Cast(serialize=str, deserialize=decimal.Decimal, name="decimal")
    registry = CastRegistry({"price": cast})

    assert registry.serialize("price", decimal.Decimal("1.10")) == "1.10"
    assert registry.deserialize("price", "1.10") == decimal.Decimal("1.10")


def test_duck_typed_cast():
    class Upper(object):
        def serialize(self, value):
            return value.upper()

        def deserialize(self, value):
            return value.lower()

    registry = CastRegistry({"code": Upper()})
    assert registry.serialize("code", "abc") == "ABC"
    assert registry.deserialize("code", "ABC") == "abc"


def test_unknown_cast():
    with pytest.raises(CastError):
        CastRegistry({"a": "complex"})

    with pytest.raises(CastError):
        CastRegistry({"a": object()})


@pytest.mark.parametrize("name, value", [
    ("json", "{broken"),
    ("date", "yesterday"),
    ("datetime", "not a time"),
    ("integer", "twelve"),
    ("timestamp", "soon"),
])
def test_malformed_values(name, value):
    registry = CastRegistry({"a": name})

    with pytest.raises(CastError):
        registry.deserialize("a", value)


def test_scope_registry_order():
    registry = ScopeRegistry()
    registry.add("first", lambda query: query.where("a", 1))
    registry.add("second", lambda query: query.where("b", 2))

    query = registry.apply(QueryBuilder(Offline(), "users"))
    assert query.to_sql() == ("SELECT * FROM users WHERE a = ? AND b = ?", [1, 2])
    assert len(registry) == 2


def test_scope_registry_excluded():
    registry = ScopeRegistry()
    registry.add("first", lambda query: query.where("a", 1))
    registry.add("second", lambda query: query.where("b", 2))

    query = registry.apply(QueryBuilder(Offline(), "users"), excluded=["first"])
    assert query.to_sql() == ("SELECT * FROM users WHERE b = ?", [2])


def test_scope_registry_inherits():
    parent = ScopeRegistry()
    parent.add("first", lambda query: None)
    child = ScopeRegistry(parent)
    child.add("second", lambda query: None)
    child.remove("first")
    # removing a missing scope is fine
    child.remove("third")

    assert "first" in parent
    assert "first" not in child
    assert "second" not in parent
    assert child.get("second") is not None

    child.clear()
    assert len(child) == 0


def test_soft_delete_scope():
    registry = ScopeRegistry()
    registry.add(SOFT_DELETE_SCOPE, SoftDeleteScope("posts.deleted_at"))

    query = registry.apply(QueryBuilder(Offline(), "posts"))
    assert query.to_sql() == ("SELECT * FROM posts WHERE posts.deleted_at IS NULL", [])


class Thing(object):
    pass


class OtherThing(object):
    pass


@pytest.mark.asyncio
async def test_hook_runner_order():
    runner = HookRunner()
    calls = []

    async def second(instance):
        calls.append("second")

    runner.on(Thing, "saving", lambda instance: calls.append("first"))
    runner.on(Thing, "saving", second)

    assert await runner.run("saving", Thing()) is True
    assert calls == ["first", "second"]


@pytest.mark.asyncio
async def test_hook_runner_abort():
    runner = HookRunner()
    calls = []

    runner.on(Thing, "deleting", lambda instance: False)
    runner.on(Thing, "deleting", lambda instance: calls.append("never"))
    # only a literal False aborts
    runner.on(Thing, "saving", lambda instance: None)
    runner.on(Thing, "saving", lambda instance: 0)

    assert await runner.run("deleting", Thing()) is False
    assert calls == []
    assert await runner.run("saving", Thing()) is True


@pytest.mark.asyncio
async def test_hook_runner_async_abort():
    runner = HookRunner()

    async def veto(instance):
        return False

    runner.on(Thing, "creating", veto)
    assert await runner.run("creating", Thing()) is False


@pytest.mark.asyncio
async def test_hook_runner_per_model():
    runner = HookRunner()
    runner.on(Thing, "saved", lambda instance: False)

    assert await runner.run("saved", OtherThing()) is True
    assert len(runner.callbacks(Thing, "saved")) == 1

    runner.clear(Thing)
    assert runner.callbacks(Thing, "saved") == []


def test_hook_runner_unknown_name():
    runner = HookRunner()

    assert "restored" in HOOK_NAMES
    with pytest.raises(ValueError):
        runner.on(Thing, "exploded", lambda instance: None)

    with pytest.raises(ValueError):
        runner.callbacks(Thing, "exploded")
