"""Tests for scopes, constants, the function table and the entity store."""

import pytest

from backend.lsweb.environment import UNDEFINED, FunctionDef, FunctionTable, Scope
from backend.lsweb.errors import ConstAssignment, UndefinedFunction, UndefinedName
from backend.lsweb.store import EntityStore


def test_scope_reads_walk_to_parent():
    root = Scope()
    root.set("a", 1)
    child = Scope(parent=root, depth=1)
    assert child.get("a") == 1
    with pytest.raises(UndefinedName):
        child.get("b")


def test_scope_writes_go_to_owner():
    root = Scope()
    root.set("a", 1)
    child = Scope(parent=root, depth=1)
    child.set("a", 2)
    child.set("fresh", 3)
    assert root.vars == {"a": 2}
    assert child.vars == {"fresh": 3}
    assert child.root() is root


def test_const_cannot_be_reassigned():
    scope = Scope()
    scope.declare_const("k", 1)
    with pytest.raises(ConstAssignment):
        scope.set("k", 2)
    with pytest.raises(ConstAssignment):
        scope.declare_const("k", 3)
    assert scope.get("k") == 1


def test_dotted_read_is_permissive():
    scope = Scope()
    scope.set("o", {"a": None})
    assert scope.get("o.a.b") is UNDEFINED
    assert not UNDEFINED
    assert str(UNDEFINED) == "undefined"


def test_alias_copies_current_value():
    scope = Scope()
    scope.set("a", [1])
    scope.alias("b", "a")
    scope.alias("c", "missing")
    assert scope.get("b") is scope.get("a")
    assert scope.get("c") is UNDEFINED


def test_function_table():
    table = FunctionTable()
    table.define(FunctionDef("f", ["x"], 1, 2, ("FUNCTION f(x)", "RETURN x", "ENDFN")))
    assert "f" in table
    assert len(table) == 1
    assert table.lookup("f").params == ["x"]
    with pytest.raises(UndefinedFunction):
        table.lookup("g")


def test_entity_ids_increase_and_components_round_trip():
    store = EntityStore()
    ids = [store.new_entity() for _ in range(3)]
    assert ids == [1, 2, 3]
    store.set_component(2, "pos", {"x": 1})
    assert store.get_component(2, "pos") == {"x": 1}
    assert store.has_component(2, "pos")
    store.delete_component(2, "pos")
    assert not store.has_component(2, "pos")
    assert store.get_component(2, "pos") is None
    # unknown ids behave like empty tables
    assert not store.has_component(99, "pos")
    store.delete_component(99, "pos")
