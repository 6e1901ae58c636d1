"""Variable scopes and the function table.

A `Scope` is a mapping of names to values with an optional parent. Reads
walk outward on a miss; writes go to the nearest scope that already owns the
name, or to the innermost scope for a new name. Function call scopes are
children of the run's global scope, so a function body can read and update
outer state unless it shadows the name with a parameter or a local binding.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Set

from .errors import ConstAssignment, UndefinedFunction, UndefinedName


class _Undefined:
    """Placeholder for missing call arguments and absent fields."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "undefined"

    __str__ = __repr__


UNDEFINED = _Undefined()


def get_field(value: Any, key: str) -> Any:
    """Permissive field access used by dotted reads.

    A null/undefined base behaves like an empty record, so `a.b.c` never
    fails on a missing intermediate; the result is `undefined` instead.
    """
    if value is None or value is UNDEFINED:
        return UNDEFINED
    if isinstance(value, dict):
        return value.get(key, UNDEFINED)
    if isinstance(value, (list, str)):
        if key == "length":
            return len(value)
        if key.isdigit() and int(key) < len(value):
            return value[int(key)]
    return UNDEFINED


class Scope:
    def __init__(self, parent: Optional["Scope"] = None, depth: int = 0):
        # call nesting level, 0 for the global scope
        self.depth = depth
        self.vars: Dict[str, Any] = {}
        self.consts: Set[str] = set()
        self.parent = parent

    def owner(self, name: str) -> Optional["Scope"]:
        scope: Optional[Scope] = self
        while scope is not None:
            if name in scope.vars:
                return scope
            scope = scope.parent
        return None

    def __contains__(self, name: str) -> bool:
        return self.owner(name) is not None

    def lookup(self, name: str) -> Any:
        """Strict read of a plain (non-dotted) name."""
        scope = self.owner(name)
        if scope is None:
            raise UndefinedName(name)
        return scope.vars[name]

    def get(self, name: str) -> Any:
        if "." not in name:
            return self.lookup(name)
        base, *rest = name.split(".")
        value = self.lookup(base)
        for key in rest:
            value = get_field(value, key)
        return value

    def set(self, name: str, value: Any) -> Any:
        scope = self.owner(name) or self
        if name in scope.consts:
            raise ConstAssignment(name)
        scope.vars[name] = value
        return value

    def declare_const(self, name: str, value: Any) -> Any:
        # a second CONST for the same name is an assignment to a constant
        if name in self.consts:
            raise ConstAssignment(name)
        self.consts.add(name)
        self.vars[name] = value
        return value

    def alias(self, new: str, old: str) -> None:
        scope = self.owner(old)
        self.vars[new] = scope.vars[old] if scope is not None else UNDEFINED

    def root(self) -> "Scope":
        scope = self
        while scope.parent is not None:
            scope = scope.parent
        return scope


@dataclass(frozen=True)
class FunctionDef:
    name: str
    params: List[str]
    start: int
    end: int
    lines: Sequence[str]


class FunctionTable:
    def __init__(self):
        self._funcs: Dict[str, FunctionDef] = {}

    def define(self, fn: FunctionDef) -> None:
        self._funcs[fn.name] = fn

    def lookup(self, name: str) -> FunctionDef:
        try:
            return self._funcs[name]
        except KeyError:
            raise UndefinedFunction(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._funcs

    def __len__(self) -> int:
        return len(self._funcs)
