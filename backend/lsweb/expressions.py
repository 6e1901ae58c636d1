"""Host expression evaluator for LS-Web.

Expressions are written in a small JavaScript-flavoured syntax (`&&`, `||`,
`!`, `===`, `true`/`false`/`null`) which is rewritten into Python surface
syntax, parsed with `ast` and walked by `ExpressionEvaluator`. Only an
explicit set of node types is accepted; anything else is rejected with
`BadExpression`.

Identifiers resolve against the current `Scope`. Field access (`a.b.c`) is
permissive: a missing intermediate reads as an empty record.
"""

import ast
import functools
import json
import math
import random
from typing import Any, Callable, Dict

from .environment import UNDEFINED, Scope, get_field
from .errors import BadExpression, LSWebError


def _ieee(fn):
    """Wrap a math function so a domain error yields NaN and an overflow
    yields infinity instead of raising, matching JavaScript's Math."""

    @functools.wraps(fn)
    def wrapper(*args):
        try:
            return fn(*args)
        except ValueError:
            return math.nan
        except OverflowError:
            return math.inf

    return wrapper


def _log(fn):
    safe = _ieee(fn)

    @functools.wraps(fn)
    def wrapper(x):
        if x == 0:
            return -math.inf
        return safe(x)

    return wrapper


def _integral(fn):
    """Rounding functions pass NaN and the infinities through unchanged."""

    @functools.wraps(fn)
    def wrapper(x):
        if isinstance(x, float) and not math.isfinite(x):
            return x
        return fn(x)

    return wrapper


def _sign(x):
    if x != x:
        return math.nan
    return (x > 0) - (x < 0)


def _round(x):
    # JavaScript rounds halves up, Python rounds halves to even
    return math.floor(x + 0.5)


def _pow(x, y):
    try:
        return math.pow(x, y)
    except ValueError:
        # 0 to a negative power
        return math.inf if x == 0 else math.nan
    except OverflowError:
        return math.inf


MATH_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "abs": abs,
    "floor": _integral(math.floor),
    "ceil": _integral(math.ceil),
    "round": _integral(_round),
    "trunc": _integral(math.trunc),
    "sqrt": _ieee(math.sqrt),
    "cbrt": lambda x: math.copysign(abs(x) ** (1.0 / 3.0), x),
    "pow": _pow,
    "min": min,
    "max": max,
    "sin": _ieee(math.sin),
    "cos": _ieee(math.cos),
    "tan": _ieee(math.tan),
    "asin": _ieee(math.asin),
    "acos": _ieee(math.acos),
    "atan": math.atan,
    "atan2": math.atan2,
    "log": _log(math.log),
    "log2": _log(math.log2),
    "log10": _log(math.log10),
    "exp": _ieee(math.exp),
    "sign": _sign,
    "hypot": math.hypot,
    "random": random.random,
}

MATH_CONSTANTS: Dict[str, float] = {"PI": math.pi, "E": math.e}

_LITERAL_NAMES = {"true": True, "false": False, "null": None, "undefined": UNDEFINED}

_FORBIDDEN_NAMES = ("__import__", "eval", "exec", "open", "os", "sys", "globals", "locals")


def _to_number(value):
    if isinstance(value, str) and "." in value:
        return float(value)
    return int(value) if not isinstance(value, float) else value


def to_display(value):
    if value is True:
        return "true"
    if value is False:
        return "false"
    if value is None:
        return "null"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=to_display)
    return str(value)


BUILTIN_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "len": len,
    "length": len,
    "toNumber": _to_number,
    "toString": to_display,
}


def translate(expr: str) -> str:
    """Rewrite JavaScript operators into Python ones, leaving string literals untouched."""
    out = []
    i = 0
    n = len(expr)
    while i < n:
        ch = expr[i]
        if ch in "\"'":
            j = i + 1
            while j < n and expr[j] != ch:
                j += 2 if expr[j] == "\\" else 1
            out.append(expr[i : j + 1])
            i = j + 1
            continue
        two = expr[i : i + 2]
        three = expr[i : i + 3]
        if three in ("===", "!=="):
            out.append(" == " if three == "===" else " != ")
            i += 3
        elif two == "&&":
            out.append(" and ")
            i += 2
        elif two == "||":
            out.append(" or ")
            i += 2
        elif ch == "!" and expr[i + 1 : i + 2] != "=":
            out.append(" not ")
            i += 1
        else:
            out.append(ch)
            i += 1
    return "".join(out).strip()


class ExpressionEvaluator(ast.NodeVisitor):
    """Walks a parsed expression, resolving names against `scope`."""

    def __init__(self, scope: Scope):
        self.scope = scope

    def visit_Expression(self, node):
        return self.visit(node.body)

    def visit_BinOp(self, node):
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Add):
            # string concatenation when either side is a string
            if isinstance(left, str) or isinstance(right, str):
                return to_display(left) + to_display(right)
            return left + right
        if isinstance(node.op, ast.Sub):
            return left - right
        if isinstance(node.op, ast.Mult):
            return left * right
        if isinstance(node.op, ast.Div):
            return divide(left, right)
        if isinstance(node.op, ast.Mod):
            return modulo(left, right)
        if isinstance(node.op, ast.FloorDiv):
            return math.floor(divide(left, right))
        if isinstance(node.op, ast.Pow):
            return left ** right
        raise BadExpression(type(node.op).__name__, "Unsupported binary op")

    def visit_Compare(self, node):
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            if isinstance(op, ast.Eq):
                ok = left == right
            elif isinstance(op, ast.NotEq):
                ok = left != right
            elif isinstance(op, ast.Lt):
                ok = left < right
            elif isinstance(op, ast.LtE):
                ok = left <= right
            elif isinstance(op, ast.Gt):
                ok = left > right
            elif isinstance(op, ast.GtE):
                ok = left >= right
            elif isinstance(op, ast.In):
                ok = left in right
            elif isinstance(op, ast.NotIn):
                ok = left not in right
            else:
                raise BadExpression(type(op).__name__, "Unsupported comparison")
            if not ok:
                return False
            left = right
        return True

    def visit_UnaryOp(self, node):
        operand = self.visit(node.operand)
        if isinstance(node.op, ast.UAdd):
            return +operand
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.Not):
            return not operand
        raise BadExpression(type(node.op).__name__, "Unsupported unary op")

    def visit_BoolOp(self, node):
        # short-circuit, returning the deciding operand like JavaScript does
        value = None
        if isinstance(node.op, ast.And):
            for v in node.values:
                value = self.visit(v)
                if not value:
                    return value
            return value
        for v in node.values:
            value = self.visit(v)
            if value:
                return value
        return value

    def visit_IfExp(self, node):
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Constant(self, node):
        return node.value

    def visit_List(self, node):
        return [self.visit(e) for e in node.elts]

    visit_Tuple = visit_List

    def visit_Dict(self, node):
        out = {}
        for k, v in zip(node.keys, node.values):
            key = k.id if isinstance(k, ast.Name) else self.visit(k)
            out[str(key)] = self.visit(v)
        return out

    def visit_Name(self, node):
        if node.id in _LITERAL_NAMES:
            return _LITERAL_NAMES[node.id]
        if node.id in self.scope:
            return self.scope.lookup(node.id)
        if node.id in MATH_CONSTANTS:
            return MATH_CONSTANTS[node.id]
        # raises UndefinedName
        return self.scope.lookup(node.id)

    def visit_Attribute(self, node):
        if isinstance(node.value, ast.Name) and node.value.id == "Math" and "Math" not in self.scope:
            if node.attr in MATH_CONSTANTS:
                return MATH_CONSTANTS[node.attr]
            raise BadExpression(f"Math.{node.attr}", "Unknown math member")
        return get_field(self.visit(node.value), node.attr)

    def visit_Subscript(self, node):
        target = self.visit(node.value)
        key = self.visit(node.slice)
        if isinstance(target, dict):
            return target.get(str(key), UNDEFINED)
        if isinstance(target, (list, str)):
            try:
                return target[int(key)]
            except (IndexError, ValueError, TypeError):
                return UNDEFINED
        return get_field(target, str(key))

    def visit_Call(self, node):
        fn = self._resolve_callable(node.func)
        args = [self.visit(a) for a in node.args]
        return fn(*args)

    def _resolve_callable(self, func) -> Callable[..., Any]:
        if isinstance(func, ast.Attribute) and isinstance(func.value, ast.Name) and func.value.id == "Math":
            name = func.attr
        elif isinstance(func, ast.Name):
            name = func.id
        else:
            raise BadExpression(ast.unparse(func), "Unsupported call target")
        if name in MATH_FUNCTIONS:
            return MATH_FUNCTIONS[name]
        if name in BUILTIN_FUNCTIONS:
            return BUILTIN_FUNCTIONS[name]
        raise BadExpression(name, "Unsupported function call")

    def generic_visit(self, node):
        raise BadExpression(type(node).__name__, "Unsupported expression element")


def divide(left, right):
    """IEEE division: x/0 is +-inf, 0/0 is NaN."""
    try:
        return left / right
    except ZeroDivisionError:
        if left == 0 or left != left:
            return math.nan
        return math.copysign(math.inf, left) * math.copysign(1.0, right)


def modulo(left, right):
    """Remainder with the sign of the dividend; x % 0 is NaN."""
    if right == 0:
        return math.nan
    if isinstance(left, int) and isinstance(right, int):
        rem = abs(left) % abs(right)
        return rem if left >= 0 else -rem
    return math.fmod(left, right)


def evaluate(expr: str, scope: Scope) -> Any:
    """Parse and evaluate one expression against `scope`.

    Raises:
        BadExpression: on a syntax error, a disallowed construct, an unknown
            name or any failure inside evaluation. The original exception is
            chained as `__cause__`.
    """
    source = translate(expr)
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise BadExpression(expr, f"Syntax error: {e.msg}") from e

    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and node.id in _FORBIDDEN_NAMES:
            raise BadExpression(expr, f"Unsupported name in expression: {node.id}")
        if isinstance(node, ast.Attribute) and node.attr.startswith("__"):
            raise BadExpression(expr, f"Unsupported attribute: {node.attr}")

    try:
        return ExpressionEvaluator(scope).visit(tree)
    except BadExpression as e:
        if e.expr == expr:
            raise
        raise BadExpression(expr, e.message) from e
    except LSWebError as e:
        raise BadExpression(expr, e.message) from e
    except Exception as e:
        # TypeError, ValueError, OverflowError ... from operand mismatches
        raise BadExpression(expr, str(e)) from e
